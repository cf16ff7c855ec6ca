"""Tests for the pure commit → tags map helpers."""
from __future__ import annotations

from vtrace.cache.operations import (
    add_tags_to_cache,
    build_name_index,
    calculate_tag_diff,
    count_tags,
    find_tag_in_cache,
    get_all_tag_names,
    merge_caches,
    remove_tags_from_cache,
    update_tags_in_cache,
)
from vtrace.core.models import TagInfo
from vtrace.core.versioning import parse_version


def _tag(name: str, commit: str) -> TagInfo:
    return TagInfo(name=name, hash=commit, version=parse_version(name))


def _sample():
    return {
        "aaa": [_tag("v1.0", "aaa"), _tag("v1.0-final", "aaa")],
        "bbb": [_tag("v1.1", "bbb")],
    }


def test_names_and_count():
    cache = _sample()
    assert sorted(get_all_tag_names(cache)) == ["v1.0", "v1.0-final", "v1.1"]
    assert count_tags(cache) == 3
    assert count_tags({}) == 0


def test_diff_partitions_names():
    diff = calculate_tag_diff(_sample(), ["v1.1", "v2.0", "v1.0"])
    assert diff.added == ["v2.0"]
    assert diff.deleted == ["v1.0-final"]
    assert sorted(diff.unchanged) == ["v1.0", "v1.1"]


def test_diff_against_empty_cache_adds_everything():
    diff = calculate_tag_diff({}, ["a", "b"])
    assert diff.added == ["a", "b"]
    assert diff.deleted == []
    assert diff.unchanged == []


def test_remove_drops_empty_commits():
    cache = _sample()
    result = remove_tags_from_cache(cache, ["v1.1"])
    assert "bbb" not in result
    assert [t.name for t in result["aaa"]] == ["v1.0", "v1.0-final"]
    # Input untouched
    assert "bbb" in cache


def test_add_keeps_lists_sorted():
    result = add_tags_to_cache(_sample(), [_tag("v0.9", "aaa"), _tag("v2.0", "ccc")])
    assert [t.name for t in result["aaa"]] == ["v0.9", "v1.0", "v1.0-final"]
    assert [t.name for t in result["ccc"]] == ["v2.0"]


def test_add_does_not_mutate_input():
    cache = _sample()
    add_tags_to_cache(cache, [_tag("v0.9", "aaa")])
    assert len(cache["aaa"]) == 2


def test_update_moves_tag_to_new_commit():
    result = update_tags_in_cache(_sample(), ["v1.1"], [_tag("v1.1", "ccc")])
    assert "bbb" not in result
    assert find_tag_in_cache(result, "v1.1").hash == "ccc"
    assert count_tags(result) == 3


def test_find_missing_tag():
    assert find_tag_in_cache(_sample(), "nope") is None


def test_name_index():
    assert build_name_index(_sample()) == {"v1.0": "aaa", "v1.0-final": "aaa", "v1.1": "bbb"}


def test_merge_prefers_first_map():
    first = {"aaa": [TagInfo(name="v1.0", hash="aaa", version=None)]}
    second = {
        "aaa": [_tag("v1.0", "aaa"), _tag("v0.1", "aaa")],
        "ccc": [_tag("v3.0", "ccc")],
    }
    merged = merge_caches(first, second)
    assert [t.name for t in merged["aaa"]] == ["v0.1", "v1.0"]
    assert find_tag_in_cache({"aaa": merged["aaa"]}, "v1.0").version is None
    assert [t.name for t in merged["ccc"]] == ["v3.0"]

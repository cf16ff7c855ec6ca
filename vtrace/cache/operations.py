"""
vtrace.cache.operations — Pure functions over the commit → tags map.

None of these mutate their inputs.  Tag lists under each commit are kept
sorted by name so iteration order is deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from vtrace.core.models import TagInfo

TagMap = dict[str, list[TagInfo]]


@dataclass
class TagDiff:
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    # Moved tags hide in ``unchanged`` until their targets are re-resolved


def _by_name(tag: TagInfo) -> str:
    return tag.name


def get_all_tag_names(cache: TagMap) -> list[str]:
    return [tag.name for tags in cache.values() for tag in tags]


def count_tags(cache: TagMap) -> int:
    return sum(len(tags) for tags in cache.values())


def calculate_tag_diff(cache: TagMap, current_tags: list[str]) -> TagDiff:
    """Split names into added / deleted / unchanged relative to the cache."""
    cached_names = set(get_all_tag_names(cache))
    current = set(current_tags)
    diff = TagDiff()
    for name in current_tags:
        if name in cached_names:
            diff.unchanged.append(name)
        else:
            diff.added.append(name)
    diff.deleted = sorted(cached_names - current)
    return diff


def remove_tags_from_cache(cache: TagMap, tag_names: list[str]) -> TagMap:
    """Drop the named tags; commits left without tags disappear."""
    doomed = set(tag_names)
    result: TagMap = {}
    for commit_hash, tags in cache.items():
        kept = [t for t in tags if t.name not in doomed]
        if kept:
            result[commit_hash] = kept
    return result


def add_tags_to_cache(cache: TagMap, new_tags: list[TagInfo]) -> TagMap:
    result: TagMap = {commit: list(tags) for commit, tags in cache.items()}
    touched: set[str] = set()
    for tag in new_tags:
        result.setdefault(tag.hash, []).append(tag)
        touched.add(tag.hash)
    for commit_hash in touched:
        result[commit_hash].sort(key=_by_name)
    return result


def update_tags_in_cache(cache: TagMap, tag_names: list[str], updated_tags: list[TagInfo]) -> TagMap:
    """Replace the named tags with their re-resolved versions."""
    return add_tags_to_cache(remove_tags_from_cache(cache, tag_names), updated_tags)


def find_tag_in_cache(cache: TagMap, tag_name: str) -> TagInfo | None:
    for tags in cache.values():
        for tag in tags:
            if tag.name == tag_name:
                return tag
    return None


def build_name_index(cache: TagMap) -> dict[str, str]:
    """Tag name → cached target commit."""
    return {tag.name: commit for commit, tags in cache.items() for tag in tags}


def merge_caches(first: TagMap, second: TagMap) -> TagMap:
    """
    Union of two maps.  Where both list a tag name under the same commit the
    entry from *first* is kept.
    """
    merged: TagMap = {commit: list(tags) for commit, tags in first.items()}
    for commit_hash, tags in second.items():
        existing = merged.get(commit_hash, [])
        names = {t.name for t in existing}
        extra = [t for t in tags if t.name not in names]
        if existing or extra:
            merged[commit_hash] = sorted(existing + extra, key=_by_name)
    return merged

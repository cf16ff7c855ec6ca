"""
vtrace.cache.manager — Load-or-build the tag cache with differential updates.

On a warm repository only the tags that changed since the last snapshot
are re-resolved:

- ``added``     names that are new since the snapshot
- ``deleted``   names that disappeared
- ``modified``  names that still exist but now point at another commit
- ``unchanged`` everything else

A full rebuild only happens when there is no usable snapshot at all.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from vtrace.cache.operations import (
    TagMap,
    add_tags_to_cache,
    build_name_index,
    calculate_tag_diff,
    remove_tags_from_cache,
    update_tags_in_cache,
)
from vtrace.cache.store import TagCacheStore
from vtrace.core.models import CacheUpdateStats, TagCacheResult, TagInfo, VtraceConfig
from vtrace.core.versioning import parse_version
from vtrace.vcs.fast_tags import FastTagResolver, ResolvedTag

logger = logging.getLogger("vtrace.cache.manager")


def _tag_info(name: str, commit_oid: str) -> TagInfo:
    return TagInfo(name=name, hash=commit_oid, version=parse_version(name))


async def build_complete_tag_cache(resolver: FastTagResolver) -> TagMap:
    started = time.perf_counter()
    names = await resolver.list_tags()
    resolved = await resolver.resolve_batch_with_target_commit(names)

    cache: TagMap = {}
    for name in names:
        data = resolved.get(name)
        if data is None:
            continue
        cache.setdefault(data.commit_oid, []).append(_tag_info(name, data.commit_oid))
    for tags in cache.values():
        tags.sort(key=lambda t: t.name)

    logger.debug(
        "Built tag cache: %d tags on %d commits (%.1fms)",
        len(names), len(cache), (time.perf_counter() - started) * 1000,
    )
    return cache


def find_modified_tags(
    tag_names: list[str],
    cache: TagMap,
    resolved: dict[str, ResolvedTag],
) -> list[str]:
    """Cached names that still resolve, but to a different commit."""
    cached_targets = build_name_index(cache)
    modified = []
    for name in tag_names:
        cached = cached_targets.get(name)
        current = resolved.get(name)
        if cached is None or current is None:
            continue
        if current.commit_oid != cached:
            modified.append(name)
    return modified


async def differential_update(
    resolver: FastTagResolver,
    cache: TagMap,
    current_tags: list[str],
) -> tuple[TagMap, CacheUpdateStats]:
    """Reconcile *cache* with *current_tags*; returns the new map and its stats."""
    diff = calculate_tag_diff(cache, current_tags)
    logger.debug(
        "Tag diff: +%d -%d =%d", len(diff.added), len(diff.deleted), len(diff.unchanged)
    )

    # Added and surviving tags are resolved together in one pass over ref storage
    resolved = await resolver.resolve_batch_with_target_commit(diff.added + diff.unchanged)
    modified = find_modified_tags(diff.unchanged, cache, resolved)
    logger.debug("Found %d modified tags", len(modified))

    # Names that no longer resolve to a commit (symbolic refs, dangling
    # objects) never enter the map; cached ones are dropped like deletions.
    added = [n for n in diff.added if n in resolved]
    vanished = [n for n in diff.unchanged if n not in resolved]
    deleted = diff.deleted + vanished
    if len(added) < len(diff.added) or vanished:
        logger.debug(
            "Skipped %d tags that do not resolve to a commit",
            len(diff.added) - len(added) + len(vanished),
        )

    if deleted:
        cache = remove_tags_from_cache(cache, deleted)
    if added:
        cache = add_tags_to_cache(cache, [_tag_info(n, resolved[n].commit_oid) for n in added])
    if modified:
        updated = [_tag_info(n, resolved[n].commit_oid) for n in modified]
        cache = update_tags_in_cache(cache, modified, updated)

    stats = CacheUpdateStats(
        added=len(added),
        deleted=len(deleted),
        modified=len(modified),
        unchanged=len(diff.unchanged) - len(modified) - len(vanished),
        total_tags=len(current_tags),
    )
    return cache, stats


async def load_or_build_tag_cache(
    repo_path: Path | str,
    config: VtraceConfig | None = None,
) -> TagCacheResult:
    """
    Return the commit → tags map for *repo_path*, reusing the persisted
    snapshot where possible, and persist the result.

    Raises :class:`~vtrace.core.errors.CacheWriteError` if the snapshot
    cannot be written.
    """
    config = config or VtraceConfig.load()
    started = time.perf_counter()
    resolver = FastTagResolver(repo_path, timeout=config.git_timeout)
    store = TagCacheStore(config.cache_dir)

    snapshot = store.load(repo_path)
    current_tags = await resolver.list_tags()

    if snapshot is not None:
        cache = store.reconstruct(snapshot)
        if await store.validate(snapshot, resolver):
            logger.debug("Tag cache is current")
            stats = CacheUpdateStats(unchanged=len(current_tags), total_tags=len(current_tags))
        else:
            logger.debug("Tag cache is stale, performing differential update")
            cache, stats = await differential_update(resolver, cache, current_tags)
    else:
        logger.debug("No usable tag cache, building from scratch")
        cache = await build_complete_tag_cache(resolver)
        stats = CacheUpdateStats(
            added=len(current_tags),
            total_tags=len(current_tags),
            full_rebuild=True,
        )

    validation = await store.build_validation(resolver)
    store.save(repo_path, cache, validation)

    if snapshot is not None:
        age_ms = time.time() * 1000 - snapshot.created_at_ms
        if age_ms > config.cache_retention_ms:
            try:
                removed = store.cleanup_stale(config.cache_retention_ms)
                if removed:
                    logger.debug("Cleaned up %d old cache files", removed)
            except Exception as e:
                logger.debug("Cache sweep failed (ignored): %s", e)

    stats.update_time_ms = (time.perf_counter() - started) * 1000
    return TagCacheResult(cache=cache, stats=stats)

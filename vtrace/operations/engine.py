"""
vtrace.operations.engine — Derive a version number from commit history.

The walk, for a commit C:

1. Descend along primary parents until reaching a commit that is already
   solved, carries a version tag with at least ``major.minor``, or has no
   parents.  Every commit passed on the way is pushed on a stack.
2. Unwind the stack.  At a merge, every non-primary parent is solved
   recursively (sharing the same memo) and the highest version seen wins.
   Then the carried version is incremented once for the commit.

The memo (``reached``) belongs to one top-level call.  Concurrent
resolutions must each use their own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from vtrace.cache.manager import build_complete_tag_cache, load_or_build_tag_cache
from vtrace.cache.operations import TagMap
from vtrace.core.errors import VtraceError
from vtrace.core.models import (
    DEFAULT_VERSION,
    CommitInfo,
    CommitSummary,
    GitMetadata,
    TagInfo,
    Version,
    VtraceConfig,
)
from vtrace.core.versioning import (
    compare_versions,
    format_version,
    increment_version,
    sort_descending,
)
from vtrace.vcs.fast_tags import FastTagResolver
from vtrace.vcs.repository import GitRepository

logger = logging.getLogger("vtrace.engine")

TagLookup = Callable[[str], Awaitable[list[TagInfo]]]


class TagIndex:
    """In-memory commit → tags lookup built once per resolution."""

    def __init__(self, commit_to_tags: TagMap) -> None:
        self._commit_to_tags = commit_to_tags

    async def tags_for(self, commit_hash: str) -> list[TagInfo]:
        return list(self._commit_to_tags.get(commit_hash, []))

    @classmethod
    async def from_tag_cache(cls, repo_root: Path, config: VtraceConfig) -> "TagIndex":
        result = await load_or_build_tag_cache(repo_root, config)
        s = result.stats
        logger.debug(
            "Tag cache: +%d -%d ~%d =%d (full rebuild: %s, %.1fms)",
            s.added, s.deleted, s.modified, s.unchanged, s.full_rebuild, s.update_time_ms,
        )
        return cls(result.cache)

    @classmethod
    async def scan(cls, repo_root: Path, config: VtraceConfig) -> "TagIndex":
        """Read ref storage directly without touching the persisted cache."""
        resolver = FastTagResolver(repo_root, timeout=config.git_timeout)
        return cls(await build_complete_tag_cache(resolver))


async def build_tag_lookup(repository: GitRepository, config: VtraceConfig) -> TagLookup:
    """
    Pick the fastest tag source that works: the persisted tag cache, then a
    direct ref-storage scan, then one ``git tag --points-at`` per commit.
    """
    if config.use_tag_cache:
        try:
            return (await TagIndex.from_tag_cache(repository.root, config)).tags_for
        except (VtraceError, OSError, ValueError) as e:
            logger.warning("Tag cache unavailable, scanning refs directly: %s", e)
    try:
        return (await TagIndex.scan(repository.root, config)).tags_for
    except (OSError, ValueError) as e:
        logger.warning("Could not read ref storage, falling back to git: %s", e)
    return repository.related_tags


class VersionResolver:
    """
    Resolves commits of one repository to versions.

    *tag_lookup* returns the tags on a commit; it defaults to asking git.
    """

    def __init__(self, repository: GitRepository, tag_lookup: TagLookup | None = None) -> None:
        self.repository = repository
        self._tag_lookup = tag_lookup or repository.related_tags

    async def _anchor_version(self, commit_hash: str) -> Version | None:
        """Highest tag version on the commit, counting only ``major.minor`` or longer."""
        candidates = [
            tag.version
            for tag in await self._tag_lookup(commit_hash)
            if tag.version is not None and tag.version.minor is not None
        ]
        if not candidates:
            return None
        return sort_descending(candidates)[0]

    async def lookup_version(self, commit: CommitInfo, reached: dict[str, Version]) -> Version:
        """Resolve *commit*, recording every solved commit in *reached*."""
        scheduled: list[tuple[CommitInfo, list[CommitInfo]]] = []
        version = DEFAULT_VERSION
        current = commit

        while True:
            if current.hash in reached:
                version = reached[current.hash]
                break

            anchor = await self._anchor_version(current.hash)
            if anchor is not None:
                version = anchor
                reached[current.hash] = version
                break

            parents = await self.repository.get_parents(current)
            if not parents:
                # Root commit (or unreadable history): keep the default
                reached[current.hash] = version
                break

            scheduled.append((current, parents))
            current = parents[0]

        while scheduled:
            scheduled_commit, parents = scheduled.pop()
            for alternate in parents[1:]:
                alternate_version = await self.lookup_version(alternate, reached)
                if compare_versions(alternate_version, version) > 0:
                    version = alternate_version
            version = increment_version(version)
            reached[scheduled_commit.hash] = version

        return version

    async def resolve(self, commit: CommitInfo) -> Version:
        return await self.lookup_version(commit, {})


# ---------------------------------------------------------------------------
# Top-level operations
# ---------------------------------------------------------------------------

async def _open(
    repository_path: Path | str,
    commit: str | None,
    config: VtraceConfig,
) -> tuple[GitRepository, CommitInfo] | None:
    repository = await GitRepository.discover(repository_path, timeout=config.git_timeout)
    if repository is None:
        logger.debug("No git repository at %s", repository_path)
        return None
    target = await (repository.get_commit(commit) if commit else repository.current_commit())
    if target is None:
        logger.debug("Commit %s not found in %s", commit or "HEAD", repository.root)
        return None
    return repository, target


async def _resolve_with(
    repository: GitRepository,
    target: CommitInfo,
    tag_lookup: TagLookup,
    check_working_tree: bool,
) -> Version:
    version = await VersionResolver(repository, tag_lookup).resolve(target)
    if check_working_tree and await _is_checked_out(repository, target):
        if await repository.has_modified_files():
            version = increment_version(version)
    return version


async def _is_checked_out(repository: GitRepository, target: CommitInfo) -> bool:
    """Uncommitted changes sit on top of HEAD only."""
    head = await repository.current_commit()
    return head is not None and head.hash == target.hash


async def resolve_version(
    repository_path: Path | str,
    commit: str | None = None,
    check_working_tree: bool | None = None,
    config: VtraceConfig | None = None,
) -> Version | None:
    """
    Resolve the version of *commit* (default ``HEAD``) in the repository
    containing *repository_path*.

    With *check_working_tree* a dirty work tree adds one more increment,
    provided *commit* is the checked-out one.
    Returns ``None`` when there is no repository or no such commit.
    """
    config = config or VtraceConfig.load()
    if check_working_tree is None:
        check_working_tree = config.check_working_tree

    opened = await _open(repository_path, commit, config)
    if opened is None:
        return None
    repository, target = opened
    tag_lookup = await build_tag_lookup(repository, config)
    return await _resolve_with(repository, target, tag_lookup, check_working_tree)


async def get_git_metadata(
    repository_path: Path | str,
    check_working_tree: bool | None = None,
    config: VtraceConfig | None = None,
) -> GitMetadata | None:
    """
    Version, tags, branches and commit details for ``HEAD``.

    ``tags`` lists every tag on the commit, version or not; ``version`` is
    the resolved build version.  ``None`` means no version metadata.
    """
    config = config or VtraceConfig.load()
    if check_working_tree is None:
        check_working_tree = config.check_working_tree

    opened = await _open(repository_path, None, config)
    if opened is None:
        return None
    repository, head = opened
    tag_lookup = await build_tag_lookup(repository, config)

    version = await _resolve_with(repository, head, tag_lookup, check_working_tree)
    tags = sorted(tag.name for tag in await tag_lookup(head.hash))
    branches = await repository.related_branches(head.hash)

    return GitMetadata(
        version=format_version(version),
        tags=tags,
        branches=branches,
        commit=CommitSummary(
            hash=head.hash,
            short_hash=head.short_hash,
            date=head.author_date,
            message=head.message,
        ),
    )

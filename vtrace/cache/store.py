"""
vtrace.cache.store — Persisted commit → tags snapshots, one file per repository.

Files live under the configured cache directory and are named after the
SHA-1 of the repository's absolute path.  A snapshot is *valid* when the
repository still has exactly the same tag names and none of its ref
storage has been touched since the snapshot was written.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import secrets
import time
from pathlib import Path

from vtrace.cache.operations import TagMap
from vtrace.core.errors import CacheWriteError
from vtrace.core.models import CACHE_FORMAT, CachedTagData, CacheValidation
from vtrace.vcs.fast_tags import FastTagResolver

logger = logging.getLogger("vtrace.cache.store")

PACKED_REFS_KEY = "packed-refs"
LOOSE_TAGS_KEY = "refs/tags"


def _now_ms() -> float:
    return time.time() * 1000


def tag_list_digest(tag_names: list[str]) -> str:
    """SHA-256 of the sorted, newline-joined tag names."""
    joined = "\n".join(sorted(tag_names))
    return hashlib.sha256(joined.encode("utf-8", "surrogateescape")).hexdigest()


def ref_storage_mtimes(resolver: FastTagResolver) -> dict[str, float]:
    """
    Modification times (ms) of ``packed-refs`` and of the newest entry under
    ``refs/tags``.  Missing storage is simply left out.
    """
    mtimes: dict[str, float] = {}
    with contextlib.suppress(FileNotFoundError):
        mtimes[PACKED_REFS_KEY] = resolver.packed_refs_path.stat().st_mtime_ns / 1e6

    root = resolver.loose_tags_path
    if root.is_dir():
        newest = root.stat().st_mtime_ns
        for path in root.rglob("*"):
            with contextlib.suppress(FileNotFoundError):
                newest = max(newest, path.stat().st_mtime_ns)
        mtimes[LOOSE_TAGS_KEY] = newest / 1e6
    return mtimes


class TagCacheStore:
    """Load, validate, save and sweep tag-cache files in ``cache_dir``."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir

    def cache_path_for(self, repo_path: Path | str) -> Path:
        absolute = str(Path(repo_path).resolve())
        digest = hashlib.sha1(absolute.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def build_validation(self, resolver: FastTagResolver) -> CacheValidation:
        tags = await resolver.list_tags()
        return CacheValidation(
            tag_list_hash=tag_list_digest(tags),
            tag_count=len(tags),
            ref_storage_mtimes=ref_storage_mtimes(resolver),
        )

    async def validate(self, snapshot: CachedTagData, resolver: FastTagResolver) -> bool:
        """True when *snapshot* still describes the repository exactly."""
        try:
            tags = await resolver.list_tags()
            expected = snapshot.validation
            if len(tags) != expected.tag_count:
                logger.debug("Cache stale: tag count %d != %d", len(tags), expected.tag_count)
                return False
            if tag_list_digest(tags) != expected.tag_list_hash:
                logger.debug("Cache stale: tag list digest changed")
                return False

            current = ref_storage_mtimes(resolver)
            if set(current) != set(expected.ref_storage_mtimes):
                logger.debug("Cache stale: ref storage layout changed")
                return False
            for key, mtime in current.items():
                if mtime > snapshot.created_at_ms or mtime != expected.ref_storage_mtimes[key]:
                    logger.debug("Cache stale: %s modified after snapshot", key)
                    return False
            return True
        except Exception as e:
            logger.debug("Cache validation failed, treating as stale: %s", e)
            return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, repo_path: Path | str) -> CachedTagData | None:
        """Read a snapshot; anything missing, corrupt or of another format is ``None``."""
        path = self.cache_path_for(repo_path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("Unreadable tag cache %s: %s", path, e)
            return None

        if not isinstance(raw, dict) or raw.get("format") != CACHE_FORMAT:
            logger.debug("Discarding tag cache %s with foreign format", path)
            return None
        try:
            return CachedTagData.model_validate(raw)
        except ValueError as e:
            logger.debug("Malformed tag cache %s: %s", path, e)
            return None

    def save(self, repo_path: Path | str, cache: TagMap, validation: CacheValidation) -> Path:
        """
        Atomically persist *cache*.

        The document is written to a uniquely named temp file next to the
        target and renamed into place.  On failure the temp file is removed
        and :class:`CacheWriteError` is raised.
        """
        path = self.cache_path_for(repo_path)
        tmp = path.with_name(f"{path.stem}.{secrets.token_hex(8)}.tmp")
        data = CachedTagData(
            created_at_ms=_now_ms(),
            repository_path=str(Path(repo_path).resolve()),
            validation=validation,
            tag_cache=cache,
        )
        try:
            payload = data.model_dump_json(indent=2)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, ValueError) as e:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise CacheWriteError(path, str(e)) from e
        logger.debug("Saved tag cache %s (%d commits)", path, len(cache))
        return path

    def invalidate(self, repo_path: Path | str) -> bool:
        """Delete a repository's snapshot.  Returns whether one was removed."""
        path = self.cache_path_for(repo_path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not remove tag cache %s: %s", path, e)
            return False

    @staticmethod
    def reconstruct(snapshot: CachedTagData) -> TagMap:
        return {commit: list(tags) for commit, tags in snapshot.tag_cache.items()}

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    def cleanup_stale(self, older_than_ms: float, now_ms: float | None = None) -> int:
        """Remove cache and orphaned temp files not modified within the window."""
        if now_ms is None:
            now_ms = _now_ms()
        if not self.cache_dir.is_dir():
            return 0
        removed = 0
        for path in self.cache_dir.iterdir():
            if path.suffix not in (".json", ".tmp") or not path.is_file():
                continue
            try:
                if now_ms - path.stat().st_mtime_ns / 1e6 > older_than_ms:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.debug("Skipping %s during sweep: %s", path, e)
        return removed


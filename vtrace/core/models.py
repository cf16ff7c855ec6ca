"""
vtrace.core.models — Pydantic schemas for version resolution and the tag cache.

A repository's history is a DAG of commits.  Version numbers are derived by
walking that DAG from a commit towards its ancestors until a version tag is
found, then counting back up.  The models here are the values that flow
through that walk and the on-disk tag cache that keeps it fast.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ---------------------------------------------------------------------------
# Cross-platform directory helpers
# ---------------------------------------------------------------------------

def get_cache_root() -> Path:
    """
    Return the user-level tag-cache directory for vtrace (not created here).

    - Windows:  %LOCALAPPDATA%\\vtrace\\tag-cache
    - macOS:    ~/Library/Caches/vtrace/tag-cache
    - Linux:    $XDG_CACHE_HOME/vtrace/tag-cache  (default ~/.cache/vtrace/tag-cache)
    """
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Caches"
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    return base / "vtrace" / "tag-cache"


# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------

MAX_COMPONENT = 65535


class Version(BaseModel):
    """
    An up-to-four-component dotted version number.

    Components are populated contiguously from the left: ``minor`` implies
    ``major``, ``build`` implies ``minor``, ``revision`` implies ``build``.
    ``original`` keeps the tag text the version was parsed from.
    """
    model_config = ConfigDict(frozen=True)

    major: int = Field(ge=0, le=MAX_COMPONENT)
    minor: int | None = Field(default=None, ge=0, le=MAX_COMPONENT)
    build: int | None = Field(default=None, ge=0, le=MAX_COMPONENT)
    revision: int | None = Field(default=None, ge=0, le=MAX_COMPONENT)
    original: str = ""

    def key(self) -> tuple[int, int, int, int]:
        """Comparison key; absent components count as 0."""
        return (self.major, self.minor or 0, self.build or 0, self.revision or 0)

    def __str__(self) -> str:
        from vtrace.core.versioning import format_version
        return format_version(self)


DEFAULT_VERSION = Version(major=0, minor=0, build=1, original="0.0.1")


# ---------------------------------------------------------------------------
# Commits and tags
# ---------------------------------------------------------------------------

class CommitInfo(BaseModel):
    """Immutable snapshot of a commit.  ``parent_hashes[0]`` is the primary parent."""
    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str = ""
    author_date: str = ""
    message: str = ""
    parent_hashes: tuple[str, ...] = ()

    @property
    def is_merge(self) -> bool:
        return len(self.parent_hashes) >= 2


class TagInfo(BaseModel):
    """A tag resolved to the commit it ultimately names."""
    name: str
    hash: str                               # Target commit (annotated tags are peeled)
    version: Version | None = None


# ---------------------------------------------------------------------------
# Tag cache (persisted)
# ---------------------------------------------------------------------------

CACHE_FORMAT = "vtrace-tag-cache/1"


class CacheValidation(BaseModel):
    """Fingerprint of a repository's tag set at the time a cache was written."""
    tag_list_hash: str                      # SHA-256 of sorted, newline-joined names
    tag_count: int
    ref_storage_mtimes: dict[str, float] = Field(default_factory=dict)   # name → mtime (ms)


class CachedTagData(BaseModel):
    """The on-disk cache document.  ``format`` must equal :data:`CACHE_FORMAT`."""
    format: str = CACHE_FORMAT
    created_at_ms: float
    repository_path: str                    # For debugging only
    validation: CacheValidation
    tag_cache: dict[str, list[TagInfo]] = Field(default_factory=dict)   # commit → tags


class CacheUpdateStats(BaseModel):
    added: int = 0
    deleted: int = 0
    modified: int = 0
    unchanged: int = 0
    total_tags: int = 0
    update_time_ms: float = 0.0
    full_rebuild: bool = False


class TagCacheResult(BaseModel):
    """Return value of ``load_or_build_tag_cache``."""
    cache: dict[str, list[TagInfo]]
    stats: CacheUpdateStats


# ---------------------------------------------------------------------------
# Git metadata summary
# ---------------------------------------------------------------------------

class CommitSummary(BaseModel):
    hash: str
    short_hash: str
    date: str
    message: str


class GitMetadata(BaseModel):
    """Everything vtrace reports about the current commit of a repository."""
    version: str | None = None
    tags: list[str] = Field(default_factory=list)
    branches: list[str] = Field(default_factory=list)
    commit: CommitSummary | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_version(self) -> bool:
        return self.version is not None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class VtraceConfig(BaseModel):
    """Runtime configuration for version resolution and the tag cache."""
    cache_dir: Path = Field(default_factory=get_cache_root)
    cache_retention_hours: float = 24.0     # Snapshots older than this trigger a sweep
    check_working_tree: bool = True         # Bump once more when the tree is dirty
    use_tag_cache: bool = True
    git_timeout: float = 30.0

    @property
    def cache_retention_ms(self) -> float:
        return self.cache_retention_hours * 60 * 60 * 1000

    @classmethod
    def load(cls, **overrides: Any) -> "VtraceConfig":
        """
        Build a config.

        Resolution order (highest priority first):
          1. Explicit ``overrides`` keyword arguments
          2. Environment variables (VTRACE_CACHE_DIR, VTRACE_CHECK_WORKING_TREE, …)
          3. Built-in defaults
        """
        values: dict[str, Any] = {}
        cache_dir = os.getenv("VTRACE_CACHE_DIR")
        if cache_dir:
            values["cache_dir"] = Path(cache_dir).expanduser()
        retention = os.getenv("VTRACE_CACHE_RETENTION_HOURS")
        if retention:
            values["cache_retention_hours"] = float(retention)
        timeout = os.getenv("VTRACE_GIT_TIMEOUT")
        if timeout:
            values["git_timeout"] = float(timeout)
        values["check_working_tree"] = _env_bool("VTRACE_CHECK_WORKING_TREE", True)
        values["use_tag_cache"] = _env_bool("VTRACE_USE_TAG_CACHE", True)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

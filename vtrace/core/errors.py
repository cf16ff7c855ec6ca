"""
vtrace.core.errors — Exceptions that reach callers.

Almost everything in vtrace fails softly (a ``None`` or a default version).
What remains here are the failures a caller has to know about.
"""

from __future__ import annotations

from pathlib import Path


class VtraceError(Exception):
    """Base class for vtrace errors."""


class CacheWriteError(VtraceError):
    """Persisting a tag cache failed; nothing was left half-written."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Failed to write tag cache {path}: {reason}")

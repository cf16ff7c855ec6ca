"""
vtrace.core.versioning — Parse, compare, increment and format version numbers.

Tag names such as ``v1.2.3`` or ``2.0`` parse into :class:`Version` values.
Anything else (``release``, ``v1.2-beta``, ``70000.1``) is simply not a
version: :func:`parse_version` returns ``None`` and callers move on.
"""

from __future__ import annotations

import re
from typing import Iterable

from vtrace.core.models import MAX_COMPONENT, Version

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?", re.ASCII)
_PREFIX_RE = re.compile(r"^v", re.IGNORECASE)


def _component(text: str | None) -> int | None:
    if text is None:
        return None
    value = int(text)
    if value > MAX_COMPONENT:
        raise ValueError(text)
    return value


def parse_version(tag_name: str) -> Version | None:
    """Parse a tag name into a Version, or return ``None`` if it isn't one."""
    match = _VERSION_RE.fullmatch(_PREFIX_RE.sub("", tag_name, count=1))
    if match is None:
        return None
    try:
        major, minor, build, revision = (_component(g) for g in match.groups())
    except ValueError:
        return None
    return Version(
        major=major,
        minor=minor,
        build=build,
        revision=revision,
        original=tag_name,
    )


def compare_versions(a: Version, b: Version) -> int:
    """Return <0, 0 or >0 as *a* is lower than, equal to or higher than *b*."""
    ka, kb = a.key(), b.key()
    return (ka > kb) - (ka < kb)


def sort_descending(versions: Iterable[Version]) -> list[Version]:
    return sorted(versions, key=Version.key, reverse=True)


def increment_version(version: Version) -> Version:
    """
    Bump the right-most populated component among revision, build and minor.

    A major-only version bumps major and its ``original`` becomes the new
    number, since the old tag text no longer describes it.
    """
    if version.revision is not None:
        return version.model_copy(update={"revision": version.revision + 1})
    if version.build is not None:
        return version.model_copy(update={"build": version.build + 1})
    if version.minor is not None:
        return version.model_copy(update={"minor": version.minor + 1})
    return version.model_copy(
        update={"major": version.major + 1, "original": str(version.major + 1)}
    )


def format_version(version: Version) -> str:
    """Render the populated prefix only, e.g. ``1.2`` rather than ``1.2.0.0``."""
    parts = [version.major]
    for component in (version.minor, version.build, version.revision):
        if component is None:
            break
        parts.append(component)
    return ".".join(str(p) for p in parts)

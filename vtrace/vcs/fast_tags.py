"""
vtrace.vcs.fast_tags — List and resolve tags straight from ref storage.

Reading ``packed-refs`` and ``refs/tags/`` directly is much faster than
asking git about each tag one at a time when a repository carries
thousands of them.  Results match ``git tag`` / ``git rev-parse`` for
well-formed repositories:

- A loose ref overrides a packed entry of the same name.
- A packed entry followed by a ``^<hash>`` line is an annotated tag whose
  target commit is the peeled hash.
- ``.git`` may be a file (``gitdir: …``) for linked work trees and
  submodules; tags then live in the ``commondir`` of that git directory.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path

from vtrace.vcs.repository import GitError, run_git

logger = logging.getLogger("vtrace.vcs.fast_tags")

_PACKED_LINE_RE = re.compile(r"^([0-9a-f]{40,64})\s+refs/tags/(.+)$")
_PEELED_LINE_RE = re.compile(r"^\^([0-9a-f]{40,64})\s*$")
_GITDIR_RE = re.compile(r"^gitdir:\s*(.+?)\s*$", re.MULTILINE)


@dataclass(frozen=True)
class ResolvedTag:
    oid: str            # What the ref names: a commit, or a tag object
    commit_oid: str     # The commit it ultimately points at


@dataclass
class _PackedEntry:
    oid: str
    peeled: str | None


def _read_text(path: Path) -> str | None:
    """
    Read a file, returning ``None`` only when it doesn't exist.

    Ref names are bytes to git; undecodable ones survive as surrogate
    escapes, the same form ``Path.rglob`` gives loose ref names.
    """
    try:
        return path.read_text(encoding="utf-8", errors="surrogateescape")
    except (FileNotFoundError, NotADirectoryError):
        return None


class FastTagResolver:
    """Tag lookups for the repository whose work tree is ``repo_path``."""

    def __init__(self, repo_path: Path | str, timeout: float = 30.0) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.timeout = timeout
        self._git_dir: Path | None = None

    # ------------------------------------------------------------------
    # Ref storage location
    # ------------------------------------------------------------------

    def git_dir(self) -> Path:
        """The directory holding ``packed-refs`` and ``refs/tags``."""
        if self._git_dir is None:
            self._git_dir = self._locate_git_dir()
        return self._git_dir

    def _locate_git_dir(self) -> Path:
        dot_git = self.repo_path / ".git"
        git_dir = dot_git
        if dot_git.is_file():
            match = _GITDIR_RE.search(dot_git.read_text(encoding="utf-8"))
            if match:
                target = Path(match.group(1))
                git_dir = target if target.is_absolute() else (self.repo_path / target)
        elif not dot_git.exists() and (self.repo_path / "refs").is_dir():
            git_dir = self.repo_path          # Bare repository

        # Linked work trees keep shared refs in the common directory
        common = _read_text(git_dir / "commondir")
        if common is not None and common.strip():
            target = Path(common.strip())
            git_dir = target if target.is_absolute() else (git_dir / target)
        return git_dir.resolve()

    @property
    def packed_refs_path(self) -> Path:
        return self.git_dir() / "packed-refs"

    @property
    def loose_tags_path(self) -> Path:
        return self.git_dir() / "refs" / "tags"

    # ------------------------------------------------------------------
    # Raw storage readers
    # ------------------------------------------------------------------

    def _read_packed(self) -> tuple[dict[str, _PackedEntry], bool]:
        """Parse ``packed-refs``; the flag tells whether it is fully peeled."""
        content = _read_text(self.packed_refs_path)
        if content is None:
            return {}, True
        entries: dict[str, _PackedEntry] = {}
        fully_peeled = False
        last: _PackedEntry | None = None
        for line in content.splitlines():
            if line.startswith("#"):
                if "fully-peeled" in line:
                    fully_peeled = True
                continue
            peeled = _PEELED_LINE_RE.match(line)
            if peeled:
                if last is not None:
                    last.peeled = peeled.group(1)
                continue
            match = _PACKED_LINE_RE.match(line)
            if match is None:
                last = None             # A branch or other ref; its peel line isn't ours
                continue
            name = match.group(2)
            if name.endswith("^{}"):
                last = None
                continue
            last = _PackedEntry(oid=match.group(1), peeled=None)
            entries[name] = last
        return entries, fully_peeled

    def _loose_tag_names(self) -> list[str]:
        root = self.loose_tags_path
        if not root.is_dir():
            return []
        names = []
        for path in root.rglob("*"):
            if path.is_file() and not path.name.endswith(".lock"):
                names.append(path.relative_to(root).as_posix())
        return names

    def _read_loose(self, tag_name: str) -> str | None:
        content = _read_text(self.loose_tags_path / tag_name)
        if content is None:
            return None
        oid = content.strip()
        if oid.startswith("ref:"):
            return None                 # Symbolic tag refs aren't supported
        return oid or None

    async def _read_loose_many(self, tag_names: list[str]) -> dict[str, str]:
        oids = await asyncio.gather(
            *(asyncio.to_thread(self._read_loose, name) for name in tag_names)
        )
        return {name: oid for name, oid in zip(tag_names, oids) if oid}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_tags(self) -> list[str]:
        """All tag names, de-duplicated and sorted like ``git tag``."""
        packed, _ = await asyncio.to_thread(self._read_packed)
        loose = await asyncio.to_thread(self._loose_tag_names)
        return sorted(set(packed) | set(loose))

    async def resolve_one(self, tag_name: str) -> str | None:
        """Resolve a tag to its peeled hash if known, else to the ref's own hash."""
        loose = await asyncio.to_thread(self._read_loose, tag_name)
        if loose is not None:
            return loose
        packed, _ = await asyncio.to_thread(self._read_packed)
        entry = packed.get(tag_name)
        if entry is None:
            return None
        return entry.peeled or entry.oid

    async def resolve_batch(self, tag_names: list[str]) -> dict[str, str]:
        """Like :meth:`resolve_one` for many tags, reading each storage file once."""
        resolved = await self.resolve_batch_with_target_commit(tag_names, peel_loose=False)
        return {name: tag.commit_oid for name, tag in resolved.items()}

    async def resolve_batch_with_target_commit(
        self,
        tag_names: list[str],
        peel_loose: bool = True,
    ) -> dict[str, ResolvedTag]:
        """
        Resolve many tags to both the ref's hash and its target commit.

        Tag objects found through loose refs (or through a packed-refs file
        that isn't fully peeled) are peeled with one ``git cat-file`` call.
        """
        started = time.perf_counter()
        wanted = set(tag_names)

        packed, fully_peeled = await asyncio.to_thread(self._read_packed)
        result: dict[str, ResolvedTag] = {}
        needs_peel: dict[str, str] = {}
        for name, entry in packed.items():
            if name not in wanted:
                continue
            result[name] = ResolvedTag(oid=entry.oid, commit_oid=entry.peeled or entry.oid)
            if entry.peeled is None and not fully_peeled:
                needs_peel[name] = entry.oid
        logger.debug(
            "[fast-tags] packed-refs: %d matched (%.1fms)",
            len(result), (time.perf_counter() - started) * 1000,
        )

        loose_names = [n for n in await asyncio.to_thread(self._loose_tag_names) if n in wanted]
        if loose_names:
            loose_started = time.perf_counter()
            for name, oid in (await self._read_loose_many(loose_names)).items():
                result[name] = ResolvedTag(oid=oid, commit_oid=oid)
                needs_peel[name] = oid
            logger.debug(
                "[fast-tags] loose refs: %d read (%.1fms)",
                len(loose_names), (time.perf_counter() - loose_started) * 1000,
            )

        if peel_loose and needs_peel:
            peeled = await self._peel(sorted(set(needs_peel.values())))
            for name, oid in needs_peel.items():
                commit = peeled.get(oid)
                if commit and commit != oid:
                    result[name] = ResolvedTag(oid=oid, commit_oid=commit)

        logger.debug(
            "[fast-tags] resolved %d/%d tags (%.1fms)",
            len(result), len(tag_names), (time.perf_counter() - started) * 1000,
        )
        return result

    async def _peel(self, oids: list[str]) -> dict[str, str]:
        """Map each object id to the commit it peels to; unpeelable ids are left out."""
        request = "".join(f"{oid}^{{commit}}\n" for oid in oids)
        try:
            out = await run_git(
                self.repo_path,
                "cat-file", "--batch-check=%(objectname) %(objecttype)",
                input_text=request,
                timeout=self.timeout,
            )
        except GitError as e:
            # Treat everything as a lightweight tag rather than failing the batch
            logger.debug("[fast-tags] could not peel tag objects: %s", e)
            return {}

        peeled: dict[str, str] = {}
        for oid, line in zip(oids, out.splitlines()):
            parts = line.split()
            if len(parts) == 2 and parts[1] == "commit":
                peeled[oid] = parts[0]
        return peeled

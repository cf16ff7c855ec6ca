"""
vtrace.vcs.repository — Read-only access to a Git repository via the git CLI.

Every read is a coroutine running ``git`` as a subprocess.  Failures are
soft: a missing commit, an unresolvable tag or a path that isn't a
repository come back as ``None`` / empty values, never as exceptions, so
version resolution can always fall through to a default.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from vtrace.core.models import CommitInfo, TagInfo
from vtrace.core.versioning import parse_version

logger = logging.getLogger("vtrace.vcs.repository")

_COMMIT_FORMAT = "%H%x00%h%x00%aI%x00%P%x00%B"
_RECORD_SEP = "\x1e"               # %x1e, written before each log record
_PREFETCH_DEPTH = 512            # Commits read per ``git log`` when walking history


class GitError(Exception):
    """A git invocation exited non-zero or could not be started."""

    def __init__(self, args: tuple[str, ...], returncode: int | None, stderr: str = "") -> None:
        self.args_ = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {stderr.strip()}")


async def run_git(
    cwd: Path | None,
    *args: str,
    input_text: str | None = None,
    timeout: float = 30.0,
) -> str:
    """Run ``git *args`` in *cwd* and return stdout; raise :class:`GitError` on failure."""
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0", LC_ALL="C")
    try:
        proc = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise GitError(args, None, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input_text.encode("utf-8") if input_text is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise GitError(args, None, "timed out") from e

    if proc.returncode != 0:
        raise GitError(args, proc.returncode, stderr.decode("utf-8", "replace"))
    return stdout.decode("utf-8", "replace")


class GitRepository:
    """
    A work tree rooted at ``root``.

    Use :meth:`discover` to locate the root from any path inside it.
    """

    def __init__(self, root: Path, timeout: float = 30.0) -> None:
        self.root = root
        self.timeout = timeout
        self._commits: dict[str, CommitInfo] = {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @classmethod
    async def discover(cls, path: Path | str, timeout: float = 30.0) -> "GitRepository | None":
        """Walk up from *path* to the work-tree root, or return ``None``."""
        start = Path(path).resolve()
        if not start.exists():
            return None
        if start.is_file():
            start = start.parent
        try:
            out = await run_git(start, "rev-parse", "--show-toplevel", timeout=timeout)
        except GitError as e:
            logger.debug("Not a git repository: %s (%s)", start, e)
            return None
        top = out.strip()
        if not top:
            return None
        return cls(Path(top), timeout=timeout)

    async def _git(self, *args: str, input_text: str | None = None) -> str:
        return await run_git(self.root, *args, input_text=input_text, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def get_commit(self, commit_hash: str) -> CommitInfo | None:
        """Fetch a commit by (full or abbreviated) hash or ref name."""
        try:
            out = await self._git(
                "show", "-s", f"--format={_COMMIT_FORMAT}", f"{commit_hash}^{{commit}}", "--"
            )
        except GitError as e:
            logger.debug("Commit %s not found: %s", commit_hash, e)
            return None
        return _parse_commit(out)

    async def current_commit(self) -> CommitInfo | None:
        return await self.get_commit("HEAD")

    async def get_parents(self, commit: CommitInfo) -> list[CommitInfo]:
        """
        Fetch a commit's parents in order; unreadable parents are dropped.

        Ancestors are read ahead in batches, so walking a long first-parent
        chain costs one ``git log`` per batch rather than one process per commit.
        """
        if not commit.parent_hashes:
            return []
        if any(h not in self._commits for h in commit.parent_hashes):
            await self._prefetch_ancestry(commit.hash)
        parents = await asyncio.gather(*(self._cached_commit(h) for h in commit.parent_hashes))
        return [p for p in parents if p is not None]

    async def _cached_commit(self, commit_hash: str) -> CommitInfo | None:
        commit = self._commits.get(commit_hash)
        if commit is None:
            commit = await self.get_commit(commit_hash)
            if commit is not None:
                self._commits[commit.hash] = commit
        return commit

    async def _prefetch_ancestry(self, commit_hash: str) -> None:
        try:
            out = await self._git(
                "log",
                f"--format=%x1e{_COMMIT_FORMAT}",
                f"--max-count={_PREFETCH_DEPTH}",
                commit_hash,
                "--",
            )
        except GitError as e:
            logger.debug("Could not read history below %s: %s", commit_hash, e)
            return
        for record in out.split(_RECORD_SEP):
            parsed = _parse_commit(record)
            if parsed is not None:
                self._commits[parsed.hash] = parsed

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def list_tags(self) -> list[str]:
        try:
            out = await self._git("tag", "--list")
        except GitError:
            return []
        return sorted(line for line in out.splitlines() if line)

    async def resolve_tag(self, tag_name: str) -> str | None:
        """Resolve a tag name to the commit it ultimately points at."""
        try:
            out = await self._git("rev-parse", "--verify", "--quiet", f"refs/tags/{tag_name}^{{commit}}")
        except GitError:
            return None
        return out.strip() or None

    async def resolve_tag_to_commit(self, oid: str) -> str | None:
        """Peel a tag object (possibly nested) to its commit; commits resolve to themselves."""
        try:
            out = await self._git("rev-parse", "--verify", "--quiet", f"{oid}^{{commit}}")
        except GitError:
            return None
        return out.strip() or None

    async def related_tags(self, commit_hash: str) -> list[TagInfo]:
        """All tags pointing at *commit_hash*, version or not, sorted by name."""
        try:
            out = await self._git("tag", "--points-at", commit_hash)
        except GitError:
            return []
        tags = []
        for name in out.splitlines():
            if not name:
                continue
            tags.append(TagInfo(name=name, hash=commit_hash, version=parse_version(name)))
        return sorted(tags, key=lambda t: t.name)

    # ------------------------------------------------------------------
    # Branches and working tree
    # ------------------------------------------------------------------

    async def related_branches(self, commit_hash: str) -> list[str]:
        """Local and remote-tracking branches containing *commit_hash*."""
        try:
            out = await self._git("branch", "-a", "--contains", commit_hash)
        except GitError:
            return []
        branches: list[str] = []
        for line in out.splitlines():
            name = line.lstrip("*").strip()
            if not name or name.startswith("("):
                continue
            if " -> " in name:          # origin/HEAD -> origin/main
                continue
            if name not in branches:
                branches.append(name)
        return branches

    async def has_modified_files(self) -> bool:
        """True for staged, unstaged, deleted or untracked (not ignored) changes."""
        try:
            out = await self._git("status", "--porcelain", "--untracked-files=all")
        except GitError:
            return False
        for line in out.splitlines():
            if len(line) < 3:
                continue
            index, worktree = line[0], line[1]
            if line.startswith("??"):
                return True
            if index in "MADRCTU" or worktree in "MDTU":
                return True
        return False


def _parse_commit(raw: str) -> CommitInfo | None:
    fields = raw.split("\x00", 4)
    if len(fields) < 5 or not fields[0].strip():
        return None
    full, short, date, parents, body = fields
    return CommitInfo(
        hash=full.strip(),
        short_hash=short.strip(),
        author_date=date.strip(),
        message=body.strip(),
        parent_hashes=tuple(parents.split()),
    )

"""Shared fixtures: a throw-away git repository and an in-memory commit graph."""
from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from vtrace.core.models import CommitInfo, TagInfo, VtraceConfig
from vtrace.core.versioning import parse_version


class GitSandbox:
    """A real repository in a temp dir, driven through the git CLI."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._counter = 0
        root.mkdir(parents=True, exist_ok=True)
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/main")
        self.git("config", "user.name", "Test User")
        self.git("config", "user.email", "test@example.com")
        self.git("config", "commit.gpgsign", "false")
        self.git("config", "tag.gpgsign", "false")

    @staticmethod
    def env() -> dict[str, str]:
        env = dict(os.environ)
        env.update(GIT_CONFIG_NOSYSTEM="1", GIT_TERMINAL_PROMPT="0", LC_ALL="C")
        env.pop("GIT_DIR", None)
        env.pop("GIT_WORK_TREE", None)
        return env

    def git(self, *args: str, cwd: Path | None = None) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd or self.root),
            env=self.env(),
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def commit(self, message: str | None = None) -> str:
        """Commit a new file and return the commit hash."""
        self._counter += 1
        name = f"file{self._counter}.txt"
        (self.root / name).write_text(f"{message or name}\n", encoding="utf-8")
        self.git("add", name)
        self.git("commit", "-q", "-m", message or f"commit {self._counter}")
        return self.head()

    def head(self) -> str:
        return self.git("rev-parse", "HEAD")

    def tag(self, name: str, rev: str = "HEAD", annotated: bool = False, force: bool = False) -> None:
        args = ["tag"]
        if force:
            args.append("-f")
        if annotated:
            args += ["-a", "-m", f"release {name}"]
        self.git(*args, name, rev)

    def checkout(self, branch: str, start: str | None = None) -> None:
        if start is not None:
            self.git("checkout", "-q", "-b", branch, start)
        else:
            self.git("checkout", "-q", branch)

    def merge(self, branch: str, message: str = "merge") -> str:
        self.git("merge", "-q", "--no-ff", "-m", message, branch)
        return self.head()


@pytest.fixture
def sandbox(tmp_path: Path) -> GitSandbox:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return GitSandbox(tmp_path / "repo")


@pytest.fixture
def config(tmp_path: Path) -> VtraceConfig:
    return VtraceConfig(
        cache_dir=tmp_path / "cache",
        check_working_tree=False,
        use_tag_cache=True,
    )


class FakeRepository:
    """In-memory commit graph exposing the accessor calls the resolver makes."""

    def __init__(self) -> None:
        self.commits: dict[str, CommitInfo] = {}
        self.tags: dict[str, list[str]] = {}
        self.parent_fetches: dict[str, int] = {}

    def add(self, commit_hash: str, *parents: str, tags: tuple[str, ...] = ()) -> CommitInfo:
        commit = CommitInfo(hash=commit_hash, short_hash=commit_hash[:7], parent_hashes=parents)
        self.commits[commit_hash] = commit
        self.tags[commit_hash] = list(tags)
        return commit

    async def get_parents(self, commit: CommitInfo) -> list[CommitInfo]:
        self.parent_fetches[commit.hash] = self.parent_fetches.get(commit.hash, 0) + 1
        return [self.commits[h] for h in commit.parent_hashes if h in self.commits]

    async def related_tags(self, commit_hash: str) -> list[TagInfo]:
        return [
            TagInfo(name=name, hash=commit_hash, version=parse_version(name))
            for name in sorted(self.tags.get(commit_hash, []))
        ]


@pytest.fixture
def fake_repo() -> FakeRepository:
    return FakeRepository()

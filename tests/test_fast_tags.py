"""Tests for reading tags straight out of ref storage."""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from vtrace.vcs.fast_tags import FastTagResolver

A = "a" * 40
B = "b" * 40
C = "c" * 40
T = "7" * 40


def _make_git_dir(git_dir: Path, packed: str | None = None, loose: dict[str, str] | None = None) -> None:
    (git_dir / "refs" / "tags").mkdir(parents=True, exist_ok=True)
    if packed is not None:
        (git_dir / "packed-refs").write_text(packed, encoding="utf-8")
    for name, oid in (loose or {}).items():
        path = git_dir / "refs" / "tags" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{oid}\n", encoding="utf-8")


PACKED = (
    "# pack-refs with: peeled fully-peeled sorted \n"
    f"{C} refs/heads/main\n"
    f"{A} refs/tags/v1.0\n"
    f"{T} refs/tags/v1.1\n"
    f"^{B}\n"
    f"{A} refs/tags/release/2024\n"
)


class TestHandWrittenStorage:

    def test_lists_packed_and_loose(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED, {"v2.0": C, "nested/v3.0": C})
        names = asyncio.run(FastTagResolver(tmp_path).list_tags())
        assert names == ["nested/v3.0", "release/2024", "v1.0", "v1.1", "v2.0"]

    def test_branches_are_not_tags(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED)
        names = asyncio.run(FastTagResolver(tmp_path).list_tags())
        assert "main" not in names

    def test_lock_files_are_ignored(self, tmp_path):
        _make_git_dir(tmp_path / ".git", None, {"v1.0": A})
        (tmp_path / ".git" / "refs" / "tags" / "v2.0.lock").write_text(A, encoding="utf-8")
        assert asyncio.run(FastTagResolver(tmp_path).list_tags()) == ["v1.0"]

    def test_peeled_lines_give_target_commit(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED)
        resolver = FastTagResolver(tmp_path)
        resolved = asyncio.run(resolver.resolve_batch_with_target_commit(["v1.0", "v1.1"]))
        assert resolved["v1.0"].oid == A
        assert resolved["v1.0"].commit_oid == A
        assert resolved["v1.1"].oid == T
        assert resolved["v1.1"].commit_oid == B

    def test_resolve_one(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED, {"v2.0": C})
        resolver = FastTagResolver(tmp_path)
        assert asyncio.run(resolver.resolve_one("v1.1")) == B
        assert asyncio.run(resolver.resolve_one("v2.0")) == C
        assert asyncio.run(resolver.resolve_one("missing")) is None

    def test_loose_ref_overrides_packed(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED, {"v1.0": C})
        resolver = FastTagResolver(tmp_path)
        assert asyncio.run(resolver.resolve_one("v1.0")) == C
        assert asyncio.run(resolver.resolve_batch(["v1.0"])) == {"v1.0": C}
        assert asyncio.run(resolver.list_tags()).count("v1.0") == 1

    def test_batch_only_returns_requested_and_known(self, tmp_path):
        _make_git_dir(tmp_path / ".git", PACKED, {"v2.0": C})
        resolver = FastTagResolver(tmp_path)
        assert asyncio.run(resolver.resolve_batch(["v2.0", "release/2024", "ghost"])) == {
            "v2.0": C,
            "release/2024": A,
        }

    def test_symbolic_loose_ref_is_skipped(self, tmp_path):
        _make_git_dir(tmp_path / ".git")
        (tmp_path / ".git" / "refs" / "tags" / "alias").write_text("ref: refs/tags/v1.0\n", encoding="utf-8")
        assert asyncio.run(FastTagResolver(tmp_path).resolve_batch(["alias"])) == {}

    def test_no_ref_storage(self, tmp_path):
        (tmp_path / ".git").mkdir()
        resolver = FastTagResolver(tmp_path)
        assert asyncio.run(resolver.list_tags()) == []
        assert asyncio.run(resolver.resolve_batch(["v1.0"])) == {}

    def test_gitdir_file_indirection(self, tmp_path):
        real = tmp_path / "elsewhere" / "repo.git"
        _make_git_dir(real, None, {"v1.0": A})
        work = tmp_path / "work"
        work.mkdir()
        (work / ".git").write_text("gitdir: ../elsewhere/repo.git\n", encoding="utf-8")

        resolver = FastTagResolver(work)
        assert resolver.git_dir() == real.resolve()
        assert asyncio.run(resolver.list_tags()) == ["v1.0"]

    def test_commondir_is_followed(self, tmp_path):
        common = tmp_path / "main" / ".git"
        _make_git_dir(common, None, {"v1.0": A})
        linked = common / "worktrees" / "feature"
        linked.mkdir(parents=True)
        (linked / "commondir").write_text("../..\n", encoding="utf-8")
        work = tmp_path / "feature"
        work.mkdir()
        (work / ".git").write_text(f"gitdir: {linked}\n", encoding="utf-8")

        assert FastTagResolver(work).git_dir() == common.resolve()

    def test_bare_repository(self, tmp_path):
        bare = tmp_path / "bare.git"
        _make_git_dir(bare, f"{A} refs/tags/v1.0\n")
        assert asyncio.run(FastTagResolver(bare).list_tags()) == ["v1.0"]


class TestAgainstGit:

    def test_matches_git_for_loose_and_packed_tags(self, sandbox):
        first = sandbox.commit()
        sandbox.tag("v1.0")
        sandbox.tag("v1.1", annotated=True)
        second = sandbox.commit()
        sandbox.tag("v2.0", annotated=True)
        sandbox.tag("light")

        resolver = FastTagResolver(sandbox.root)
        expected = {"v1.0": first, "v1.1": first, "v2.0": second, "light": second}

        loose = asyncio.run(resolver.resolve_batch_with_target_commit(list(expected)))
        assert {n: t.commit_oid for n, t in loose.items()} == expected
        assert loose["v2.0"].oid == sandbox.git("rev-parse", "refs/tags/v2.0")
        assert loose["v2.0"].oid != second

        sandbox.git("pack-refs", "--all")
        packed = asyncio.run(resolver.resolve_batch_with_target_commit(list(expected)))
        assert {n: t.commit_oid for n, t in packed.items()} == expected
        assert asyncio.run(resolver.list_tags()) == sorted(sandbox.git("tag").splitlines())

    def test_unpeeled_loose_batch_reports_ref_hash(self, sandbox):
        sandbox.commit()
        sandbox.tag("v1.0", annotated=True)
        resolver = FastTagResolver(sandbox.root)
        tag_object = sandbox.git("rev-parse", "refs/tags/v1.0")
        assert asyncio.run(resolver.resolve_batch(["v1.0"])) == {"v1.0": tag_object}

    def test_linked_worktree_sees_shared_tags(self, sandbox, tmp_path):
        commit = sandbox.commit()
        sandbox.tag("v1.0", annotated=True)
        linked = tmp_path / "linked"
        sandbox.git("worktree", "add", "-q", "-b", "feature", str(linked))

        resolver = FastTagResolver(linked)
        resolved = asyncio.run(resolver.resolve_batch_with_target_commit(["v1.0"]))
        assert resolved["v1.0"].commit_oid == commit


def test_undecodable_packed_name_is_kept_as_escape(tmp_path):
    git_dir = tmp_path / ".git"
    _make_git_dir(git_dir)
    (git_dir / "packed-refs").write_bytes(
        f"{A} refs/tags/v1.0\n{B} refs/tags/".encode() + b"caf\xe9\n"
    )
    resolver = FastTagResolver(tmp_path)
    name = b"caf\xe9".decode("utf-8", "surrogateescape")

    assert asyncio.run(resolver.list_tags()) == [name, "v1.0"]
    assert asyncio.run(resolver.resolve_batch([name, "v1.0"])) == {name: B, "v1.0": A}

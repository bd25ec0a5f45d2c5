"""Integration tests for GitAdapter against real git repositories.

Repositories are built with GitPython in temporary directories.

To run these tests locally:
    pytest tests/integration/test_git_repository.py -m integration -v
"""

from __future__ import annotations

import shutil
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import pytest

from revscope.config import RevscopeConfig
from revscope.git.adapter import GitAdapter
from revscope.vcs.flags import LogOptions
from revscope.vcs.history import JobStatus
from revscope.vcs.models import FileKind, FileStats
from revscope.vcs.rev import Rev

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git not available"),
]


@dataclass
class RenameRepo:
    """A repository where f1 was added, renamed to f2, then edited."""

    path: Path
    add: str
    rename: str
    edit: str


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rename_repo(tmp_path: Path) -> Generator[RenameRepo, None, None]:
    """Create commits A (add f1), B (rename f1 to f2) and C (edit f2)."""
    from git import Repo

    repo_path = tmp_path / "repo"
    repo_path.mkdir()
    repo = Repo.init(repo_path)
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    repo.config_writer().set_value("user", "name", "Test User").release()

    (repo_path / "f1").write_text("one\ntwo\nthree\n")
    repo.git.add("f1")
    repo.git.commit("-m", "Add f1")
    add = repo.head.commit.hexsha

    repo.git.mv("f1", "f2")
    repo.git.commit("-m", "Rename f1 to f2")
    rename = repo.head.commit.hexsha

    (repo_path / "f2").write_text("one\nTWO\nthree\n")
    repo.git.add("f2")
    repo.git.commit("-m", "Edit f2")
    edit = repo.head.commit.hexsha

    yield RenameRepo(path=repo_path, add=add, rename=rename, edit=edit)
    repo.close()


@pytest.fixture
def adapter(rename_repo: RenameRepo, test_config: RevscopeConfig) -> GitAdapter:
    return GitAdapter(rename_repo.path, config=test_config)


# =============================================================================
# Repository information
# =============================================================================


class TestRepositoryInfo:
    """Queries that run short git commands."""

    @pytest.mark.asyncio
    async def test_version(self, adapter: GitAdapter) -> None:
        assert await adapter.check_version() >= (2, 0, 0)

    @pytest.mark.asyncio
    async def test_head_and_ranges(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        head = await adapter.head_rev()
        assert head == Rev.at_commit(rename_repo.edit)

        left, right = await adapter.parse_revs("HEAD~2..HEAD")
        assert left == Rev.at_commit(rename_repo.add)
        assert right == Rev.at_commit(rename_repo.edit)

    @pytest.mark.asyncio
    async def test_get_commit(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        commit = await adapter.get_commit("HEAD~1")

        assert commit.hash == rename_repo.rename
        assert commit.parents == (rename_repo.add,)
        assert commit.subject == "Rename f1 to f2"
        assert commit.author == "Test User"

    @pytest.mark.asyncio
    async def test_show(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        assert await adapter.show("f2", Rev.at_commit(rename_repo.edit)) == ["one", "TWO", "three"]
        assert await adapter.show("f1", Rev.at_commit(rename_repo.add)) == ["one", "two", "three"]
        assert await adapter.show("f2") == ["one", "TWO", "three"]

    @pytest.mark.asyncio
    async def test_show_empty_file(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        from git import Repo

        (rename_repo.path / "empty").write_text("")
        Repo(rename_repo.path).git.add("empty")

        assert await adapter.show("empty", Rev.at_stage(0)) == []


# =============================================================================
# Diff
# =============================================================================


class TestDiff:
    """File lists for real working trees."""

    @pytest.mark.asyncio
    async def test_index_against_working_tree(
        self, adapter: GitAdapter, rename_repo: RenameRepo
    ) -> None:
        (rename_repo.path / "f2").write_text("one\nTWO\nthree\nfour\n")
        (rename_repo.path / "new.txt").write_text("untracked\n")

        files = await adapter.diff(Rev.at_stage(0), Rev.local())

        assert [(f.path, f.status) for f in files.working] == [("f2", "M"), ("new.txt", "?")]
        assert files.working[0].stats == FileStats(1, 0)
        assert files.staged == []

    @pytest.mark.asyncio
    async def test_staged_changes(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        from git import Repo

        (rename_repo.path / "f2").write_text("changed\n")
        Repo(rename_repo.path).git.add("f2")

        files = await adapter.diff(Rev.at_stage(0), Rev.local(), show_untracked=False)

        assert files.working == []
        assert [(f.path, f.status) for f in files.staged] == [("f2", "M")]
        assert files.staged[0].kind is FileKind.STAGED
        assert files.staged[0].revs == (Rev.at_commit(rename_repo.edit), Rev.at_stage(0))

    @pytest.mark.asyncio
    async def test_commit_range(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        files = await adapter.diff(Rev.at_commit(rename_repo.add), Rev.at_commit(rename_repo.edit))

        assert len(files.working) == 1
        entry = files.working[0]
        assert (entry.status, entry.path, entry.oldpath) == ("R", "f2", "f1")

    @pytest.mark.asyncio
    async def test_conflicted_merge(
        self, adapter: GitAdapter, rename_repo: RenameRepo
    ) -> None:
        from git import Repo

        repo = Repo(rename_repo.path)
        main = repo.active_branch.name
        repo.git.checkout("-b", "feature")
        (rename_repo.path / "f2").write_text("one\nfeature\nthree\n")
        repo.git.commit("-am", "Feature edit")
        repo.git.checkout(main)
        (rename_repo.path / "f2").write_text("one\nmain\nthree\n")
        repo.git.commit("-am", "Main edit")
        repo.git.merge("feature", with_exceptions=False)

        files = await adapter.diff(Rev.at_stage(0), Rev.local(), show_untracked=False)

        assert [f.path for f in files.working] == []
        assert [(f.path, f.status) for f in files.conflicting] == [("f2", "U")]
        assert files.conflicting[0].kind is FileKind.CONFLICTING
        repo.close()


# =============================================================================
# History
# =============================================================================


class TestFileHistory:
    """Streamed histories over real repositories."""

    @pytest.mark.asyncio
    async def test_single_file_follows_rename(
        self, adapter: GitAdapter, rename_repo: RenameRepo
    ) -> None:
        stream = await adapter.file_history(LogOptions(path_args=["f2"]))
        entries = await stream.collect()

        assert [e.commit.hash for e in entries] == [
            rename_repo.edit,
            rename_repo.rename,
            rename_repo.add,
        ]
        assert [e.status for e in entries] == ["M", "R", "A"]
        edit, rename, add = entries
        assert edit.stats == FileStats(1, 1)
        assert rename.files[0].oldpath == "f1"
        assert add.files[0].path == "f1"
        assert add.files[0].stats == FileStats(3, 0)
        assert all(e.single_file for e in entries)
        assert stream.terminal_event is not None
        assert stream.terminal_event.status is JobStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_whole_repository(self, adapter: GitAdapter) -> None:
        stream = await adapter.file_history()
        entries = await stream.collect()

        assert len(entries) == 3
        assert not any(e.single_file for e in entries)

    @pytest.mark.asyncio
    async def test_max_count(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        stream = await adapter.file_history(LogOptions(path_args=["f2"], max_count=1))
        entries = await stream.collect()

        assert [e.commit.hash for e in entries] == [rename_repo.edit]

    @pytest.mark.asyncio
    async def test_line_trace(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        stream = await adapter.file_history(LogOptions(L=["2,2:f2"]))
        entries = await stream.collect()

        assert entries[0].commit.hash == rename_repo.edit
        assert entries[0].files[0].path == "f2"
        assert entries[0].files[0].stats == FileStats(1, 1)
        assert stream.terminal_event is not None
        assert stream.terminal_event.status is JobStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_cancel_before_output(self, adapter: GitAdapter) -> None:
        stream = await adapter.file_history(LogOptions(path_args=["f2"]))
        stream.cancel()

        event = await stream.wait()

        assert event.status is JobStatus.KILLED

    @pytest.mark.asyncio
    async def test_dry_run(self, adapter: GitAdapter) -> None:
        ok, summary = await adapter.file_history_dry_run(LogOptions(path_args=["f2"]))
        assert ok
        assert "--follow" in summary

        ok, _ = await adapter.file_history_dry_run(LogOptions(path_args=["missing"]))
        assert not ok


# =============================================================================
# Restore
# =============================================================================


class TestRestore:
    """Restoring files in a real working tree."""

    @pytest.mark.asyncio
    async def test_restore_modified_file(
        self, adapter: GitAdapter, rename_repo: RenameRepo
    ) -> None:
        target = rename_repo.path / "f2"
        target.write_text("scratch\n")

        result = await adapter.restore_file("f2", FileKind.WORKING)

        assert result.ok
        assert target.read_text() == "one\nTWO\nthree\n"
        assert result.undo is not None and result.undo.startswith("git show ")

    @pytest.mark.asyncio
    async def test_restore_from_commit(self, adapter: GitAdapter, rename_repo: RenameRepo) -> None:
        result = await adapter.restore_file("f2", FileKind.WORKING, commit=rename_repo.rename)

        assert result.ok
        assert (rename_repo.path / "f2").read_text() == "one\ntwo\nthree\n"

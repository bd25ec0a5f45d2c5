"""Unit tests for VCS factory and protocol."""

from __future__ import annotations

from pathlib import Path

import pytest

from revscope.config import RevscopeConfig
from revscope.exceptions import NotARepositoryError
from revscope.git.adapter import GitAdapter
from revscope.hg.adapter import HgAdapter
from revscope.vcs.factory import find_repository_root, get_adapter
from revscope.vcs.protocol import VcsAdapter

# =====================================================================
# Protocol conformance
# =====================================================================


class TestVcsAdapterProtocol:
    """Tests for VcsAdapter protocol structural typing."""

    def test_git_adapter_satisfies_protocol(
        self, temp_dir: Path, test_config: RevscopeConfig
    ) -> None:
        assert isinstance(GitAdapter(temp_dir, config=test_config), VcsAdapter)

    def test_hg_adapter_satisfies_protocol(
        self, temp_dir: Path, test_config: RevscopeConfig
    ) -> None:
        assert isinstance(HgAdapter(temp_dir, config=test_config), VcsAdapter)


# =====================================================================
# find_repository_root
# =====================================================================


class TestFindRepositoryRoot:
    """Tests for marker discovery."""

    def test_git_directory(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        assert find_repository_root(temp_dir) == ("git", temp_dir.resolve())

    def test_git_file_counts_as_marker(self, temp_dir: Path) -> None:
        """Worktrees and submodules use a .git file."""
        (temp_dir / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n")
        assert find_repository_root(temp_dir) == ("git", temp_dir.resolve())

    def test_hg_directory(self, temp_dir: Path) -> None:
        (temp_dir / ".hg").mkdir()
        assert find_repository_root(temp_dir) == ("hg", temp_dir.resolve())

    def test_hg_file_is_not_a_marker(self, temp_dir: Path) -> None:
        (temp_dir / ".hg").write_text("")
        assert find_repository_root(temp_dir) is None

    def test_walks_up_from_nested_file(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        nested = temp_dir / "src" / "pkg"
        nested.mkdir(parents=True)
        target = nested / "module.py"
        target.write_text("x = 1\n")

        assert find_repository_root(target) == ("git", temp_dir.resolve())

    def test_innermost_repository_wins(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        inner = temp_dir / "vendor" / "lib"
        inner.mkdir(parents=True)
        (inner / ".hg").mkdir()

        assert find_repository_root(inner) == ("hg", inner.resolve())

    def test_explicit_backend_ignores_other_markers(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        inner = temp_dir / "sub"
        inner.mkdir()
        (inner / ".hg").mkdir()

        assert find_repository_root(inner, "git") == ("git", temp_dir.resolve())

    def test_neither(self, temp_dir: Path) -> None:
        assert find_repository_root(temp_dir) is None


# =====================================================================
# get_adapter
# =====================================================================


class TestGetAdapter:
    """Tests for get_adapter."""

    def test_returns_git_adapter(
        self, temp_dir: Path, test_config: RevscopeConfig
    ) -> None:
        (temp_dir / ".git").mkdir()
        adapter = get_adapter(temp_dir, config=test_config)
        assert isinstance(adapter, GitAdapter)
        assert adapter.backend == "git"
        assert adapter.toplevel == temp_dir.resolve()

    def test_returns_hg_adapter(
        self, temp_dir: Path, test_config: RevscopeConfig
    ) -> None:
        (temp_dir / ".hg").mkdir()
        adapter = get_adapter(temp_dir, config=test_config)
        assert isinstance(adapter, HgAdapter)
        assert adapter.backend == "hg"

    def test_not_a_repository(self, temp_dir: Path, test_config: RevscopeConfig) -> None:
        with pytest.raises(NotARepositoryError) as exc_info:
            get_adapter(temp_dir, config=test_config)
        assert exc_info.value.path == temp_dir

    def test_unknown_backend(self, temp_dir: Path, test_config: RevscopeConfig) -> None:
        with pytest.raises(ValueError, match="Unknown VCS backend"):
            get_adapter(temp_dir, "svn", config=test_config)

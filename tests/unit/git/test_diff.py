"""Unit tests for git diff file lists."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from revscope.config import RevscopeConfig
from revscope.exceptions import InvalidRevPairError, OutputValidationError, ProcessExitError
from revscope.git.adapter import GitAdapter
from revscope.vcs.models import FileKind, FileStats
from revscope.vcs.rev import Rev
from tests.fixtures.jobs import RunnerScript, Script, result_of, scripted_job_factory

HEAD = "c" * 40
OTHER = "a" * 40


def diff_responder(
    working: tuple[list[str], list[str]] = ([], []),
    staged: tuple[list[str], list[str]] = ([], []),
    untracked: list[str] | None = None,
):
    def respond(command: list[str]) -> Script:
        if "ls-files" in command:
            return Script(stdout=untracked or [])
        namestat, numstat = staged if "--cached" in command else working
        if "--name-status" in command:
            return Script(stdout=namestat)
        return Script(stdout=numstat)

    return respond


@pytest.fixture
def runner(runner_script: RunnerScript, mock_runner: MagicMock) -> MagicMock:
    runner_script.responses["rev-parse HEAD"] = result_of(f"{HEAD}\n")
    return mock_runner


def make_adapter(temp_dir: Path, config: RevscopeConfig, runner: MagicMock, responder):
    job_type = scripted_job_factory(responder)
    return GitAdapter(temp_dir, config=config, runner=runner, job_factory=job_type), job_type


class TestIndexAgainstWorkingTree:
    """Tests for the default comparison (index vs working tree)."""

    @pytest.mark.asyncio
    async def test_modified_and_untracked_sorted(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, _ = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(
                working=(["M\tb.txt"], ["2\t1\tb.txt"]),
                untracked=["A.txt"],
            ),
        )

        files = await adapter.diff(Rev.at_stage(0), Rev.local())

        assert [(f.path, f.status) for f in files.working] == [("A.txt", "?"), ("b.txt", "M")]
        untracked, modified = files.working
        assert untracked.stats is None
        assert untracked.revs == (Rev.at_stage(0), Rev.local())
        assert modified.stats == FileStats(2, 1)
        assert files.conflicting == []

    @pytest.mark.asyncio
    async def test_staged_section(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, job_type = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(staged=(["A\tnew.py"], ["10\t0\tnew.py"])),
        )

        files = await adapter.diff(Rev.at_stage(0), Rev.local(), show_untracked=False)

        assert files.working == []
        assert len(files.staged) == 1
        staged = files.staged[0]
        assert staged.kind is FileKind.STAGED
        assert staged.revs == (Rev.at_commit(HEAD), Rev.at_stage(0))
        assert staged.stats == FileStats(10, 0)
        assert any("--cached" in c and HEAD in c for c in job_type.started)
        assert not any("ls-files" in c for c in job_type.started)

    @pytest.mark.asyncio
    async def test_unmerged_paths_become_conflicts(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, _ = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(
                working=(
                    ["U\tmerge.txt", "M\tmerge.txt", "M\tother.txt"],
                    ["0\t0\tmerge.txt", "4\t0\tmerge.txt", "1\t0\tother.txt"],
                ),
                staged=(["U\tmerge.txt"], ["0\t0\tmerge.txt"]),
            ),
        )

        files = await adapter.diff(Rev.at_stage(0), Rev.local(), show_untracked=False)

        assert [f.path for f in files.working] == ["other.txt"]
        assert files.staged == []
        assert [f.path for f in files.conflicting] == ["merge.txt"]
        conflict = files.conflicting[0]
        assert conflict.kind is FileKind.CONFLICTING
        assert conflict.revs == (Rev.at_stage(2), Rev.local(), Rev.at_stage(3), Rev.at_stage(1))
        assert list(files)[0] is conflict

    @pytest.mark.asyncio
    async def test_untracked_setting_from_git_config(
        self,
        temp_dir: Path,
        test_config: RevscopeConfig,
        runner_script: RunnerScript,
        runner: MagicMock,
    ) -> None:
        runner_script.responses["config status.showUntrackedFiles"] = result_of("no\n")
        adapter, job_type = make_adapter(
            temp_dir, test_config, runner, diff_responder(untracked=["new.txt"])
        )

        files = await adapter.diff(Rev.at_stage(0), Rev.local())

        assert files.is_empty()
        assert not any("ls-files" in c for c in job_type.started)


class TestCommitComparisons:
    """Tests for comparisons involving commits."""

    @pytest.mark.asyncio
    async def test_reversed_comparison_swaps_stats(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, job_type = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(working=(["M\tapp.py"], ["7\t3\tapp.py"])),
        )

        files = await adapter.diff(Rev.local(), Rev.at_commit(OTHER))

        assert files.working[0].stats == FileStats(3, 7)
        assert files.working[0].revs == (Rev.local(), Rev.at_commit(OTHER))
        assert files.staged == []

    @pytest.mark.asyncio
    async def test_commit_range_arguments(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, job_type = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(working=(["D\told.py"], ["0\t12\told.py"])),
        )

        files = await adapter.diff(Rev.at_commit(OTHER), Rev.at_commit(HEAD), ["src"])

        assert files.working[0].stats == FileStats(0, 12)
        command = job_type.started[0]
        assert f"{OTHER}..{HEAD}" in command
        assert command[-2:] == ["--", "src"]
        assert not any("ls-files" in c for c in job_type.started)

    @pytest.mark.asyncio
    async def test_local_against_local_rejected(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, job_type = make_adapter(temp_dir, test_config, runner, diff_responder())

        with pytest.raises(InvalidRevPairError):
            await adapter.diff(Rev.local(), Rev.local())
        assert job_type.started == []


class TestDiffFailures:
    """Tests for failing and inconsistent git output."""

    @pytest.mark.asyncio
    async def test_failing_git_raises(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        def respond(command: list[str]) -> Script:
            return Script(stderr=["fatal: bad object"], returncode=128)

        adapter, _ = make_adapter(temp_dir, test_config, runner, respond)

        with pytest.raises(ProcessExitError) as exc_info:
            await adapter.diff(Rev.at_commit(OTHER), Rev.at_commit(HEAD))
        assert exc_info.value.returncode == 128
        assert exc_info.value.stderr == ["fatal: bad object"]

    @pytest.mark.asyncio
    async def test_several_failures_are_combined(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        def respond(command: list[str]) -> Script:
            if "ls-files" in command:
                return Script(stderr=["error: ls-files"], returncode=1)
            return Script(stderr=["error: diff"], returncode=1)

        adapter, _ = make_adapter(temp_dir, test_config, runner, respond)

        with pytest.raises(ProcessExitError) as exc_info:
            await adapter.diff(Rev.at_commit(OTHER), Rev.local(), show_untracked=True)
        assert set(exc_info.value.stderr) == {"error: ls-files", "error: diff"}

    @pytest.mark.asyncio
    async def test_persistent_count_mismatch(
        self, temp_dir: Path, test_config: RevscopeConfig, runner: MagicMock
    ) -> None:
        adapter, job_type = make_adapter(
            temp_dir,
            test_config,
            runner,
            diff_responder(working=(["M\ta.py", "M\tb.py"], ["1\t0\ta.py"])),
        )

        with pytest.raises(OutputValidationError):
            await adapter.diff(Rev.at_commit(OTHER), Rev.at_commit(HEAD))

        numstat_runs = [c for c in job_type.started if "--numstat" in c]
        assert len(numstat_runs) == 1 + test_config.jobs.max_retries

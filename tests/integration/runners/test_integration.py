"""Integration tests for subprocess runners.

These tests spawn real processes through ``sh``. They are marked with
pytest.mark.integration.

To run these tests locally:
    pytest tests/integration/runners/ -m integration -v
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path

import pytest

from revscope.constants import KILLED_RETURNCODE, SPAWN_FAILED_RETURNCODE
from revscope.exceptions import SpawnError
from revscope.runners import CommandRunner, Job, JobCoordinator, JobState

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available"),
]


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class TestJobIntegration:
    """Integration tests for Job with real processes."""

    @pytest.mark.asyncio
    async def test_lines_delivered_in_order(self) -> None:
        """Output lines reach the callback in arrival order before exit."""
        seen: list[str] = []
        exited: list[int | None] = []

        job = Job(
            ["sh", "-c", "printf 'one\\ntwo\\nthree\\n'; echo warn >&2"],
            on_stdout=lambda line, _job: seen.append(line),
            on_exit=lambda j: exited.append(j.returncode),
        )
        await job.start()
        returncode = await job.wait()

        assert returncode == 0
        assert seen == ["one", "two", "three"]
        assert job.stdout == ["one", "two", "three"]
        assert job.stderr == ["warn"]
        assert exited == [0]
        assert job.state is JobState.EXITED

    @pytest.mark.asyncio
    async def test_exit_status(self) -> None:
        job = Job(["sh", "-c", "exit 3"])
        await job.start()

        assert await job.wait() == 3
        assert not job.success
        assert job.to_error().returncode == 3

    @pytest.mark.asyncio
    async def test_kill_reaches_process_group(self) -> None:
        """Killing a job terminates the processes it spawned."""
        job = Job(["sh", "-c", "sleep 30 & echo $!; wait"], grace_period=0.5)
        await job.start()
        while not job.stdout:
            await asyncio.sleep(0.01)
        child = int(job.stdout[0])

        job.kill()

        assert job.state is JobState.KILLED
        assert await job.wait() == KILLED_RETURNCODE
        await asyncio.wait_for(job.wait_closed(), timeout=5)
        for _ in range(100):
            if not _alive(child):
                break
            await asyncio.sleep(0.02)
        assert not _alive(child)

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path: Path) -> None:
        exited: list[int | None] = []
        job = Job(
            [str(tmp_path / "no-such-binary")],
            on_exit=lambda j: exited.append(j.returncode),
        )

        with pytest.raises(SpawnError):
            await job.start()
        assert job.returncode == SPAWN_FAILED_RETURNCODE
        assert exited == [SPAWN_FAILED_RETURNCODE]

    @pytest.mark.asyncio
    async def test_working_directory(self, tmp_path: Path) -> None:
        job = Job(["pwd"], cwd=tmp_path)
        await job.start()
        await job.wait()

        assert Path(job.stdout[0]).resolve() == tmp_path.resolve()


class TestCoordinatorIntegration:
    """Integration tests for JobCoordinator with real processes."""

    @pytest.mark.asyncio
    async def test_run_all(self) -> None:
        jobs = [Job(["sh", "-c", f"sleep 0.0{i}; echo {i}"]) for i in range(1, 4)]

        await JobCoordinator().run_all(jobs)

        assert [job.stdout for job in jobs] == [["1"], ["2"], ["3"]]
        assert all(job.done for job in jobs)

    @pytest.mark.asyncio
    async def test_queue_serializes(self, tmp_path: Path) -> None:
        log = tmp_path / "order.txt"
        queue = JobCoordinator().queue("show")
        jobs = [
            Job(["sh", "-c", f"sleep 0.05; echo {i} >> {log}"], cwd=tmp_path) for i in range(3)
        ]

        await asyncio.gather(*(queue.run(job) for job in jobs))

        assert log.read_text().split() == ["0", "1", "2"]


class TestCommandRunnerIntegration:
    """Integration tests for CommandRunner with actual subprocess execution."""

    @pytest.mark.asyncio
    async def test_run_echo_command(self) -> None:
        result = await CommandRunner().run(["echo", "hello"])

        assert result.success
        assert result.lines == ["hello"]

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        result = await CommandRunner(timeout=0.2).run(["sleep", "10"])

        assert result.timed_out
        assert not result.success

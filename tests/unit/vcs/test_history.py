"""Unit tests for the backend-neutral history streaming machinery."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from revscope.exceptions import ProcessExitError
from revscope.runners.models import JobState
from revscope.vcs.history import (
    ChunkDemuxer,
    HistoryStream,
    JobStatus,
    StreamState,
    final_status,
    jobs_failed,
    start_chunked_jobs,
)
from revscope.vcs.models import Commit, LogEntry
from tests.fixtures.jobs import Script, scripted_job_factory


def _entry(n: int) -> LogEntry:
    return LogEntry.null_entry(Commit(hash=f"{n:040x}"))


# =====================================================================
# ChunkDemuxer
# =====================================================================


class TestChunkDemuxer:
    """Tests for ChunkDemuxer."""

    def test_single_stream(self) -> None:
        chunks: list[dict[str, list[str]]] = []
        demuxer = ChunkDemuxer(["log"], chunks.append)

        for line in ["\0", "h1", "s1", "\0", "h2", "", "s2"]:
            demuxer.feed("log", line)
        demuxer.flush("log")

        assert chunks == [{"log": ["h1", "s1"]}, {"log": ["h2", "s2"]}]
        assert demuxer.chunk_count("log") == 2

    def test_chunks_wait_for_every_stream(self) -> None:
        chunks: list[dict[str, list[str]]] = []
        demuxer = ChunkDemuxer(["status", "numstat"], chunks.append)

        for line in ["\0", "h1", "M\ta", "\0", "h2", "A\tb"]:
            demuxer.feed("status", line)
        demuxer.flush("status")
        assert chunks == []

        for line in ["\0", "h1", "1\t0\ta"]:
            demuxer.feed("numstat", line)
        assert chunks == []

        demuxer.feed("numstat", "\0")
        assert chunks == [{"status": ["h1", "M\ta"], "numstat": ["h1", "1\t0\ta"]}]

        demuxer.feed("numstat", "h2")
        demuxer.feed("numstat", "2\t0\tb")
        demuxer.flush("numstat")
        assert len(chunks) == 2
        assert chunks[1]["numstat"] == ["h2", "2\t0\tb"]

    def test_finish_delivers_incomplete_chunks(self) -> None:
        chunks: list[dict[str, list[str]]] = []
        demuxer = ChunkDemuxer(["status", "numstat"], chunks.append)

        for line in ["\0", "h1", "M\ta"]:
            demuxer.feed("status", line)
        demuxer.flush("status")
        demuxer.flush("numstat")
        demuxer.finish()
        demuxer.finish()

        assert chunks == [{"status": ["h1", "M\ta"]}]

    def test_lines_before_first_delimiter_are_dropped(self) -> None:
        chunks: list[dict[str, list[str]]] = []
        demuxer = ChunkDemuxer(["log"], chunks.append)

        demuxer.feed("log", "warning: noise")
        demuxer.feed("log", "\0")
        demuxer.feed("log", "h1")
        demuxer.flush("log")

        assert chunks == [{"log": ["h1"]}]


# =====================================================================
# HistoryStream
# =====================================================================


class TestHistoryStream:
    """Tests for HistoryStream event delivery."""

    @pytest.mark.asyncio
    async def test_entries_then_success(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            for n in range(3):
                await stream.emit(_entry(n))
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        events = [event async for event in stream]

        assert [e.status for e in events] == [
            JobStatus.PROGRESS,
            JobStatus.PROGRESS,
            JobStatus.PROGRESS,
            JobStatus.SUCCESS,
        ]
        assert [e.entry.commit.hash for e in events[:3]] == [f"{n:040x}" for n in range(3)]
        assert stream.state is StreamState.SUCCESS
        assert events[-1].terminal

    @pytest.mark.asyncio
    async def test_error_carries_message(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            return JobStatus.ERROR, ["fatal: bad revision 'nope'"]

        stream = HistoryStream().start(driver)
        event = await stream.wait()

        assert event.status is JobStatus.ERROR
        assert event.message == ("fatal: bad revision 'nope'",)
        assert stream.state is StreamState.ERROR

    @pytest.mark.asyncio
    async def test_driver_exception_becomes_error(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            raise ProcessExitError("git exploded")

        event = await HistoryStream().start(driver).wait()

        assert event.status is JobStatus.ERROR
        assert event.message == ("git exploded",)

    @pytest.mark.asyncio
    async def test_collect_raises_on_error(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            await stream.emit(_entry(1))
            return JobStatus.ERROR, ["boom"]

        with pytest.raises(ProcessExitError) as exc_info:
            await HistoryStream().start(driver).collect()
        assert exc_info.value.stderr == ["boom"]

    @pytest.mark.asyncio
    async def test_skipped_count_on_terminal(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            stream.skip("d" * 40, "unparseable")
            stream.skip(None, "no header")
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        event = await stream.wait()

        assert event.skipped == 2
        assert stream.skipped == ["d" * 40, "<unknown>"]

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        with pytest.raises(RuntimeError):
            stream.start(driver)
        await stream.wait()

    @pytest.mark.asyncio
    async def test_iteration_stops_after_terminal(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        await stream.wait()
        assert [event async for event in stream] == []


class TestHistoryStreamCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_ends_with_single_killed_event(self) -> None:
        emitted = asyncio.Event()

        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            n = 0
            while await stream.emit(_entry(n)):
                n += 1
                emitted.set()
                await asyncio.sleep(0)
            return JobStatus.SUCCESS, []

        stream = HistoryStream(buffer_size=4).start(driver)
        first = await stream.__anext__()
        assert first.status is JobStatus.PROGRESS
        await emitted.wait()

        stream.cancel()
        stream.cancel()
        rest = [event async for event in stream]

        assert [e.status for e in rest] == [JobStatus.KILLED]
        assert stream.state is StreamState.KILLED

    @pytest.mark.asyncio
    async def test_cancel_kills_attached_jobs(self) -> None:
        job_type = scripted_job_factory(lambda command: Script(stdout=["x"], hang=True))
        started = asyncio.Event()
        jobs = []

        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            job = job_type(["git", "log"])
            jobs.append(job)
            stream.attach_job(job)
            await job.start()
            started.set()
            await job.wait()
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        await started.wait()
        await stream.aclose()

        assert jobs[0].state is JobState.KILLED
        assert stream.terminal_event is not None
        assert stream.terminal_event.status is JobStatus.KILLED

    @pytest.mark.asyncio
    async def test_job_attached_after_cancel_is_killed(self) -> None:
        job_type = scripted_job_factory(lambda command: Script(hang=True))
        stream = HistoryStream()
        stream.cancel()

        job = job_type(["git", "log"])
        await job.start()
        stream.attach_job(job)

        assert job.state is JobState.KILLED
        await job.wait()

    @pytest.mark.asyncio
    async def test_emit_after_cancel_returns_false(self) -> None:
        stream = HistoryStream()
        stream.cancel()
        assert await stream.emit(_entry(0)) is False

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            await stream.emit(_entry(0))
            return JobStatus.SUCCESS, []

        stream = HistoryStream().start(driver)
        entries = await stream.collect()
        stream.cancel()

        assert len(entries) == 1
        assert not stream.cancelled
        assert stream.state is StreamState.SUCCESS

    @pytest.mark.asyncio
    async def test_context_manager_cancels(self) -> None:
        async def driver(stream: HistoryStream) -> tuple[JobStatus, Sequence[str]]:
            while await stream.emit(_entry(0)):
                await asyncio.sleep(0)
            return JobStatus.SUCCESS, []

        async with HistoryStream(buffer_size=2).start(driver) as stream:
            await stream.__anext__()

        assert stream.state is StreamState.KILLED


# =====================================================================
# start_chunked_jobs
# =====================================================================


class TestStartChunkedJobs:
    """Tests for chunked job startup and terminal status."""

    @pytest.mark.asyncio
    async def test_chunks_then_sentinel(self, tmp_path: Path) -> None:
        job_type = scripted_job_factory(
            lambda command: Script(stdout=["\0", "h1", "a", "\0", "h2", "b"])
        )
        stream = HistoryStream()

        started = await start_chunked_jobs(
            stream, {"log": ["git", "log"]}, cwd=tmp_path, job_factory=job_type
        )
        assert started is not None
        chunks, jobs = started

        received = []
        while (chunk := await chunks.get()) is not None:
            received.append(chunk)

        assert received == [{"log": ["h1", "a"]}, {"log": ["h2", "b"]}]
        assert not jobs_failed(jobs)
        assert final_status(stream, jobs) == (JobStatus.SUCCESS, [])

    @pytest.mark.asyncio
    async def test_failing_job_kills_the_others(self, tmp_path: Path) -> None:
        def responder(command: list[str]) -> Script:
            if "--numstat" in command:
                return Script(stderr=["fatal: bad revision"], returncode=128)
            return Script(stdout=["\0", "h1"], hang=True)

        job_type = scripted_job_factory(responder)
        stream = HistoryStream()

        started = await start_chunked_jobs(
            stream,
            {"status": ["git", "log", "--name-status"], "numstat": ["git", "log", "--numstat"]},
            cwd=tmp_path,
            job_factory=job_type,
        )
        assert started is not None
        chunks, jobs = started

        while await chunks.get() is not None:
            pass

        assert jobs[0].state is JobState.KILLED
        assert jobs[1].returncode == 128
        assert jobs_failed(jobs)
        assert final_status(stream, jobs) == (JobStatus.ERROR, ["fatal: bad revision"])

    @pytest.mark.asyncio
    async def test_cancelled_stream_starts_nothing(self, tmp_path: Path) -> None:
        job_type = scripted_job_factory(lambda command: Script())
        stream = HistoryStream()
        stream.cancel()

        started = await start_chunked_jobs(
            stream, {"log": ["git", "log"]}, cwd=tmp_path, job_factory=job_type
        )

        assert started is None
        assert job_type.started == []

    def test_final_status_killed(self) -> None:
        stream = HistoryStream()
        stream.cancel()
        assert final_status(stream, []) == (JobStatus.KILLED, [])

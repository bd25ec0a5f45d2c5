"""Backend-neutral machinery for streamed file histories.

A history query runs one or more VCS jobs whose output is split into
per-commit chunks. Each backend supplies a *driver* coroutine that turns
chunks into :class:`~revscope.vcs.models.LogEntry` values and hands them to
a :class:`HistoryStream`. The consumer iterates the stream::

    stream = await adapter.file_history(LogOptions(path_args=["README.md"]))
    async for event in stream:
        if event.status is JobStatus.PROGRESS:
            render(event.entry)
        elif event.status is JobStatus.ERROR:
            show_error(event.message)

Every stream ends with exactly one terminal event (SUCCESS, ERROR or KILLED).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from types import TracebackType
from typing import Self

from revscope.constants import (
    COMMIT_DELIMITER,
    DEFAULT_STREAM_BUFFER_SIZE,
    DEFAULT_YIELD_INTERVAL_MS,
    KILLED_RETURNCODE,
    TERMINATION_GRACE_PERIOD,
)
from revscope.exceptions import ProcessExitError
from revscope.logging import get_logger
from revscope.runners.coordinator import CountDownLatch
from revscope.runners.job import Job
from revscope.vcs.models import LogEntry

__all__ = [
    "ChunkDemuxer",
    "ChunkQueue",
    "HistoryDriver",
    "HistoryEvent",
    "HistoryStream",
    "JobStatus",
    "StreamState",
    "final_status",
    "jobs_failed",
    "start_chunked_jobs",
]

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Status carried by a :class:`HistoryEvent`."""

    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"
    KILLED = "killed"


class StreamState(str, Enum):
    """Lifecycle of a :class:`HistoryStream`."""

    IDLE = "idle"
    STREAMING = "streaming"
    SUCCESS = "success"
    ERROR = "error"
    KILLED = "killed"


_TERMINAL_STATES = frozenset({StreamState.SUCCESS, StreamState.ERROR, StreamState.KILLED})


@dataclass(frozen=True, slots=True)
class HistoryEvent:
    """One event of a history stream.

    Attributes:
        status: PROGRESS for entries, otherwise the terminal status.
        entry: The new entry (PROGRESS only).
        message: Error lines (ERROR only), verbatim VCS stderr.
        skipped: Commits dropped from the history (terminal events only).
    """

    status: JobStatus
    entry: LogEntry | None = None
    message: tuple[str, ...] = ()
    skipped: int = 0

    @property
    def terminal(self) -> bool:
        return self.status is not JobStatus.PROGRESS


#: Produces the terminal status and message of a stream.
HistoryDriver = Callable[["HistoryStream"], Awaitable[tuple[JobStatus, Sequence[str]]]]


class ChunkDemuxer:
    """Splits delimited output of correlated streams into per-commit chunks.

    Each stream's output is a sequence of chunks separated by a delimiter
    line (the first delimiter precedes the first chunk). Chunk *n* of every
    stream is collected into one mapping and passed to *on_chunk* once all
    streams delivered it. Blank lines are dropped.

    Args:
        keys: One name per stream.
        on_chunk: Receives ``{key: lines}`` for each completed chunk.
        delimiter: The delimiter line.
    """

    def __init__(
        self,
        keys: Sequence[str],
        on_chunk: Callable[[dict[str, list[str]]], None],
        delimiter: str = COMMIT_DELIMITER,
    ) -> None:
        self._keys = tuple(keys)
        self._on_chunk = on_chunk
        self._delimiter = delimiter
        self._index = dict.fromkeys(self._keys, 0)
        self._lines: dict[str, list[str]] = {key: [] for key in self._keys}
        self._pending: dict[int, dict[str, list[str]]] = {}
        self._finished = False

    def chunk_count(self, key: str) -> int:
        """Chunks completed so far on stream *key*."""
        return max(self._index[key] - 1, 0)

    def feed(self, key: str, line: str) -> None:
        if line == self._delimiter:
            self._close(key)
        elif line != "":
            self._lines[key].append(line)

    def flush(self, key: str) -> None:
        """Close the last chunk of stream *key* (call when it exited cleanly)."""
        self._close(key)

    def finish(self) -> None:
        """Deliver chunks that some stream never completed, in order.

        The delivered mapping lacks the keys of the streams that fell short.
        """
        if self._finished:
            return
        self._finished = True
        for index in sorted(self._pending):
            self._on_chunk(self._pending.pop(index))

    def _close(self, key: str) -> None:
        index = self._index[key]
        if index > 0:
            chunk = self._pending.setdefault(index, {})
            chunk[key] = self._lines[key]
            if all(k in chunk for k in self._keys):
                self._on_chunk(self._pending.pop(index))
        self._index[key] = index + 1
        self._lines[key] = []


class HistoryStream:
    """Caller-owned handle of a running history query.

    The stream owns the jobs its driver starts; :meth:`cancel` kills them.
    Events are buffered up to ``buffer_size`` ahead of the consumer; a full
    buffer suspends the driver while the job readers keep draining the pipes.

    Attributes:
        state: Lifecycle state.
        skipped: Hashes of commits that could not be parsed or recovered.
    """

    def __init__(
        self,
        *,
        buffer_size: int = DEFAULT_STREAM_BUFFER_SIZE,
        yield_interval_ms: float = DEFAULT_YIELD_INTERVAL_MS,
    ) -> None:
        self.state = StreamState.IDLE
        self.skipped: list[str] = []
        self._events: asyncio.Queue[HistoryEvent] = asyncio.Queue(maxsize=buffer_size)
        self._jobs: list[Job] = []
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None
        self._terminal: HistoryEvent | None = None
        self._terminal_delivered = False
        self._yield_interval = yield_interval_ms / 1000.0
        self._last_yield = time.monotonic()

    # =====================================================================
    # Consumer side
    # =====================================================================

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def terminal_event(self) -> HistoryEvent | None:
        return self._terminal

    def cancel(self) -> None:
        """Stop the query.

        Kills every owned job and discards buffered entries; the stream then
        ends with a single KILLED event. Repeated calls, and calls after the
        stream finished, do nothing.
        """
        if self._cancelled or self.state in _TERMINAL_STATES:
            return
        self._cancelled = True
        logger.debug("history_cancelled", jobs=len(self._jobs))
        for job in self._jobs:
            job.kill()
        while not self._events.empty():
            self._events.get_nowait()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> HistoryEvent:
        if self._terminal_delivered:
            raise StopAsyncIteration
        while True:
            event = await self._events.get()
            if event.status is JobStatus.PROGRESS and self._cancelled:
                continue
            if event.terminal:
                self._terminal_delivered = True
            return event

    async def wait(self) -> HistoryEvent:
        """Consume the remaining events and return the terminal one."""
        async for event in self:
            if event.terminal:
                return event
        assert self._terminal is not None
        return self._terminal

    async def collect(self) -> list[LogEntry]:
        """Consume the stream and return its entries.

        A KILLED stream returns the entries received before cancellation.

        Raises:
            ProcessExitError: If the stream ended with ERROR.
        """
        entries: list[LogEntry] = []
        async for event in self:
            if event.entry is not None:
                entries.append(event.entry)
            elif event.status is JobStatus.ERROR:
                raise ProcessExitError(
                    "\n".join(event.message) or "History query failed",
                    stderr=event.message,
                )
        return entries

    async def aclose(self) -> None:
        """Cancel the query and wait until the driver has finished."""
        self.cancel()
        if self._task is None:
            return
        if not self._terminal_delivered:
            await self.wait()
        await self._task

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # =====================================================================
    # Driver side
    # =====================================================================

    def start(self, driver: HistoryDriver) -> Self:
        """Run *driver* in a background task."""
        if self.state is not StreamState.IDLE:
            raise RuntimeError("History stream already started")
        self.state = StreamState.STREAMING
        self._task = asyncio.get_running_loop().create_task(self._run(driver))
        return self

    def attach_job(self, job: Job) -> None:
        """Register a job to be killed on cancellation."""
        self._jobs.append(job)
        if self._cancelled:
            job.kill()

    async def emit(self, entry: LogEntry) -> bool:
        """Queue a PROGRESS event; returns False once the stream is cancelled."""
        if self._cancelled:
            return False
        await self._events.put(HistoryEvent(JobStatus.PROGRESS, entry=entry))
        return not self._cancelled

    def skip(self, commit_hash: str | None, reason: str) -> None:
        """Record a commit that is left out of the history."""
        self.skipped.append(commit_hash or "<unknown>")
        logger.warning("history_commit_skipped", commit=commit_hash, reason=reason)

    async def maybe_yield(self) -> None:
        """Yield to the event loop if the driver ran for a full interval."""
        now = time.monotonic()
        if now - self._last_yield >= self._yield_interval:
            await asyncio.sleep(0)
            self._last_yield = time.monotonic()

    async def _run(self, driver: HistoryDriver) -> None:
        status: JobStatus
        message: Sequence[str]
        try:
            status, message = await driver(self)
        except Exception as e:
            logger.exception("history_driver_failed")
            status, message = JobStatus.ERROR, [getattr(e, "message", None) or str(e)]

        if self._cancelled:
            status, message = JobStatus.KILLED, []
        for job in self._jobs:
            job.kill()

        if self.skipped and status is not JobStatus.KILLED:
            logger.warning(
                "history_incomplete",
                skipped=len(self.skipped),
                detail="Displayed history may be incomplete",
            )

        event = HistoryEvent(status, message=tuple(message), skipped=len(self.skipped))
        self._terminal = event
        self.state = StreamState(status.value)
        await self._events.put(event)


#: A completed chunk, or None once every job exited.
ChunkQueue = asyncio.Queue[dict[str, list[str]] | None]


async def start_chunked_jobs(
    stream: HistoryStream,
    commands: dict[str, list[str]],
    *,
    cwd: Path,
    grace_period: float = TERMINATION_GRACE_PERIOD,
    job_factory: type[Job] = Job,
) -> tuple[ChunkQueue, list[Job]] | None:
    """Start one job per key whose output is demultiplexed into chunks.

    Chunk *n* of every job arrives on the returned queue as one mapping;
    None follows once all jobs exited. A job exiting non-zero kills the
    others. The jobs are attached to *stream*.

    Returns:
        ``(chunks, jobs)``, or None if the stream was cancelled first.

    Raises:
        SpawnError: If a job could not be started.
    """
    chunks: ChunkQueue = asyncio.Queue()
    demuxer = ChunkDemuxer(list(commands), chunks.put_nowait)
    latch = CountDownLatch(len(commands))
    jobs: list[Job] = []

    def on_stdout(key: str, line: str, _job: Job) -> None:
        demuxer.feed(key, line)

    def on_exit(key: str, job: Job) -> None:
        if job.returncode == 0:
            demuxer.flush(key)
        elif job.returncode != KILLED_RETURNCODE:
            for other in jobs:
                if other is not job:
                    other.kill()
        latch.count_down()
        if latch.count == 0:
            if all(j.returncode == 0 for j in jobs):
                demuxer.finish()
            chunks.put_nowait(None)

    for key, command in commands.items():
        job = job_factory(
            command,
            cwd=cwd,
            on_stdout=partial(on_stdout, key),
            on_exit=partial(on_exit, key),
            grace_period=grace_period,
        )
        jobs.append(job)
        stream.attach_job(job)

    for job in jobs:
        if stream.cancelled:
            for started in jobs:
                started.kill()
            return None
        await job.start()

    return chunks, jobs


def jobs_failed(jobs: Sequence[Job]) -> bool:
    """True if any job exited non-zero for a reason other than a kill."""
    return any(job.returncode not in (None, 0, KILLED_RETURNCODE) for job in jobs)


def final_status(stream: HistoryStream, jobs: Sequence[Job]) -> tuple[JobStatus, list[str]]:
    """Terminal status of a driver whose *jobs* all exited."""
    if stream.cancelled:
        return JobStatus.KILLED, []

    failed = [job for job in jobs if job.returncode not in (0, KILLED_RETURNCODE)]
    if failed:
        for job in failed:
            logger.warning(
                "history_job_failed",
                command=job.command,
                returncode=job.returncode,
                stderr=job.stderr_text,
            )
        return JobStatus.ERROR, [line for job in jobs for line in job.stderr]

    if any(job.returncode == KILLED_RETURNCODE for job in jobs):
        return JobStatus.KILLED, []
    return JobStatus.SUCCESS, []

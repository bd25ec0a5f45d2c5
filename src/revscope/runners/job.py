"""Streaming subprocess jobs.

A :class:`Job` wraps one subprocess whose output is consumed line by line
while it runs. Jobs are single use: retries run a :meth:`Job.clone`.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from revscope.constants import (
    KILLED_RETURNCODE,
    SPAWN_FAILED_RETURNCODE,
    STREAM_READ_LIMIT,
    TERMINATION_GRACE_PERIOD,
)
from revscope.exceptions import ProcessExitError, SpawnError
from revscope.logging import get_logger
from revscope.runners.models import JobState

__all__ = ["ExitCallback", "Job", "OutputCallback"]

logger = get_logger(__name__)

OutputCallback = Callable[[str, "Job"], None]
ExitCallback = Callable[["Job"], None]


class Job:
    """A subprocess with per-line output callbacks.

    The process runs in its own process group so that :meth:`kill` reaches
    every descendant (pagers, hooks, helpers). Output lines are delivered in
    arrival order, and every exit callback fires exactly once after the last
    line was delivered, or immediately when the job is killed.

    Attributes:
        command: Command vector.
        cwd: Working directory.
        stdout: Captured stdout lines.
        stderr: Captured stderr lines.
        returncode: Exit status once the job finished, ``KILLED_RETURNCODE``
            for killed jobs.
        state: Lifecycle state.
        fail_on_empty: Treat a clean exit without stdout as a failure.

    Example:
        ```python
        job = Job(["git", "log", "--oneline"], cwd=repo, on_stdout=print_line)
        await job.start()
        await job.wait()
        if not job.success:
            raise job.to_error("git log failed")
        ```
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        on_exit: ExitCallback | None = None,
        fail_on_empty: bool = False,
        grace_period: float = TERMINATION_GRACE_PERIOD,
    ) -> None:
        self.command = list(command)
        self.cwd = cwd
        self.env = env
        self.fail_on_empty = fail_on_empty
        self.grace_period = grace_period
        self.stdout: list[str] = []
        self.stderr: list[str] = []
        self.returncode: int | None = None
        self.state = JobState.CREATED
        self.spawn_error: SpawnError | None = None
        self.duration_ms: int | None = None

        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._on_exit = on_exit
        self._exit_callbacks: list[ExitCallback] = [on_exit] if on_exit else []
        self._exit_fired = False
        self._done = asyncio.Event()
        self._process: asyncio.subprocess.Process | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._reaper: asyncio.Task[None] | None = None
        self._start_time: float | None = None

    def __repr__(self) -> str:
        return f"Job({' '.join(self.command)!r}, state={self.state.value})"

    # =====================================================================
    # Properties
    # =====================================================================

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self.state is JobState.RUNNING

    @property
    def done(self) -> bool:
        return self._exit_fired

    @property
    def empty_output(self) -> bool:
        """True if the job exited 0 without printing anything."""
        return self.returncode == 0 and not any(self.stdout)

    @property
    def success(self) -> bool:
        if self.returncode != 0:
            return False
        return not (self.fail_on_empty and self.empty_output)

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr)

    # =====================================================================
    # Lifecycle
    # =====================================================================

    def add_on_exit_callback(self, callback: ExitCallback) -> None:
        """Register *callback* to run once when the job exits.

        A callback added after the job finished runs immediately.
        """
        if self._exit_fired:
            callback(self)
            return
        self._exit_callbacks.append(callback)

    async def start(self) -> None:
        """Spawn the process.

        Raises:
            SpawnError: If the executable cannot be started. The job is then
                finished with returncode 127 and its exit callbacks have run.
            RuntimeError: If the job was already started.
        """
        if self.state is not JobState.CREATED:
            raise RuntimeError(f"{self!r} was already started")

        self._start_time = time.monotonic()
        env = {**os.environ, **self.env} if self.env else None
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
                start_new_session=True,
                limit=STREAM_READ_LIMIT,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            self.spawn_error = SpawnError(
                f"Could not execute {self.command[0]}: {e.strerror or e}",
                executable=self.command[0],
            )
            self.stderr.append(self.spawn_error.message)
            logger.warning("job_spawn_failed", command=self.command, error=str(e))
            self._finish(SPAWN_FAILED_RETURNCODE)
            raise self.spawn_error from e

        self.state = JobState.RUNNING
        logger.debug("job_spawned", command=self.command, pid=self._process.pid)
        self._supervisor = asyncio.create_task(self._supervise(self._process))

    async def wait(self) -> int:
        """Suspend until the exit callbacks have fired; return the returncode."""
        await self._done.wait()
        assert self.returncode is not None
        return self.returncode

    async def wait_closed(self) -> None:
        """Suspend until the OS process has been reaped."""
        await self._done.wait()
        if self._reaper is not None:
            await self._reaper
        elif self._supervisor is not None:
            await self._supervisor

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Terminate the job's process group.

        Exit callbacks fire right away with ``KILLED_RETURNCODE``; output
        arriving afterwards is dropped. The process is sent SIGKILL if it is
        still alive after the grace period. No-op unless the job is running.
        """
        if self.state is not JobState.RUNNING:
            return
        self.state = JobState.KILLED
        logger.debug("job_killed", command=self.command, pid=self.pid, signal=sig)
        self._signal(sig)
        self._reaper = asyncio.get_running_loop().create_task(self._escalate())
        self._finish(KILLED_RETURNCODE)

    def clone(self) -> Job:
        """A fresh, unstarted job with the same command and callbacks.

        Exit callbacks registered with :meth:`add_on_exit_callback` are not
        carried over.
        """
        return type(self)(
            self.command,
            cwd=self.cwd,
            env=self.env,
            on_stdout=self._on_stdout,
            on_stderr=self._on_stderr,
            on_exit=self._on_exit,
            fail_on_empty=self.fail_on_empty,
            grace_period=self.grace_period,
        )

    def to_error(self, message: str | None = None) -> ProcessExitError:
        """Build the :class:`ProcessExitError` describing this job's failure."""
        if message is None:
            message = f"{' '.join(self.command)} exited with code {self.returncode}"
        return ProcessExitError(
            message,
            command=self.command,
            returncode=self.returncode,
            stderr=self.stderr,
        )

    # =====================================================================
    # Internal helpers
    # =====================================================================

    async def _supervise(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None and process.stderr is not None
        await asyncio.gather(
            self._read(process.stdout, self.stdout, self._on_stdout),
            self._read(process.stderr, self.stderr, self._on_stderr),
        )
        returncode = await process.wait()
        if self.state is JobState.KILLED:
            return
        self._finish(returncode)

    async def _read(
        self,
        stream: asyncio.StreamReader,
        sink: list[str],
        callback: OutputCallback | None,
    ) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.warning("job_line_too_long", command=self.command)
                continue
            if not raw:
                break
            if self.state is JobState.KILLED:
                continue
            line = raw.decode("utf-8", errors="replace").removesuffix("\n")
            sink.append(line)
            if callback is not None:
                try:
                    callback(line, self)
                except Exception:
                    logger.exception("job_output_callback_failed", command=self.command)

    def _finish(self, returncode: int) -> None:
        if self._exit_fired:
            return
        self.returncode = returncode
        if self.state is not JobState.KILLED:
            self.state = JobState.EXITED
        if self._start_time is not None:
            self.duration_ms = int((time.monotonic() - self._start_time) * 1000)
        self._exit_fired = True
        self._done.set()

        if returncode not in (0, KILLED_RETURNCODE):
            logger.debug(
                "job_exited_nonzero",
                command=self.command,
                returncode=returncode,
                stderr=self.stderr_text,
            )

        for callback in self._exit_callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("job_exit_callback_failed", command=self.command)

    def _signal(self, sig: int) -> None:
        if self._process is None:
            return
        # The pid is the process group id (start_new_session)
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(self._process.pid, sig)

    async def _escalate(self) -> None:
        assert self._supervisor is not None
        try:
            await asyncio.wait_for(asyncio.shield(self._supervisor), self.grace_period)
        except TimeoutError:
            logger.warning("job_kill_escalated", command=self.command, pid=self.pid)
            self._signal(signal.SIGKILL)
            await self._supervisor

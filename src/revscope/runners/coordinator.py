"""Coordination of concurrent jobs.

Three primitives:

- :class:`CountDownLatch` suspends until N completions were counted.
- :class:`JobQueue` runs jobs of one resource class strictly one at a time,
  in submission order.
- :class:`JobCoordinator` owns the queues of an adapter and runs groups of
  correlated jobs behind a barrier, re-running the jobs whose output fails
  validation a bounded number of times.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Sequence

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from revscope.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, MAX_RETRY_DELAY
from revscope.exceptions import OutputValidationError, SpawnError
from revscope.logging import get_logger
from revscope.runners.job import Job

__all__ = [
    "CountDownLatch",
    "JobCoordinator",
    "JobQueue",
    "OutputValidator",
    "empty_output",
    "matching_line_counts",
]

logger = get_logger(__name__)

#: Returns the indices of the jobs whose output is deficient.
OutputValidator = Callable[[Sequence[Job]], list[int]]


def empty_output(jobs: Sequence[Job]) -> list[int]:
    """Jobs that exited cleanly but printed nothing."""
    return [i for i, job in enumerate(jobs) if job.empty_output]


def matching_line_counts(jobs: Sequence[Job]) -> list[int]:
    """Jobs whose line count falls short of the longest correlated stream.

    Empty lines are not counted.
    """
    counts = [sum(1 for line in job.stdout if line) for job in jobs]
    if not counts:
        return []
    longest = max(counts)
    return [i for i, count in enumerate(counts) if count < longest]


class CountDownLatch:
    """Barrier released once ``count_down`` was called *count* times.

    Example:
        ```python
        latch = CountDownLatch(2)
        for job in (namestat, numstat):
            job.add_on_exit_callback(lambda _: latch.count_down())
        await latch.wait()
        ```
    """

    def __init__(self, count: int) -> None:
        if count < 0:
            raise ValueError("count must be non-negative")
        self._initial = count
        self._count = count
        self._event = asyncio.Event()
        if count == 0:
            self._event.set()

    @property
    def count(self) -> int:
        return self._count

    def count_down(self) -> None:
        if self._count == 0:
            return
        self._count -= 1
        if self._count == 0:
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def reset(self, count: int | None = None) -> None:
        """Re-arm the latch with *count* (default: the initial count)."""
        self._count = self._initial if count is None else count
        if self._count == 0:
            self._event.set()
        else:
            self._event.clear()


class JobQueue:
    """FIFO of jobs that must never run concurrently.

    Only the head job runs. When it exits it is dequeued and the next head
    is started from its exit callback.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: deque[Job] = deque()
        self._starters: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, job: Job) -> Job:
        """Enqueue *job* and wait for it to finish.

        Raises:
            SpawnError: If the job could not be started.
        """
        self._pending.append(job)
        job.add_on_exit_callback(self._on_exit)
        if len(self._pending) == 1:
            await self._start(job)
        await job.wait()
        if job.spawn_error is not None:
            raise job.spawn_error
        return job

    async def _start(self, job: Job) -> None:
        try:
            await job.start()
        except SpawnError:
            # The job is finished; its exit callback advanced the queue
            logger.debug("job_queue_spawn_failed", queue=self.name, command=job.command)

    def _on_exit(self, job: Job) -> None:
        if self._pending and self._pending[0] is job:
            self._pending.popleft()
        else:
            self._pending.remove(job)
        if self._pending:
            task = asyncio.get_running_loop().create_task(self._start(self._pending[0]))
            self._starters.add(task)
            task.add_done_callback(self._starters.discard)


class JobCoordinator:
    """Owns per-resource job queues and runs correlated job groups.

    Attributes:
        max_retries: Validation re-runs before giving up.
        retry_delay: Initial backoff between re-runs (seconds).
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._queues: dict[str, JobQueue] = {}

    def queue(self, resource: str) -> JobQueue:
        """The mutual-exclusion queue for *resource*, created on first use."""
        if resource not in self._queues:
            self._queues[resource] = JobQueue(resource)
        return self._queues[resource]

    async def run_all(
        self,
        jobs: Sequence[Job],
        *,
        on_start: Callable[[Job], None] | None = None,
    ) -> Sequence[Job]:
        """Start *jobs* concurrently and wait until all of them exited.

        Raises:
            SpawnError: If any job could not be started. Jobs already running
                are killed first.
        """
        latch = CountDownLatch(len(jobs))
        for job in jobs:
            job.add_on_exit_callback(lambda _job: latch.count_down())

        for job in jobs:
            if on_start is not None:
                on_start(job)
            try:
                await job.start()
            except SpawnError:
                for other in jobs:
                    other.kill()
                raise

        await latch.wait()
        return jobs

    async def run_validated(
        self,
        jobs: Sequence[Job],
        *,
        validate: OutputValidator = empty_output,
        on_start: Callable[[Job], None] | None = None,
        context: str = "",
    ) -> list[Job]:
        """Run *jobs* behind a barrier and re-run the deficient ones.

        Validation only applies when every job exited 0; any other outcome is
        returned as is so the caller can report the failing job.

        Args:
            jobs: Correlated jobs (e.g. name-status and numstat of one diff).
            validate: Returns the indices of deficient jobs.
            on_start: Called with each job (including re-runs) before it starts.
            context: Label used in log events.

        Returns:
            The final job of each slot, in input order.

        Raises:
            OutputValidationError: If output is still deficient after
                ``max_retries`` re-runs.
            SpawnError: If a job could not be started.
        """
        current = list(jobs)
        await self.run_all(current, on_start=on_start)

        if not all(job.returncode == 0 for job in current):
            return current
        deficient = validate(current)
        if not deficient:
            return current
        if self.max_retries == 0:
            raise self._validation_error(context, 1, deficient)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(
                    multiplier=self.retry_delay, min=self.retry_delay, max=MAX_RETRY_DELAY
                ),
                retry=retry_if_exception_type(OutputValidationError),
                reraise=True,
            ):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    logger.info(
                        "job_output_invalid_retrying",
                        context=context,
                        attempt=attempt_number,
                        deficient=[current[i].command for i in deficient],
                    )
                    reruns = {i: current[i].clone() for i in deficient}
                    await self.run_all(list(reruns.values()), on_start=on_start)
                    for i, job in reruns.items():
                        current[i] = job

                    if not all(job.returncode == 0 for job in current):
                        return current
                    deficient = validate(current)
                    if deficient:
                        raise self._validation_error(context, attempt_number + 1, deficient)
                    logger.debug("job_output_retry_successful", context=context)
                    return current
        except OutputValidationError as e:
            logger.warning(
                "job_output_invalid",
                context=context,
                attempts=e.attempts,
                commands=[current[i].command for i in e.deficient],
            )
            raise

        # AsyncRetrying either returns from the block or reraises
        raise AssertionError("unreachable")

    def _validation_error(
        self, context: str, attempts: int, deficient: Sequence[int]
    ) -> OutputValidationError:
        label = f" ({context})" if context else ""
        return OutputValidationError(
            f"Job output failed validation after {attempts} attempt(s){label}",
            attempts=attempts,
            deficient=deficient,
        )

"""Structured concurrency helpers built on anyio."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import anyio

from revscope.exceptions import RevscopeError

T = TypeVar("T")

__all__ = ["ParallelExecutionError", "run_parallel"]


class ParallelExecutionError(RevscopeError):
    """One or more of a group of concurrent tasks failed.

    Attributes:
        exceptions: Exceptions of the failed tasks, in task order.
        results: Result or exception of every task, in task order.
    """

    def __init__(
        self,
        message: str,
        exceptions: tuple[BaseException, ...],
        results: tuple[Any | BaseException, ...],
    ) -> None:
        super().__init__(message)
        self.exceptions = exceptions
        self.results = results


async def run_parallel(
    tasks: list[Callable[[], Awaitable[T]]],
    *,
    return_exceptions: bool = False,
) -> list[T | BaseException]:
    """Run zero-argument coroutine functions concurrently in an anyio task group.

    Every task runs to completion even when another one fails.

    Args:
        tasks: Coroutine functions to run.
        return_exceptions: Put exceptions in the result list instead of
            raising.

    Returns:
        Results in task order.

    Raises:
        ParallelExecutionError: If any task failed and ``return_exceptions``
            is False.

    Example:
        ```python
        tracked, untracked = await run_parallel(
            [lambda: builder.tracked(...), lambda: builder.untracked(...)]
        )
        ```
    """
    if not tasks:
        return []

    results: list[T | BaseException | None] = [None] * len(tasks)
    failed: dict[int, BaseException] = {}

    async def run_task(index: int, task_fn: Callable[[], Awaitable[T]]) -> None:
        try:
            results[index] = await task_fn()
        except Exception as exc:
            results[index] = exc
            failed[index] = exc

    async with anyio.create_task_group() as tg:
        for idx, task_fn in enumerate(tasks):
            tg.start_soon(run_task, idx, task_fn)

    final_results = list(results)

    if failed and not return_exceptions:
        raise ParallelExecutionError(
            f"{len(failed)} task(s) failed during parallel execution",
            exceptions=tuple(failed[i] for i in sorted(failed)),
            results=tuple(final_results),
        )

    return final_results  # type: ignore[return-value]

"""Command runner for one-shot subprocess execution.

:class:`CommandRunner` runs short queries (``rev-parse``, ``ls-files``,
``config``...) to completion and returns their captured output. Long or
streamed commands use :class:`~revscope.runners.job.Job` instead.
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
)

from revscope.constants import MAX_RETRY_DELAY, TERMINATION_GRACE_PERIOD
from revscope.exceptions import SpawnError, WorkingDirectoryError
from revscope.logging import get_logger
from revscope.runners.models import CommandResult

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["CommandRunner", "RetryableCommandError"]

logger = get_logger(__name__)


class RetryableCommandError(Exception):
    """Signals a command result that should be retried.

    Used internally by CommandRunner; carries the CommandResult so it is
    available after retry exhaustion.
    """

    def __init__(self, result: CommandResult, message: str = "Command failed") -> None:
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Execute commands to completion with environment control.

    Provides async command execution with:
    - Optional timeout with graceful termination (SIGTERM, grace period, SIGKILL)
    - Working directory validation
    - Environment variable inheritance and override
    - Bounded retries for commands that exit 0 without output

    Attributes:
        cwd: Working directory for command execution.
        timeout: Default timeout in seconds (None for no timeout).
        env: Additional environment variables to merge with parent env.

    Example:
        ```python
        runner = CommandRunner(cwd=Path("/project"))
        result = await runner.run(["git", "rev-parse", "HEAD"], retry_on_empty=True)
        if result.success:
            head = result.stdout.strip()
        ```
    """

    def __init__(
        self,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize the CommandRunner.

        Args:
            cwd: Working directory for commands. If None, uses current directory.
            timeout: Default timeout in seconds. None means no timeout.
            env: Additional environment variables to merge with os.environ.
        """
        self._cwd = cwd
        self._timeout = timeout
        self._extra_env = env or {}

    @property
    def cwd(self) -> Path | None:
        """Working directory for command execution."""
        return self._cwd

    @property
    def timeout(self) -> float | None:
        """Default timeout in seconds."""
        return self._timeout

    def _validate_cwd(self, cwd: Path | None) -> None:
        """Validate working directory exists.

        Raises:
            WorkingDirectoryError: If directory does not exist.
        """
        if cwd is not None and not cwd.is_dir():
            raise WorkingDirectoryError(
                f"Working directory does not exist: {cwd}",
                path=cwd,
            )

    def _build_env(self, extra_env: dict[str, str] | None = None) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self._extra_env)
        if extra_env:
            env.update(extra_env)
        return env

    def is_retryable(self, result: CommandResult, retry_on_empty: bool) -> bool:
        """Determine if a command result should be retried.

        Only a successful command that printed nothing is retried, and only
        when the caller expects output.
        """
        if result.timed_out:
            return True
        return retry_on_empty and result.success and result.empty

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
        stdin: str | None = None,
        max_retries: int = 0,
        retry_delay: float = 0.05,
        retry_on_empty: bool = False,
    ) -> CommandResult:
        """Execute a command and return the result.

        Args:
            command: Command and arguments as a sequence (no shell expansion).
            cwd: Override working directory for this command.
            timeout: Override timeout. Use 0 or negative for no timeout.
            env: Additional environment variables for this command.
            stdin: Text written to the process's stdin.
            max_retries: Maximum number of retry attempts (default 0 = no retries).
            retry_delay: Initial delay between retries in seconds. Delay doubles
                on each retry (exponential backoff).
            retry_on_empty: Treat a successful run without stdout as retryable.

        Returns:
            CommandResult with returncode, stdout, stderr, duration_ms, timed_out.

        Raises:
            WorkingDirectoryError: If working directory does not exist.
            SpawnError: If the executable cannot be started.
        """
        effective_cwd = cwd if cwd is not None else self._cwd
        self._validate_cwd(effective_cwd)

        effective_timeout = timeout if timeout is not None else self._timeout
        if effective_timeout is not None and effective_timeout <= 0:
            effective_timeout = None

        effective_env = self._build_env(env)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_retries + 1),
                wait=wait_exponential(
                    multiplier=retry_delay, min=retry_delay, max=MAX_RETRY_DELAY
                ),
                reraise=True,
            ):
                with attempt:
                    result = await self._execute_once(
                        command, effective_cwd, effective_timeout, effective_env, stdin
                    )
                    if not self.is_retryable(result, retry_on_empty):
                        return result

                    logger.debug(
                        "command_retrying",
                        command=list(command),
                        attempt=attempt.retry_state.attempt_number,
                        returncode=result.returncode,
                    )
                    raise RetryableCommandError(result, "Command output empty, retrying")

        except RetryableCommandError as e:
            # Retries exhausted; the last result is the answer
            return e.result

        raise AssertionError("AsyncRetrying made no attempt")

    async def _execute_once(
        self,
        command: Sequence[str],
        cwd: Path | None,
        timeout: float | None,
        env: dict[str, str],
        stdin: str | None,
    ) -> CommandResult:
        """Execute a command once without retries."""
        start_time = time.monotonic()
        timed_out = False

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(
                f"Could not execute {command[0]}: {e.strerror or e}",
                executable=command[0],
            ) from e

        input_bytes = stdin.encode("utf-8") if stdin is not None else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(input_bytes),
                timeout=timeout,
            )
            returncode = process.returncode or 0
        except TimeoutError:
            timed_out = True
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATION_GRACE_PERIOD)
            except TimeoutError:
                process.kill()
                await process.wait()
            returncode = -1
            stdout_bytes, stderr_bytes = b"", b""

        duration_ms = int((time.monotonic() - start_time) * 1000)

        return CommandResult(
            returncode=returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
            timed_out=timed_out,
        )

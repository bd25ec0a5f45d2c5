from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from revscope.exceptions.base import RevscopeError


class RunnerError(RevscopeError):
    """Base exception for subprocess failures.

    Attributes:
        message: Human-readable error message.
    """

    pass


class WorkingDirectoryError(RunnerError):
    """Working directory does not exist or is not accessible.

    Attributes:
        message: Human-readable error message.
        path: The path that was not found.
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = path
        super().__init__(message)


class SpawnError(RunnerError):
    """The executable could not be started.

    Raised for a missing binary or one without execute permission. Never
    retried.

    Attributes:
        message: Human-readable error message.
        executable: The program that failed to spawn.
    """

    def __init__(self, message: str, executable: str | None = None) -> None:
        """Initialize the SpawnError.

        Args:
            message: Human-readable error message.
            executable: The program that failed to spawn.
        """
        self.executable = executable
        super().__init__(message)


class ProcessExitError(RunnerError):
    """A VCS process exited with a non-zero status.

    Attributes:
        message: Human-readable error message.
        command: The command vector that failed.
        returncode: Exit status of the process.
        stderr: Verbatim stderr lines.
    """

    def __init__(
        self,
        message: str,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
        stderr: Sequence[str] = (),
    ) -> None:
        """Initialize the ProcessExitError.

        Args:
            message: Human-readable error message.
            command: The command vector that failed.
            returncode: Exit status of the process.
            stderr: Verbatim stderr lines.
        """
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stderr = list(stderr)
        super().__init__(message)


class OutputValidationError(RunnerError):
    """Job output stayed inconsistent after the bounded retries.

    Covers empty output from a job that must produce some, and correlated
    streams whose record counts disagree.

    Attributes:
        message: Human-readable error message.
        attempts: Number of validation rounds that ran.
        deficient: Indices of the jobs that failed the last validation.
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        deficient: Sequence[int] = (),
    ) -> None:
        self.attempts = attempts
        self.deficient = list(deficient)
        super().__init__(message)

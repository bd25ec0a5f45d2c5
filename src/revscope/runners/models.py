"""Data models for subprocess execution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = ["CommandResult", "JobState"]


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of executing a single command.

    Attributes:
        returncode: Exit code from the command (0 = success).
        stdout: Standard output captured from the command.
        stderr: Standard error captured from the command.
        duration_ms: Execution time in milliseconds.
        timed_out: True if the command exceeded its timeout limit.
    """

    returncode: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False

    @property
    def success(self) -> bool:
        """True if command completed successfully (returncode 0, no timeout)."""
        return self.returncode == 0 and not self.timed_out

    @property
    def lines(self) -> list[str]:
        """Stdout split into lines, without a trailing empty line."""
        return self.stdout.splitlines()

    @property
    def stderr_lines(self) -> list[str]:
        return self.stderr.splitlines()

    @property
    def empty(self) -> bool:
        """True if stdout carried nothing but whitespace."""
        return not self.stdout.strip()


class JobState(str, Enum):
    """Lifecycle of a :class:`~revscope.runners.job.Job`."""

    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"

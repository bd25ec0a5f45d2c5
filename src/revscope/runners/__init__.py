"""Subprocess execution: one-shot commands, streaming jobs and their coordination.

For VCS operations, use an adapter from :mod:`revscope.vcs` instead.
"""

from __future__ import annotations

from revscope.runners.command import CommandRunner
from revscope.runners.coordinator import (
    CountDownLatch,
    JobCoordinator,
    JobQueue,
    empty_output,
    matching_line_counts,
)
from revscope.runners.job import Job
from revscope.runners.models import CommandResult, JobState

__all__ = [
    # Models
    "CommandResult",
    "JobState",
    # Runners
    "CommandRunner",
    "Job",
    # Coordination
    "CountDownLatch",
    "JobCoordinator",
    "JobQueue",
    "empty_output",
    "matching_line_counts",
]

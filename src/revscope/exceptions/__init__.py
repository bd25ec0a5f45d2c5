"""revscope exception hierarchy.

All exceptions can be imported from this package:
    from revscope.exceptions import ProcessExitError, InvalidRevPairError
"""

from __future__ import annotations

# Base exception
from revscope.exceptions.base import RevscopeError

# Configuration exceptions
from revscope.exceptions.config import ConfigError

# Runner exceptions
from revscope.exceptions.runner import (
    OutputValidationError,
    ProcessExitError,
    RunnerError,
    SpawnError,
    WorkingDirectoryError,
)

# VCS exceptions
from revscope.exceptions.vcs import (
    InvalidRevisionError,
    InvalidRevPairError,
    NotARepositoryError,
    UnsupportedPathError,
    VcsError,
)

__all__ = [
    # Base
    "RevscopeError",
    # Config
    "ConfigError",
    # Runner
    "OutputValidationError",
    "ProcessExitError",
    "RunnerError",
    "SpawnError",
    "WorkingDirectoryError",
    # VCS
    "InvalidRevisionError",
    "InvalidRevPairError",
    "NotARepositoryError",
    "UnsupportedPathError",
    "VcsError",
]

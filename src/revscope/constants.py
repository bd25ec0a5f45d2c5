"""Shared constants for revscope.

Tunable values here are only defaults; :mod:`revscope.config` exposes them
as settings.
"""

from __future__ import annotations

# =============================================================================
# Jobs
# =============================================================================

#: Bounded retries for jobs whose output fails validation.
DEFAULT_MAX_RETRIES: int = 2

#: Initial delay between validation retries (seconds, doubles per attempt).
DEFAULT_RETRY_DELAY: float = 0.05

#: Upper bound for the backoff between validation retries (seconds).
MAX_RETRY_DELAY: float = 1.0

#: Seconds between SIGTERM and SIGKILL when a job is killed.
TERMINATION_GRACE_PERIOD: float = 2.0

#: Returncode reported by jobs that were killed by the caller.
KILLED_RETURNCODE: int = -1

#: Returncode reported when the executable could not be spawned.
SPAWN_FAILED_RETURNCODE: int = 127

#: StreamReader buffer limit; single output lines longer than this are split.
STREAM_READ_LIMIT: int = 16 * 1024 * 1024

# =============================================================================
# History streaming
# =============================================================================

#: Wall time the history driver may run before yielding to the event loop.
DEFAULT_YIELD_INTERVAL_MS: float = 15.0

#: Capacity of the event buffer between a history driver and its consumer.
DEFAULT_STREAM_BUFFER_SIZE: int = 256

#: Line separating per-commit chunks in streamed log output.
COMMIT_DELIMITER: str = "\0"

#: Default ``--max-count`` applied to file history queries.
DEFAULT_MAX_COUNT: int = 256

# =============================================================================
# Backends
# =============================================================================

#: Minimum git version with every flag the git adapter emits.
GIT_TARGET_VERSION: tuple[int, int, int] = (2, 31, 0)

#: Object name of git's empty tree.
GIT_NULL_TREE_SHA: str = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

#: Node hash Mercurial prints for a missing parent.
HG_NULL_NODE: str = "0" * 40

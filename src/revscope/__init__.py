"""Async VCS orchestration and incremental file-history streaming.

revscope runs git and Mercurial as supervised subprocesses, turns their
output into file lists and commit histories, and streams long histories to
a consumer while they are still being produced.
"""

from __future__ import annotations

from revscope.api import (
    get_diff_file_list,
    open_adapter,
    resolve_revision,
    restore_file,
    stream_file_history,
)
from revscope.vcs.conflicts import ConflictRegion, parse_conflicts

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConflictRegion",
    "get_diff_file_list",
    "open_adapter",
    "parse_conflicts",
    "resolve_revision",
    "restore_file",
    "stream_file_history",
]

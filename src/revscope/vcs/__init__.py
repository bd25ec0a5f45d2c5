"""VCS abstraction layer.

Provides the :class:`VcsAdapter` protocol that both
:class:`~revscope.git.adapter.GitAdapter` and
:class:`~revscope.hg.adapter.HgAdapter` satisfy, the shared data model,
the conflict-marker parser and :func:`get_adapter` for automatic backend
detection.
"""

from __future__ import annotations

from revscope.vcs.conflicts import (
    ConflictParseResult,
    ConflictRegion,
    ConflictSection,
    parse_conflicts,
)
from revscope.vcs.factory import get_adapter
from revscope.vcs.flags import FlagSet, ListFlag, LogOptions, SwitchFlag, ValueFlag
from revscope.vcs.history import HistoryEvent, HistoryStream, JobStatus, StreamState
from revscope.vcs.models import (
    Commit,
    FileEntry,
    FileKind,
    FileList,
    FileStats,
    LogEntry,
    RestoreResult,
)
from revscope.vcs.protocol import VcsAdapter
from revscope.vcs.rev import Rev, RevType

__all__ = [
    # Protocol and factory
    "VcsAdapter",
    "get_adapter",
    # Revisions
    "Rev",
    "RevType",
    # Models
    "Commit",
    "FileEntry",
    "FileKind",
    "FileList",
    "FileStats",
    "LogEntry",
    "RestoreResult",
    # Conflicts
    "ConflictParseResult",
    "ConflictRegion",
    "ConflictSection",
    "parse_conflicts",
    # History
    "HistoryEvent",
    "HistoryStream",
    "JobStatus",
    "StreamState",
    # Flags
    "FlagSet",
    "ListFlag",
    "LogOptions",
    "SwitchFlag",
    "ValueFlag",
]

"""Data models for diff file lists and history entries.

``Commit``, ``FileStats`` and ``FileEntry`` are immutable values. ``LogEntry``
is the one mutable record: the UI toggles ``folded`` and may replace the file
list, and the aggregate ``status``/``stats`` are recomputed on every
replacement.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta, timezone
from enum import Enum
from functools import cached_property
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from unidiff import PatchSet

    from revscope.vcs.rev import Rev

__all__ = [
    "Commit",
    "FileEntry",
    "FileKind",
    "FileList",
    "FileStats",
    "LogEntry",
    "MIXED_STATUS",
    "RestoreResult",
    "UNKNOWN_STATUS",
    "parse_time_offset",
]

#: Aggregate status of a LogEntry whose files disagree.
MIXED_STATUS = "mixed"

#: Status of a file (or aggregate) whose change type is unknown.
UNKNOWN_STATUS = "X"

_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2})(\d{2})$")


def parse_time_offset(offset: str) -> int:
    """Convert a ``+HHMM`` / ``-HHMM`` timezone offset to seconds east of UTC.

    Raises:
        ValueError: If *offset* is not in ``[+-]HHMM`` form.
    """
    match = _OFFSET_PATTERN.match(offset.strip())
    if match is None:
        raise ValueError(f"Invalid timezone offset: {offset!r}")
    sign, hours, minutes = match.groups()
    seconds = int(hours) * 3600 + int(minutes) * 60
    return -seconds if sign == "-" else seconds


class FileKind(str, Enum):
    """Which section of a file list an entry belongs to."""

    WORKING = "working"
    STAGED = "staged"
    CONFLICTING = "conflicting"


@dataclass(frozen=True, slots=True)
class FileStats:
    """Line counts for one file.

    Attributes:
        additions: Lines added.
        deletions: Lines removed.
    """

    additions: int
    deletions: int

    def swapped(self) -> FileStats:
        """Stats seen from the opposite side of the comparison."""
        return FileStats(additions=self.deletions, deletions=self.additions)

    def __add__(self, other: FileStats) -> FileStats:
        return FileStats(
            additions=self.additions + other.additions,
            deletions=self.deletions + other.deletions,
        )


@dataclass(frozen=True)
class Commit:
    """A commit as reported by the VCS.

    Attributes:
        hash: Full commit hash.
        parents: Parent hashes in order (first parent first).
        author: Author name.
        time: Author time as epoch seconds.
        time_offset: Author timezone, seconds east of UTC.
        rel_date: Relative date string, e.g. ``"3 days ago"``.
        ref_names: Decorations (branches, tags) or None.
        reflog_selector: Reflog selector such as ``HEAD@{2}`` or None.
        subject: First line of the message.
        body: Remaining message lines, when fetched.
        diff: Parsed diff, only set by line-evolution tracing.
    """

    hash: str
    parents: tuple[str, ...] = ()
    author: str = ""
    time: int = 0
    time_offset: int = 0
    rel_date: str = ""
    ref_names: str | None = None
    reflog_selector: str | None = None
    subject: str = ""
    body: str | None = None
    diff: PatchSet | None = field(default=None, compare=False, repr=False)

    @property
    def abbrev(self) -> str:
        return self.hash[:7]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @cached_property
    def date(self) -> datetime:
        """Author date as an aware datetime in the author's timezone."""
        tz = timezone(timedelta(seconds=self.time_offset))
        return datetime.fromtimestamp(self.time, tz=UTC).astimezone(tz)

    @cached_property
    def iso_date(self) -> str:
        """Author date formatted as ``YYYY-MM-DD HH:MM:SS +HHMM``."""
        return self.date.strftime("%Y-%m-%d %H:%M:%S %z")


@dataclass(frozen=True, slots=True)
class FileEntry:
    """One changed file.

    Two-way entries compare ``revs[0]`` (left) with ``revs[1]`` (right).
    Conflict entries carry four revs: ours (stage 2), the working tree,
    theirs (stage 3) and base (stage 1).

    Attributes:
        path: Repository-relative path on the right-hand side.
        status: Single status letter, ``"?"`` for untracked files.
        revs: Revisions compared.
        kind: File list section.
        oldpath: Rename or copy source.
        stats: Line counts, None when unknown or binary.
        commit: Owning commit for history entries.
    """

    path: str
    status: str
    revs: tuple[Rev, ...]
    kind: FileKind = FileKind.WORKING
    oldpath: str | None = None
    stats: FileStats | None = None
    commit: Commit | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if len(self.revs) not in (2, 4):
            raise ValueError(f"A file entry compares 2 or 4 revs, got {len(self.revs)}")

    @property
    def left(self) -> Rev:
        return self.revs[0]

    @property
    def right(self) -> Rev:
        return self.revs[1]

    @property
    def is_conflict(self) -> bool:
        return len(self.revs) == 4

    @property
    def ours(self) -> Rev | None:
        return self.revs[0] if self.is_conflict else None

    @property
    def theirs(self) -> Rev | None:
        return self.revs[2] if self.is_conflict else None

    @property
    def base(self) -> Rev | None:
        return self.revs[3] if self.is_conflict else None

    def with_stats(self, stats: FileStats | None) -> FileEntry:
        return replace(self, stats=stats)


@dataclass
class LogEntry:
    """One commit of a file history together with its changed files.

    A LogEntry with no files is the null sentinel: the commit is shown, but
    there is nothing to diff.

    Attributes:
        commit: The commit.
        files: Changed files, in VCS order.
        path_args: Path filters of the history query.
        single_file: True for a single-file history.
        folded: UI fold state.
        status: Aggregate status, recomputed from ``files``.
        stats: Aggregate stats, recomputed from ``files``.
    """

    commit: Commit
    files: list[FileEntry] = field(default_factory=list)
    path_args: list[str] = field(default_factory=list)
    single_file: bool = False
    folded: bool = True
    status: str | None = field(default=None, init=False)
    stats: FileStats | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._update_aggregates()

    @classmethod
    def null_entry(
        cls,
        commit: Commit,
        path_args: Sequence[str] = (),
        single_file: bool = False,
    ) -> LogEntry:
        return cls(commit=commit, files=[], path_args=list(path_args), single_file=single_file)

    @property
    def nulled(self) -> bool:
        return not self.files

    def set_files(self, files: Sequence[FileEntry]) -> None:
        """Replace the file list and recompute the aggregates."""
        self.files = list(files)
        self._update_aggregates()

    def _update_aggregates(self) -> None:
        if not self.files:
            self.status = None
            self.stats = None
            return

        statuses = {f.status for f in self.files if f.status}
        if not statuses:
            self.status = UNKNOWN_STATUS
        elif len(statuses) == 1:
            self.status = statuses.pop()
        else:
            self.status = MIXED_STATUS

        total = FileStats(0, 0)
        for f in self.files:
            if f.stats is None:
                self.stats = None
                break
            total = total + f.stats
        else:
            self.stats = total


@dataclass
class FileList:
    """Result of a diff file-list query.

    Iteration yields conflicts first, then working-tree and staged entries.
    """

    working: list[FileEntry] = field(default_factory=list)
    staged: list[FileEntry] = field(default_factory=list)
    conflicting: list[FileEntry] = field(default_factory=list)

    def __iter__(self) -> Iterator[FileEntry]:
        yield from self.conflicting
        yield from self.working
        yield from self.staged

    def __len__(self) -> int:
        return len(self.working) + len(self.staged) + len(self.conflicting)

    def is_empty(self) -> bool:
        return len(self) == 0


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Outcome of restoring a file.

    Attributes:
        ok: True if the file was restored.
        undo: Shell command that brings back the previous content, when any.
        message: Failure description.
    """

    ok: bool
    undo: str | None = None
    message: str | None = None

"""Parsers for git's per-commit log blocks and diff stat lines.

A history chunk is the output of one commit in two correlated streams:

* the *name-status* stream: a fixed seven line header followed by status
  lines, either ``STATUS\\tpath[\\tpath]`` (``--name-status``) or the raw
  ``:mode... obj... STATUS\\tpath[\\tpath]`` shape (``--raw``);
* the *numstat* stream: ``adds\\tdels\\tpath`` lines (``-\\t-\\tpath`` for
  binary files).

Status line *i* is paired with numstat line *i*. Parsing never raises on bad
input; problems are recorded on the returned :class:`CommitRecord` so the
history engine can decide to re-query or skip the commit.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from revscope.exceptions import UnsupportedPathError
from revscope.logging import get_logger
from revscope.vcs.models import Commit, FileStats, parse_time_offset

__all__ = [
    "COMMIT_HEADER_LINES",
    "CommitHeader",
    "CommitRecord",
    "LOG_PRETTY_FORMAT",
    "NumstatLine",
    "ParsedFile",
    "StatusLine",
    "parse_commit_block",
    "parse_commit_header",
    "parse_line_trace_block",
    "parse_numstat_line",
    "parse_stat_lines",
    "parse_status_line",
    "unquote_path",
]

logger = get_logger(__name__)

#: ``--pretty`` format of history queries. The two-space prefix on the last
#: three fields keeps them non-blank when empty, since blank lines are dropped
#: from the stream.
LOG_PRETTY_FORMAT = "%x00%n%H %P%n%an%n%ad%n%ar%n  %D%n  %gd%n  %s"

#: Number of header lines :data:`LOG_PRETTY_FORMAT` produces.
COMMIT_HEADER_LINES = 7

_SENTINEL = "  "

_HASH_PATTERN = re.compile(r"^[0-9a-f]{4,64}$")
_RAW_STATUS_PATTERN = re.compile(r"^(:+)(?:\S+ )+([A-Z][A-Z0-9]*)\t(.+)$")
_NAME_STATUS_PATTERN = re.compile(r"^([A-Z][A-Z0-9]*)\t(.+)$")
_NUMSTAT_PATTERN = re.compile(r"^(\d+|-)\t(\d+|-)\t(.*)$")
_DIFF_GIT_PATTERN = re.compile(r'^diff --git "?a/(.*?)"? "?b/(.*?)"?$')
_RENAME_STATUSES = frozenset("RC")


def unquote_path(path: str) -> str:
    """Decode a path git printed in C-quoted form (``core.quotePath``)."""
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    body = path[1:-1]
    raw = body.encode("latin-1", "backslashreplace").decode("unicode_escape")
    return raw.encode("latin-1").decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class StatusLine:
    """One parsed status line.

    Attributes:
        status: Single status letter.
        path: Path on the new side.
        oldpath: Rename or copy source.
        parents: Number of parents the line describes (raw merge lines).
        score: Similarity score of renames and copies.
    """

    status: str
    path: str
    oldpath: str | None = None
    parents: int = 1
    score: int | None = None


@dataclass(frozen=True, slots=True)
class NumstatLine:
    """One parsed numstat line; counts are None for binary files."""

    additions: int | None
    deletions: int | None
    path: str

    @property
    def stats(self) -> FileStats | None:
        if self.additions is None or self.deletions is None:
            return None
        return FileStats(additions=self.additions, deletions=self.deletions)


def parse_status_line(line: str) -> StatusLine | None:
    """Parse a name-status or raw status line.

    Returns:
        The parsed line, or None if *line* has neither shape.

    Raises:
        UnsupportedPathError: If the path fields contain a literal tab.
    """
    parents = 1
    match = _RAW_STATUS_PATTERN.match(line)
    if match is not None:
        parents = len(match.group(1))
        token, rest = match.group(2), match.group(3)
    else:
        match = _NAME_STATUS_PATTERN.match(line)
        if match is None:
            return None
        token, rest = match.group(1), match.group(2)

    status = token[0]
    score = int(token[1:]) if token[1:].isdigit() else None
    fields = rest.split("\t")

    if status in _RENAME_STATUSES:
        if len(fields) != 2:
            raise UnsupportedPathError(
                f"Expected source and destination paths in {line!r}", path=rest
            )
        return StatusLine(
            status=status,
            path=unquote_path(fields[1]),
            oldpath=unquote_path(fields[0]),
            parents=parents,
            score=score,
        )

    if len(fields) != 1:
        raise UnsupportedPathError(f"Path contains a tab character: {rest!r}", path=rest)
    return StatusLine(status=status, path=unquote_path(fields[0]), parents=parents, score=score)


def parse_numstat_line(line: str) -> NumstatLine | None:
    match = _NUMSTAT_PATTERN.match(line)
    if match is None:
        return None
    adds, dels, path = match.groups()
    return NumstatLine(
        additions=None if adds == "-" else int(adds),
        deletions=None if dels == "-" else int(dels),
        path=path,
    )


@dataclass(frozen=True, slots=True)
class ParsedFile:
    """A status line merged with its numstat counterpart."""

    status: str
    path: str
    oldpath: str | None = None
    stats: FileStats | None = None


def parse_stat_lines(
    status_lines: Sequence[str],
    numstat_lines: Sequence[str] | None,
) -> tuple[list[ParsedFile], list[str]]:
    """Pair status lines with numstat lines positionally.

    Blank lines are ignored. Scanning of each stream stops at the first line
    that has none of the stat shapes. When the counts differ the files are
    returned without stats and the mismatch is reported.

    Returns:
        ``(files, errors)``.
    """
    errors: list[str] = []
    statuses: list[StatusLine] = []
    for line in status_lines:
        if not line:
            continue
        try:
            parsed = parse_status_line(line)
        except UnsupportedPathError as e:
            errors.append(e.message)
            continue
        if parsed is None:
            if parse_numstat_line(line) is None:
                break
            continue
        statuses.append(parsed)

    numstats: list[NumstatLine] = []
    for line in numstat_lines or ():
        if not line:
            continue
        parsed_num = parse_numstat_line(line)
        if parsed_num is None:
            break
        numstats.append(parsed_num)

    paired = numstat_lines is not None and len(numstats) == len(statuses)
    if numstat_lines is not None and not paired:
        errors.append(
            f"Status/numstat count mismatch: {len(statuses)} vs {len(numstats)}"
        )

    files = [
        ParsedFile(
            status=s.status,
            path=s.path,
            oldpath=s.oldpath,
            stats=numstats[i].stats if paired else None,
        )
        for i, s in enumerate(statuses)
    ]
    return files, errors


@dataclass(frozen=True, slots=True)
class CommitHeader:
    """The parsed fixed-format header of a history chunk.

    Attributes:
        commit: The commit.
        left_hash: First parent (None for root commits).
        merge_hash: Second parent of merges.
    """

    commit: Commit
    left_hash: str | None = None
    merge_hash: str | None = None

    @property
    def right_hash(self) -> str:
        return self.commit.hash


def _strip_sentinel(line: str) -> str:
    return line[len(_SENTINEL) :] if line.startswith(_SENTINEL) else line.strip()


def parse_commit_header(lines: Sequence[str]) -> tuple[CommitHeader | None, list[str]]:
    """Parse the seven header lines produced by :data:`LOG_PRETTY_FORMAT`.

    Returns:
        ``(header, errors)``; header is None when the hash line is unusable.
    """
    if len(lines) < COMMIT_HEADER_LINES:
        return None, [f"Truncated commit header ({len(lines)} lines)"]

    errors: list[str] = []
    hashes = lines[0].split()
    if not hashes or not all(_HASH_PATTERN.match(h) for h in hashes):
        return None, [f"Malformed hash line: {lines[0]!r}"]

    time, offset = 0, 0
    date_fields = lines[2].split()
    try:
        time = int(date_fields[0])
        offset = parse_time_offset(date_fields[1]) if len(date_fields) > 1 else 0
    except (IndexError, ValueError):
        errors.append(f"Malformed date line: {lines[2]!r}")

    commit = Commit(
        hash=hashes[0],
        parents=tuple(hashes[1:]),
        author=lines[1],
        time=time,
        time_offset=offset,
        rel_date=lines[3],
        ref_names=_strip_sentinel(lines[4]) or None,
        reflog_selector=_strip_sentinel(lines[5]) or None,
        subject=_strip_sentinel(lines[6]),
    )
    header = CommitHeader(
        commit=commit,
        left_hash=hashes[1] if len(hashes) > 1 else None,
        merge_hash=hashes[2] if len(hashes) > 2 else None,
    )
    return header, errors


@dataclass(frozen=True)
class CommitRecord:
    """Result of parsing one history chunk.

    Attributes:
        header: Parsed header, None if the hash line was unusable.
        files: Files in VCS order.
        errors: Soft validation problems; empty for a valid record.
    """

    header: CommitHeader | None
    files: tuple[ParsedFile, ...] = ()
    errors: tuple[str, ...] = field(default=())

    @property
    def valid(self) -> bool:
        return self.header is not None and not self.errors

    @property
    def is_merge(self) -> bool:
        return self.header is not None and self.header.merge_hash is not None

    @property
    def commit_hash(self) -> str | None:
        return self.header.commit.hash if self.header is not None else None


def parse_commit_block(
    namestat: Sequence[str],
    numstat: Sequence[str] | None,
) -> CommitRecord:
    """Parse one commit's chunk from the name-status and numstat streams.

    Pure: parsing the same input twice yields equal records.
    """
    lines = [line for line in namestat if line != ""]
    header, errors = parse_commit_header(lines[:COMMIT_HEADER_LINES])
    files, stat_errors = parse_stat_lines(lines[COMMIT_HEADER_LINES:], numstat)
    return CommitRecord(
        header=header,
        files=tuple(files),
        errors=tuple(errors + stat_errors),
    )


def parse_line_trace_block(lines: Sequence[str]) -> CommitRecord:
    """Parse one commit of ``git log -L`` output.

    Files come from the ``diff --git`` lines; statuses and stats from the
    attached unified diff, which is also kept on the commit.
    """
    lines = [line for line in lines if line != ""]
    header, errors = parse_commit_header(lines[:COMMIT_HEADER_LINES])
    diff_lines = lines[COMMIT_HEADER_LINES:]

    patch: PatchSet | None = None
    if diff_lines:
        try:
            patch = PatchSet.from_string("\n".join(diff_lines) + "\n")
        except UnidiffParseError as e:
            logger.debug("line_trace_diff_unparsed", error=str(e))

    patched = {pf.path: pf for pf in patch} if patch is not None else {}

    files: list[ParsedFile] = []
    for line in diff_lines:
        match = _DIFF_GIT_PATTERN.match(line)
        if match is None:
            continue
        a_path, b_path = match.groups()
        oldpath = a_path if a_path != b_path else None
        status, stats = ("R" if oldpath else "M"), None
        pf = patched.get(b_path)
        if pf is not None:
            if pf.is_added_file:
                status = "A"
            elif pf.is_removed_file:
                status = "D"
            stats = FileStats(additions=pf.added, deletions=pf.removed)
        files.append(ParsedFile(status=status, path=b_path, oldpath=oldpath, stats=stats))

    if header is not None and patch is not None:
        header = CommitHeader(
            commit=replace(header.commit, diff=patch),
            left_hash=header.left_hash,
            merge_hash=header.merge_hash,
        )

    return CommitRecord(header=header, files=tuple(files), errors=tuple(errors))

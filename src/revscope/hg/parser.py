"""Parsers for Mercurial command output.

History chunks come from ``hg log`` with :data:`HG_LOG_TEMPLATE`, which
mirrors the seven line header used for git so that both backends yield the
same :class:`~revscope.git.stat_parser.CommitRecord` shape. File lines are
``STATUS\\tpath`` with copies listed as ``C\\tsource\\tpath``.
"""

from __future__ import annotations

from collections.abc import Sequence

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from revscope.constants import HG_NULL_NODE
from revscope.git.stat_parser import (
    COMMIT_HEADER_LINES,
    CommitHeader,
    CommitRecord,
    ParsedFile,
)
from revscope.logging import get_logger
from revscope.vcs.models import Commit, FileStats

__all__ = [
    "HG_LOG_TEMPLATE",
    "parse_diff_stats",
    "parse_log_chunk",
    "parse_resolve_list",
    "parse_status_lines",
]

logger = get_logger(__name__)

#: ``hg log --template`` producing NUL-delimited per-changeset chunks.
HG_LOG_TEMPLATE = (
    r"\0\n"
    r"{node} {p1node} {p2node}\n"
    r"{author|person}\n"
    r"{date|hgdate}\n"
    r"{date|age}\n"
    r"  {tags} {bookmarks}\n"
    r"  \n"
    r"  {desc|firstline}\n"
    r"{file_copies % 'C\t{source}\t{name}\n'}"
    r"{file_adds % 'A\t{file}\n'}"
    r"{file_mods % 'M\t{file}\n'}"
    r"{file_dels % 'D\t{file}\n'}"
)

_STATUS_MAP = {
    "M": "M",
    "A": "A",
    "R": "D",
    "!": "D",
    "?": "?",
}


def _strip(line: str) -> str:
    return line[2:].strip() if line.startswith("  ") else line.strip()


def parse_log_chunk(lines: Sequence[str]) -> CommitRecord:
    """Parse one changeset chunk of ``hg log`` output.

    Renames are reconstructed from copies whose source was removed in the
    same changeset. Files are sorted by path.
    """
    lines = [line for line in lines if line != ""]
    if len(lines) < COMMIT_HEADER_LINES:
        return CommitRecord(
            header=None, errors=(f"Truncated changeset header ({len(lines)} lines)",)
        )

    errors: list[str] = []
    hashes = lines[0].split()
    if not hashes:
        return CommitRecord(header=None, errors=(f"Malformed node line: {lines[0]!r}",))
    parents = tuple(h for h in hashes[1:] if h != HG_NULL_NODE)

    time, offset = 0, 0
    try:
        raw_time, raw_offset = lines[2].split()
        time = int(float(raw_time))
        # hgdate offsets are seconds west of UTC
        offset = -int(raw_offset)
    except ValueError:
        errors.append(f"Malformed date line: {lines[2]!r}")

    commit = Commit(
        hash=hashes[0],
        parents=parents,
        author=lines[1],
        time=time,
        time_offset=offset,
        rel_date=lines[3],
        ref_names=_strip(lines[4]) or None,
        reflog_selector=None,
        subject=_strip(lines[6]),
    )
    header = CommitHeader(
        commit=commit,
        left_hash=parents[0] if parents else None,
        merge_hash=parents[1] if len(parents) > 1 else None,
    )

    copies: dict[str, str] = {}
    added: list[str] = []
    modified: list[str] = []
    removed: list[str] = []
    for line in lines[COMMIT_HEADER_LINES:]:
        status, _, rest = line.partition("\t")
        if status == "C":
            source, _, name = rest.partition("\t")
            copies[name] = source
        elif status == "A":
            added.append(rest)
        elif status == "M":
            modified.append(rest)
        elif status == "D":
            removed.append(rest)
        else:
            errors.append(f"Unexpected file line: {line!r}")

    files: list[ParsedFile] = []
    renamed: set[str] = set()
    for path in added:
        source = copies.get(path)
        if source is None:
            files.append(ParsedFile(status="A", path=path))
        elif source in removed:
            renamed.add(source)
            files.append(ParsedFile(status="R", path=path, oldpath=source))
        else:
            files.append(ParsedFile(status="C", path=path, oldpath=source))
    files.extend(ParsedFile(status="M", path=path) for path in modified)
    files.extend(ParsedFile(status="D", path=path) for path in removed if path not in renamed)
    files.sort(key=lambda f: f.path)

    return CommitRecord(header=header, files=tuple(files), errors=tuple(errors))


def parse_status_lines(lines: Sequence[str]) -> list[ParsedFile]:
    """Parse ``hg status --copies`` output.

    A copy source line (two leading spaces) follows its added file. Copies
    whose source is also reported removed become renames. Clean and ignored
    files are left out.
    """
    entries: list[tuple[str, str]] = []
    copies: dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        if line.startswith("  "):
            if entries and entries[-1][0] == "A":
                copies[entries[-1][1]] = line[2:]
            continue
        code, _, path = line.partition(" ")
        if code in _STATUS_MAP:
            entries.append((code, path))

    removed = {path for code, path in entries if code == "R"}
    renamed: set[str] = set()
    files: list[ParsedFile] = []
    for code, path in entries:
        source = copies.get(path)
        if code == "A" and source is not None:
            if source in removed:
                renamed.add(source)
                files.append(ParsedFile(status="R", path=path, oldpath=source))
            else:
                files.append(ParsedFile(status="C", path=path, oldpath=source))
        else:
            files.append(ParsedFile(status=_STATUS_MAP[code], path=path))

    return [f for f in files if not (f.status == "D" and f.path in renamed)]


def parse_diff_stats(diff_text: str) -> dict[str, FileStats]:
    """Line counts per target path of a ``hg diff --git`` patch.

    Binary files and unparseable patches yield no entries.
    """
    if not diff_text.strip():
        return {}
    try:
        patch = PatchSet.from_string(diff_text)
    except UnidiffParseError as e:
        logger.debug("hg_diff_unparsed", error=str(e))
        return {}
    return {
        pf.path: FileStats(additions=pf.added, deletions=pf.removed)
        for pf in patch
        if not pf.is_binary_file
    }


def parse_resolve_list(lines: Sequence[str]) -> list[str]:
    """Unresolved paths from ``hg resolve --list``."""
    return [line[2:] for line in lines if line.startswith("U ")]

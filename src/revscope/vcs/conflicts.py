"""Parser for merge-conflict markers in file content.

Recognizes the ``diff3``-style markers::

    <<<<<<< ours-label
    ours
    ||||||| base-label
    base
    =======
    theirs
    >>>>>>> theirs-label

The base section is optional. Line numbers are 1-based.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

__all__ = [
    "ConflictParseResult",
    "ConflictRegion",
    "ConflictSection",
    "parse_conflicts",
]

CONFLICT_START = re.compile(r"^<<<<<<< ")
CONFLICT_BASE = re.compile(r"^\|\|\|\|\|\|\| ")
CONFLICT_SEP = re.compile(r"^=======$")
CONFLICT_END = re.compile(r"^>>>>>>> ")


@dataclass(frozen=True, slots=True)
class ConflictSection:
    """One side of a conflict.

    ``first`` is the marker line that opens the section. ``content`` is None
    when the section holds no lines.
    """

    first: int | None = None
    last: int | None = None
    content: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class ConflictRegion:
    """A complete conflict, from its first marker to its last.

    Attributes:
        first: First line of the region.
        last: Last line of the region.
        ours: Section between the start marker and the base or separator.
        base: Section between the base marker and the separator.
        theirs: Section between the separator and the end marker.
    """

    first: int
    last: int
    ours: ConflictSection
    base: ConflictSection
    theirs: ConflictSection


@dataclass(frozen=True, slots=True)
class ConflictParseResult:
    """Conflicts of a buffer, plus cursor information when a cursor was given.

    Attributes:
        conflicts: Regions in buffer order.
        current: Region containing the cursor.
        current_index: 1-based index of ``current``; otherwise the number of
            regions above the cursor, with ``len(conflicts) + 1`` once the
            cursor is below the last region. 0 without a cursor.
    """

    conflicts: tuple[ConflictRegion, ...]
    current: ConflictRegion | None = None
    current_index: int = 0


class _RegionBuilder:
    def __init__(self) -> None:
        self.bounds: dict[str, list[int | None]] = {
            "ours": [None, None],
            "base": [None, None],
            "theirs": [None, None],
        }
        self.has_start = False
        self.has_base = False
        self.has_sep = False

    def set(self, section: str, first: int | None = None, last: int | None = None) -> None:
        if first is not None:
            self.bounds[section][0] = first
        if last is not None:
            self.bounds[section][1] = last

    def build(self, lines: Sequence[str]) -> ConflictRegion | None:
        firsts = [b[0] for b in self.bounds.values() if b[0] is not None]
        lasts = [b[1] for b in self.bounds.values() if b[1] is not None]
        if not firsts or not lasts:
            return None

        def section(name: str, tail: int) -> ConflictSection:
            first, last = self.bounds[name]
            content = None
            if first is not None and last is not None and first < last - tail:
                content = tuple(lines[first : last - tail])
            return ConflictSection(first=first, last=last, content=content)

        return ConflictRegion(
            first=min(firsts),
            last=max(lasts),
            ours=section("ours", 0),
            base=section("base", 0),
            theirs=section("theirs", 1),
        )


def parse_conflicts(
    lines: Sequence[str],
    cursor_line: int | None = None,
) -> ConflictParseResult:
    """Find the conflict regions in *lines*.

    A marker that repeats before its region was closed ends the pending
    region early, so malformed or nested markers never swallow the rest of
    the buffer.

    Args:
        lines: Buffer content, one entry per line.
        cursor_line: 1-based cursor line, if any.

    Example:
        >>> result = parse_conflicts(
        ...     ["a", "<<<<<<< HEAD", "x", "=======", "y", ">>>>>>> branch", "b"]
        ... )
        >>> region = result.conflicts[0]
        >>> (region.first, region.last, region.ours.content, region.theirs.content)
        (2, 6, ('x',), ('y',))
    """
    regions: list[ConflictRegion] = []
    current: ConflictRegion | None = None
    current_index: int | None = None
    cur = _RegionBuilder()

    def flush() -> None:
        nonlocal current, current_index
        region = cur.build(lines)
        if region is None:
            return
        if cursor_line is not None:
            if current is None and region.first <= cursor_line <= region.last:
                current = region
                current_index = len(regions) + 1
            elif cursor_line > region.last:
                current_index = (current_index or 0) + 1
        regions.append(region)

    for i, line in enumerate(lines, start=1):
        if CONFLICT_START.match(line):
            if cur.has_start:
                flush()
                cur = _RegionBuilder()
            cur.has_start = True
            cur.set("ours", first=i, last=i)
        elif CONFLICT_BASE.match(line):
            if cur.has_base:
                flush()
                cur = _RegionBuilder()
            cur.has_base = True
            cur.set("base", first=i)
            cur.set("ours", last=i - 1)
        elif CONFLICT_SEP.match(line):
            if cur.has_sep:
                flush()
                cur = _RegionBuilder()
            cur.has_sep = True
            cur.set("theirs", first=i, last=i)
            cur.set("base" if cur.has_base else "ours", last=i - 1)
        elif CONFLICT_END.match(line):
            if not cur.has_sep:
                if cur.has_base:
                    cur.set("base", last=i - 1)
                elif cur.has_start:
                    cur.set("ours", last=i - 1)
            if cur.bounds["theirs"][0] is None:
                cur.set("theirs", first=i)
            cur.set("theirs", last=i)
            flush()
            cur = _RegionBuilder()

    flush()

    if cursor_line is not None and current_index is not None and regions:
        if cursor_line > regions[-1].last:
            current_index = len(regions) + 1

    return ConflictParseResult(
        conflicts=tuple(regions),
        current=current,
        current_index=current_index or 0,
    )

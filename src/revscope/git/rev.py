"""Git-specific revision helpers."""

from __future__ import annotations

import re

from revscope.constants import GIT_NULL_TREE_SHA
from revscope.exceptions import InvalidRevPairError
from revscope.vcs.rev import Rev, RevType

__all__ = [
    "NULL_TREE_SHA",
    "imply_local",
    "is_rev_arg_range",
    "null_tree",
    "rev_to_pretty_string",
    "to_range",
]

NULL_TREE_SHA = GIT_NULL_TREE_SHA

_RANGE_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"^\.\.\.?$",
        r"^\.\.\.?[^.]",
        r"[^.]\.\.\.?$",
        r"[^.]\.\.\.?[^.]",
        r"\^@",
        r"\^!",
        r"\^-\d?",
    )
)


def null_tree() -> Rev:
    """The empty tree, used as the left side of root commits."""
    return Rev.at_commit(NULL_TREE_SHA)


def to_range(left: Rev, right: Rev) -> list[str]:
    """Translate a rev pair into ``git diff`` arguments.

    A LOCAL left side is a reversed comparison: git always puts the working
    tree on the right, so callers must swap the stat polarity.

    Raises:
        InvalidRevPairError: For LOCAL against LOCAL, custom revs, and any
            pairing git cannot diff.
    """
    lt, rt = left.type, right.type

    if lt is RevType.LOCAL and rt is RevType.LOCAL:
        raise InvalidRevPairError(
            "Can't diff the working tree against itself", left, right, backend="git"
        )
    if lt is RevType.CUSTOM or rt is RevType.CUSTOM:
        raise InvalidRevPairError(
            "Custom revisions have no git representation", left, right, backend="git"
        )

    if lt is RevType.COMMIT and rt is RevType.COMMIT:
        return [f"{left.commit}..{right.commit}"]
    if lt is RevType.STAGE and rt is RevType.LOCAL:
        return []
    if lt is RevType.COMMIT and rt is RevType.STAGE:
        return ["--cached", str(left.commit)]
    if lt is RevType.COMMIT and rt is RevType.LOCAL:
        return [str(left.commit)]
    if lt is RevType.LOCAL and rt is RevType.COMMIT:
        return [str(right.commit)]
    if lt is RevType.LOCAL and rt is RevType.STAGE:
        return []

    raise InvalidRevPairError(
        f"Unsupported comparison: {left} -> {right}", left, right, backend="git"
    )


def rev_to_pretty_string(left: Rev, right: Rev) -> str | None:
    """Short label for a comparison, or None when the default needs no label."""
    if left.track_head and right.is_local:
        return None
    if left.is_commit and right.is_local:
        return left.abbrev()
    if left.is_commit and right.is_commit:
        return f"{left.abbrev()}..{right.abbrev()}"
    return None


def is_rev_arg_range(rev_arg: str) -> bool:
    """True if *rev_arg* names a range (``a..b``, ``a...b``, ``c^@``, ``c^!``, ``c^-``)."""
    return any(p.search(rev_arg) for p in _RANGE_PATTERNS)


def imply_local(left: Rev, right: Rev, head: Rev | None) -> tuple[Rev, Rev]:
    """Replace the side that equals HEAD with the working tree."""
    if head is None:
        return left, right
    if left.is_commit and left.commit == head.commit:
        left = Rev.local()
    if right.is_commit and right.commit == head.commit:
        right = Rev.local()
    return left, right

"""Mercurial-specific revision helpers.

Mercurial has no staging area, so STAGE revs never appear in a comparison.
"""

from __future__ import annotations

from revscope.constants import HG_NULL_NODE
from revscope.exceptions import InvalidRevPairError
from revscope.vcs.rev import Rev, RevType

__all__ = ["NULL_NODE", "null_node", "to_rev_args", "to_revset"]

NULL_NODE = HG_NULL_NODE


def null_node() -> Rev:
    """The null revision, used as the left side of root changesets."""
    return Rev.at_commit(NULL_NODE)


def to_rev_args(left: Rev, right: Rev) -> list[str]:
    """Translate a rev pair into ``hg status`` / ``hg diff`` arguments.

    A LOCAL left side is a reversed comparison, as with git.

    Raises:
        InvalidRevPairError: For the working tree against itself, index
            stages and custom revs.
    """
    lt, rt = left.type, right.type

    if lt is RevType.LOCAL and rt is RevType.LOCAL:
        raise InvalidRevPairError(
            "Can't diff the working tree against itself", left, right, backend="hg"
        )
    if RevType.STAGE in (lt, rt):
        raise InvalidRevPairError(
            "Mercurial has no staging area", left, right, backend="hg"
        )
    if RevType.CUSTOM in (lt, rt):
        raise InvalidRevPairError(
            "Custom revisions have no Mercurial representation", left, right, backend="hg"
        )

    if lt is RevType.COMMIT and rt is RevType.COMMIT:
        return ["--rev", str(left.commit), "--rev", str(right.commit)]
    if lt is RevType.COMMIT:
        return ["--rev", str(left.commit)]
    return ["--rev", str(right.commit)]


def to_revset(rev_from: Rev | str, rev_to: Rev | str | None = None) -> str:
    """The DAG range ``from::to`` (``from::from`` without an end)."""
    name_from = rev_from if isinstance(rev_from, str) else rev_from.object_name()
    if rev_to is None:
        name_to = None
    elif isinstance(rev_to, str):
        name_to = rev_to
    else:
        name_to = rev_to.object_name() if rev_to.is_commit else None
    return f"{name_from}::{name_to or name_from}"

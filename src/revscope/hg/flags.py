"""Mercurial history flag metadata.

Only the :class:`~revscope.vcs.flags.LogOptions` fields ``hg log`` has a
counterpart for are described; the rest are ignored by the hg backend.
"""

from __future__ import annotations

from revscope.vcs.flags import FlagSet, SwitchFlag, ValueFlag

__all__ = ["HG_FLAGS", "HG_LOG_FLAG_ORDER"]

HG_FLAGS = FlagSet(
    switches=(
        SwitchFlag("follow", "--follow", "Follow copies and renames", "-f"),
        SwitchFlag("merges", "--only-merges", "List only merge changesets", "-m"),
        SwitchFlag("no_merges", "--no-merges", "List no merge changesets", "-n"),
    ),
    options=(
        ValueFlag(
            "rev_range",
            "++rev-range=",
            "Show only changesets in the specified revset",
            "=r",
            emit=False,
        ),
        ValueFlag("base", "++base=", "Set the base revision", "=b", emit=False),
        ValueFlag("max_count", "--limit=", "Limit the number of changesets", "=n"),
        ValueFlag("author", "--user=", "List only changesets from a given user", "=a"),
        ValueFlag("grep", "--keyword=", "Filter changesets by keyword", "=g"),
    ),
)

#: ``hg log`` rendering order. ``follow`` is dropped for multi-file queries.
HG_LOG_FLAG_ORDER: tuple[str, ...] = (
    "follow",
    "merges",
    "no_merges",
    "max_count",
    "author",
    "grep",
)

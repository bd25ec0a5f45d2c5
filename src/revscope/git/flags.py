"""Git history flag metadata.

:data:`GIT_FLAGS` describes every :class:`~revscope.vcs.flags.LogOptions`
field git understands. :data:`LOG_FLAG_ORDER` is the order in which they are
rendered into ``git log`` arguments.
"""

from __future__ import annotations

from revscope.vcs.flags import FlagSet, ListFlag, SwitchFlag, ValueFlag

__all__ = ["DIFF_MERGES_CHOICES", "GIT_FLAGS", "LOG_FLAG_ORDER"]

DIFF_MERGES_CHOICES: tuple[str, ...] = (
    "",
    "off",
    "on",
    "first-parent",
    "separate",
    "combined",
    "dense-combined",
    "remerge",
)


def _pickaxe(flag: ValueFlag, value: str) -> list[str]:
    return [f"{flag.flag_name}{value}", "--pickaxe-regex"]


GIT_FLAGS = FlagSet(
    switches=(
        SwitchFlag("follow", "--follow", "Follow renames (only for single file)", "-f"),
        SwitchFlag(
            "first_parent",
            "--first-parent",
            "Follow only the first parent upon seeing a merge commit",
            "-p",
        ),
        SwitchFlag(
            "show_pulls",
            "--show-pulls",
            "Show merge commits that first introduced a change to a branch",
            "-s",
        ),
        SwitchFlag(
            "reflog", "--reflog", "Include all reachable objects mentioned by reflogs", "-R"
        ),
        SwitchFlag("all", "--all", "Include all refs", "-a"),
        SwitchFlag("merges", "--merges", "List only merge commits", "-m"),
        SwitchFlag("no_merges", "--no-merges", "List no merge commits", "-n"),
        SwitchFlag("reverse", "--reverse", "List commits in reverse order", "-r"),
    ),
    options=(
        ValueFlag(
            "rev_range",
            "++rev-range=",
            "Show only commits in the specified revision range",
            "=r",
            emit=False,
        ),
        ValueFlag("base", "++base=", "Set the base revision", "=b", emit=False),
        ValueFlag("max_count", "-n", "Limit the number of commits", "=n"),
        ListFlag("L", "-L", "Trace line evolution", "=L"),
        ValueFlag(
            "diff_merges",
            "--diff-merges=",
            "Determines how merge commits are treated",
            "=d",
            select=DIFF_MERGES_CHOICES,
        ),
        ValueFlag(
            "author",
            "--author=",
            "List only commits from a given author",
            "=a",
            prefix_args=("-E",),
        ),
        ValueFlag("grep", "--grep=", "Filter commit messages", "=g", prefix_args=("-E",)),
        ValueFlag("G", "-G", "Search changes", "=G", prefix_args=("-E",)),
        ValueFlag("S", "-S", "Search occurrences", "=S", formatter=_pickaxe),
    ),
)

#: ``git log`` rendering order. ``follow`` is dropped for multi-file queries.
LOG_FLAG_ORDER: tuple[str, ...] = (
    "L",
    "follow",
    "first_parent",
    "show_pulls",
    "reflog",
    "all",
    "merges",
    "no_merges",
    "reverse",
    "max_count",
    "diff_merges",
    "author",
    "grep",
    "G",
    "S",
)

"""Git backend.

Exports the adapter together with the git-specific revision helpers and
stat parsers it is built from.
"""

from __future__ import annotations

from revscope.git.adapter import GitAdapter, MergeContext, MergeSide
from revscope.git.diff import DiffFileListBuilder
from revscope.git.flags import GIT_FLAGS, LOG_FLAG_ORDER
from revscope.git.history import GitFileHistory, PreparedLogOptions
from revscope.git.pathspec import pathspec_expand, pathspec_split
from revscope.git.rev import (
    NULL_TREE_SHA,
    imply_local,
    is_rev_arg_range,
    null_tree,
    rev_to_pretty_string,
    to_range,
)
from revscope.git.stat_parser import (
    CommitRecord,
    parse_commit_block,
    parse_line_trace_block,
    parse_stat_lines,
)

__all__ = [
    # Adapter
    "GitAdapter",
    "MergeContext",
    "MergeSide",
    # Components
    "DiffFileListBuilder",
    "GitFileHistory",
    "PreparedLogOptions",
    # Flags
    "GIT_FLAGS",
    "LOG_FLAG_ORDER",
    # Revisions
    "NULL_TREE_SHA",
    "imply_local",
    "is_rev_arg_range",
    "null_tree",
    "rev_to_pretty_string",
    "to_range",
    # Pathspecs
    "pathspec_expand",
    "pathspec_split",
    # Parsing
    "CommitRecord",
    "parse_commit_block",
    "parse_line_trace_block",
    "parse_stat_lines",
]

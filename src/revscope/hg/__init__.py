"""Mercurial backend."""

from __future__ import annotations

from revscope.hg.adapter import HgAdapter
from revscope.hg.flags import HG_FLAGS, HG_LOG_FLAG_ORDER
from revscope.hg.history import HgFileHistory
from revscope.hg.parser import (
    HG_LOG_TEMPLATE,
    parse_diff_stats,
    parse_log_chunk,
    parse_resolve_list,
    parse_status_lines,
)
from revscope.hg.rev import NULL_NODE, null_node, to_rev_args, to_revset

__all__ = [
    "HG_FLAGS",
    "HG_LOG_FLAG_ORDER",
    "HG_LOG_TEMPLATE",
    "HgAdapter",
    "HgFileHistory",
    "NULL_NODE",
    "null_node",
    "parse_diff_stats",
    "parse_log_chunk",
    "parse_resolve_list",
    "parse_status_lines",
    "to_rev_args",
    "to_revset",
]

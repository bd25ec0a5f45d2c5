"""Shared utilities."""

from __future__ import annotations

from revscope.utils.async_utils import ParallelExecutionError, run_parallel

__all__ = ["ParallelExecutionError", "run_parallel"]

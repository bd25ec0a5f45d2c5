"""Structured logging for revscope.

All modules log through structlog with snake_case event names and
structured fields, for example::

    from revscope.logging import get_logger

    logger = get_logger(__name__)
    logger.warning("job_output_invalid", command=job.command, attempt=2)

Output is a colored console rendering by default and JSON lines when
``REVSCOPE_LOG_FORMAT=json``. The level comes from ``REVSCOPE_LOG_LEVEL``.
Library users that never call :func:`configure_logging` get structlog's
defaults, so importing revscope has no side effects on the root logger.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

__all__ = [
    "get_logger",
    "configure_logging",
    "bind_context",
    "clear_context",
    "repository_context",
]

LOG_FORMAT_ENV_VAR = "REVSCOPE_LOG_FORMAT"

LOG_LEVEL_ENV_VAR = "REVSCOPE_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "WARNING"


def _get_log_level() -> int:
    """Resolve the log level from the environment.

    Unknown level names fall back to WARNING.
    """
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.WARNING


def _is_json_output() -> bool:
    return os.environ.get(LOG_FORMAT_ENV_VAR, "").lower() == "json"


def _get_shared_processors() -> list[Processor]:
    """Processors applied to both structlog and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _get_renderer(use_json: bool) -> Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    *,
    force_json: bool = False,
    level: int | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; each call replaces the previous handler.

    Args:
        force_json: Emit JSON lines regardless of ``REVSCOPE_LOG_FORMAT``.
        level: Explicit log level. Defaults to ``REVSCOPE_LOG_LEVEL``.
    """
    use_json = force_json or _is_json_output()
    log_level = level if level is not None else _get_log_level()

    exc_processor: Processor = (
        structlog.processors.dict_tracebacks
        if use_json
        else structlog.processors.format_exc_info
    )

    structlog.configure(
        processors=[
            *_get_shared_processors(),
            exc_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _get_renderer(use_json),
            ],
            foreign_pre_chain=_get_shared_processors(),
        )
    )
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, usually called as ``get_logger(__name__)``."""
    log: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return log


def bind_context(**context: Any) -> None:
    """Bind context variables included in every subsequent log event.

    Uses structlog contextvars, so bindings follow asyncio tasks.
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Drop all bound context variables."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def repository_context(toplevel: Path, backend: str) -> Iterator[None]:
    """Tag log events emitted inside the block with the repository.

    Example:
        with repository_context(adapter.toplevel, "git"):
            await adapter.diff(left, right)
    """
    with structlog.contextvars.bound_contextvars(
        repository=str(toplevel), backend=backend
    ):
        yield

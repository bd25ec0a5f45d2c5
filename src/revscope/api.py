"""Consumer-facing entry points.

Diff views call these functions with a :class:`~revscope.vcs.protocol.VcsAdapter`
and never touch jobs or parsers directly.

Example:
    ```python
    adapter = open_adapter(Path.cwd())
    files = await get_diff_file_list(adapter, Rev.at_stage(0), Rev.local())

    cancel, stream = await stream_file_history(adapter, ["src/app.py"])
    async for event in stream:
        if event.entry is not None:
            render(event.entry)
    ```
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

from revscope.config import RevscopeConfig
from revscope.logging import get_logger
from revscope.vcs.factory import get_adapter
from revscope.vcs.flags import LogOptions
from revscope.vcs.history import HistoryStream
from revscope.vcs.models import FileKind, FileList, RestoreResult
from revscope.vcs.protocol import VcsAdapter
from revscope.vcs.rev import Rev

__all__ = [
    "get_diff_file_list",
    "open_adapter",
    "resolve_revision",
    "restore_file",
    "stream_file_history",
]

logger = get_logger(__name__)


def open_adapter(
    path: str | Path,
    backend: str = "auto",
    *,
    config: RevscopeConfig | None = None,
) -> VcsAdapter:
    """Adapter for the repository containing *path*.

    Raises:
        NotARepositoryError: If no repository contains *path*.
    """
    return get_adapter(Path(path), backend, config=config)


async def get_diff_file_list(
    adapter: VcsAdapter,
    left: Rev,
    right: Rev,
    paths: Sequence[str] = (),
    show_untracked: bool | None = None,
) -> FileList:
    """Changed files between *left* and *right*.

    Raises:
        InvalidRevPairError: If the pair cannot be compared.
        ProcessExitError: If a VCS command failed.
        OutputValidationError: If the VCS output stayed inconsistent.
    """
    return await adapter.diff(left, right, paths, show_untracked=show_untracked)


async def stream_file_history(
    adapter: VcsAdapter,
    paths: Sequence[str] = (),
    options: LogOptions | None = None,
) -> tuple[Callable[[], None], HistoryStream]:
    """Start a history query over *paths*.

    Returns:
        ``(cancel, stream)``. Calling ``cancel`` kills the query's jobs; the
        stream then ends with a single KILLED event.
    """
    requested = (options or LogOptions()).model_copy(deep=True)
    if paths:
        requested.path_args = list(paths)
    stream = await adapter.file_history(requested)
    return stream.cancel, stream


async def restore_file(
    adapter: VcsAdapter,
    path: str,
    kind: FileKind,
    commit: str | None = None,
) -> RestoreResult:
    """Restore *path* from *commit* (or the index or HEAD for *kind*)."""
    result = await adapter.restore_file(path, kind, commit)
    if not result.ok:
        logger.warning("file_restore_failed", path=path, message=result.message)
    return result


async def resolve_revision(adapter: VcsAdapter, name: str) -> Rev:
    """Resolve *name* to a commit rev.

    Raises:
        InvalidRevisionError: If *name* does not resolve.
    """
    return await adapter.resolve_revision(name)

"""VcsAdapter protocol definition.

The capability interface every backend implements. Both
:class:`~revscope.git.adapter.GitAdapter` and
:class:`~revscope.hg.adapter.HgAdapter` satisfy it via structural typing, no
explicit inheritance required. Callers hold a ``VcsAdapter`` and never a
concrete backend type.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from revscope.vcs.flags import FlagSet, LogOptions
from revscope.vcs.history import HistoryStream
from revscope.vcs.models import FileKind, FileList, RestoreResult
from revscope.vcs.rev import Rev


@runtime_checkable
class VcsAdapter(Protocol):
    """Backend-neutral repository operations used by diff views."""

    @property
    def backend(self) -> str:
        """Backend name, e.g. ``"git"``."""
        ...

    @property
    def toplevel(self) -> Path:
        """Root of the working tree."""
        ...

    @property
    def flags(self) -> FlagSet:
        """History option metadata for this backend."""
        ...

    def get_command(self) -> list[str]:
        """Command vector that invokes the backend executable."""
        ...

    async def is_binary(self, path: str, rev: Rev) -> bool:
        """True if *path* is binary (or missing) at *rev*."""
        ...

    async def head_rev(self) -> Rev | None:
        """The current HEAD as a tracking commit rev, None in an empty repository."""
        ...

    async def resolve_revision(self, name: str) -> Rev:
        """Resolve a revision name to a commit rev.

        Raises:
            InvalidRevisionError: If *name* does not resolve.
        """
        ...

    async def file_history(self, options: LogOptions | None = None) -> HistoryStream:
        """Start a streamed history query."""
        ...

    async def diff(
        self,
        left: Rev,
        right: Rev,
        paths: Sequence[str] = (),
        *,
        show_untracked: bool | None = None,
    ) -> FileList:
        """Changed files between *left* and *right*."""
        ...

    async def restore_file(
        self,
        path: str,
        kind: FileKind,
        commit: str | None = None,
    ) -> RestoreResult:
        """Restore *path* to its state in *commit* (or the index/HEAD)."""
        ...

    async def rev_candidates(self, prefix: str = "") -> list[str]:
        """Names worth offering when completing a revision argument."""
        ...

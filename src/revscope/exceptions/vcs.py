"""VCS-level exceptions.

Exceptions for repository discovery, revision resolution and argument
contract violations.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from revscope.exceptions.base import RevscopeError

if TYPE_CHECKING:
    from revscope.vcs.rev import Rev


class VcsError(RevscopeError):
    """Base exception for VCS adapter operations.

    Attributes:
        message: Human-readable error message.
        backend: Backend name (``"git"`` or ``"hg"``) when known.
    """

    def __init__(self, message: str, backend: str | None = None) -> None:
        self.backend = backend
        super().__init__(message)


class NotARepositoryError(VcsError):
    """No repository marker was found at or above a path.

    Attributes:
        message: Human-readable error message.
        path: Directory that was probed.
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidRevisionError(VcsError):
    """A revision name does not resolve to an object.

    Attributes:
        message: Human-readable error message.
        rev_arg: The revision expression that failed.
    """

    def __init__(
        self,
        message: str,
        rev_arg: str | None = None,
        backend: str | None = None,
    ) -> None:
        self.rev_arg = rev_arg
        super().__init__(message, backend=backend)


class InvalidRevPairError(VcsError):
    """Two revisions cannot be compared, e.g. working tree against itself.

    This is a contract violation by the caller and is never retried.

    Attributes:
        message: Human-readable error message.
        left: Left-hand revision.
        right: Right-hand revision.
    """

    def __init__(
        self,
        message: str,
        left: Rev | None = None,
        right: Rev | None = None,
        backend: str | None = None,
    ) -> None:
        self.left = left
        self.right = right
        super().__init__(message, backend=backend)


class UnsupportedPathError(VcsError):
    """A path cannot be represented in the tab-separated VCS output.

    Attributes:
        message: Human-readable error message.
        path: The rejected path.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)

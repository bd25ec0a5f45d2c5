"""VCS adapter factory.

Probes a directory and its parents for repository markers and returns the
matching :class:`~revscope.vcs.protocol.VcsAdapter`.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from revscope.exceptions import NotARepositoryError
from revscope.logging import get_logger

if TYPE_CHECKING:
    from revscope.config import RevscopeConfig
    from revscope.vcs.protocol import VcsAdapter

__all__ = ["find_repository_root", "get_adapter"]

logger = get_logger(__name__)

#: Marker entry for each backend, in probing order.
MARKERS: dict[str, str] = {
    "git": ".git",
    "hg": ".hg",
}


def find_repository_root(path: Path, backend: str = "auto") -> tuple[str, Path] | None:
    """Walk from *path* up to the filesystem root looking for a marker.

    A ``.git`` file (worktrees, submodules) counts as a marker; ``.hg`` must
    be a directory. The innermost repository wins.

    Returns:
        ``(backend, toplevel)`` or None.
    """
    start = path.resolve()
    if start.is_file():
        start = start.parent

    candidates = MARKERS if backend == "auto" else {backend: MARKERS[backend]}
    for directory in (start, *start.parents):
        for name, marker in candidates.items():
            entry = directory / marker
            if (name == "git" and entry.exists()) or entry.is_dir():
                return name, directory
    return None


def get_adapter(
    path: Path,
    backend: str = "auto",
    *,
    config: RevscopeConfig | None = None,
) -> VcsAdapter:
    """Create the adapter for the repository containing *path*.

    Args:
        path: A file or directory inside the repository.
        backend: ``"auto"`` (detect), ``"git"``, or ``"hg"``.
        config: Settings; loaded from the environment when None.

    Returns:
        A :class:`VcsAdapter` implementation.

    Raises:
        ValueError: If *backend* is unknown.
        NotARepositoryError: If no repository contains *path*.
    """
    if backend != "auto" and backend not in MARKERS:
        msg = f"Unknown VCS backend: {backend!r}"
        raise ValueError(msg)

    found = find_repository_root(path, backend)
    if found is None:
        raise NotARepositoryError(f"Not inside a repository: {path}", path=path)

    name, toplevel = found
    logger.debug("vcs_backend_detected", backend=name, toplevel=str(toplevel))

    if name == "hg":
        from revscope.hg.adapter import HgAdapter

        return HgAdapter(toplevel, config=config)

    from revscope.git.adapter import GitAdapter

    return GitAdapter(toplevel, config=config)

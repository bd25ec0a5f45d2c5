"""Git pathspec helpers.

A pathspec may start with *magic* (``:/``, ``:!``, ``:^``, ``:(glob)``...).
The helpers here split the magic from the pattern so that only the pattern
is rewritten.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

__all__ = ["pathspec_expand", "pathspec_split"]

_MAGIC_PATTERNS = (
    re.compile(r"^:[/!^]+:?"),
    re.compile(r"^:\([^)]*\)"),
    re.compile(r"^:"),
)


def pathspec_split(pathspec: str) -> tuple[str, str]:
    """Split *pathspec* into ``(magic, pattern)``.

    >>> pathspec_split(":!docs/*.md")
    (':!', 'docs/*.md')
    >>> pathspec_split("src")
    ('', 'src')
    """
    for pattern in _MAGIC_PATTERNS:
        match = pattern.match(pathspec)
        if match is not None:
            return match.group(0), pathspec[match.end() :]
    return "", pathspec


def pathspec_expand(toplevel: Path, cwd: Path, pathspec: str) -> str:
    """Rewrite a pathspec given relative to *cwd* as one relative to *toplevel*.

    Absolute patterns and patterns with top-level magic (``:/``) are kept.
    """
    magic, pattern = pathspec_split(pathspec)
    if "/" in magic or os.path.isabs(pattern):
        return pathspec
    prefix = os.path.relpath(cwd.resolve(), toplevel.resolve())
    if prefix == ".":
        return pathspec
    joined = os.path.normpath(os.path.join(prefix, pattern)) if pattern else prefix
    return magic + Path(joined).as_posix()

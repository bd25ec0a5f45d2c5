"""Revision values shared by every backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = ["Rev", "RevType"]


class RevType(str, Enum):
    """What a :class:`Rev` points at."""

    LOCAL = "local"
    """The working tree."""

    COMMIT = "commit"
    """A commit object."""

    STAGE = "stage"
    """A merge stage of the index (0 is the normal staged state)."""

    CUSTOM = "custom"
    """A caller-defined pseudo revision that no backend can diff."""


@dataclass(frozen=True, slots=True)
class Rev:
    """An immutable revision reference.

    Equality and hashing use the tag and payload only; ``track_head`` is a
    hint for the UI that the rev should be re-resolved when HEAD moves.

    Attributes:
        type: The revision tag.
        commit: Commit hash, set only for COMMIT revs.
        stage: Index stage ``0..3``, set only for STAGE revs.
        track_head: True if this rev follows HEAD.

    Example:
        ```python
        head = Rev.at_commit("a1b2c3d4", track_head=True)
        index = Rev.at_stage(0)
        assert Rev.at_commit("a1b2c3d4") == head
        ```
    """

    type: RevType
    commit: str | None = None
    stage: int | None = None
    track_head: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        if self.type is RevType.COMMIT:
            if not self.commit:
                raise ValueError("A commit rev requires a non-empty hash")
            if self.stage is not None:
                raise ValueError("A commit rev cannot carry a stage")
        elif self.type is RevType.STAGE:
            if self.stage is None or not 0 <= self.stage <= 3:
                raise ValueError(f"Index stage must be in 0..3, got {self.stage!r}")
            if self.commit is not None:
                raise ValueError("A stage rev cannot carry a commit hash")
        elif self.commit is not None or self.stage is not None:
            raise ValueError(f"A {self.type.value} rev takes no payload")

    @classmethod
    def local(cls) -> Rev:
        return cls(RevType.LOCAL)

    @classmethod
    def at_commit(cls, sha: str, *, track_head: bool = False) -> Rev:
        return cls(RevType.COMMIT, commit=sha, track_head=track_head)

    @classmethod
    def at_stage(cls, stage: int = 0) -> Rev:
        return cls(RevType.STAGE, stage=stage)

    @classmethod
    def custom(cls) -> Rev:
        return cls(RevType.CUSTOM)

    @property
    def is_local(self) -> bool:
        return self.type is RevType.LOCAL

    @property
    def is_commit(self) -> bool:
        return self.type is RevType.COMMIT

    @property
    def is_stage(self) -> bool:
        return self.type is RevType.STAGE

    def object_name(self, abbrev_len: int | None = None) -> str | None:
        """Name usable in ``<rev>:<path>`` object expressions.

        Returns the (optionally abbreviated) hash for commits, ``":N"`` for
        index stages and None for the working tree and custom revs.
        """
        if self.type is RevType.COMMIT:
            assert self.commit is not None
            return self.commit[:abbrev_len] if abbrev_len else self.commit
        if self.type is RevType.STAGE:
            return f":{self.stage}"
        return None

    def abbrev(self, length: int = 7) -> str | None:
        """Abbreviated commit hash, or None for non-commit revs."""
        if self.type is not RevType.COMMIT:
            return None
        assert self.commit is not None
        return self.commit[:length]

    def __str__(self) -> str:
        if self.type is RevType.COMMIT:
            return self.commit or ""
        if self.type is RevType.STAGE:
            return f":{self.stage}"
        return self.type.value.upper()

"""History query options and the flag metadata that renders them.

:class:`LogOptions` is the backend-neutral set of history options. Each
backend publishes a :class:`FlagSet` describing how those options appear in
the UI (key, description, choices) and how they render to command-line
arguments. Flags are tagged variants; each variant owns its own rendering
and validation, so a backend never switches on flag names.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "FlagOption",
    "FlagSet",
    "ListFlag",
    "LogOptions",
    "SwitchFlag",
    "ValueFlag",
]


class LogOptions(BaseModel):
    """Options for a file-history query.

    Field names mirror the git options they map to. Backends ignore the
    options they do not support.

    Attributes:
        rev_range: Revision range to walk (e.g. ``"main..feature"``).
        base: Right-hand rev for every entry (``"LOCAL"`` or a rev name).
        path_args: Path filters.
        follow: Follow renames (single-file histories only).
        first_parent: Walk first parents only.
        show_pulls: Show merges that pulled in changes to the paths.
        reflog: Include reflog entries.
        all: Walk all refs.
        merges: Merges only.
        no_merges: Exclude merges.
        reverse: Oldest first.
        max_count: Limit the number of commits.
        L: Line-evolution ranges (``"start,end:file"`` or ``":func:file"``).
        diff_merges: Merge diff format.
        author: Author regex.
        grep: Message regex.
        G: Diff content regex.
        S: Pickaxe regex.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    rev_range: str | None = None
    base: str | None = None
    path_args: list[str] = Field(default_factory=list)
    follow: bool = False
    first_parent: bool = False
    show_pulls: bool = False
    reflog: bool = False
    all: bool = False
    merges: bool = False
    no_merges: bool = False
    reverse: bool = False
    max_count: int | None = Field(default=None, gt=0)
    L: list[str] = Field(default_factory=list)
    diff_merges: str | None = None
    author: str | None = None
    grep: str | None = None
    G: str | None = None
    S: str | None = None

    def merged(self, overrides: LogOptions | dict[str, Any] | None) -> LogOptions:
        """Return a copy with the explicitly set fields of *overrides* applied."""
        if overrides is None:
            return self.model_copy(deep=True)
        if isinstance(overrides, LogOptions):
            overrides = overrides.model_dump(exclude_unset=True)
        return self.model_validate({**self.model_dump(), **overrides})


@dataclass(frozen=True, slots=True)
class SwitchFlag:
    """A boolean option rendered as a bare flag.

    Attributes:
        key: :class:`LogOptions` field name.
        flag_name: Command-line flag.
        desc: Human-readable description.
        keymap: Suggested UI key.
    """

    key: str
    flag_name: str
    desc: str
    keymap: str = ""

    def render(self, value: Any) -> list[str]:
        return [self.flag_name] if value else []

    def validate(self, value: Any) -> str | None:
        if not isinstance(value, bool):
            return f"{self.flag_name} expects a boolean"
        return None


def _concat(flag: ValueFlag, value: str) -> list[str]:
    return [f"{flag.flag_name}{value}"]


@dataclass(frozen=True, slots=True)
class ValueFlag:
    """An option with a single string value.

    Attributes:
        key: :class:`LogOptions` field name.
        flag_name: Command-line flag, including a trailing ``=`` if any.
        desc: Human-readable description.
        keymap: Suggested UI key.
        select: Allowed values; empty means free-form.
        prefix_args: Arguments emitted before the flag (e.g. ``-E``).
        emit: False for options that are consumed elsewhere (rev range, base).
        formatter: Custom rendering of ``(flag, value)`` to arguments.
    """

    key: str
    flag_name: str
    desc: str
    keymap: str = ""
    select: tuple[str, ...] = ()
    prefix_args: tuple[str, ...] = ()
    emit: bool = True
    formatter: Callable[[ValueFlag, str], list[str]] = _concat

    def render(self, value: Any) -> list[str]:
        if not self.emit or value is None or value == "":
            return []
        return [*self.prefix_args, *self.formatter(self, str(value))]

    def validate(self, value: Any) -> str | None:
        if value is None or value == "":
            return None
        if self.select and str(value) not in self.select:
            choices = ", ".join(c for c in self.select if c)
            return f"{self.flag_name} must be one of: {choices}"
        return None


@dataclass(frozen=True, slots=True)
class ListFlag:
    """An option that may be given several times.

    Attributes:
        key: :class:`LogOptions` field name.
        flag_name: Command-line flag prepended to each value.
        desc: Human-readable description.
        keymap: Suggested UI key.
    """

    key: str
    flag_name: str
    desc: str
    keymap: str = ""

    def render(self, value: Any) -> list[str]:
        args: list[str] = []
        for item in value or ():
            item = str(item)
            args.append(item if item.startswith(self.flag_name) else self.flag_name + item)
        return args

    def validate(self, value: Any) -> str | None:
        if value is not None and not isinstance(value, (list, tuple)):
            return f"{self.flag_name} expects a list"
        return None


FlagOption = SwitchFlag | ValueFlag | ListFlag


@dataclass(frozen=True)
class FlagSet:
    """The option metadata a backend publishes.

    Attributes:
        switches: Boolean flags in UI order.
        options: Value and list flags in UI order.
    """

    switches: tuple[SwitchFlag, ...] = ()
    options: tuple[ValueFlag | ListFlag, ...] = ()
    _by_key: dict[str, FlagOption] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_key: dict[str, FlagOption] = {}
        for flag in (*self.switches, *self.options):
            by_key[flag.key] = flag
        object.__setattr__(self, "_by_key", by_key)

    def get(self, key: str) -> FlagOption | None:
        return self._by_key.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def validate(self, options: LogOptions) -> list[str]:
        """Return one message per option value the backend rejects."""
        errors = []
        for key, flag in self._by_key.items():
            error = flag.validate(getattr(options, key))
            if error:
                errors.append(error)
        return errors

    def render(self, options: LogOptions, keys: Sequence[str]) -> list[str]:
        """Render the given option keys, in order, to command-line arguments."""
        args: list[str] = []
        for key in keys:
            flag = self._by_key.get(key)
            if flag is not None:
                args.extend(flag.render(getattr(options, key)))
        return args

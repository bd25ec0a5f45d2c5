from __future__ import annotations

from typing import Any

from revscope.exceptions.base import RevscopeError


class ConfigError(RevscopeError):
    """Configuration could not be loaded or validated.

    Raised for unparseable YAML, pydantic validation failures and invalid
    ``REVSCOPE_*`` environment values.

    Attributes:
        message: Human-readable error message.
        field: Dotted path of the offending setting (e.g. ``"jobs.max_retries"``).
        value: The rejected value, for debugging.

    Examples:
        ```python
        raise ConfigError(
            "Invalid configuration value",
            field="jobs.yield_interval_ms",
            value=-5,
        )
        ```
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
    ) -> None:
        self.field = field
        self.value = value
        super().__init__(message)

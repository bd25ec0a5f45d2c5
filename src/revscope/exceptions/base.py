from __future__ import annotations


class RevscopeError(Exception):
    """Base exception class for all revscope errors.

    Callers that only want to know whether a VCS query failed can catch this
    single type. A terminal ``KILLED`` history status is not an error and is
    never raised.

    Attributes:
        message: Human-readable error message describing what went wrong.

    Example:
        ```python
        try:
            files = await adapter.diff(Rev.at_stage(0), Rev.local())
        except RevscopeError as e:
            logger.error("diff_failed", error=e.message)
        ```
    """

    def __init__(self, message: str) -> None:
        """Initialize the RevscopeError.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)

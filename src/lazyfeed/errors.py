from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    UPSTREAM_STATUS = "UPSTREAM_STATUS"
    UPSTREAM_UNREACHABLE = "UPSTREAM_UNREACHABLE"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    URL_NOT_ALLOWED = "URL_NOT_ALLOWED"


class LazyFeedError(Exception):
    """Raised by the fetcher for every expected upstream failure.

    Caught by the freshness engine and turned into a stale or error outcome.
    The message is surfaced verbatim in the ``x-fetch-error`` header, so keep
    it short and free of line breaks.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable


class InvalidCronError(ValueError):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Invalid cron expression {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason

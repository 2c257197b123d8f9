"""Exceptions raised by tagsync."""

from __future__ import annotations

UNREACHABLE_MESSAGE = "Can't reach remote"


class TagSyncError(Exception):
    """Base exception for all tagsync errors."""


class ConfigError(TagSyncError):
    """Raised when required settings or credentials are missing."""


class RemoteAPIError(TagSyncError):
    """Raised when the remote rejects a request permanently.

    Attributes:
        status_code: HTTP status of the failed response, if any
        body: Raw response body, kept for diagnostics
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RemoteAuthenticationError(RemoteAPIError):
    """Raised when the remote refuses our credentials."""


class RemoteRateLimitError(RemoteAPIError):
    """Raised when the remote keeps rate limiting after all retries."""


class RemoteInvalidResponseError(RemoteAPIError):
    """Raised when a response cannot be parsed."""


class CursorResetError(RemoteAPIError):
    """Raised when the remote no longer accepts a stored list cursor."""


class RemoteUnreachableError(TagSyncError):
    """Raised when the remote cannot be reached after all retries.

    The message never carries the underlying transport error so that every
    failing call surfaces the same text to the user.
    """

    def __init__(self, message: str = UNREACHABLE_MESSAGE):
        super().__init__(message)

"""Exception types raised by DevContext services."""

from typing import Any


class DevContextError(Exception):
    """Base class for all DevContext errors."""


class StorageUnavailable(DevContextError):
    """The local storage engine could not be opened."""


class ValidationError(DevContextError):
    """A capture payload was rejected before anything was written."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SyncError(DevContextError):
    """Base class for failures talking to the sync server."""


class SyncAuthError(SyncError):
    """The server rejected the bearer credential (HTTP 401)."""


class RateLimitedError(SyncError):
    """The server is rate limiting this user (HTTP 429)."""

    def __init__(self, message: str, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SyncRejectedError(SyncError):
    """The server refused the request payload (HTTP 400).

    Attributes:
        body: Parsed JSON response body, which may list rejected item IDs.
    """

    def __init__(self, message: str, body: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.body = body or {}


class SyncTransportError(SyncError):
    """Network failure, timeout or server error. Safe to retry."""

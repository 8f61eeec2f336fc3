"""
Custom exceptions and the error-code taxonomy for ScreenSync.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Structured error codes reported by the engine, worker and pipeline."""

    # Configuration / auth – fatal until fixed
    AUTH_INVALID = "AUTH_INVALID"
    AUTH_ERROR = "AUTH_ERROR"

    # Remote platform
    NOT_FOUND = "NOT_FOUND"
    API_ERROR = "API_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"

    # Playback
    VERIFY_MISMATCH = "VERIFY_MISMATCH"
    LAYOUT_FORBIDDEN = "LAYOUT_FORBIDDEN"
    MISSING_PLAYER_ID = "MISSING_PLAYER_ID"

    # Upload path
    UPLOAD_STUCK = "UPLOAD_STUCK"
    POLL_TIMEOUT = "POLL_TIMEOUT"
    FINAL_VERIFY_404 = "FINAL_VERIFY_404"
    REMOTE_FAILED = "REMOTE_FAILED"
    INVALID_FILE = "INVALID_FILE"
    STORAGE_ERROR = "STORAGE_ERROR"

    # Publish
    NO_APPROVED_ASSET = "NO_APPROVED_ASSET"
    NO_TARGET_SCREENS = "NO_TARGET_SCREENS"
    UPLOAD_NOT_READY = "UPLOAD_NOT_READY"
    PUBLISH_BLOCKED = "PUBLISH_BLOCKED"

    @property
    def retryable(self) -> bool:
        """Whether a later attempt can succeed without operator action."""
        return self in _RETRYABLE

    @property
    def is_auth(self) -> bool:
        return self in (ErrorCode.AUTH_INVALID, ErrorCode.AUTH_ERROR)


_RETRYABLE = frozenset(
    {
        ErrorCode.API_ERROR,
        ErrorCode.PROTOCOL_ERROR,
        ErrorCode.UPLOAD_STUCK,
        ErrorCode.POLL_TIMEOUT,
        ErrorCode.FINAL_VERIFY_404,
        ErrorCode.REMOTE_FAILED,
    }
)


class ScreenSyncError(Exception):
    """Base exception for ScreenSync."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigError(ScreenSyncError):
    """Configuration related errors."""

    pass


class DatabaseError(ScreenSyncError):
    """Database related errors."""

    pass


class CacheError(ScreenSyncError):
    """Cache (Redis) related errors."""

    pass


class ValidationError(ScreenSyncError):
    """Request validation errors."""

    pass


class NotFoundError(ScreenSyncError):
    """A local entity (screen, advertiser, job) does not exist."""

    pass


class PlatformError(ScreenSyncError):
    """Remote platform failure with a structured code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        super().__init__(message, details)


class InvalidTransitionError(ScreenSyncError):
    """Upload job state machine transition not allowed."""

    pass


class StorageError(ScreenSyncError):
    """Object storage read failed."""

    pass

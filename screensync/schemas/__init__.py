"""
Data schemas: remote platform payloads, internal reports and API responses.
"""

from screensync.schemas.internal import (
    PlaybackState,
    PublishResult,
    ReconciliationReport,
    ScreenPublishResult,
    StepError,
    StepRecord,
    UploadOutcome,
    VerifyOutcome,
)
from screensync.schemas.platform import (
    ListPage,
    MediaCreated,
    MediaStatus,
    PlatformFailure,
    PlatformResult,
    PlaylistItem,
    PlaylistDetail,
    PlaylistSummary,
    ScreenContent,
)
from screensync.schemas.response import (
    ErrorResponse,
    HealthResponse,
    PlatformAuthResponse,
    PlaybackStateResponse,
    PublishResponse,
    ReconcileResponse,
    UploadJobResponse,
    UploadRunResponse,
)

__all__ = [
    # Internal
    "StepError",
    "StepRecord",
    "VerifyOutcome",
    "ReconciliationReport",
    "ScreenPublishResult",
    "PublishResult",
    "PlaybackState",
    "UploadOutcome",
    # Platform
    "PlatformFailure",
    "PlatformResult",
    "PlaylistItem",
    "PlaylistDetail",
    "PlaylistSummary",
    "ScreenContent",
    "MediaStatus",
    "MediaCreated",
    "ListPage",
    # Response
    "PublishResponse",
    "ReconcileResponse",
    "PlaybackStateResponse",
    "UploadJobResponse",
    "UploadRunResponse",
    "PlatformAuthResponse",
    "HealthResponse",
    "ErrorResponse",
]

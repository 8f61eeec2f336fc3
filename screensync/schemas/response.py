"""
API response schemas.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PublishResponse(BaseModel):
    """Outcome of publishing one advertiser."""

    ok: bool = Field(..., description="True only when every targeted screen verified")
    mode: str = Field(..., description="publish or verify_only")
    advertiser_id: int
    correlation_id: str
    asset_id: int | None = None
    media_id: int | None = Field(None, description="Canonical remote media ID")
    screens: list[dict[str, Any]] = Field(default_factory=list, description="Per-screen results")
    error: dict[str, Any] | None = Field(None, description="First failing step")
    duration_ms: float = 0.0


class ReconcileResponse(BaseModel):
    """Reports of a location (or whole fleet) reconciliation."""

    ok: bool = Field(..., description="True when every report is ok")
    push: bool
    location_id: int | None = None
    count: int
    reports: list[dict[str, Any]] = Field(default_factory=list)


class PlaybackStateResponse(BaseModel):
    """Expected vs actual media of one screen."""

    screen_id: int
    player_id: str | None = None
    sync_status: str = Field(
        ...,
        description="in_sync, out_of_sync, layout_forbidden, unlinked, unprovisioned or unknown",
    )
    expected: list[int] = Field(default_factory=list)
    actual: list[int] = Field(default_factory=list)
    missing_media_ids: list[int] = Field(default_factory=list)
    unexpected_media_ids: list[int] = Field(default_factory=list)
    source_type: str | None = None
    source_id: str | None = None
    combined_playlist_id: str | None = None
    error: str | None = None
    checked_at: str | None = None
    cached: bool = False


class UploadJobResponse(BaseModel):
    """Upload job audit record."""

    id: int
    advertiser_id: int
    asset_id: int
    correlation_id: str | None = None
    status: str
    attempt: int
    max_attempts: int
    poll_attempts: int = 0
    remote_media_id: int | None = None
    remote_status: str | None = None
    remote_file_size: int | None = None
    last_error: str | None = None
    last_error_code: str | None = None
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class UploadRunResponse(BaseModel):
    """Summary of one worker pass over due jobs."""

    processed: int
    succeeded: int
    failed: int
    retrying: int


class PlatformAuthResponse(BaseModel):
    """Result of probing the configured platform token."""

    ok: bool
    label: str | None = Field(None, description="Token label; the secret is never returned")
    code: str | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    database: bool = Field(..., description="Database connection status")
    redis: bool = Field(..., description="Redis connection status")
    platform_auth_configured: bool = Field(..., description="A well-formed platform token is loaded")
    platform_base_url: str = Field(..., description="Platform API base URL")


class ErrorResponse(BaseModel):
    """Error response schema."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict[str, Any] | None = Field(None, description="Error details")
    request_id: str | None = Field(None, description="Request identifier")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "NotFoundError",
                "message": "Screen 42 not found",
                "details": {"screen_id": 42},
                "request_id": "req_abc123",
            }
        }
    }

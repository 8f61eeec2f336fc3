"""
Base model and common enums for the SQLAlchemy ORM.
"""

from datetime import datetime
from enum import Enum, IntEnum

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from screensync.common.database import Base


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False
    )


class Status(IntEnum):
    """Common status enum."""
    INACTIVE = 0
    ACTIVE = 1
    PAUSED = 2
    DELETED = 3


class ContractStatus(str, Enum):
    """Advertiser contract state – only signed/active contracts are aired."""
    NONE = "none"
    DRAFT = "draft"
    SIGNED = "signed"
    ACTIVE = "active"
    ENDED = "ended"


class ApprovalStatus(str, Enum):
    """Review state of an uploaded advertiser video."""
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PublishStatus(str, Enum):
    """Publish mutex column on an asset."""
    IDLE = "IDLE"
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class UploadJobStatus(str, Enum):
    """Upload job state machine."""
    QUEUED = "QUEUED"
    UPLOADING = "UPLOADING"
    POLLING = "POLLING"
    READY = "READY"
    RETRYABLE_FAIL = "RETRYABLE_FAIL"
    PERMANENT_FAIL = "PERMANENT_FAIL"


class AssetStatus(str, Enum):
    """Advertiser-level summary of the canonical video."""
    NONE = "none"
    UPLOADING = "uploading"
    LIVE = "live"
    FAILED = "failed"


__all__ = [
    "Base",
    "TimestampMixin",
    "Status",
    "ContractStatus",
    "ApprovalStatus",
    "PublishStatus",
    "UploadJobStatus",
    "AssetStatus",
]

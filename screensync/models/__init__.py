"""
Database models for ScreenSync.
"""

from screensync.models.advertiser import AdAsset, Advertiser, UploadJob
from screensync.models.base import (
    ApprovalStatus,
    AssetStatus,
    Base,
    ContractStatus,
    PublishStatus,
    Status,
    TimestampMixin,
    UploadJobStatus,
)
from screensync.models.screen import Location, Screen

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Enums
    "Status",
    "ContractStatus",
    "ApprovalStatus",
    "PublishStatus",
    "UploadJobStatus",
    "AssetStatus",
    # Models
    "Location",
    "Screen",
    "Advertiser",
    "AdAsset",
    "UploadJob",
]

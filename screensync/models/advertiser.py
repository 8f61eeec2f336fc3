"""
Advertiser-side database models.

Defines: Advertiser, AdAsset, UploadJob
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

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


class Advertiser(Base, TimestampMixin):
    """Advertiser whose approved video is aired on targeted screens."""

    __tablename__ = "advertisers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[int] = mapped_column(Integer, default=Status.ACTIVE)
    contract_status: Mapped[str] = mapped_column(
        String(16), default=ContractStatus.NONE.value
    )

    # Targeting
    target_region_codes: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=None,
        comment="Province codes or labels, e.g. [\"ZH\", \"Utrecht\"]",
    )
    target_cities: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=None,
    )
    targeting_override: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, default=None,
        comment="Contract-level override: {regions: [...], cities: [...]}",
    )

    # Canonical remote media – trusted only after final verification
    canonical_media_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    canonical_media_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    asset_status: Mapped[str] = mapped_column(String(16), default=AssetStatus.NONE.value)

    assets: Mapped[list["AdAsset"]] = relationship(
        "AdAsset", back_populates="advertiser", lazy="selectin"
    )

    @property
    def has_airable_contract(self) -> bool:
        return self.contract_status in (ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value)


class AdAsset(Base, TimestampMixin):
    """An advertiser video stored locally; also carries the publish mutex."""

    __tablename__ = "ad_assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    advertiser_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("advertisers.id"), nullable=False
    )
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str] = mapped_column(String(64), default="video/mp4")
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)

    approval_status: Mapped[str] = mapped_column(
        String(16), default=ApprovalStatus.PENDING_REVIEW.value
    )
    remote_media_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Publish mutex: set PENDING where != PENDING
    publish_status: Mapped[str] = mapped_column(String(16), default=PublishStatus.IDLE.value)
    publish_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_publish_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    advertiser: Mapped["Advertiser"] = relationship(
        "Advertiser", back_populates="assets", lazy="selectin"
    )

    __table_args__ = (Index("ix_ad_assets_advertiser_approval", "advertiser_id", "approval_status"),)


class UploadJob(Base, TimestampMixin):
    """
    Upload of one asset into the remote platform.

    Rows are never deleted; they are the audit trail of every attempt.
    """

    __tablename__ = "upload_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    advertiser_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("advertisers.id"), nullable=False
    )
    asset_id: Mapped[int] = mapped_column(Integer, ForeignKey("ad_assets.id"), nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(64), default="video/mp4")
    media_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), default=UploadJobStatus.QUEUED.value, index=True
    )
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    poll_attempts: Mapped[int] = mapped_column(Integer, default=0)
    attempt_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    remote_media_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remote_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    remote_file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

"""
Local advertiser state consulted when computing a screen's desired ads.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.clock import Clock, SystemClock
from screensync.common.logger import get_logger
from screensync.models import (
    AdAsset,
    Advertiser,
    ApprovalStatus,
    AssetStatus,
    Status,
    UploadJob,
    UploadJobStatus,
)

logger = get_logger(__name__)


class AdInventory:
    """Session-scoped queries over advertisers, assets and upload jobs."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    async def get_advertiser(self, advertiser_id: int) -> Advertiser | None:
        return await self.session.get(Advertiser, advertiser_id, populate_existing=True)

    async def list_airable_advertisers(self, bypass_contract_gating: bool = False) -> list[Advertiser]:
        """Active advertisers with an approved asset (and an airable contract)."""
        stmt = (
            select(Advertiser)
            .where(Advertiser.status == Status.ACTIVE)
            .order_by(Advertiser.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)

        airable = []
        for advertiser in result.scalars().all():
            if not bypass_contract_gating and not advertiser.has_airable_contract:
                continue
            if not any(a.approval_status == ApprovalStatus.APPROVED.value for a in advertiser.assets):
                continue
            airable.append(advertiser)
        return airable

    async def approved_asset(self, advertiser_id: int) -> AdAsset | None:
        """Newest approved asset of an advertiser."""
        stmt = (
            select(AdAsset)
            .where(
                AdAsset.advertiser_id == advertiser_id,
                AdAsset.approval_status == ApprovalStatus.APPROVED.value,
            )
            .order_by(AdAsset.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_ready_job(self, advertiser_id: int) -> UploadJob | None:
        stmt = (
            select(UploadJob)
            .where(
                UploadJob.advertiser_id == advertiser_id,
                UploadJob.status == UploadJobStatus.READY.value,
                UploadJob.remote_media_id.is_not(None),
            )
            .order_by(UploadJob.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def due_job(self, advertiser_id: int, now: datetime | None = None) -> UploadJob | None:
        """Oldest QUEUED job, or RETRYABLE_FAIL job whose retry time has passed."""
        now = now or self.clock.now()
        stmt = (
            select(UploadJob)
            .where(
                UploadJob.advertiser_id == advertiser_id,
                or_(
                    UploadJob.status == UploadJobStatus.QUEUED.value,
                    (UploadJob.status == UploadJobStatus.RETRYABLE_FAIL.value)
                    & (or_(UploadJob.next_retry_at.is_(None), UploadJob.next_retry_at <= now)),
                ),
            )
            .order_by(UploadJob.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_canonical_media(self, advertiser: Advertiser, media_id: int) -> None:
        advertiser.canonical_media_id = media_id
        advertiser.canonical_media_updated_at = self.clock.now()
        advertiser.asset_status = AssetStatus.LIVE.value
        await self.session.commit()
        logger.info("Canonical media set", advertiser_id=advertiser.id, media_id=media_id)

    async def clear_canonical_media(self, advertiser: Advertiser, reason: str) -> None:
        """Drop a canonical media ID the remote platform can no longer serve."""
        stale = advertiser.canonical_media_id
        advertiser.canonical_media_id = None
        advertiser.canonical_media_updated_at = self.clock.now()
        advertiser.asset_status = AssetStatus.NONE.value
        for asset in advertiser.assets:
            if asset.remote_media_id == stale:
                asset.remote_media_id = None
        await self.session.commit()
        logger.warning(
            "Canonical media cleared",
            advertiser_id=advertiser.id,
            media_id=stale,
            reason=reason,
        )

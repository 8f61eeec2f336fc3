"""
Publish pipeline: the per-advertiser entry point.

publish(advertiser_id)
  1. resolve the approved asset and the target screens
  2. take the publish mutex (one conditional UPDATE on the asset row)
  3. lost the race -> wait for the in-flight run, then verify only
  4. won -> ensure the remote media, reconcile each screen sequentially
  5. release the mutex as PUBLISHED or FAILED

ok is True only when at least one screen was targeted and every targeted
screen verified.
"""

from __future__ import annotations

import time
from datetime import timedelta

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.clock import Clock, SystemClock
from screensync.common.config import Settings, get_settings
from screensync.common.exceptions import ErrorCode, NotFoundError
from screensync.common.logger import get_logger
from screensync.common.metrics import record_publish
from screensync.common.utils import generate_correlation_id, truncate
from screensync.models import AdAsset, PublishStatus
from screensync.platform.client import PlatformClient
from screensync.playback.config import EngineConfig
from screensync.playback.diagnostics import PlaybackDiagnostics
from screensync.playback.engine import ReconciliationEngine, StepFailure
from screensync.playback.inventory import AdInventory
from screensync.playback.store import PlaylistStateStore
from screensync.publish.collaborators import (
    ApprovedAsset,
    AssetApprovalService,
    DatabaseAssetApprovalService,
    Placement,
    PlacementResolver,
    TargetingPlacementResolver,
)
from screensync.schemas.internal import (
    PlaybackState,
    PublishResult,
    ReconciliationReport,
    ScreenPublishResult,
    StepError,
)
from screensync.targeting.matcher import TargetingMatcher
from screensync.upload.storage import FilesystemObjectStorage, ObjectStorage
from screensync.upload.worker import UploadJobWorker

logger = get_logger(__name__)


class PublishPipeline:
    """
    Publishes advertisers and reconciles locations.

    Screens are processed one at a time with a pause in between; the
    remote platform rate-limits aggressively.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        uploader: UploadJobWorker,
        placements: PlacementResolver,
        approvals: AssetApprovalService,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        diagnostics: PlaybackDiagnostics | None = None,
    ):
        self.engine = engine
        self.uploader = uploader
        self.placements = placements
        self.approvals = approvals
        self.config = config or engine.config
        self.clock = clock or engine.clock
        self.diagnostics = diagnostics or PlaybackDiagnostics(
            engine.client, engine.store, engine, ttl_s=self.config.playback_state_ttl_s
        )

    @property
    def session(self) -> AsyncSession:
        return self.engine.store.session

    @property
    def store(self) -> PlaylistStateStore:
        return self.engine.store

    @property
    def inventory(self) -> AdInventory:
        return self.engine.inventory

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, advertiser_id: int) -> PublishResult:
        """
        Publish the advertiser's approved video to every targeted screen.

        Raises:
            NotFoundError: Unknown advertiser
        """
        advertiser = await self.inventory.get_advertiser(advertiser_id)
        if advertiser is None:
            raise NotFoundError(
                f"Advertiser {advertiser_id} not found", {"advertiser_id": advertiser_id}
            )

        result = PublishResult(
            advertiser_id=advertiser_id,
            correlation_id=generate_correlation_id("pub"),
        )
        log = logger.bind(correlation_id=result.correlation_id, advertiser_id=advertiser_id)
        started = time.perf_counter()

        try:
            approved = await self.approvals.get_approved_asset(advertiser_id)
            if approved is None:
                result.error = StepError(
                    "resolve_asset", ErrorCode.NO_APPROVED_ASSET, "advertiser has no approved asset"
                )
                return result
            result.asset_id = approved.asset_id

            placements = await self.placements.resolve(advertiser_id)

            if not await self._acquire(approved.asset_id):
                result.mode = "verify_only"
                log.info("Publish already in flight, verifying only", asset_id=approved.asset_id)
                await self._verify_in_flight(result, approved, placements)
                return result

            try:
                await self._publish_locked(result, approved, placements)
            finally:
                await self._release(approved.asset_id, result)
            return result
        finally:
            result.duration_ms = (time.perf_counter() - started) * 1000
            record_publish(result.mode, result.ok)
            if result.ok:
                log.info(
                    "Publish finished",
                    mode=result.mode,
                    media_id=result.media_id,
                    screens=len(result.screens),
                    duration_ms=round(result.duration_ms, 1),
                )
            else:
                log.error(
                    "Publish failed",
                    mode=result.mode,
                    step=result.error.step if result.error else None,
                    code=result.error.code.value if result.error else None,
                    error=result.error.message if result.error else None,
                )

    async def _publish_locked(
        self,
        result: PublishResult,
        approved: ApprovedAsset,
        placements: list[Placement],
    ) -> None:
        try:
            result.media_id = await self._ensure_media(approved, result.correlation_id)
        except StepFailure as e:
            result.error = e.error
            return

        if not placements:
            result.error = StepError(
                "resolve_screens", ErrorCode.NO_TARGET_SCREENS, "no linked screen matches the targeting"
            )
            return

        blocked_by: int | None = None
        for index, placement in enumerate(placements):
            if blocked_by is not None:
                result.screens.append(
                    ScreenPublishResult(
                        screen_id=placement.screen_id,
                        player_id=placement.player_id,
                        verified=False,
                        match_reason=placement.match_reason,
                        error=StepError(
                            "reconcile",
                            ErrorCode.PUBLISH_BLOCKED,
                            f"blocked by LAYOUT_FORBIDDEN on screen {blocked_by}",
                        ),
                    )
                )
                continue

            if index:
                await self.clock.sleep(self.config.inter_screen_delay_s)

            screen_result = await self._reconcile_placement(placement, result.media_id)
            result.screens.append(screen_result)
            if screen_result.error and screen_result.error.code == ErrorCode.LAYOUT_FORBIDDEN:
                blocked_by = placement.screen_id

        self._settle(result)

    async def _reconcile_placement(self, placement: Placement, media_id: int) -> ScreenPublishResult:
        screen = await self.store.get_screen(placement.screen_id)
        if screen is None:
            return self._vanished(placement, "reconcile")

        report = await self.engine.reconcile(screen, required_media_ids=[media_id])
        return ScreenPublishResult(
            screen_id=screen.id,
            player_id=screen.player_id,
            verified=report.verified,
            match_reason=placement.match_reason,
            error=report.error,
            report=report,
        )

    async def _ensure_media(self, approved: ApprovedAsset, correlation_id: str) -> int:
        """Verified remote media for the asset, uploading it when there is none."""
        advertiser = await self.inventory.get_advertiser(approved.advertiser_id)
        candidate = approved.canonical_media_id

        try:
            if candidate is not None:
                if await self.engine.media_exists(candidate):
                    if advertiser.canonical_media_id != candidate:
                        await self.inventory.set_canonical_media(advertiser, candidate)
                    return candidate
                await self.inventory.clear_canonical_media(advertiser, "remote media not found")
        except StepFailure as e:
            raise StepFailure(
                StepError("ensure_media", e.error.code, e.error.message, e.error.details)
            ) from e

        asset = await self.session.get(AdAsset, approved.asset_id)
        job = await self.uploader.enqueue(asset, correlation_id)
        outcome = await self.uploader.process(job.id)
        if not outcome.ready:
            raise StepFailure(
                StepError(
                    "ensure_media",
                    ErrorCode.UPLOAD_NOT_READY,
                    f"upload job {job.id} is {outcome.status}",
                    {
                        "job_id": job.id,
                        "upload_status": outcome.status,
                        "error_code": outcome.error_code,
                        "error": outcome.error,
                    },
                )
            )
        return outcome.remote_media_id

    async def _verify_in_flight(
        self,
        result: PublishResult,
        approved: ApprovedAsset,
        placements: list[Placement],
    ) -> None:
        """Wait for the running publish to release the mutex, then verify its outcome."""
        deadline = self.clock.monotonic() + self.config.concurrent_wait_s
        while True:
            asset = await self.session.get(AdAsset, approved.asset_id, populate_existing=True)
            if asset.publish_status != PublishStatus.PENDING.value:
                break
            if self.clock.monotonic() >= deadline:
                logger.warning(
                    "In-flight publish still pending, verifying current state",
                    asset_id=approved.asset_id,
                    waited_s=self.config.concurrent_wait_s,
                )
                break
            await self.clock.sleep(self.config.concurrent_poll_interval_s)

        advertiser = await self.inventory.get_advertiser(approved.advertiser_id)
        media_id = advertiser.canonical_media_id or asset.remote_media_id
        if media_id is None:
            result.error = StepError(
                "verify", ErrorCode.UPLOAD_NOT_READY, "in-flight publish has no remote media yet"
            )
            return
        result.media_id = media_id

        if not placements:
            result.error = StepError(
                "resolve_screens", ErrorCode.NO_TARGET_SCREENS, "no linked screen matches the targeting"
            )
            return

        for index, placement in enumerate(placements):
            if index:
                await self.clock.sleep(self.config.inter_screen_delay_s)
            screen = await self.store.get_screen(placement.screen_id)
            if screen is None:
                result.screens.append(self._vanished(placement, "verify"))
                continue
            report = await self.engine.verify_only(screen, [media_id])
            result.screens.append(
                ScreenPublishResult(
                    screen_id=screen.id,
                    player_id=screen.player_id,
                    verified=report.verified,
                    match_reason=placement.match_reason,
                    error=report.error,
                    report=report,
                )
            )

        self._settle(result)

    @staticmethod
    def _vanished(placement: Placement, step: str) -> ScreenPublishResult:
        return ScreenPublishResult(
            screen_id=placement.screen_id,
            player_id=placement.player_id,
            verified=False,
            match_reason=placement.match_reason,
            error=StepError(step, ErrorCode.NOT_FOUND, "screen no longer exists"),
        )

    @staticmethod
    def _settle(result: PublishResult) -> None:
        failed = [s for s in result.screens if not s.verified]
        result.ok = bool(result.screens) and not failed
        if failed and result.error is None:
            first = next((s.error for s in failed if s.error), None)
            result.error = StepError(
                "reconcile",
                first.code if first else ErrorCode.VERIFY_MISMATCH,
                f"{len(failed)} of {len(result.screens)} screens not verified",
                {"failed_screen_ids": [s.screen_id for s in failed]},
            )

    # ------------------------------------------------------------------
    # Mutex
    # ------------------------------------------------------------------

    async def _acquire(self, asset_id: int) -> bool:
        """Set PENDING where not PENDING (or where the PENDING lock is stale)."""
        now = self.clock.now()
        stale_before = now - timedelta(seconds=self.config.stale_lock_s)
        stmt = (
            update(AdAsset)
            .where(
                AdAsset.id == asset_id,
                or_(
                    AdAsset.publish_status != PublishStatus.PENDING.value,
                    AdAsset.publish_started_at.is_(None),
                    AdAsset.publish_started_at < stale_before,
                ),
            )
            .values(
                publish_status=PublishStatus.PENDING.value,
                publish_started_at=now,
                last_publish_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def _release(self, asset_id: int, result: PublishResult) -> None:
        status = PublishStatus.PUBLISHED if result.ok else PublishStatus.FAILED
        error = None
        if not result.ok:
            error = truncate(str(result.error) if result.error else "publish interrupted", 1000)

        stmt = (
            update(AdAsset)
            .where(AdAsset.id == asset_id)
            .values(publish_status=status.value, last_publish_error=error)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    # ------------------------------------------------------------------
    # Locations and diagnostics
    # ------------------------------------------------------------------

    async def reconcile_location(
        self, location_id: int | None = None, push: bool = True
    ) -> list[ReconciliationReport]:
        """Reconcile (or with ``push=False`` only plan) every linked screen."""
        screens = await self.store.list_screens(location_id)
        reports = []
        for index, screen in enumerate(screens):
            if index:
                await self.clock.sleep(self.config.inter_screen_delay_s)
            if push:
                reports.append(await self.engine.reconcile(screen))
            else:
                reports.append(await self.engine.plan(screen))

        logger.info(
            "Location reconciled",
            location_id=location_id,
            push=push,
            screens=len(reports),
            failed=[r.screen_id for r in reports if not r.ok],
        )
        return reports

    async def reconcile_screen(self, screen_id: int) -> ReconciliationReport:
        return await self.engine.reconcile(await self._screen(screen_id))

    async def check_screen_health(self, screen_id: int) -> ReconciliationReport:
        return await self.engine.check_health(await self._screen(screen_id))

    async def get_screen_playback_state(
        self, screen_id: int, use_cache: bool = True
    ) -> PlaybackState:
        return await self.diagnostics.get_screen_playback_state(screen_id, use_cache=use_cache)

    async def _screen(self, screen_id: int):
        screen = await self.store.get_screen(screen_id)
        if screen is None:
            raise NotFoundError(f"Screen {screen_id} not found", {"screen_id": screen_id})
        return screen


def create_pipeline(
    session: AsyncSession,
    client: PlatformClient,
    *,
    settings: Settings | None = None,
    config: EngineConfig | None = None,
    clock: Clock | None = None,
    storage: ObjectStorage | None = None,
) -> PublishPipeline:
    """Wire the default collaborators around one database session."""
    settings = settings or get_settings()
    config = config or EngineConfig.from_settings(settings)
    clock = clock or SystemClock()
    storage = storage or FilesystemObjectStorage(settings.storage.root)

    matcher = TargetingMatcher()
    store = PlaylistStateStore(session, clock)
    inventory = AdInventory(session, clock)
    uploader = UploadJobWorker(session, client, storage, config, clock)
    engine = ReconciliationEngine(
        client,
        store,
        matcher=matcher,
        inventory=inventory,
        config=config,
        clock=clock,
        uploader=uploader,
    )
    return PublishPipeline(
        engine,
        uploader,
        TargetingPlacementResolver(store, inventory, matcher),
        DatabaseAssetApprovalService(inventory),
        config=config,
        clock=clock,
    )

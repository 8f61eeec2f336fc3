"""
Tests for the per-advertiser publish pipeline.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.exceptions import ErrorCode, NotFoundError
from screensync.models import AdAsset, PublishStatus
from screensync.playback.engine import ReconciliationEngine
from screensync.playback.inventory import AdInventory
from screensync.publish.collaborators import (
    DatabaseAssetApprovalService,
    Placement,
    PlacementResolver,
    TargetingPlacementResolver,
)
from screensync.publish.pipeline import PublishPipeline
from screensync.upload.worker import UploadJobWorker
from tests.conftest import Seed
from tests.fakes import FakeSignagePlatform, ManualClock


async def set_lock(
    session: AsyncSession, asset_id: int, status: PublishStatus, started_at: datetime | None = None
) -> None:
    await session.execute(
        update(AdAsset)
        .where(AdAsset.id == asset_id)
        .values(publish_status=status.value, publish_started_at=started_at)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def lock_state(session: AsyncSession, asset_id: int) -> AdAsset:
    return await session.get(AdAsset, asset_id, populate_existing=True)


class StaticPlacements(PlacementResolver):
    def __init__(self, placements: list[Placement]):
        self.placements = placements

    async def resolve(self, advertiser_id: int) -> list[Placement]:
        return self.placements


class TestPublish:
    """Tests for a publish that holds the mutex."""

    @pytest.mark.asyncio
    async def test_uploads_then_airs_on_targeted_screens(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(target_cities=["Rotterdam"])
        rotterdam = await seed.screen("101", city="Rotterdam")
        await seed.screen("102", city="Utrecht")

        result = await pipeline.publish(advertiser.id)

        assert result.ok, result.error
        assert result.mode == "publish"
        assert result.media_id == 5000
        assert [s.screen_id for s in result.screens] == [rotterdam.id]
        assert result.screens[0].match_reason == "city_match: Rotterdam"
        assert platform.playlist_media(rotterdam.combined_playlist_id) == [1, 2, 5000]
        assert "102" not in platform.pushes
        assert advertiser.canonical_media_id == 5000

        asset = await lock_state(pipeline.session, result.asset_id)
        assert asset.publish_status == PublishStatus.PUBLISHED.value
        assert asset.last_publish_error is None

    @pytest.mark.asyncio
    async def test_existing_media_reused(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        screen = await seed.screen("101", city="Rotterdam")

        result = await pipeline.publish(advertiser.id)

        assert result.ok
        assert result.media_id == 900
        assert platform.media_creates() == 0
        assert platform.playlist_media(screen.combined_playlist_id) == [1, 2, 900]

    @pytest.mark.asyncio
    async def test_vanished_media_uploaded_again(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900, remote_ready=False)
        screen = await seed.screen("101", city="Rotterdam")

        result = await pipeline.publish(advertiser.id)

        assert result.ok
        assert result.media_id == 5000
        assert advertiser.canonical_media_id == 5000
        assert 900 not in platform.playlist_media(screen.combined_playlist_id)

    @pytest.mark.asyncio
    async def test_screens_processed_sequentially(
        self, pipeline: PublishPipeline, clock: ManualClock, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        await seed.screen("101", city="Rotterdam")
        await seed.screen("102", city="Utrecht")
        await seed.screen("103", city="Delft")

        result = await pipeline.publish(advertiser.id)

        assert result.ok
        assert len(result.screens) == 3
        assert clock.sleeps == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_custom_placement_resolver(
        self,
        engine: ReconciliationEngine,
        uploader: UploadJobWorker,
        inventory: AdInventory,
        platform: FakeSignagePlatform,
        seed: Seed,
    ) -> None:
        advertiser = await seed.advertiser(target_cities=["Rotterdam"], canonical_media_id=900)
        screen = await seed.screen("104", city="Groningen")
        pipeline = PublishPipeline(
            engine,
            uploader,
            StaticPlacements([Placement(screen_id=screen.id, player_id="104", match_reason="manual")]),
            DatabaseAssetApprovalService(inventory),
        )

        result = await pipeline.publish(advertiser.id)

        assert result.ok
        assert result.screens[0].match_reason == "manual"
        assert 900 in platform.playlist_media(screen.combined_playlist_id)


class TestPublishFailures:
    """Tests for publish errors."""

    @pytest.mark.asyncio
    async def test_unknown_advertiser(self, pipeline: PublishPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.publish(4040)

    @pytest.mark.asyncio
    async def test_no_approved_asset(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(approved=False)
        await seed.screen("101", city="Rotterdam")

        result = await pipeline.publish(advertiser.id)

        assert not result.ok
        assert result.error.step == "resolve_asset"
        assert result.error.code == ErrorCode.NO_APPROVED_ASSET
        assert platform.requests == []

    @pytest.mark.asyncio
    async def test_no_target_screens_is_not_ok(
        self, pipeline: PublishPipeline, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(target_cities=["Rotterdam"], canonical_media_id=900)
        await seed.screen("102", city="Utrecht")

        result = await pipeline.publish(advertiser.id)

        assert not result.ok
        assert result.screens == []
        assert result.error.code == ErrorCode.NO_TARGET_SCREENS
        asset = await lock_state(pipeline.session, result.asset_id)
        assert asset.publish_status == PublishStatus.FAILED.value
        assert "NO_TARGET_SCREENS" in asset.last_publish_error

    @pytest.mark.asyncio
    async def test_upload_not_ready(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        platform.media_status_script = [("failed", None)]
        advertiser = await seed.advertiser()
        await seed.screen("101", city="Rotterdam")

        result = await pipeline.publish(advertiser.id)

        assert not result.ok
        assert result.error.step == "ensure_media"
        assert result.error.code == ErrorCode.UPLOAD_NOT_READY
        assert result.error.details["upload_status"] == "RETRYABLE_FAIL"
        assert result.error.details["error_code"] == ErrorCode.REMOTE_FAILED.value
        assert platform.pushes == {}

    @pytest.mark.asyncio
    async def test_layout_failure_blocks_remaining_screens(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        first = await seed.screen("101", city="Rotterdam")
        second = await seed.screen("102", city="Rotterdam")
        platform.layout_after_push = 2

        result = await pipeline.publish(advertiser.id)

        assert not result.ok
        assert result.screens[0].error.code == ErrorCode.LAYOUT_FORBIDDEN
        assert result.screens[1].error.code == ErrorCode.PUBLISH_BLOCKED
        assert "102" not in platform.pushes
        assert result.error.code == ErrorCode.LAYOUT_FORBIDDEN
        assert result.error.details["failed_screen_ids"] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_unverified_screen_fails_publish(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        await seed.screen("101", city="Rotterdam")
        platform.drop_after_push = {900}

        result = await pipeline.publish(advertiser.id)

        assert not result.ok
        assert result.error.step == "reconcile"
        assert result.error.code == ErrorCode.VERIFY_MISMATCH
        assert result.screens[0].report.missing_media_ids == [900]


class TestPublishMutex:
    """Tests for concurrent publishes of the same asset."""

    @pytest.mark.asyncio
    async def test_concurrent_publish_only_verifies(
        self,
        pipeline: PublishPipeline,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        await seed.screen("101", city="Rotterdam")
        await pipeline.publish(advertiser.id)
        asset_id = advertiser.assets[0].id
        writes = platform.playlist_writes()
        pushes = platform.pushes["101"]

        await set_lock(pipeline.session, asset_id, PublishStatus.PENDING, clock.now())

        async def other_run_finishes(seconds: float) -> None:
            await set_lock(pipeline.session, asset_id, PublishStatus.PUBLISHED, clock.now())

        clock.on_sleep = other_run_finishes
        result = await pipeline.publish(advertiser.id)

        assert result.mode == "verify_only"
        assert result.ok
        assert result.media_id == 900
        assert result.screens[0].report.mode == "verify_only"
        assert platform.playlist_writes() == writes
        assert platform.pushes["101"] == pushes
        assert platform.media_creates() == 0
        assert clock.sleeps == [1.0]
        # The waiting call never takes or releases the lock
        assert (await lock_state(pipeline.session, asset_id)).publish_status == PublishStatus.PUBLISHED.value

    @pytest.mark.asyncio
    async def test_wait_is_bounded(
        self, pipeline: PublishPipeline, clock: ManualClock, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        await seed.screen("101", city="Rotterdam")
        await pipeline.publish(advertiser.id)
        asset_id = advertiser.assets[0].id
        await set_lock(pipeline.session, asset_id, PublishStatus.PENDING, clock.now())
        clock.sleeps.clear()

        result = await pipeline.publish(advertiser.id)

        assert result.mode == "verify_only"
        assert sum(clock.sleeps) == 10.0
        assert (await lock_state(pipeline.session, asset_id)).publish_status == PublishStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_stale_lock_is_taken_over(
        self, pipeline: PublishPipeline, clock: ManualClock, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(canonical_media_id=900)
        await seed.screen("101", city="Rotterdam")
        asset_id = advertiser.assets[0].id
        await set_lock(
            pipeline.session, asset_id, PublishStatus.PENDING, clock.now() - timedelta(hours=1)
        )

        result = await pipeline.publish(advertiser.id)

        assert result.mode == "publish"
        assert result.ok
        assert (await lock_state(pipeline.session, asset_id)).publish_status == PublishStatus.PUBLISHED.value

    @pytest.mark.asyncio
    async def test_verify_only_without_media(
        self, pipeline: PublishPipeline, clock: ManualClock, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser()
        await seed.screen("101", city="Rotterdam")
        await set_lock(pipeline.session, advertiser.assets[0].id, PublishStatus.PENDING, clock.now())

        result = await pipeline.publish(advertiser.id)

        assert result.mode == "verify_only"
        assert result.error.code == ErrorCode.UPLOAD_NOT_READY

    @pytest.mark.asyncio
    async def test_vanished_screen_fails_verification(
        self,
        engine: ReconciliationEngine,
        uploader: UploadJobWorker,
        inventory: AdInventory,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        """A targeted screen deleted mid-publish is reported, not skipped."""
        advertiser = await seed.advertiser(canonical_media_id=900)
        screen = await seed.screen("101", city="Rotterdam")
        pipeline = PublishPipeline(
            engine,
            uploader,
            StaticPlacements(
                [
                    Placement(screen_id=screen.id, player_id="101", match_reason="manual"),
                    Placement(screen_id=999999, player_id="999", match_reason="manual"),
                ]
            ),
            DatabaseAssetApprovalService(inventory),
        )
        await pipeline.publish(advertiser.id)
        asset_id = advertiser.assets[0].id
        await set_lock(pipeline.session, asset_id, PublishStatus.PENDING, clock.now())

        async def other_run_finishes(seconds: float) -> None:
            await set_lock(pipeline.session, asset_id, PublishStatus.PUBLISHED, clock.now())

        clock.on_sleep = other_run_finishes
        result = await pipeline.publish(advertiser.id)

        assert result.mode == "verify_only"
        assert not result.ok
        assert [s.verified for s in result.screens] == [True, False]
        assert result.screens[1].screen_id == 999999
        assert result.screens[1].error.code == ErrorCode.NOT_FOUND
        assert result.error.code == ErrorCode.NOT_FOUND
        assert result.error.details == {"failed_screen_ids": [999999]}


class TestPlacements:
    """Tests for the default placement resolver."""

    @pytest.mark.asyncio
    async def test_resolves_matching_linked_screens(
        self, pipeline: PublishPipeline, seed: Seed
    ) -> None:
        advertiser = await seed.advertiser(target_regions=["ZH"])
        south = await seed.location("Markthal", city="Rotterdam", region_code="ZH")
        north = await seed.location("Dam", city="Amsterdam", region_code="NH")
        included = await seed.screen("101", south)
        await seed.screen("102", north)
        await seed.screen(None, south)

        placements = await pipeline.placements.resolve(advertiser.id)

        assert isinstance(pipeline.placements, TargetingPlacementResolver)
        assert placements == [
            Placement(
                screen_id=included.id,
                player_id="101",
                location_id=south.id,
                city="Rotterdam",
                match_reason="region_match: ZH",
            )
        ]


class TestReconcileLocation:
    """Tests for bulk reconciliation."""

    @pytest.mark.asyncio
    async def test_plan_then_push(
        self, pipeline: PublishPipeline, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        venue = await seed.location("Markthal", city="Rotterdam")
        elsewhere = await seed.location("Dam", city="Amsterdam")
        first = await seed.screen("101", venue)
        second = await seed.screen("102", venue)
        await seed.screen("103", elsewhere)

        planned = await pipeline.reconcile_location(venue.id, push=False)
        assert [r.mode for r in planned] == ["plan", "plan"]
        assert platform.playlist_writes() == 0

        pushed = await pipeline.reconcile_location(venue.id)

        assert [r.screen_id for r in pushed] == [first.id, second.id]
        assert all(r.ok for r in pushed)
        assert set(platform.pushes) == {"101", "102"}

    @pytest.mark.asyncio
    async def test_unknown_screen(self, pipeline: PublishPipeline) -> None:
        with pytest.raises(NotFoundError):
            await pipeline.reconcile_screen(4040)
        with pytest.raises(NotFoundError):
            await pipeline.check_screen_health(4040)

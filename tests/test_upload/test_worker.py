"""
Tests for the upload job state machine.
"""

from datetime import timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.exceptions import ErrorCode, InvalidTransitionError
from screensync.models import AssetStatus, UploadJobStatus
from screensync.upload.worker import TRANSITIONS, UploadJobWorker
from tests.conftest import Seed
from tests.fakes import MP4_BYTES, FakeSignagePlatform, InMemoryObjectStorage, ManualClock

S = UploadJobStatus


class TestHappyPath:
    """Tests for a clean upload."""

    @pytest.mark.asyncio
    async def test_upload_becomes_canonical(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        advertiser = await seed.advertiser()
        asset = advertiser.assets[0]

        job = await uploader.enqueue(asset)
        assert advertiser.asset_status == AssetStatus.UPLOADING.value

        outcome = await uploader.process(job.id)

        assert outcome.ready
        assert outcome.remote_media_id == 5000
        assert outcome.attempt == 1
        assert advertiser.canonical_media_id == 5000
        assert advertiser.asset_status == AssetStatus.LIVE.value
        assert asset.remote_media_id == 5000
        assert platform.uploaded[5000] == MP4_BYTES
        assert platform.media[5000]["name"] == f"EVZ-AD-{advertiser.id}-{asset.id}.mp4"
        assert clock.sleeps == [2.0]
        assert [m for m, _ in platform.requests] == ["POST", "GET", "PUT", "POST", "GET", "GET"]

    @pytest.mark.asyncio
    async def test_enqueue_reuses_active_job(self, uploader: UploadJobWorker, seed: Seed) -> None:
        asset = (await seed.advertiser()).assets[0]

        first = await uploader.enqueue(asset, "pub-1")
        second = await uploader.enqueue(asset, "pub-2")

        assert second.id == first.id
        assert second.correlation_id == "pub-1"

    @pytest.mark.asyncio
    async def test_terminal_job_untouched(
        self, uploader: UploadJobWorker, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        job = await uploader.enqueue((await seed.advertiser()).assets[0])
        await uploader.process(job.id)
        calls = len(platform.requests)

        outcome = await uploader.process(job.id)

        assert outcome.status == S.READY.value
        assert len(platform.requests) == calls

    @pytest.mark.asyncio
    async def test_new_job_after_ready(self, uploader: UploadJobWorker, seed: Seed) -> None:
        asset = (await seed.advertiser()).assets[0]
        job = await uploader.enqueue(asset)
        await uploader.process(job.id)

        again = await uploader.enqueue(asset)

        assert again.id != job.id
        assert again.status == S.QUEUED.value


class TestFailures:
    """Tests for retry scheduling and terminal failures."""

    @pytest.mark.asyncio
    async def test_retries_then_permanent_failure(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        """Five failed attempts end in PERMANENT_FAIL and clear the cached media ID."""
        platform.final_media_404 = True
        advertiser = await seed.advertiser(canonical_media_id=900)
        job = await uploader.enqueue(advertiser.assets[0])

        statuses, delays = [], []
        for _ in range(5):
            outcome = await uploader.process(job.id)
            statuses.append(outcome.status)
            if outcome.next_retry_at is not None:
                delays.append((outcome.next_retry_at - clock.now()).total_seconds())
            clock.advance(100_000)

        assert statuses == [S.RETRYABLE_FAIL.value] * 4 + [S.PERMANENT_FAIL.value]
        assert delays == [60, 300, 900, 3600]
        assert outcome.error_code == ErrorCode.FINAL_VERIFY_404.value
        assert outcome.remote_media_id is None
        assert platform.media_creates() == 5
        assert advertiser.canonical_media_id is None
        assert advertiser.asset_status == AssetStatus.FAILED.value
        assert advertiser.assets[0].remote_media_id is None

        final = await uploader.get_job(job.id)
        assert final.attempt == 5
        assert final.completed_at is not None

    @pytest.mark.asyncio
    async def test_retry_waits_for_schedule(
        self, uploader: UploadJobWorker, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        platform.media_status_script = [("failed", None)]
        job = await uploader.enqueue((await seed.advertiser()).assets[0])

        first = await uploader.process(job.id)
        early = await uploader.process(job.id)

        assert first.status == S.RETRYABLE_FAIL.value
        assert first.error_code == ErrorCode.REMOTE_FAILED.value
        assert early.attempt == 1
        assert platform.media_creates() == 1

    @pytest.mark.asyncio
    async def test_empty_media_is_stuck(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        platform.media_status_script = [("processing", 0)]
        job = await uploader.enqueue((await seed.advertiser()).assets[0])

        outcome = await uploader.process(job.id)

        assert outcome.status == S.RETRYABLE_FAIL.value
        assert outcome.error_code == ErrorCode.UPLOAD_STUCK.value
        assert clock.sleeps == [2.0, 2.0, 2.0]
        assert (await uploader.get_job(job.id)).poll_attempts == 3

    @pytest.mark.asyncio
    async def test_poll_timeout(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        platform.media_status_script = [("processing", None)]
        job = await uploader.enqueue((await seed.advertiser()).assets[0])

        outcome = await uploader.process(job.id)

        assert outcome.error_code == ErrorCode.POLL_TIMEOUT.value
        assert sum(clock.sleeps) == 30.0

    @pytest.mark.asyncio
    async def test_invalid_file_fails_permanently(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        storage: InMemoryObjectStorage,
        seed: Seed,
    ) -> None:
        asset = (await seed.advertiser()).assets[0]
        storage.put(asset.storage_path, b"<html>not a video</html>" * 100)
        job = await uploader.enqueue(asset)

        outcome = await uploader.process(job.id)

        assert outcome.status == S.PERMANENT_FAIL.value
        assert outcome.error_code == ErrorCode.INVALID_FILE.value
        assert outcome.attempt == 0
        assert platform.requests == []

    @pytest.mark.asyncio
    async def test_missing_file_is_retried(
        self, uploader: UploadJobWorker, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        job = await uploader.enqueue((await seed.advertiser(with_file=False)).assets[0])

        outcome = await uploader.process(job.id)

        assert outcome.status == S.RETRYABLE_FAIL.value
        assert outcome.error_code == ErrorCode.STORAGE_ERROR.value
        assert outcome.attempt == 1
        assert platform.requests == []

    @pytest.mark.asyncio
    async def test_auth_failure_does_not_count(
        self, uploader: UploadJobWorker, platform: FakeSignagePlatform, seed: Seed
    ) -> None:
        """A rejected token is a configuration fault, not a failed attempt."""
        job = await uploader.enqueue((await seed.advertiser()).assets[0])
        platform.reject_auth = True

        blocked = await uploader.process(job.id)
        platform.reject_auth = False
        recovered = await uploader.process(job.id)

        assert blocked.status == S.QUEUED.value
        assert blocked.attempt == 0
        assert blocked.error_code == ErrorCode.AUTH_ERROR.value
        assert recovered.ready
        assert recovered.attempt == 1


class TestStateMachine:
    """Tests for the transition table and the due-job pass."""

    def test_terminal_states_have_no_exits(self) -> None:
        assert TRANSITIONS[S.READY] == frozenset()
        assert TRANSITIONS[S.PERMANENT_FAIL] == frozenset()
        assert S.READY not in TRANSITIONS[S.UPLOADING]
        assert S.UPLOADING in TRANSITIONS[S.RETRYABLE_FAIL]

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self, uploader: UploadJobWorker, seed: Seed) -> None:
        job = await uploader.enqueue((await seed.advertiser()).assets[0])
        await uploader.process(job.id)

        with pytest.raises(InvalidTransitionError):
            await uploader._transition(job, S.UPLOADING)
        assert (await uploader.get_job(job.id)).status == S.READY.value

    @pytest.mark.asyncio
    async def test_run_due_jobs(
        self,
        uploader: UploadJobWorker,
        storage: InMemoryObjectStorage,
        seed: Seed,
    ) -> None:
        good = (await seed.advertiser("Good")).assets[0]
        bad = (await seed.advertiser("Bad")).assets[0]
        storage.put(bad.storage_path, b"\x00" * 10)
        await uploader.enqueue(good)
        await uploader.enqueue(bad)

        stats = await uploader.run_due_jobs()
        again = await uploader.run_due_jobs()

        assert stats == {"processed": 2, "succeeded": 1, "failed": 1, "retrying": 0}
        assert again["processed"] == 0

    @pytest.mark.asyncio
    async def test_run_due_jobs_picks_up_retries(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        platform.media_status_script = [("failed", None)]
        job = await uploader.enqueue((await seed.advertiser()).assets[0])
        await uploader.process(job.id)
        platform.media_status_script = [("ready", None)]

        not_due = await uploader.run_due_jobs()
        clock.advance(timedelta(minutes=5).total_seconds())
        due = await uploader.run_due_jobs()

        assert not_due["processed"] == 0
        assert due == {"processed": 1, "succeeded": 1, "failed": 0, "retrying": 0}


class TestAbandonedAttempts:
    """Tests for attempts that never reach a recorded outcome."""

    @pytest.mark.asyncio
    async def test_crashed_attempt_schedules_retry(
        self,
        uploader: UploadJobWorker,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        """An unexpected error mid-upload leaves the job retryable, not in flight."""
        crashes = []

        def crash_once(request: httpx.Request) -> httpx.Response | None:
            if request.method == "POST" and request.url.path.endswith("/media/") and not crashes:
                crashes.append(request)
                raise RuntimeError("response decoder failed")
            return None

        platform.overrides.append(crash_once)
        job = await uploader.enqueue((await seed.advertiser()).assets[0])

        outcome = await uploader.process(job.id)
        clock.advance(60)
        due = await uploader.run_due_jobs()

        assert outcome.status == S.RETRYABLE_FAIL.value
        assert outcome.error_code == ErrorCode.API_ERROR.value
        assert "RuntimeError" in outcome.error
        assert outcome.attempt == 1
        assert due == {"processed": 1, "succeeded": 1, "failed": 0, "retrying": 0}
        assert (await uploader.get_job(job.id)).attempt == 2

    @pytest.mark.asyncio
    async def test_abandoned_in_flight_job_recovered(
        self,
        uploader: UploadJobWorker,
        test_db: AsyncSession,
        platform: FakeSignagePlatform,
        clock: ManualClock,
        seed: Seed,
    ) -> None:
        """A worker that died mid-attempt does not pin the job forever."""
        job = await uploader.enqueue((await seed.advertiser()).assets[0])
        job.status = S.UPLOADING.value
        job.attempt = 1
        job.attempt_started_at = clock.now()
        await test_db.commit()

        busy = await uploader.process(job.id)
        not_yet = await uploader.run_due_jobs()
        clock.advance(30 + 300)
        recovered = await uploader.run_due_jobs()
        stuck = await uploader.get_job(job.id)
        clock.advance(60)
        retried = await uploader.run_due_jobs()

        assert busy.status == S.UPLOADING.value
        assert not_yet["processed"] == 0
        assert platform.media_creates() == 1
        assert recovered == {"processed": 1, "succeeded": 0, "failed": 0, "retrying": 1}
        assert stuck.status == S.RETRYABLE_FAIL.value
        assert stuck.last_error_code == ErrorCode.UPLOAD_STUCK.value
        assert stuck.attempt == 1
        assert retried == {"processed": 1, "succeeded": 1, "failed": 0, "retrying": 0}

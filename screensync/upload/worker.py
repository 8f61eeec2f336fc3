"""
Upload job state machine.

    QUEUED -> UPLOADING -> POLLING -> READY
                 |            |
                 v            v
            RETRYABLE_FAIL (scheduled retry) -> UPLOADING
                 |
                 v
            PERMANENT_FAIL

A media ID becomes canonical only after the remote platform reports it
ready AND the canonical media fetch returns it. Any terminal failure clears
previously cached canonical IDs.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.clock import Clock, SystemClock
from screensync.common.exceptions import (
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from screensync.common.logger import get_logger
from screensync.common.metrics import record_upload_transition
from screensync.common.utils import ensure_utc, generate_correlation_id, truncate
from screensync.models import AdAsset, Advertiser, AssetStatus, UploadJob, UploadJobStatus
from screensync.platform.client import PlatformClient
from screensync.playback.config import EngineConfig
from screensync.schemas.internal import UploadOutcome
from screensync.schemas.platform import PlatformFailure
from screensync.upload.storage import ObjectStorage
from screensync.upload.validation import validate_upload

logger = get_logger(__name__)

S = UploadJobStatus

TRANSITIONS: dict[UploadJobStatus, frozenset[UploadJobStatus]] = {
    S.QUEUED: frozenset({S.UPLOADING, S.RETRYABLE_FAIL, S.PERMANENT_FAIL}),
    S.UPLOADING: frozenset({S.POLLING, S.RETRYABLE_FAIL, S.PERMANENT_FAIL, S.QUEUED}),
    S.POLLING: frozenset({S.READY, S.RETRYABLE_FAIL, S.PERMANENT_FAIL, S.QUEUED}),
    S.RETRYABLE_FAIL: frozenset({S.UPLOADING, S.RETRYABLE_FAIL, S.PERMANENT_FAIL}),
    S.READY: frozenset(),
    S.PERMANENT_FAIL: frozenset(),
}

ACTIVE_STATUSES = frozenset({S.QUEUED, S.UPLOADING, S.POLLING, S.RETRYABLE_FAIL})

READY_STATUSES = frozenset({"ready", "finished", "ok", "live", "converted"})
FAILED_STATUSES = frozenset({"failed", "error"})


class UploadJobWorker:
    """
    Drives upload jobs through the state machine.

    One attempt per ``process`` call; retries are scheduled through
    ``next_retry_at`` and picked up by ``run_due_jobs``.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: PlatformClient,
        storage: ObjectStorage,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.client = client
        self.storage = storage
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enqueue(self, asset: AdAsset, correlation_id: str | None = None) -> UploadJob:
        """Create a QUEUED job for ``asset``, or return its still-active job."""
        stmt = (
            select(UploadJob)
            .where(
                UploadJob.asset_id == asset.id,
                UploadJob.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(UploadJob.id.desc())
            .limit(1)
        )
        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        if existing is not None:
            return existing

        job = UploadJob(
            advertiser_id=asset.advertiser_id,
            asset_id=asset.id,
            correlation_id=correlation_id or generate_correlation_id("upl"),
            storage_path=asset.storage_path,
            mime_type=asset.mime_type,
            media_name=f"{self.config.playlist_prefix}-AD-{asset.advertiser_id}-{asset.id}.mp4",
            status=S.QUEUED.value,
            attempt=0,
            max_attempts=self.config.max_upload_attempts,
        )
        self.session.add(job)

        advertiser = await self.session.get(Advertiser, asset.advertiser_id)
        if advertiser is not None and advertiser.canonical_media_id is None:
            advertiser.asset_status = AssetStatus.UPLOADING.value

        await self.session.commit()
        logger.info(
            "Upload job queued",
            job_id=job.id,
            asset_id=asset.id,
            advertiser_id=asset.advertiser_id,
            correlation_id=job.correlation_id,
        )
        return job

    async def get_job(self, job_id: int) -> UploadJob:
        job = await self.session.get(UploadJob, job_id, populate_existing=True)
        if job is None:
            raise NotFoundError(f"Upload job {job_id} not found", {"job_id": job_id})
        return job

    async def process(self, job_id: int) -> UploadOutcome:
        """Run one attempt of a due job; anything else is returned untouched."""
        job = await self.get_job(job_id)
        status = S(job.status)

        if status in (S.UPLOADING, S.POLLING):
            if not self._is_abandoned(job):
                logger.warning("Upload job already in flight", job_id=job.id, status=status.value)
                return self._outcome(job)
            await self._recover_abandoned(job)
            status = S(job.status)

        if status in (S.READY, S.PERMANENT_FAIL):
            return self._outcome(job)
        if status == S.RETRYABLE_FAIL:
            retry_at = ensure_utc(job.next_retry_at)
            if retry_at is not None and retry_at > self.clock.now():
                return self._outcome(job)

        await self._attempt(job)
        return self._outcome(job)

    async def run_due_jobs(self, limit: int = 10) -> dict[str, int]:
        """Process every due job sequentially, including abandoned in-flight ones."""
        now = self.clock.now()
        abandoned_before = now - timedelta(seconds=self._abandon_after_s)
        stmt = (
            select(UploadJob.id)
            .where(
                or_(
                    UploadJob.status == S.QUEUED.value,
                    (UploadJob.status == S.RETRYABLE_FAIL.value)
                    & or_(UploadJob.next_retry_at.is_(None), UploadJob.next_retry_at <= now),
                    UploadJob.status.in_([S.UPLOADING.value, S.POLLING.value])
                    & or_(
                        UploadJob.attempt_started_at.is_(None),
                        UploadJob.attempt_started_at <= abandoned_before,
                    ),
                )
            )
            .order_by(UploadJob.id)
            .limit(limit)
        )
        job_ids = list((await self.session.execute(stmt)).scalars().all())

        stats = {"processed": 0, "succeeded": 0, "failed": 0, "retrying": 0}
        for job_id in job_ids:
            outcome = await self.process(job_id)
            stats["processed"] += 1
            if outcome.status == S.READY.value:
                stats["succeeded"] += 1
            elif outcome.status == S.PERMANENT_FAIL.value:
                stats["failed"] += 1
            else:
                stats["retrying"] += 1

        if job_ids:
            logger.info("Upload jobs processed", **stats)
        return stats

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    async def _attempt(self, job: UploadJob) -> None:
        log = logger.bind(job_id=job.id, correlation_id=job.correlation_id)

        try:
            data = await self.storage.read(job.storage_path)
            validate_upload(
                data,
                job.mime_type,
                min_bytes=self.config.min_upload_bytes,
                allowed_mime_types=self.config.allowed_mime_types,
            )
        except ValidationError as e:
            log.error("Upload source invalid", error=e.message, **e.details)
            await self._fail_permanently(job, PlatformFailure(ErrorCode.INVALID_FILE, e.message))
            return
        except StorageError as e:
            job.attempt += 1
            await self._handle_failure(job, PlatformFailure(ErrorCode.STORAGE_ERROR, e.message))
            return

        job.attempt += 1
        job.poll_attempts = 0
        job.attempt_started_at = self.clock.now()
        await self._transition(job, S.UPLOADING)
        log.info("Upload attempt started", attempt=job.attempt, size_bytes=len(data))

        try:
            failure = await self._upload(job, data)
            if failure is None:
                await self._transition(job, S.POLLING)
                failure = await self._poll(job)
        except Exception as e:
            log.exception("Upload attempt crashed", status=job.status)
            if isinstance(e, SQLAlchemyError):
                await self.session.rollback()
                await self.session.refresh(job)
            failure = PlatformFailure(ErrorCode.API_ERROR, f"{type(e).__name__}: {e}")

        if failure is not None:
            await self._handle_failure(job, failure)
            return
        await self._mark_ready(job)

    async def _upload(self, job: UploadJob, data: bytes) -> PlatformFailure | None:
        created = await self.client.create_media(job.media_name or f"upload-{job.id}.mp4")
        if not created.ok:
            return created.error
        job.remote_media_id = created.data.media_id
        await self.session.commit()

        url = await self.client.get_upload_url(created.data)
        if not url.ok:
            return url.error

        put = await self.client.put_binary(url.data, data, job.mime_type)
        if not put.ok:
            return put.error

        completed = await self.client.complete_upload(job.remote_media_id, job.media_name)
        if not completed.ok:
            if completed.code != ErrorCode.NOT_FOUND:
                return completed.error
            # Some API versions finalize on PUT and have no completion endpoint
            logger.info("Upload completion endpoint absent", job_id=job.id)
        return None

    async def _poll(self, job: UploadJob) -> PlatformFailure | None:
        """Bounded status polling followed by the canonical-fetch verification."""
        media_id = job.remote_media_id
        deadline = self.clock.monotonic() + self.config.poll_timeout_s
        empty_polls = 0
        poll = 0

        while True:
            await self.clock.sleep(self.config.poll_interval_s(poll))
            poll += 1
            job.poll_attempts = poll

            status = await self.client.get_media_status(media_id)
            if status.ok:
                job.remote_status = status.data.status
                job.remote_file_size = status.data.file_size
                await self.session.commit()

                remote = status.data.status
                if remote in FAILED_STATUSES:
                    return PlatformFailure(
                        ErrorCode.REMOTE_FAILED, f"remote processing status {remote!r}"
                    )
                if status.data.file_size == 0:
                    empty_polls += 1
                    if empty_polls >= self.config.stuck_after_polls:
                        return PlatformFailure(
                            ErrorCode.UPLOAD_STUCK,
                            f"media {media_id} still empty after {empty_polls} polls (status {remote!r})",
                        )
                elif remote in READY_STATUSES:
                    break
            elif status.code.is_auth:
                return status.error
            else:
                logger.warning("Media status poll failed", job_id=job.id, error=str(status.error))

            if self.clock.monotonic() >= deadline:
                return PlatformFailure(
                    ErrorCode.POLL_TIMEOUT,
                    f"media {media_id} not ready after {poll} polls "
                    f"(last status {job.remote_status!r})",
                )

        final = await self.client.get_media(media_id)
        if final.code == ErrorCode.NOT_FOUND:
            return PlatformFailure(
                ErrorCode.FINAL_VERIFY_404,
                f"media {media_id} reported ready but canonical fetch returned 404",
                status=404,
            )
        if not final.ok:
            return final.error
        return None

    # ------------------------------------------------------------------
    # Abandoned attempts
    # ------------------------------------------------------------------

    @property
    def _abandon_after_s(self) -> float:
        return self.config.poll_timeout_s + self.config.upload_abandon_margin_s

    def _is_abandoned(self, job: UploadJob) -> bool:
        """An in-flight job whose attempt outlived any possible poll window."""
        started = ensure_utc(job.attempt_started_at)
        if started is None:
            return True
        return self.clock.now() - started >= timedelta(seconds=self._abandon_after_s)

    async def _recover_abandoned(self, job: UploadJob) -> None:
        started = ensure_utc(job.attempt_started_at)
        logger.warning(
            "Recovering abandoned upload attempt",
            job_id=job.id,
            status=job.status,
            attempt=job.attempt,
            attempt_started_at=started.isoformat() if started else None,
        )
        await self._handle_failure(
            job,
            PlatformFailure(
                ErrorCode.UPLOAD_STUCK,
                f"attempt {job.attempt} abandoned in {job.status}",
            ),
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _handle_failure(self, job: UploadJob, failure: PlatformFailure) -> None:
        self._record_error(job, failure)

        if failure.code.is_auth:
            # Configuration fault: not the file's fault, not an attempt
            job.attempt = max(job.attempt - 1, 0)
            await self._transition(job, S.QUEUED)
            logger.error(
                "Upload blocked by platform auth",
                job_id=job.id,
                code=failure.code.value,
                error=failure.message,
            )
            return

        if job.attempt >= job.max_attempts:
            await self._fail_permanently(job, failure)
            return

        delay = self.config.retry_delay_s(job.attempt)
        job.next_retry_at = self.clock.now() + timedelta(seconds=delay)
        await self._transition(job, S.RETRYABLE_FAIL)
        logger.warning(
            "Upload attempt failed, retry scheduled",
            job_id=job.id,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            code=failure.code.value,
            error=failure.message,
            retry_in_s=delay,
        )

    async def _fail_permanently(self, job: UploadJob, failure: PlatformFailure) -> None:
        self._record_error(job, failure)
        job.next_retry_at = None
        job.completed_at = self.clock.now()

        asset = await self.session.get(AdAsset, job.asset_id)
        if asset is not None:
            asset.remote_media_id = None
        advertiser = await self.session.get(Advertiser, job.advertiser_id)
        if advertiser is not None:
            if advertiser.canonical_media_id is not None:
                logger.warning(
                    "Clearing canonical media after permanent upload failure",
                    advertiser_id=advertiser.id,
                    media_id=advertiser.canonical_media_id,
                )
            advertiser.canonical_media_id = None
            advertiser.canonical_media_updated_at = self.clock.now()
            advertiser.asset_status = AssetStatus.FAILED.value

        await self._transition(job, S.PERMANENT_FAIL)
        logger.error(
            "Upload permanently failed",
            job_id=job.id,
            attempt=job.attempt,
            code=failure.code.value,
            error=failure.message,
        )

    async def _mark_ready(self, job: UploadJob) -> None:
        now = self.clock.now()
        job.completed_at = now
        job.next_retry_at = None
        job.last_error = None
        job.last_error_code = None

        asset = await self.session.get(AdAsset, job.asset_id)
        if asset is not None:
            asset.remote_media_id = job.remote_media_id
        advertiser = await self.session.get(Advertiser, job.advertiser_id)
        if advertiser is not None:
            advertiser.canonical_media_id = job.remote_media_id
            advertiser.canonical_media_updated_at = now
            advertiser.asset_status = AssetStatus.LIVE.value

        await self._transition(job, S.READY)
        logger.info(
            "Upload ready",
            job_id=job.id,
            media_id=job.remote_media_id,
            attempt=job.attempt,
            file_size=job.remote_file_size,
        )

    def _record_error(self, job: UploadJob, failure: PlatformFailure) -> None:
        job.last_error = truncate(str(failure), 1000)
        job.last_error_code = failure.code.value
        job.last_error_at = self.clock.now()

    async def _transition(self, job: UploadJob, to: UploadJobStatus) -> None:
        current = S(job.status)
        if to not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Upload job {job.id}: {current.value} -> {to.value} not allowed",
                {"job_id": job.id, "from": current.value, "to": to.value},
            )
        job.status = to.value
        await self.session.commit()
        record_upload_transition(current.value, to.value)
        logger.debug("Upload job transition", job_id=job.id, from_status=current.value, to_status=to.value)

    @staticmethod
    def _outcome(job: UploadJob) -> UploadOutcome:
        return UploadOutcome(
            job_id=job.id,
            status=job.status,
            attempt=job.attempt,
            remote_media_id=job.remote_media_id if job.status == S.READY.value else None,
            error_code=job.last_error_code,
            error=job.last_error,
            next_retry_at=ensure_utc(job.next_retry_at),
        )

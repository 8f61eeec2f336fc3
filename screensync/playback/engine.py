"""
Screen playback reconciliation engine.

Converges one screen's remote playback state to the state derived from
local business data. Each run is an ordered sequence of fail-fast steps:

1. shared_playlist_guard - no remote playlist may serve two screens
2. ensure_playlists      - find or create the baseline/ads/combined triplet
3. seed_baseline         - append configured house media missing from baseline
4. compute_desired_ads   - targeting + verified canonical media per advertiser
5. replace_ads           - one full-replace write of the ads playlist
6. rebuild_combined      - ordered union of baseline and ads
7. assign_push           - point the screen at the combined playlist and push
8. verify                - re-fetch live state; a mismatch after one retry fails

A screen found in the forbidden layout mode triggers self_heal, which
re-runs steps 2-8 once; if that does not converge the run fails with
LAYOUT_FORBIDDEN.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

from screensync.common.clock import Clock, SystemClock
from screensync.common.exceptions import ErrorCode
from screensync.common.logger import get_logger
from screensync.common.metrics import record_reconcile, record_self_heal
from screensync.common.utils import dedupe, generate_correlation_id, ordered_union
from screensync.models import Advertiser, Screen
from screensync.platform.client import PlatformClient
from screensync.playback.config import EngineConfig
from screensync.playback.diagnostics import invalidate_playback_state
from screensync.playback.inventory import AdInventory
from screensync.playback.store import PLAYLIST_ROLES, PlaylistStateStore
from screensync.schemas.internal import (
    ReconciliationReport,
    StepError,
    StepRecord,
    VerifyOutcome,
)
from screensync.schemas.platform import PlatformResult, PlaylistDetail, PlaylistItem
from screensync.targeting.matcher import TargetingMatcher, TargetRule

if TYPE_CHECKING:
    from screensync.upload.worker import UploadJobWorker

logger = get_logger(__name__)

SOURCE_TYPE_PLAYLIST = "playlist"


class StepFailure(Exception):
    """Aborts the remaining steps of a run."""

    def __init__(self, error: StepError):
        self.error = error
        super().__init__(str(error))


@dataclass
class _Run:
    """Mutable state threaded through the steps of one run."""

    screen: Screen
    report: ReconciliationReport
    desired_input: list[int] | None = None
    required: tuple[int, ...] = ()
    ids: dict[str, str] = field(default_factory=dict)
    items: dict[str, list[PlaylistItem]] = field(default_factory=dict)
    desired: list[int] = field(default_factory=list)
    expected: list[int] = field(default_factory=list)


def _ids(items: Iterable[PlaylistItem]) -> list[int]:
    return [item.id for item in items]


def _failure(step: str, result: PlatformResult, context: str) -> StepFailure:
    code = result.code or ErrorCode.API_ERROR
    details = {"status": result.status}
    if result.error and result.error.body:
        details["body"] = result.error.body
    return StepFailure(StepError(step, code, f"{context}: {result.error}", details))


class ReconciliationEngine:
    """
    Per-screen reconciliation against the remote platform.

    All collaborators are injected; one engine instance is bound to one
    database session (through the store and inventory).
    """

    def __init__(
        self,
        client: PlatformClient,
        store: PlaylistStateStore,
        matcher: TargetingMatcher | None = None,
        inventory: AdInventory | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        uploader: "UploadJobWorker | None" = None,
    ):
        self.client = client
        self.store = store
        self.matcher = matcher or TargetingMatcher()
        self.inventory = inventory or AdInventory(store.session, clock)
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.uploader = uploader

        # media_id -> exists, for the lifetime of this engine
        self._media_checked: dict[int, bool] = {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        screen: Screen,
        desired_ad_media_ids: Iterable[int] | None = None,
        required_media_ids: Iterable[int] = (),
    ) -> ReconciliationReport:
        """
        Converge ``screen`` to the desired ads.

        Args:
            screen: Screen to reconcile.
            desired_ad_media_ids: Explicit ads list; computed from local
                state when None.
            required_media_ids: Media placed first in the ads list so the
                per-screen cap never drops them.

        Returns:
            The report; ``ok`` is True only when live state was verified.
        """
        report = self._new_report(screen, "reconcile")
        run = _Run(
            screen=screen,
            report=report,
            desired_input=list(desired_ad_media_ids) if desired_ad_media_ids is not None else None,
            required=tuple(required_media_ids),
        )

        started = time.perf_counter()
        try:
            self._require_player(screen, "ensure_playlists")
            await self._run_step(report, "shared_playlist_guard", partial(self._guard, run))
            try:
                await self._converge(run)
            except StepFailure as e:
                if e.error.code != ErrorCode.LAYOUT_FORBIDDEN:
                    raise
                report.errors.append(e.error)
                await self._self_heal(run)
            report.ok = True
        except StepFailure as e:
            report.fail(e.error)
        finally:
            await self._finish(report, started)

        return report

    async def plan(self, screen: Screen) -> ReconciliationReport:
        """Dry run: desired vs current lists, without remote or local writes."""
        report = self._new_report(screen, "plan")
        run = _Run(screen=screen, report=report)

        started = time.perf_counter()
        try:
            self._require_player(screen, "ensure_playlists")
            await self._run_step(report, "ensure_playlists", partial(self._read_playlists, run))
            await self._run_step(
                report, "compute_desired_ads", partial(self._compute_desired_ads, run, verify_media=False)
            )

            baseline = _ids(run.items.get("baseline", []))
            seeded = ordered_union(baseline, list(self.config.baseline_media_ids))
            run.expected = ordered_union(seeded, run.desired)
            report.expected_media_ids = run.expected
            report.ok = True
        except StepFailure as e:
            report.fail(e.error)
        report.duration_ms = (time.perf_counter() - started) * 1000
        return report

    async def verify_only(
        self, screen: Screen, expected_media_ids: Iterable[int]
    ) -> ReconciliationReport:
        """Step 8 alone, against the stored combined playlist; never writes remote state."""
        report = self._new_report(screen, "verify_only")
        expected = dedupe(list(expected_media_ids))
        report.expected_media_ids = expected

        started = time.perf_counter()
        try:
            self._require_player(screen, "verify")
            combined_id = screen.combined_playlist_id
            if not combined_id:
                raise StepFailure(
                    StepError("verify", ErrorCode.NOT_FOUND, "screen has no combined playlist")
                )

            async def verify() -> str:
                outcome = await self._hard_verify(screen, combined_id, expected)
                return await self._settle_verify(screen, report, outcome)

            await self._run_step(report, "verify", verify)
            report.ok = True
        except StepFailure as e:
            report.fail(e.error)
        report.duration_ms = (time.perf_counter() - started) * 1000
        return report

    async def check_health(self, screen: Screen) -> ReconciliationReport:
        """Out-of-band check; a screen found in layout mode is self-healed."""
        report = self._new_report(screen, "health")
        run = _Run(screen=screen, report=report)

        started = time.perf_counter()
        try:
            self._require_player(screen, "verify")
            content = await self.client.get_screen_content(screen.player_id)
            if not content.ok:
                raise _failure("verify", content, "read screen content")

            source = content.data
            if source.source_type == self.config.forbidden_source_type:
                report.errors.append(
                    StepError(
                        "verify",
                        ErrorCode.LAYOUT_FORBIDDEN,
                        f"screen is in {source.source_type} mode",
                        {"source_id": source.source_id},
                    )
                )
                await self._run_step(report, "shared_playlist_guard", partial(self._guard, run))
                await self._self_heal(run)
            elif not (
                source.source_type == SOURCE_TYPE_PLAYLIST
                and screen.combined_playlist_id
                and source.source_id == screen.combined_playlist_id
            ):
                raise StepFailure(
                    StepError(
                        "verify",
                        ErrorCode.VERIFY_MISMATCH,
                        f"screen shows {source.source_type}:{source.source_id}, "
                        f"expected playlist:{screen.combined_playlist_id}",
                    )
                )
            report.ok = True
        except StepFailure as e:
            report.fail(e.error)
        finally:
            await self._finish(report, started)

        return report

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _new_report(self, screen: Screen, mode: str) -> ReconciliationReport:
        return ReconciliationReport(
            screen_id=screen.id,
            player_id=screen.player_id,
            correlation_id=generate_correlation_id("rec"),
            mode=mode,
            playlist_ids={
                role: getattr(screen, f"{role}_playlist_id") for role in PLAYLIST_ROLES
            },
        )

    @staticmethod
    def _require_player(screen: Screen, step: str) -> None:
        if not screen.player_id:
            raise StepFailure(
                StepError(step, ErrorCode.MISSING_PLAYER_ID, "screen is not linked to a player")
            )

    async def _run_step(
        self,
        report: ReconciliationReport,
        name: str,
        fn: Callable[[], Awaitable[str | None]],
    ) -> None:
        log = logger.bind(correlation_id=report.correlation_id, screen_id=report.screen_id)
        started = time.perf_counter()
        try:
            detail = await fn()
        except StepFailure as e:
            elapsed = (time.perf_counter() - started) * 1000
            report.steps.append(StepRecord(name, False, round(elapsed, 1), e.error.message))
            log.warning(
                "Step failed",
                step=name,
                code=e.error.code.value,
                error=e.error.message,
                duration_ms=round(elapsed, 1),
            )
            raise
        elapsed = (time.perf_counter() - started) * 1000
        report.steps.append(StepRecord(name, True, round(elapsed, 1), detail))
        log.info("Step ok", step=name, detail=detail, duration_ms=round(elapsed, 1))

    async def _converge(self, run: _Run) -> None:
        report = run.report
        await self._run_step(report, "ensure_playlists", partial(self._ensure_playlists, run))
        await self._run_step(report, "seed_baseline", partial(self._seed_baseline, run))
        await self._run_step(report, "compute_desired_ads", partial(self._compute_desired_ads, run))
        await self._run_step(report, "replace_ads", partial(self._replace_ads, run))
        await self._run_step(report, "rebuild_combined", partial(self._rebuild_combined, run))
        await self._run_step(report, "assign_push", partial(self._assign_push, run))
        await self._run_step(report, "verify", partial(self._verify, run))

    async def _self_heal(self, run: _Run) -> None:
        async def heal() -> str:
            try:
                await self._converge(run)
            except StepFailure as e:
                record_self_heal(False)
                raise StepFailure(
                    StepError(
                        "self_heal",
                        ErrorCode.LAYOUT_FORBIDDEN,
                        f"self-heal failed: {e.error}",
                        {"failed_step": e.error.step, "code": e.error.code.value},
                    )
                ) from e
            record_self_heal(True)
            run.report.self_healed = True
            return "converged"

        await self._run_step(run.report, "self_heal", heal)

    async def _finish(self, report: ReconciliationReport, started: float) -> None:
        report.duration_ms = (time.perf_counter() - started) * 1000
        record_reconcile(
            report.ok,
            report.error.step if report.error else None,
            report.error.code.value if report.error else None,
            report.duration_ms / 1000,
        )
        await invalidate_playback_state(report.screen_id)

        log = logger.bind(correlation_id=report.correlation_id, screen_id=report.screen_id)
        if report.ok:
            log.info(
                "Reconciliation finished",
                mode=report.mode,
                content_writes=report.content_writes,
                self_healed=report.self_healed,
                duration_ms=round(report.duration_ms, 1),
            )
        else:
            log.error(
                "Reconciliation failed",
                mode=report.mode,
                step=report.error.step if report.error else None,
                code=report.error.code.value if report.error else None,
                error=report.error.message if report.error else None,
                missing_media_ids=report.missing_media_ids,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _guard(self, run: _Run) -> str:
        cleared = await self.store.resolve_shared(run.screen)
        if not cleared:
            return "no shared playlists"
        return f"cleared screens {cleared}"

    async def _ensure_playlists(self, run: _Run) -> str:
        screen = run.screen
        step = "ensure_playlists"
        ids: dict[str, str] = {}
        created: list[str] = []

        for role in PLAYLIST_ROLES:
            playlist_id = getattr(screen, f"{role}_playlist_id")
            items = None

            if playlist_id:
                result = await self.client.get_playlist(playlist_id)
                if result.ok and self._is_foreign(result.data, role, screen.player_id):
                    # Legacy or stale mapping to a playlist this screen does not own
                    logger.warning(
                        "Stored playlist is not canonical",
                        screen_id=screen.id,
                        role=role,
                        playlist_id=playlist_id,
                        remote_name=result.data.name,
                    )
                    playlist_id = None
                elif result.ok:
                    items = result.data.items
                elif result.code == ErrorCode.NOT_FOUND:
                    logger.warning(
                        "Stored playlist vanished remotely",
                        screen_id=screen.id,
                        role=role,
                        playlist_id=playlist_id,
                    )
                    playlist_id = None
                else:
                    raise _failure(step, result, f"read {role} playlist {playlist_id}")

            if not playlist_id:
                name = self.config.playlist_name(role, screen.player_id)
                found = await self.client.find_playlist_by_name(name)
                if not found.ok:
                    raise _failure(step, found, f"search playlist {name!r}")
                if found.data is None:
                    made = await self.client.create_playlist(name)
                    if not made.ok:
                        raise _failure(step, made, f"create playlist {name!r}")
                    playlist_id = made.data.id
                    created.append(role)
                else:
                    playlist_id = found.data.id

                readback = await self.client.get_playlist_items(playlist_id)
                if not readback.ok:
                    raise _failure(step, readback, f"read back {role} playlist {playlist_id}")
                items = readback.data

                # The canonical name embeds this screen's player ID; any
                # other screen pointing at it holds a stale mapping.
                for other in await self.store.detect_shared_playlist(playlist_id):
                    if other.id != screen.id:
                        await self.store.clear_playlist_ids(other)

            ids[role] = playlist_id
            run.items[role] = items
            run.report.before.setdefault(role, _ids(items))

        if any(ids[role] != getattr(screen, f"{role}_playlist_id") for role in PLAYLIST_ROLES):
            await self.store.save_playlist_ids(screen, **ids)

        run.ids = ids
        run.report.playlist_ids = dict(ids)
        return f"created {created}" if created else "existing"

    def _is_foreign(self, playlist: PlaylistDetail, role: str, player_id: str) -> bool:
        """A named playlist whose name is not this screen's canonical one."""
        if playlist.name is None:
            return False
        return playlist.name != self.config.playlist_name(role, player_id)

    async def _read_playlists(self, run: _Run) -> str:
        """Read-only variant of ensure_playlists used by plan()."""
        missing: list[str] = []
        for role in PLAYLIST_ROLES:
            playlist_id = getattr(run.screen, f"{role}_playlist_id")
            items: list[PlaylistItem] = []
            if playlist_id:
                result = await self.client.get_playlist(playlist_id)
                if result.ok and not self._is_foreign(result.data, role, run.screen.player_id):
                    items = result.data.items
                elif result.ok or result.code == ErrorCode.NOT_FOUND:
                    missing.append(role)
                else:
                    raise _failure("ensure_playlists", result, f"read {role} playlist {playlist_id}")
            else:
                missing.append(role)
            run.items[role] = items
            run.report.before[role] = _ids(items)
        return f"would create {missing}" if missing else "read-only"

    async def _seed_baseline(self, run: _Run) -> str:
        current = run.items["baseline"]
        current_ids = set(_ids(current))
        missing = [m for m in self.config.baseline_media_ids if m not in current_ids]
        if not missing:
            run.report.after["baseline"] = _ids(current)
            return "complete"

        items = list(current) + [
            self._item(media_id, len(current) + i) for i, media_id in enumerate(missing)
        ]
        await self._write_items(run, "baseline", items, "seed_baseline")
        return f"appended {missing}"

    async def _compute_desired_ads(self, run: _Run, verify_media: bool = True) -> str:
        if run.desired_input is not None:
            desired = dedupe(run.desired_input)
        else:
            desired = await self._desired_from_state(run, verify_media)

        desired = ordered_union(list(run.required), desired)
        if len(desired) > self.config.max_ads_per_screen:
            logger.warning(
                "Ads list capped",
                screen_id=run.screen.id,
                desired=len(desired),
                cap=self.config.max_ads_per_screen,
            )
            desired = desired[: self.config.max_ads_per_screen]

        run.desired = desired
        run.report.desired_media_ids = desired
        pending = run.report.pending_media
        return f"{len(desired)} ads" + (f", pending media for {pending}" if pending else "")

    async def _replace_ads(self, run: _Run) -> str:
        current = _ids(run.items["ads"])
        if current == run.desired:
            run.report.after["ads"] = current
            return "unchanged"

        items = [self._item(media_id, i) for i, media_id in enumerate(run.desired)]
        await self._write_items(run, "ads", items, "replace_ads")
        added = [m for m in run.desired if m not in current]
        removed = [m for m in current if m not in run.desired]
        return f"added {added} removed {removed}"

    async def _rebuild_combined(self, run: _Run) -> str:
        baseline = run.items["baseline"]
        ads = run.items["ads"]
        run.expected = ordered_union(_ids(baseline), _ids(ads))
        run.report.expected_media_ids = run.expected

        current = _ids(run.items["combined"])
        if current == run.expected:
            run.report.after["combined"] = current
            return "unchanged"

        await self._write_items(run, "combined", self._combined_items(run), "rebuild_combined")
        return f"{len(run.expected)} items"

    async def _assign_push(self, run: _Run) -> str:
        screen = run.screen
        step = "assign_push"
        combined_id = run.ids["combined"]

        content = await self.client.get_screen_content(screen.player_id)
        if not content.ok:
            raise _failure(step, content, "read screen content")

        assigned = False
        source = content.data
        if not (source.source_type == SOURCE_TYPE_PLAYLIST and source.source_id == combined_id):
            result = await self.client.set_screen_content(
                screen.player_id, SOURCE_TYPE_PLAYLIST, combined_id
            )
            if not result.ok:
                raise _failure(step, result, "assign combined playlist")
            run.report.content_writes += 1
            assigned = True

        pushed = await self.client.push_screen(screen.player_id)
        if not pushed.ok:
            await self.store.record_push(screen, False, str(pushed.error))
            raise _failure(step, pushed, "push screen")
        run.report.pushed = True
        await self.store.record_push(screen, True)

        if assigned:
            return f"assigned from {source.source_type}:{source.source_id} and pushed"
        return "pushed"

    async def _verify(self, run: _Run) -> str:
        outcome = await self._hard_verify(run.screen, run.ids["combined"], run.expected, run)
        return await self._settle_verify(run.screen, run.report, outcome)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def _hard_verify(
        self,
        screen: Screen,
        combined_id: str,
        expected: list[int],
        run: _Run | None = None,
    ) -> VerifyOutcome:
        """Observe live state; on a mismatch re-patch (when ``run`` is given) and observe once more."""
        outcome = await self._observe(screen.player_id, combined_id, expected)
        if outcome.ok or outcome.code == ErrorCode.LAYOUT_FORBIDDEN or (
            outcome.code is not None and outcome.code.is_auth
        ):
            return outcome

        logger.warning(
            "Verify mismatch, retrying",
            screen_id=screen.id,
            reason=outcome.message,
            missing_media_ids=outcome.missing_media_ids,
        )
        await self.clock.sleep(self.config.verify_retry_delay_s)
        if run is not None:
            await self._repatch(run)

        retried = await self._observe(screen.player_id, combined_id, expected)
        retried.attempts = 2
        return retried

    async def _observe(self, player_id: str, combined_id: str, expected: list[int]) -> VerifyOutcome:
        content = await self.client.get_screen_content(player_id)
        if not content.ok:
            return VerifyOutcome(
                ok=False,
                expected_source_id=combined_id,
                code=content.code,
                message=f"screen read failed: {content.error}",
            )

        source = content.data
        if source.source_type == self.config.forbidden_source_type:
            return VerifyOutcome(
                ok=False,
                source_type=source.source_type,
                source_id=source.source_id,
                expected_source_id=combined_id,
                code=ErrorCode.LAYOUT_FORBIDDEN,
                message=f"screen is in {source.source_type} mode",
            )

        items = await self.client.get_playlist_items(combined_id)
        if not items.ok:
            return VerifyOutcome(
                ok=False,
                source_type=source.source_type,
                source_id=source.source_id,
                expected_source_id=combined_id,
                code=items.code,
                message=f"combined playlist read failed: {items.error}",
            )

        live = _ids(items.data)
        live_set = set(live)
        missing = [m for m in expected if m not in live_set]

        problems = []
        if source.source_type != SOURCE_TYPE_PLAYLIST:
            problems.append(f"source_type is {source.source_type}")
        if source.source_id != str(combined_id):
            problems.append(f"source_id is {source.source_id}, expected {combined_id}")
        if missing:
            problems.append(f"missing media {missing}")

        return VerifyOutcome(
            ok=not problems,
            source_type=source.source_type,
            source_id=source.source_id,
            expected_source_id=combined_id,
            live_media_ids=live,
            missing_media_ids=missing,
            code=ErrorCode.VERIFY_MISMATCH if problems else None,
            message="; ".join(problems) or None,
        )

    async def _repatch(self, run: _Run) -> None:
        """Re-send the combined items and assignment before the verify retry."""
        screen = run.screen
        combined_id = run.ids["combined"]
        writes = [
            await self.client.replace_playlist_items(combined_id, self._combined_items(run)),
            await self.client.set_screen_content(screen.player_id, SOURCE_TYPE_PLAYLIST, combined_id),
            await self.client.push_screen(screen.player_id),
        ]
        run.report.content_writes += 2
        for result in writes:
            if not result.ok:
                logger.warning("Re-patch call failed", screen_id=screen.id, error=str(result.error))

    async def _settle_verify(
        self, screen: Screen, report: ReconciliationReport, outcome: VerifyOutcome
    ) -> str:
        report.verify = outcome
        await self.store.record_verify(screen, outcome.ok, outcome.message)
        if outcome.ok:
            report.after["combined"] = outcome.live_media_ids
            return f"verified after {outcome.attempts} attempt(s)"
        raise StepFailure(
            StepError(
                "verify",
                outcome.code or ErrorCode.VERIFY_MISMATCH,
                outcome.message or "verification failed",
                {
                    "missing_media_ids": outcome.missing_media_ids,
                    "source_type": outcome.source_type,
                    "source_id": outcome.source_id,
                    "attempts": outcome.attempts,
                },
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _item(self, media_id: int, position: int) -> PlaylistItem:
        return PlaylistItem(
            id=media_id,
            type="media",
            duration=self.config.item_duration_s,
            priority=position + 1,
        )

    def _combined_items(self, run: _Run) -> list[PlaylistItem]:
        source = {item.id: item for item in run.items["ads"]}
        source.update({item.id: item for item in run.items["baseline"]})
        items = []
        for position, media_id in enumerate(run.expected):
            original = source.get(media_id)
            items.append(
                PlaylistItem(
                    id=media_id,
                    type=(original.type if original else None) or "media",
                    duration=(original.duration if original else None) or self.config.item_duration_s,
                    priority=position + 1,
                )
            )
        return items

    async def _write_items(
        self, run: _Run, role: str, items: list[PlaylistItem], step: str
    ) -> None:
        """Full-replace write followed by a read-back of the same playlist."""
        playlist_id = run.ids[role]
        result = await self.client.replace_playlist_items(playlist_id, items)
        if not result.ok:
            raise _failure(step, result, f"write {role} playlist {playlist_id}")
        run.report.content_writes += 1

        readback = await self.client.get_playlist_items(playlist_id)
        if not readback.ok:
            raise _failure(step, readback, f"read back {role} playlist {playlist_id}")

        live = _ids(readback.data)
        live_set = set(live)
        missing = [item.id for item in items if item.id not in live_set]
        run.items[role] = readback.data
        run.report.after[role] = live
        if missing:
            raise StepFailure(
                StepError(
                    step,
                    ErrorCode.VERIFY_MISMATCH,
                    f"{role} playlist {playlist_id} is missing media {missing} after write",
                    {"missing_media_ids": missing, "playlist_id": playlist_id},
                )
            )

    async def _desired_from_state(self, run: _Run, verify_media: bool = True) -> list[int]:
        screen = run.screen
        desired: list[int] = []
        advertisers = await self.inventory.list_airable_advertisers(
            self.config.bypass_contract_gating
        )

        for advertiser in advertisers:
            result = self.matcher.match_screen(screen, TargetRule.from_advertiser(advertiser))
            run.report.match_reasons[advertiser.id] = result.reason
            if not result.match:
                continue

            if verify_media:
                media_id = await self._resolve_media(advertiser)
            else:
                media_id = advertiser.canonical_media_id

            if media_id is None:
                run.report.pending_media.append(advertiser.id)
                continue
            desired.append(media_id)

        return desired

    async def _resolve_media(self, advertiser: Advertiser) -> int | None:
        """
        Remote media to air for an advertiser, or None while it is pending.

        The canonical ID is re-verified before reuse; a vanished one is
        cleared and the newest READY upload job is tried instead.
        """
        media_id = advertiser.canonical_media_id
        if media_id:
            if await self.media_exists(media_id):
                return media_id
            await self.inventory.clear_canonical_media(advertiser, "remote media not found")

        job = await self.inventory.latest_ready_job(advertiser.id)
        if job is not None and job.remote_media_id and job.remote_media_id != media_id:
            if await self.media_exists(job.remote_media_id):
                await self.inventory.set_canonical_media(advertiser, job.remote_media_id)
                return job.remote_media_id

        if self.config.resolve_uploads_inline and self.uploader is not None:
            due = await self.inventory.due_job(advertiser.id, self.clock.now())
            if due is not None:
                outcome = await self.uploader.process(due.id)
                if outcome.ready and outcome.remote_media_id:
                    return outcome.remote_media_id

        return None

    async def media_exists(self, media_id: int) -> bool:
        if media_id in self._media_checked:
            return self._media_checked[media_id]

        result = await self.client.get_media(media_id)
        if result.ok:
            exists = True
        elif result.code == ErrorCode.NOT_FOUND:
            exists = False
        else:
            raise _failure("compute_desired_ads", result, f"verify media {media_id}")

        self._media_checked[media_id] = exists
        return exists

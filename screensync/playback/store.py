"""
Persisted per-screen playlist identifiers and push/verify audit fields.

Writes are committed immediately and are last-write-wins; the engine
re-reads remote state before every decision, so no optimistic locking is
needed here.
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.clock import Clock, SystemClock
from screensync.common.logger import get_logger
from screensync.common.utils import truncate
from screensync.models import Screen, Status

logger = get_logger(__name__)

PLAYLIST_ROLES = ("baseline", "ads", "combined")


class PlaylistStateStore:
    """Session-scoped access to Screen playlist state."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_screen(self, screen_id: int) -> Screen | None:
        return await self.session.get(Screen, screen_id, populate_existing=True)

    async def get_screen_by_player(self, player_id: str) -> Screen | None:
        stmt = (
            select(Screen)
            .where(Screen.player_id == player_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_screens(
        self,
        location_id: int | None = None,
        linked_only: bool = True,
    ) -> list[Screen]:
        """Active screens, optionally limited to one location and to linked players."""
        stmt = select(Screen).where(Screen.status == Status.ACTIVE)
        if location_id is not None:
            stmt = stmt.where(Screen.location_id == location_id)
        if linked_only:
            stmt = stmt.where(Screen.player_id.is_not(None))
        stmt = stmt.order_by(Screen.id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_playlist_ids(
        self,
        screen: Screen,
        baseline: str | None = None,
        ads: str | None = None,
        combined: str | None = None,
    ) -> Screen:
        """Persist the given playlist IDs; None leaves a column unchanged."""
        if baseline is not None:
            screen.baseline_playlist_id = baseline
        if ads is not None:
            screen.ads_playlist_id = ads
        if combined is not None:
            screen.combined_playlist_id = combined
        await self.session.commit()
        logger.debug(
            "Playlist IDs saved",
            screen_id=screen.id,
            baseline=screen.baseline_playlist_id,
            ads=screen.ads_playlist_id,
            combined=screen.combined_playlist_id,
        )
        return screen

    async def clear_playlist_ids(self, screen: Screen) -> Screen:
        """Forget all three IDs so the next run reprovisions them."""
        screen.baseline_playlist_id = None
        screen.ads_playlist_id = None
        screen.combined_playlist_id = None
        await self.session.commit()
        logger.warning("Playlist IDs cleared", screen_id=screen.id)
        return screen

    async def record_push(self, screen: Screen, ok: bool, error: str | None = None) -> None:
        screen.last_push_at = self.clock.now()
        screen.last_push_result = "ok" if ok else "failed"
        screen.last_push_error = None if ok else truncate(error, 1000)
        await self.session.commit()

    async def record_verify(self, screen: Screen, ok: bool, error: str | None = None) -> None:
        screen.last_verify_at = self.clock.now()
        screen.last_verify_result = "ok" if ok else "failed"
        screen.last_verify_error = None if ok else truncate(error, 1000)
        await self.session.commit()

    # ------------------------------------------------------------------
    # Shared-playlist invariant
    # ------------------------------------------------------------------

    async def detect_shared_playlist(self, playlist_id: str) -> list[Screen]:
        """Screens referencing ``playlist_id`` in any playlist column, by screen id."""
        stmt = (
            select(Screen)
            .where(
                or_(
                    Screen.baseline_playlist_id == playlist_id,
                    Screen.ads_playlist_id == playlist_id,
                    Screen.combined_playlist_id == playlist_id,
                )
            )
            .order_by(Screen.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_shared_playlists(self) -> dict[str, list[int]]:
        """Audit: every playlist ID referenced by more than one screen."""
        stmt = select(
            Screen.id,
            Screen.baseline_playlist_id,
            Screen.ads_playlist_id,
            Screen.combined_playlist_id,
        ).order_by(Screen.id)
        result = await self.session.execute(stmt)

        holders: dict[str, list[int]] = defaultdict(list)
        for screen_id, *playlist_ids in result.all():
            for playlist_id in {p for p in playlist_ids if p}:
                holders[playlist_id].append(screen_id)
        return {pid: ids for pid, ids in holders.items() if len(ids) > 1}

    async def resolve_shared(self, screen: Screen) -> list[int]:
        """
        Enforce the one-screen-per-playlist rule for ``screen``'s IDs.

        The lowest screen id keeps a shared ID; every later holder has its
        three IDs cleared. Returns the ids of the screens that were cleared.
        """
        cleared: list[int] = []
        for playlist_id in {p for p in screen.playlist_ids if p}:
            holders = await self.detect_shared_playlist(playlist_id)
            if len(holders) <= 1:
                continue
            logger.error(
                "Shared playlist detected",
                playlist_id=playlist_id,
                screen_ids=[s.id for s in holders],
                keeper=holders[0].id,
            )
            for holder in holders[1:]:
                if holder.id not in cleared:
                    await self.clear_playlist_ids(holder)
                    cleared.append(holder.id)
        return cleared

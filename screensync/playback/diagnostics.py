"""
Read-only playback diagnostics: expected vs actual per screen.

Results are cached in Redis for a short TTL; every reconciliation of a
screen invalidates its entry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from screensync.common.cache import CacheKeys, redis_client
from screensync.common.exceptions import CacheError, NotFoundError
from screensync.common.logger import get_logger
from screensync.schemas.internal import PlaybackState

if TYPE_CHECKING:
    from screensync.platform.client import PlatformClient
    from screensync.playback.engine import ReconciliationEngine
    from screensync.playback.store import PlaylistStateStore

logger = get_logger(__name__)

SYNC_IN_SYNC = "in_sync"
SYNC_OUT_OF_SYNC = "out_of_sync"
SYNC_LAYOUT_FORBIDDEN = "layout_forbidden"
SYNC_UNLINKED = "unlinked"
SYNC_UNPROVISIONED = "unprovisioned"
SYNC_UNKNOWN = "unknown"


async def invalidate_playback_state(screen_id: int) -> None:
    """Drop the cached diagnostics of a screen (no-op without Redis)."""
    if not redis_client.is_connected:
        return
    try:
        await redis_client.delete(CacheKeys.playback_state(screen_id))
    except RedisError as e:
        logger.warning("Playback state invalidation failed", screen_id=screen_id, error=str(e))


class PlaybackDiagnostics:
    """Computes ``PlaybackState`` for diagnostics UIs."""

    def __init__(
        self,
        client: "PlatformClient",
        store: "PlaylistStateStore",
        engine: "ReconciliationEngine",
        ttl_s: int = 30,
    ):
        self.client = client
        self.store = store
        self.engine = engine
        self.ttl_s = ttl_s

    async def get_screen_playback_state(
        self, screen_id: int, use_cache: bool = True
    ) -> PlaybackState:
        screen = await self.store.get_screen(screen_id)
        if screen is None:
            raise NotFoundError(f"Screen {screen_id} not found", {"screen_id": screen_id})

        if use_cache:
            cached = await self._read_cache(screen_id)
            if cached is not None:
                return cached

        state = await self._compute(screen)
        state.checked_at = self.engine.clock.now().isoformat()
        await self._write_cache(state)
        return state

    async def _compute(self, screen) -> PlaybackState:
        state = PlaybackState(
            screen_id=screen.id,
            player_id=screen.player_id,
            sync_status=SYNC_UNKNOWN,
            combined_playlist_id=screen.combined_playlist_id,
        )
        if not screen.player_id:
            state.sync_status = SYNC_UNLINKED
            return state
        if not screen.is_provisioned:
            state.sync_status = SYNC_UNPROVISIONED
            return state

        plan = await self.engine.plan(screen)
        if not plan.ok:
            state.error = str(plan.error)
            return state
        state.expected = plan.expected_media_ids
        state.actual = plan.before.get("combined", [])

        content = await self.client.get_screen_content(screen.player_id)
        if not content.ok:
            state.error = str(content.error)
            return state
        state.source_type = content.data.source_type
        state.source_id = content.data.source_id

        if state.source_type == self.engine.config.forbidden_source_type:
            state.sync_status = SYNC_LAYOUT_FORBIDDEN
            return state

        actual = set(state.actual)
        expected = set(state.expected)
        state.missing_media_ids = [m for m in state.expected if m not in actual]
        state.unexpected_media_ids = [m for m in state.actual if m not in expected]

        assigned = state.source_type == "playlist" and state.source_id == screen.combined_playlist_id
        in_sync = assigned and not state.missing_media_ids and not state.unexpected_media_ids
        state.sync_status = SYNC_IN_SYNC if in_sync else SYNC_OUT_OF_SYNC
        return state

    async def _read_cache(self, screen_id: int) -> PlaybackState | None:
        if not redis_client.is_connected:
            return None
        try:
            data = await redis_client.get_json(CacheKeys.playback_state(screen_id))
        except (CacheError, RedisError) as e:
            logger.warning("Playback state cache read failed", screen_id=screen_id, error=str(e))
            return None
        if data is None:
            return None
        state = PlaybackState.from_dict(data)
        state.cached = True
        return state

    async def _write_cache(self, state: PlaybackState) -> None:
        if not redis_client.is_connected or self.ttl_s <= 0:
            return
        try:
            await redis_client.set_json(
                CacheKeys.playback_state(state.screen_id), state.to_dict(), ttl=self.ttl_s
            )
        except RedisError as e:
            logger.warning("Playback state cache write failed", screen_id=state.screen_id, error=str(e))

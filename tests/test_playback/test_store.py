"""
Tests for playlist state persistence and engine configuration.
"""

import pytest

from screensync.playback.config import EngineConfig
from screensync.playback.store import PlaylistStateStore
from tests.conftest import Seed
from tests.fakes import ManualClock


class TestPlaylistStateStore:
    """Tests for the per-screen playlist triplet."""

    @pytest.mark.asyncio
    async def test_save_keeps_unspecified_columns(
        self, store: PlaylistStateStore, seed: Seed
    ) -> None:
        screen = await seed.screen("101")
        await store.save_playlist_ids(screen, baseline="1", ads="2", combined="3")

        await store.save_playlist_ids(screen, combined="9")

        reloaded = await store.get_screen(screen.id)
        assert reloaded.playlist_ids == ("1", "2", "9")
        assert reloaded.is_provisioned

    @pytest.mark.asyncio
    async def test_get_screen_by_player(self, store: PlaylistStateStore, seed: Seed) -> None:
        screen = await seed.screen("101")

        assert (await store.get_screen_by_player("101")).id == screen.id
        assert await store.get_screen_by_player("999") is None

    @pytest.mark.asyncio
    async def test_shared_playlists_resolved_to_lowest_screen(
        self, store: PlaylistStateStore, seed: Seed
    ) -> None:
        first = await seed.screen("101")
        second = await seed.screen("102")
        third = await seed.screen("103")
        await store.save_playlist_ids(first, baseline="1", ads="2", combined="3")
        await store.save_playlist_ids(second, baseline="4", ads="5", combined="3")
        await store.save_playlist_ids(third, baseline="1", ads="6", combined="7")

        assert await store.find_shared_playlists() == {
            "1": [first.id, third.id],
            "3": [first.id, second.id],
        }

        cleared = await store.resolve_shared(first)

        assert sorted(cleared) == [second.id, third.id]
        assert first.playlist_ids == ("1", "2", "3")
        assert second.playlist_ids == (None, None, None)
        assert third.playlist_ids == (None, None, None)
        assert await store.find_shared_playlists() == {}

    @pytest.mark.asyncio
    async def test_record_push_and_verify(
        self, store: PlaylistStateStore, clock: ManualClock, seed: Seed
    ) -> None:
        screen = await seed.screen("101")

        await store.record_push(screen, False, "HTTP 500" * 300)
        await store.record_verify(screen, True)

        assert screen.last_push_result == "failed"
        assert len(screen.last_push_error) == 1003
        assert screen.last_verify_result == "ok"
        assert screen.last_verify_at == clock.now()

    @pytest.mark.asyncio
    async def test_list_screens_filters(self, store: PlaylistStateStore, seed: Seed) -> None:
        venue = await seed.location("Markthal", city="Rotterdam")
        linked = await seed.screen("101", venue)
        await seed.screen(None, venue)
        await seed.screen("102")

        assert [s.id for s in await store.list_screens(venue.id)] == [linked.id]
        assert len(await store.list_screens(venue.id, linked_only=False)) == 2
        assert len(await store.list_screens()) == 2


class TestEngineConfig:
    """Tests for derived configuration values."""

    def test_playlist_name(self) -> None:
        assert EngineConfig().playlist_name("combined", "12345") == "EVZ | COMBINED | SCREEN | 12345"

    def test_retry_schedule_saturates(self) -> None:
        config = EngineConfig(retry_schedule_s=(60, 300))
        assert [config.retry_delay_s(a) for a in (0, 1, 2, 3, 9)] == [60, 60, 300, 300, 300]

    def test_poll_intervals_saturate(self) -> None:
        config = EngineConfig(poll_intervals_s=(2, 4, 8))
        assert [config.poll_interval_s(p) for p in range(5)] == [2, 4, 8, 8, 8]

    def test_from_settings(self) -> None:
        config = EngineConfig.from_settings()
        assert config.baseline_media_ids == (1, 2)
        assert config.playlist_prefix == "EVZ"
        assert config.max_upload_attempts == 5

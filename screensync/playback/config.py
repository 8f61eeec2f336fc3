"""
Explicit engine configuration.

Built once from Settings and passed into the engine, the upload worker and
the publish pipeline; nothing below this layer reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass

from screensync.common.config import Settings, get_settings


@dataclass(frozen=True)
class EngineConfig:
    # Playlists
    playlist_prefix: str = "EVZ"
    baseline_media_ids: tuple[int, ...] = ()
    max_ads_per_screen: int = 20
    item_duration_s: int = 15
    forbidden_source_type: str = "layout"
    verify_retry_delay_s: float = 3.0
    inter_screen_delay_s: float = 0.5

    # Desired-ads computation
    bypass_contract_gating: bool = False
    resolve_uploads_inline: bool = False

    # Uploads
    min_upload_bytes: int = 200 * 1024
    allowed_mime_types: tuple[str, ...] = ("video/mp4",)
    max_upload_attempts: int = 5
    retry_schedule_s: tuple[int, ...] = (60, 300, 900, 3600, 21600)
    poll_intervals_s: tuple[float, ...] = (2, 4, 8, 15)
    poll_timeout_s: float = 120.0
    stuck_after_polls: int = 5
    # In-flight attempts older than poll_timeout_s + this are treated as abandoned
    upload_abandon_margin_s: float = 300.0

    # Publish mutex
    stale_lock_s: int = 900
    concurrent_wait_s: float = 120.0
    concurrent_poll_interval_s: float = 2.0

    # Diagnostics
    playback_state_ttl_s: int = 30

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EngineConfig":
        s = settings or get_settings()
        return cls(
            playlist_prefix=s.playback.playlist_prefix,
            baseline_media_ids=tuple(s.playback.baseline_media_ids),
            max_ads_per_screen=s.playback.max_ads_per_screen,
            item_duration_s=s.playback.item_duration_s,
            forbidden_source_type=s.playback.forbidden_source_type,
            verify_retry_delay_s=s.playback.verify_retry_delay_s,
            inter_screen_delay_s=s.playback.inter_screen_delay_s,
            bypass_contract_gating=s.publish.bypass_contract_gating,
            resolve_uploads_inline=s.upload.resolve_inline,
            min_upload_bytes=s.upload.min_bytes,
            allowed_mime_types=tuple(s.upload.allowed_mime_types),
            max_upload_attempts=s.upload.max_attempts,
            retry_schedule_s=tuple(s.upload.retry_schedule_s),
            poll_intervals_s=tuple(s.upload.poll_intervals_s),
            poll_timeout_s=s.upload.poll_timeout_s,
            stuck_after_polls=s.upload.stuck_after_polls,
            upload_abandon_margin_s=s.upload.abandon_margin_s,
            stale_lock_s=s.publish.stale_lock_s,
            concurrent_wait_s=s.publish.concurrent_wait_s,
            concurrent_poll_interval_s=s.publish.concurrent_poll_interval_s,
            playback_state_ttl_s=s.monitoring.playback_state_ttl_s,
        )

    def playlist_name(self, role: str, player_id: str) -> str:
        """Canonical remote name, e.g. ``EVZ | COMBINED | SCREEN | 12345``."""
        return f"{self.playlist_prefix} | {role.upper()} | SCREEN | {player_id}"

    def retry_delay_s(self, attempt: int) -> int:
        """Backoff after the given (1-based) failed attempt; the last value repeats."""
        schedule = self.retry_schedule_s or (60,)
        return schedule[min(max(attempt, 1), len(schedule)) - 1]

    def poll_interval_s(self, poll: int) -> float:
        intervals = self.poll_intervals_s or (2.0,)
        return intervals[min(poll, len(intervals) - 1)]

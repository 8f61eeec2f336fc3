"""
Per-screen playlist reconciliation.
"""

from screensync.playback.config import EngineConfig
from screensync.playback.diagnostics import PlaybackDiagnostics, invalidate_playback_state
from screensync.playback.engine import ReconciliationEngine, StepFailure
from screensync.playback.inventory import AdInventory
from screensync.playback.store import PLAYLIST_ROLES, PlaylistStateStore

__all__ = [
    "EngineConfig",
    "ReconciliationEngine",
    "StepFailure",
    "PlaylistStateStore",
    "PLAYLIST_ROLES",
    "AdInventory",
    "PlaybackDiagnostics",
    "invalidate_playback_state",
]

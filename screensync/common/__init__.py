"""
Common utilities and shared modules.
"""

from screensync.common.cache import CacheKeys, redis_client
from screensync.common.clock import Clock, SystemClock
from screensync.common.config import get_settings, settings
from screensync.common.database import Base, db, get_session, init_db
from screensync.common.exceptions import ErrorCode, ScreenSyncError
from screensync.common.logger import get_logger, log_context, logger

__all__ = [
    "settings",
    "get_settings",
    "logger",
    "get_logger",
    "log_context",
    "db",
    "init_db",
    "get_session",
    "Base",
    "redis_client",
    "CacheKeys",
    "Clock",
    "SystemClock",
    "ErrorCode",
    "ScreenSyncError",
]

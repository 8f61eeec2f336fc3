"""
Redis cache client with async support.

Backs the short-lived playback-state diagnostics cache.
"""

from __future__ import annotations

from typing import Any

from redis.asyncio import ConnectionPool, Redis

from screensync.common.config import get_settings
from screensync.common.exceptions import CacheError
from screensync.common.logger import get_logger
from screensync.common.utils import json_dumps, json_loads

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client wrapper.

    Provides high-level caching operations with JSON serialization.
    """

    def __init__(self) -> None:
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    @property
    def client(self) -> Redis:
        """Get the Redis client."""
        if self._client is None:
            raise RuntimeError("Redis not initialized. Call connect() first.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Initialize Redis connection pool."""
        settings = get_settings()

        self._pool = ConnectionPool.from_url(
            settings.redis.url,
            max_connections=settings.redis.pool_size,
            decode_responses=True,
        )
        self._client = Redis(connection_pool=self._pool)

        await self._client.ping()

        logger.info(
            "Redis connected",
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
        )

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            await self.client.ping()
            return True
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    # ==================== Basic Operations ====================

    async def get(self, key: str) -> str | None:
        """Get a string value."""
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Set a string value with optional TTL in seconds."""
        result = await self.client.set(key, value, ex=ttl)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys."""
        if not keys:
            return 0
        return await self.client.delete(*keys)

    # ==================== JSON Operations ====================

    async def get_json(self, key: str) -> Any | None:
        """Get and deserialize a JSON value."""
        value = await self.get(key)
        if value is None:
            return None
        try:
            return json_loads(value)
        except Exception as e:
            raise CacheError(f"Corrupt cache entry: {key}", {"error": str(e)}) from e

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Serialize and store a JSON value."""
        return await self.set(key, json_dumps(value), ttl=ttl)


class CacheKeys:
    """Cache key builders."""

    PREFIX = "screensync"

    @staticmethod
    def playback_state(screen_id: int) -> str:
        return f"{CacheKeys.PREFIX}:playback_state:{screen_id}"


# Global Redis client instance
redis_client = RedisClient()

"""
Redis manager for handling Redis connections and related utilities.

This module provides the RedisManager class, which lazily creates a single asynchronous Redis connection and
exposes the small set of commands used by sessions and rate limiting.

Logging:
    - Logs connection attempts, successes, and failures.
    - Connection failures surface as HTTP 503 so a Redis outage never looks like an authorization failure.
"""

from typing import Optional

from fastapi import HTTPException, status
import redis.asyncio as redis_async
from redis.exceptions import RedisError

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger

logger = get_logger(prefix="[REDIS]")

REDIS_UNAVAILABLE_MSG: str = "Session and rate limiting service unavailable. Please try again later."


class RedisManager:
    """
    Manages a single Redis connection for the application.

    Attributes:
        redis_url: The Redis connection URL.
        _redis: The cached Redis connection instance.
    """

    def __init__(self, redis_url: Optional[str] = None) -> None:
        self.redis_url: str = redis_url or settings.REDIS_URL
        self._redis: Optional[redis_async.Redis] = None
        self.logger = logger

    async def get_redis(self) -> redis_async.Redis:
        """
        Get or create the Redis connection.

        Raises:
            HTTPException: If Redis is unavailable.
        """
        if self._redis is None:
            try:
                self.logger.info("Connecting to Redis at %s", self.redis_url)
                client = redis_async.from_url(self.redis_url, decode_responses=True)
                await client.ping()
                self._redis = client
                self.logger.info("Connected to Redis at %s", self.redis_url)
            except (RedisError, OSError) as conn_exc:
                self.logger.error("Failed to connect to Redis: %s", conn_exc, exc_info=True)
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail={"error": "SERVICE_UNAVAILABLE", "message": REDIS_UNAVAILABLE_MSG},
                ) from conn_exc
        return self._redis

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        redis_conn = await self.get_redis()
        await redis_conn.setex(key, max(int(ttl_seconds), 1), value)

    async def get(self, key: str) -> Optional[str]:
        redis_conn = await self.get_redis()
        return await redis_conn.get(key)

    async def delete(self, key: str) -> None:
        redis_conn = await self.get_redis()
        await redis_conn.delete(key)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis connection closed")


redis_manager = RedisManager()

"""
Redis Connection Management

Redis connection with a simple circuit breaker and the travel-duration
cache. Every caller degrades gracefully: if Redis is down, routing results
are simply not cached.
"""

import json
import logging
import time
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.config import settings

logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "rutt:v1:"

# Seconds to wait before trying to reconnect after a failed connection
RECONNECT_COOLDOWN = 30.0


class RedisClient:
    """
    Manages Redis connection as a singleton with circuit breaker pattern.

    Features:
    - Connection pooling
    - Automatic retries
    - Short timeouts (cache must never slow down availability)
    - Reconnect cooldown after a failure
    """

    _client: Optional[Redis] = None
    _connected: bool = False
    _last_failure: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if unavailable
        """
        if cls._client is not None and cls._connected:
            return cls._client

        if cls._last_failure and time.monotonic() - cls._last_failure < RECONNECT_COOLDOWN:
            return None

        try:
            retry = Retry(ExponentialBackoff(), retries=2)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1.0,
                socket_timeout=1.0,
                retry_on_timeout=True,
                retry=retry,
            )

            await cls._client.ping()
            cls._connected = True
            cls._last_failure = 0.0
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._mark_failed()
            return None

    @classmethod
    def _mark_failed(cls) -> None:
        cls._connected = False
        cls._client = None
        cls._last_failure = time.monotonic()

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides Redis client.

    Returns None if Redis is unavailable (circuit breaker open).
    """
    return await RedisClient.get_client()


class TravelCache:
    """
    Redis cache for routed travel durations.

    Key: rutt:v1:travel:{lat1},{lon1}:{lat2},{lon2} (5 decimals, ~1 m)

    Only successful routing answers are stored. Misses and Redis errors
    both return None.
    """

    TRAVEL_PREFIX = f"{APP_PREFIX}travel:"

    def __init__(self, redis_client: Optional[Redis], ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl if ttl is not None else settings.routing_cache_ttl

    def _key(
        self,
        origin: tuple[float, float],
        destination: tuple[float, float],
    ) -> str:
        """Generate cache key with namespace."""
        return (
            f"{self.TRAVEL_PREFIX}"
            f"{origin[0]:.5f},{origin[1]:.5f}:{destination[0]:.5f},{destination[1]:.5f}"
        )

    async def get(
        self,
        origin: tuple[float, float],
        destination: tuple[float, float],
    ) -> Optional[tuple[float, float]]:
        """
        Get a cached (duration_seconds, distance_meters) pair.

        Returns:
            Cached pair or None if missing/Redis unavailable
        """
        if self.redis is None:
            return None

        try:
            data = await self.redis.get(self._key(origin, destination))
            if data is None:
                return None

            payload = json.loads(data)
            return float(payload["duration"]), float(payload["distance"])

        except RedisError as e:
            logger.warning(f"Travel cache read failed: {e}")
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed travel cache entry: {e}")
            return None

    async def set(
        self,
        origin: tuple[float, float],
        destination: tuple[float, float],
        duration_seconds: float,
        distance_meters: float,
    ) -> bool:
        """
        Store a routed duration.

        Returns:
            True if stored, False if Redis unavailable
        """
        if self.redis is None:
            return False

        try:
            await self.redis.setex(
                self._key(origin, destination),
                self.ttl,
                json.dumps({"duration": duration_seconds, "distance": distance_meters}),
            )
            return True
        except RedisError as e:
            logger.warning(f"Travel cache write failed: {e}")
            return False


async def get_travel_cache() -> TravelCache:
    """
    Get TravelCache instance.

    Returns TravelCache even if Redis unavailable (graceful degradation).
    """
    client = await get_redis()
    return TravelCache(client)


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False

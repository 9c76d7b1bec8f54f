"""
Shared cache management.

Backs the SSO code store, server-side sessions and global logout flags.
Redis is the production backend; MemoryCache is a single-process stand-in
for development and tests and is refused in production by Settings.

Unlike a plain read-through cache, callers here depend on the backend for
security decisions, so an unreachable backend raises StoreError instead of
silently returning "not found".
"""
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from sso_exchange.config import settings
from sso_exchange.core.exceptions import StoreError

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache manager with connection pooling."""

    def __init__(self, url: str, password: str = ""):
        """Initialize Redis connection settings."""
        self.url = url
        self.password = password
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis = aioredis.from_url(
                self.url,
                password=self.password or None,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50,
            )
            await self.redis.ping()
            logger.info("Connected to Redis")
        except RedisError as e:
            # Keep the client: operations will raise StoreError until Redis is back
            logger.error(f"Could not connect to Redis: {e}")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    def _client(self) -> aioredis.Redis:
        if self.redis is None:
            raise StoreError("Redis is not connected")
        return self.redis

    async def ping(self) -> bool:
        try:
            return bool(await self._client().ping())
        except RedisError as e:
            raise StoreError(f"Redis ping failed: {e}") from e

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get a JSON value.

        Args:
            key: Cache key

        Returns:
            Decoded value or None if not found
        """
        try:
            value = await self._client().get(key)
        except RedisError as e:
            raise StoreError(f"Redis GET failed: {e}") from e
        return json.loads(value) if value is not None else None

    async def set_json(self, key: str, value: Any, ttl: int, nx: bool = False) -> bool:
        """
        Set a JSON value with TTL.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds
            nx: Only set if the key does not exist

        Returns:
            True if the value was written
        """
        try:
            result = await self._client().set(key, json.dumps(value), ex=ttl, nx=nx)
        except RedisError as e:
            raise StoreError(f"Redis SET failed: {e}") from e
        return bool(result)

    async def getdel_json(self, key: str) -> Optional[Any]:
        """
        Atomically read and delete a JSON value (Redis GETDEL).

        Concurrent callers on the same key see the value at most once.
        """
        try:
            value = await self._client().getdel(key)
        except RedisError as e:
            raise StoreError(f"Redis GETDEL failed: {e}") from e
        return json.loads(value) if value is not None else None

    async def delete(self, key: str) -> bool:
        """
        Delete key from cache.

        Returns:
            True if key was deleted
        """
        try:
            return bool(await self._client().delete(key))
        except RedisError as e:
            raise StoreError(f"Redis DEL failed: {e}") from e


class MemoryCache:
    """
    In-process cache with the RedisCache interface.

    Single process only: state is neither shared between workers nor between
    the central and tenant domains when they run as separate processes.
    getdel_json never awaits between reading and removing an entry, so it is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[str, float]] = {}

    async def connect(self) -> None:
        logger.warning("Using in-process memory cache (single process only)")

    async def disconnect(self) -> None:
        self._data.clear()

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self._data.clear()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get_json(self, key: str) -> Optional[Any]:
        value = self._live(key)
        return json.loads(value) if value is not None else None

    async def set_json(self, key: str, value: Any, ttl: int, nx: bool = False) -> bool:
        if nx and self._live(key) is not None:
            return False
        self._data[key] = (json.dumps(value), time.monotonic() + ttl)
        return True

    async def getdel_json(self, key: str) -> Optional[Any]:
        entry = self._data.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            return None
        return json.loads(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


def build_cache() -> RedisCache | MemoryCache:
    """Create the cache backend selected by settings."""
    if settings.cache_backend == "memory":
        return MemoryCache()
    return RedisCache(settings.redis_url, settings.redis_password)


# Global cache instance
cache = build_cache()


def get_cache() -> RedisCache | MemoryCache:
    """Return the process-wide cache (dependency and middleware accessor)."""
    return cache

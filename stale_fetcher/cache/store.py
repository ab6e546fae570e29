"""
Cache store backends.

The fetcher only needs get/set with a per-entry TTL; values are JSON text.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .core import CacheEntry
from .errors import CacheReadError, CacheWriteError

logger = logging.getLogger("cache.store")


class CacheStore(Protocol):
    """Key-value store with per-entry TTL."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_ms: int) -> None: ...


class InMemoryCacheStore:
    """
    Process-local cache store.

    Expired entries are dropped lazily on read. No awaits happen while the
    dict is touched, so no lock is needed on a single event loop.
    """

    def __init__(self):
        self._cache: Dict[str, CacheEntry] = {}
        self._stats = {"gets": 0, "sets": 0, "expired": 0}

    async def get(self, key: str) -> Optional[str]:
        self._stats["gets"] += 1
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_expired:
            del self._cache[key]
            self._stats["expired"] += 1
            logger.debug(f"Expired cache entry: {key}")
            return None
        return entry.value

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise CacheWriteError(f"TTL must be positive, got {ttl_ms}ms")
        self._cache[key] = CacheEntry(key=key, value=value, ttl_ms=ttl_ms)
        self._stats["sets"] += 1

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry access, expired or not."""
        return self._cache.get(key)

    def invalidate(self, key: str) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        if key in self._cache:
            del self._cache[key]
            logger.info(f"Invalidated cache: {key}")
            return True
        return False

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "memory", "entries": len(self._cache), **self._stats}


class RedisCacheStore:
    """Redis-backed store for deployments that share a cache between processes."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        connect_timeout: float = 3.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self._url = redis_url
        self._connect_timeout = connect_timeout
        self._redis: Optional[aioredis.Redis] = client

    async def connect(self) -> None:
        self._redis = aioredis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout,
            socket_timeout=self._connect_timeout,
        )
        # Verify connectivity
        await self._redis.ping()
        logger.info(f"Redis connected: {self._url}")

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def ping(self) -> bool:
        if not self._redis:
            return False
        try:
            await self._redis.ping()
        except RedisError:
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._redis:
            raise CacheReadError("Redis cache is not connected")
        try:
            value = await self._redis.get(key)
        except RedisError as exc:
            raise CacheReadError(f"Redis GET failed for {key}: {exc}") from exc
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        if not self._redis:
            raise CacheWriteError("Redis cache is not connected")
        try:
            await self._redis.set(key, value, px=int(ttl_ms))
        except RedisError as exc:
            raise CacheWriteError(f"Redis SET failed for {key}: {exc}") from exc

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "connected": self.connected}

"""
Tests for the cache store backends.
"""
import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stale_fetcher.cache.errors import CacheReadError, CacheWriteError
from stale_fetcher.cache.store import InMemoryCacheStore, RedisCacheStore


# =============================================================================
# In-memory store
# =============================================================================

@pytest.mark.asyncio
async def test_memory_store_round_trip():
    store = InMemoryCacheStore()
    await store.set("k", '{"url": "some"}', ttl_ms=1000)

    assert await store.get("k") == '{"url": "some"}'
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_memory_store_expires_entries():
    store = InMemoryCacheStore()
    await store.set("k", "1", ttl_ms=20)
    await asyncio.sleep(0.05)

    assert await store.get("k") is None
    assert store.entry("k") is None
    assert store.get_stats()["expired"] == 1


@pytest.mark.asyncio
async def test_memory_store_overwrite_resets_ttl():
    store = InMemoryCacheStore()
    await store.set("k", "old", ttl_ms=1000)
    await store.set("k", "new", ttl_ms=1000)

    entry = store.entry("k")
    assert entry.value == "new"
    assert 0 < entry.remaining_ttl_ms <= 1000


@pytest.mark.asyncio
async def test_memory_store_rejects_non_positive_ttl():
    with pytest.raises(CacheWriteError):
        await InMemoryCacheStore().set("k", "v", ttl_ms=0)


@pytest.mark.asyncio
async def test_memory_store_invalidate_and_clear():
    store = InMemoryCacheStore()
    await store.set("a", "1", ttl_ms=1000)
    await store.set("b", "2", ttl_ms=1000)

    assert store.invalidate("a") is True
    assert store.invalidate("a") is False
    assert store.clear() == 1
    assert store.get_stats()["entries"] == 0


# =============================================================================
# Redis store
# =============================================================================

class DummyRedis:
    """Subset of redis.asyncio.Redis used by the store."""

    def __init__(self, fail: bool = False) -> None:
        self.values: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.values.get(key)

    async def set(self, key, value, px=None):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.calls.append((key, value, px))
        self.values[key] = value

    async def ping(self):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return True


@pytest.mark.asyncio
async def test_redis_store_sets_with_millisecond_ttl():
    client = DummyRedis()
    store = RedisCacheStore(client=client)

    await store.set("k", '{"a": 1}', ttl_ms=1500)

    assert client.calls == [("k", '{"a": 1}', 1500)]
    assert await store.get("k") == '{"a": 1}'


@pytest.mark.asyncio
async def test_redis_store_decodes_bytes():
    client = DummyRedis()
    client.values["k"] = b'{"a": 1}'

    assert await RedisCacheStore(client=client).get("k") == '{"a": 1}'


@pytest.mark.asyncio
async def test_redis_read_failure_is_cache_read_error():
    store = RedisCacheStore(client=DummyRedis(fail=True))

    with pytest.raises(CacheReadError) as exc_info:
        await store.get("k")
    assert isinstance(exc_info.value.__cause__, RedisConnectionError)


@pytest.mark.asyncio
async def test_redis_write_failure_is_cache_write_error():
    store = RedisCacheStore(client=DummyRedis(fail=True))

    with pytest.raises(CacheWriteError):
        await store.set("k", "v", ttl_ms=1000)


@pytest.mark.asyncio
async def test_redis_store_requires_connection():
    store = RedisCacheStore()

    assert store.connected is False
    assert await store.ping() is False
    with pytest.raises(CacheReadError):
        await store.get("k")


@pytest.mark.asyncio
async def test_redis_ping_reports_failures():
    assert await RedisCacheStore(client=DummyRedis()).ping() is True
    assert await RedisCacheStore(client=DummyRedis(fail=True)).ping() is False

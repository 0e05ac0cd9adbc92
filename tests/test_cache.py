"""Test cache implementations and the signed URL cache."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from eventcraft.storage.cache import (
    SIGNED_URL_TTL,
    MemoryCache,
    NoOpCache,
    RedisCache,
    get_cached_signed_url,
    get_cached_signed_urls,
    invalidate_signed_url,
    signed_url_cache_key,
)
from eventcraft.storage.r2 import MemoryObjectStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingStore(MemoryObjectStore):
    def __init__(self, failing: set[str] | None = None):
        super().__init__("https://r2.test/")
        self.signed: list[str] = []
        self.failing = failing or set()

    async def generate_signed_url(self, key: str, expires_in: int = 3600) -> str:
        if key in self.failing:
            raise RuntimeError("signing failed")
        self.signed.append(key)
        return await super().generate_signed_url(key, expires_in)


class TestMemoryCache:
    """In-process TTL cache."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        cache = MemoryCache()

        await cache.set("k", {"v": 1})
        assert await cache.get("k") == {"v": 1}

        await cache.delete("k")
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_expiry(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", {"v": 1}, ttl=10)

        clock.now += 9
        assert await cache.get("k") == {"v": 1}

        clock.now += 1
        assert await cache.get("k") is None
        assert cache.get_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_cleanup(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("short", {}, ttl=1)
        await cache.set("long", {}, ttl=100)

        clock.now += 5

        assert cache.cleanup() == 1
        assert [entry["key"] for entry in cache.get_stats()["entries"]] == ["long"]

    @pytest.mark.asyncio
    async def test_shutdown_clears(self):
        cache = MemoryCache()
        await cache.set("k", {})
        await cache.shutdown()
        assert cache.get_stats()["size"] == 0


class TestRedisCache:
    """Redis cache with a mocked client."""

    @pytest.mark.asyncio
    async def test_get_and_set(self):
        cache = RedisCache("redis://localhost:6379")
        cache.redis = AsyncMock()
        cache.redis.get.return_value = json.dumps({"url": "https://x"})

        assert await cache.get("k") == {"url": "https://x"}

        await cache.set("k", {"url": "https://y"}, ttl=60)
        cache.redis.setex.assert_awaited_once_with("k", 60, '{"url": "https://y"}')

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self):
        cache = RedisCache("redis://localhost:6379")
        cache.redis = AsyncMock()
        cache.redis.get.side_effect = RedisConnectionError("down")
        cache.redis.setex.side_effect = RedisConnectionError("down")
        cache.redis.delete.side_effect = RedisConnectionError("down")

        assert await cache.get("k") is None
        await cache.set("k", {})
        await cache.delete("k")

    @pytest.mark.asyncio
    async def test_corrupt_value(self):
        cache = RedisCache("redis://localhost:6379")
        cache.redis = AsyncMock()
        cache.redis.get.return_value = "{not json"

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_disconnected_is_noop(self):
        cache = RedisCache("redis://localhost:6379")

        assert await cache.get("k") is None
        await cache.set("k", {})
        await cache.delete("k")
        await cache.shutdown()


@pytest.mark.asyncio
async def test_noop_cache():
    cache = NoOpCache()
    await cache.set("k", {"v": 1})
    assert await cache.get("k") is None


class TestSignedUrls:
    """Signed URL caching."""

    @pytest.mark.asyncio
    async def test_cached_after_first_call(self):
        store = CountingStore()
        cache = MemoryCache()

        first = await get_cached_signed_url(store, cache, "a.png")
        second = await get_cached_signed_url(store, cache, "a.png")

        assert first == second == "https://r2.test/a.png"
        assert store.signed == ["a.png"]

    @pytest.mark.asyncio
    async def test_ttl_capped(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        store = CountingStore()

        await get_cached_signed_url(store, cache, "a.png", expires_in=3600)
        clock.now += SIGNED_URL_TTL
        await get_cached_signed_url(store, cache, "a.png", expires_in=3600)

        assert store.signed == ["a.png", "a.png"]

    @pytest.mark.asyncio
    async def test_key_includes_expiry(self):
        assert signed_url_cache_key("a.png", 600) == "signed-url:a.png_600"

    @pytest.mark.asyncio
    async def test_invalidate(self):
        store = CountingStore()
        cache = MemoryCache()
        await get_cached_signed_url(store, cache, "a.png")

        await invalidate_signed_url(cache, "a.png")
        await get_cached_signed_url(store, cache, "a.png")

        assert store.signed == ["a.png", "a.png"]

    @pytest.mark.asyncio
    async def test_batch_skips_failures(self):
        store = CountingStore(failing={"bad.png"})

        urls = await get_cached_signed_urls(store, MemoryCache(), ["a.png", "bad.png", "b.png"])

        assert urls == {"a.png": "https://r2.test/a.png", "b.png": "https://r2.test/b.png"}

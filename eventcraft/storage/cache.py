"""Cache implementations and the signed URL cache built on them."""

import asyncio
import json
import time
from typing import Any

from loguru import logger
from redis.exceptions import RedisError

from .protocols import Cache, ObjectStore

# 10 minutes under the default signed URL expiry
SIGNED_URL_TTL = 50 * 60


def signed_url_cache_key(r2_key: str, expires_in: int) -> str:
    return f"signed-url:{r2_key}_{expires_in}"


class MemoryCache:
    """In-process TTL cache."""

    def __init__(self, clock=time.time):
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}
        self._clock = clock

    async def startup(self) -> None:
        logger.info("Using in-memory cache")

    async def shutdown(self) -> None:
        self.clear()

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: dict[str, Any], ttl: int = 3600) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "entries": [
                {"key": key, "expires_at": expires_at}
                for key, (_, expires_at) in self._entries.items()
            ],
        }


class RedisCache:
    """Redis cache implementation."""

    def __init__(self, redis_url: str):
        """Initialize Redis cache.

        Args:
            redis_url: Redis connection URL.
        """
        self.redis_url = redis_url
        self.redis = None

    async def startup(self) -> None:
        """Initialize Redis connection."""
        try:
            import redis.asyncio as redis

            self.redis = redis.from_url(self.redis_url, decode_responses=True)
            await self.redis.ping()
            logger.info("Redis cache connected")
        except (RedisError, OSError) as e:
            logger.warning(f"Redis connection failed: {e}. Cache disabled.")
            self.redis = None

    async def shutdown(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()

    async def get(self, key: str) -> dict[str, Any] | None:
        """Get cached value.

        Args:
            key: Cache key.

        Returns:
            Cached data if found, None otherwise.
        """
        if not self.redis:
            return None

        try:
            data = await self.redis.get(key)
            return json.loads(data) if data else None
        except (json.JSONDecodeError, RedisError) as e:
            logger.debug(f"Cache get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: dict[str, Any], ttl: int = 3600) -> None:
        """Set cached value with TTL.

        Args:
            key: Cache key.
            value: Data to cache.
            ttl: Time to live in seconds.
        """
        if not self.redis:
            return

        try:
            await self.redis.setex(key, ttl, json.dumps(value))
        except (TypeError, RedisError) as e:
            logger.debug(f"Cache set failed for key {key}: {e}")

    async def delete(self, key: str) -> None:
        if not self.redis:
            return

        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.debug(f"Cache delete failed for key {key}: {e}")


class NoOpCache:
    """No-op cache implementation when caching is disabled."""

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def get(self, key: str) -> dict[str, Any] | None:
        """Always returns None (no caching)."""
        return None

    async def set(self, key: str, value: dict[str, Any], ttl: int = 3600) -> None:
        pass

    async def delete(self, key: str) -> None:
        pass


async def get_cached_signed_url(
    store: ObjectStore, cache: Cache, r2_key: str, expires_in: int = 3600
) -> str:
    """Signed URL for a key, reusing a cached one while it is still valid."""
    cache_key = signed_url_cache_key(r2_key, expires_in)
    cached = await cache.get(cache_key)
    if cached and cached.get("url"):
        return cached["url"]

    url = await store.generate_signed_url(r2_key, expires_in)
    await cache.set(cache_key, {"url": url}, ttl=min(SIGNED_URL_TTL, expires_in))
    return url


async def get_cached_signed_urls(
    store: ObjectStore, cache: Cache, r2_keys: list[str], expires_in: int = 3600
) -> dict[str, str]:
    """Signed URLs for many keys; keys that fail to sign are left out."""

    async def sign(key: str) -> tuple[str, str | None]:
        try:
            return key, await get_cached_signed_url(store, cache, key, expires_in)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Signing {key} failed: {e}")
            return key, None

    results = await asyncio.gather(*(sign(key) for key in r2_keys))
    return {key: url for key, url in results if url}


async def invalidate_signed_url(cache: Cache, r2_key: str, expires_in: int = 3600) -> None:
    await cache.delete(signed_url_cache_key(r2_key, expires_in))

"""Storage module with factories for the repository, object store and cache."""

from loguru import logger

from ..config import Settings, settings
from .cache import MemoryCache, NoOpCache, RedisCache, get_cached_signed_url
from .database import SQLRepository
from .protocols import Cache, ObjectStore, Repository
from .r2 import MemoryObjectStore, R2ObjectStore
from .uploads import UploadConfig, UploadResult, upload_image_with_webp


def create_repository(database_url: str | None = None) -> Repository:
    """Create repository instance based on database URL.

    Args:
        database_url: Database URL. Uses settings if not provided.

    Returns:
        Repository instance.
    """
    url = database_url or settings.database_url
    logger.info(f"Creating SQL repository ({url.split(':', 1)[0]})")
    return SQLRepository(url)


def create_object_store(config: Settings | None = None) -> ObjectStore:
    """R2 when credentials are configured, otherwise an in-memory store."""
    config = config or settings
    if config.r2_account_id and config.r2_access_key_id and config.r2_secret_access_key:
        logger.info("Creating R2 object store")
        return R2ObjectStore(
            bucket=config.r2_bucket_name,
            endpoint_url=config.r2_endpoint_url,
            access_key_id=config.r2_access_key_id,
            secret_access_key=config.r2_secret_access_key,
            public_url=config.r2_public_url,
        )
    return MemoryObjectStore()


def create_cache(redis_url: str | None = None) -> Cache:
    """Create cache instance based on configuration.

    Args:
        redis_url: Redis URL for caching.

    Returns:
        Cache instance.
    """
    if redis_url or settings.redis_url:
        logger.info("Creating Redis cache")
        return RedisCache(redis_url or settings.redis_url)

    if settings.is_lambda_environment:
        # Per-invocation memory is not worth caching into
        return NoOpCache()

    return MemoryCache()


__all__ = [
    "Cache",
    "ObjectStore",
    "Repository",
    "UploadConfig",
    "UploadResult",
    "create_cache",
    "create_object_store",
    "create_repository",
    "get_cached_signed_url",
    "upload_image_with_webp",
]

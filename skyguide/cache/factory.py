"""Factory helpers for choosing a cache backend at startup."""

from __future__ import annotations

import redis

from skyguide import config
from skyguide.cache.base import CacheBackend
from skyguide.cache.memory import InMemoryCacheBackend
from skyguide.cache.redis import RedisCacheBackend
from skyguide.cache.sql import SqlCacheBackend
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="cache/factory")


DEFAULT_BACKEND_NAME = "sqlite"


def build_cache_backend(settings: config.Settings | None = None) -> CacheBackend:
    """Instantiate the configured cache backend."""
    settings = settings or config.settings
    backend = (settings.cache_backend or DEFAULT_BACKEND_NAME).lower()

    if backend == "memory":
        logger.info("Using in-memory cache backend")
        return InMemoryCacheBackend()

    if backend in ("sqlite", "sql"):
        db_url = settings.cache_database_url
        if not db_url:
            raise ValueError("cache_database_url must be set for the SQL cache backend")
        return SqlCacheBackend.from_url(db_url)

    if backend == "redis":
        if not settings.cache_redis_url:
            raise ValueError("cache_redis_url must be set for the Redis cache backend")
        try:
            client = redis.Redis.from_url(settings.cache_redis_url)
            client.ping()
            logger.info("Using Redis cache backend", extra={"redis_url": mask_url(settings.cache_redis_url)})
            return RedisCacheBackend(client)
        except redis.exceptions.RedisError as exc:
            logger.warning("Falling back to in-memory cache (Redis unavailable)", extra={"error": str(exc)})
            return InMemoryCacheBackend()

    raise ValueError(f"Unknown cache backend '{backend}'")

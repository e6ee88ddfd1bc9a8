"""Redis-backed cache backend."""

from typing import Optional

import redis

from skyguide.cache.base import CacheBackend
from skyguide.errors import StorageError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/redis_backend")


class RedisCacheBackend(CacheBackend):
    """Stores payloads as Redis strings; expiry is delegated to Redis."""

    def __init__(self, client) -> None:
        """Wrap an existing redis.Redis (or compatible) client."""
        logger.debug("Initializing RedisCacheBackend")
        self.client = client

    @staticmethod
    def _decode(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def read(self, key: str) -> Optional[str]:
        try:
            return self._decode(self.client.get(key))
        except redis.RedisError as exc:
            raise StorageError(f"Redis cache read failed: {exc}", details={"key": key}) from exc

    def write(self, key: str, payload: str, *, expire_seconds: Optional[int] = None) -> None:
        kwargs = {"ex": int(expire_seconds)} if expire_seconds and expire_seconds > 0 else {}
        try:
            self.client.set(key, payload, **kwargs)
        except redis.RedisError as exc:
            raise StorageError(f"Redis cache write failed: {exc}", details={"key": key}) from exc

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def keys(self, prefix: str) -> list[str]:
        return [self._decode(k) for k in self.client.scan_iter(match=f"{prefix}*")]

    def clear(self, prefix: str = "") -> None:
        for key in self.keys(prefix):
            self.client.delete(key)

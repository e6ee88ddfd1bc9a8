"""Cache store and storage backends."""

from .base import CACHE_SCHEMA_VERSION, CacheBackend, CacheEntry, CacheNamespace
from .factory import build_cache_backend
from .memory import InMemoryCacheBackend
from .redis import RedisCacheBackend
from .sql import SqlCacheBackend
from .store import CacheStore

__all__ = [
    "CACHE_SCHEMA_VERSION",
    "CacheBackend",
    "CacheEntry",
    "CacheNamespace",
    "CacheStore",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "SqlCacheBackend",
    "build_cache_backend",
]

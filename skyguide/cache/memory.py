"""In-memory cache backend, intended for development and tests."""

import threading
from typing import Optional

from skyguide.cache.base import CacheBackend
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/in_memory_backend")


class InMemoryCacheBackend(CacheBackend):
    """Thread-safe dict of payloads; process-local and lost on exit."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryCacheBackend")
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, payload: str, *, expire_seconds: Optional[int] = None) -> None:
        # Freshness is judged by CacheStore; nothing expires on its own here.
        with self._lock:
            self._data[key] = payload

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str) -> list[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]

    def clear(self, prefix: str = "") -> None:
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]

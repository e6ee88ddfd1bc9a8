"""Namespaced TTL cache over a pluggable backend.

Every method is synchronous, so a check and the write that follows it never
straddle an await. Storage failures are logged and reported as a miss (reads)
or False (writes); they never propagate into a fetch.
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Mapping, Optional

from skyguide.cache.base import CACHE_SCHEMA_VERSION, CacheBackend, CacheEntry, CacheNamespace
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache/store")

KEY_PREFIX = "skyguide"


class CacheStore:
    """Key-value cache with per-namespace TTLs, stale reads and size bounds."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        default_ttl: float = 3600,
        offline_ttl: float = 7200,
        namespace_ttls: Optional[Mapping[str, float]] = None,
        namespace_limits: Optional[Mapping[str, int]] = None,
        clock: Callable[[], float] = time.time,
        prefix: str = KEY_PREFIX,
        purge_on_start: bool = True,
    ) -> None:
        self.backend = backend
        self.default_ttl = float(default_ttl)
        self.offline_ttl = float(offline_ttl)
        self.namespace_ttls = {str(k): float(v) for k, v in (namespace_ttls or {}).items()}
        self.namespace_limits = {str(k): int(v) for k, v in (namespace_limits or {}).items()}
        self.clock = clock
        self.prefix = prefix
        if purge_on_start:
            self.clear_expired()

    @classmethod
    def from_settings(cls, settings, backend: CacheBackend, **kwargs) -> "CacheStore":
        """Build a store using the TTLs and limits configured in settings."""
        ttls = {ns.value: settings.ttl_for(ns.value) for ns in CacheNamespace}
        return cls(
            backend,
            default_ttl=settings.cache_default_ttl_seconds,
            offline_ttl=settings.cache_offline_ttl_seconds,
            namespace_ttls=ttls,
            namespace_limits=settings.cache_namespace_limits,
            **kwargs,
        )

    # -- key helpers ---------------------------------------------------------

    def _namespace_prefix(self, namespace: CacheNamespace | str) -> str:
        return f"{self.prefix}:{CacheNamespace(namespace).value}:"

    def _full_key(self, namespace: CacheNamespace | str, key: str) -> str:
        return f"{self._namespace_prefix(namespace)}{key}"

    def ttl_for(self, namespace: CacheNamespace | str) -> float:
        """TTL applied when set() is called without an explicit one."""
        return self.namespace_ttls.get(CacheNamespace(namespace).value, self.default_ttl)

    def _stale_ceiling(self, entry: CacheEntry) -> float:
        return max(entry.ttl, self.offline_ttl)

    # -- backend access with failure absorption ------------------------------

    def _load(self, full_key: str) -> Optional[CacheEntry]:
        """Read and decode one entry; corrupt or foreign-version payloads are dropped."""
        try:
            raw = self.backend.read(full_key)
        except Exception as exc:
            logger.warning("Cache read failed; treating as miss", extra={"key": full_key, "error": str(exc)})
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Corrupt cache entry removed", extra={"key": full_key, "error": str(exc)})
            self._safe_delete(full_key)
            return None
        if entry.version != CACHE_SCHEMA_VERSION:
            logger.info(
                "Cache entry version mismatch; removing",
                extra={"key": full_key, "version": entry.version},
            )
            self._safe_delete(full_key)
            return None
        return entry

    def _safe_delete(self, full_key: str) -> bool:
        try:
            self.backend.delete(full_key)
            return True
        except Exception as exc:
            logger.warning("Cache delete failed", extra={"key": full_key, "error": str(exc)})
            return False

    def _safe_keys(self, prefix: str) -> list[str]:
        try:
            return list(self.backend.keys(prefix))
        except Exception as exc:
            logger.warning("Cache key listing failed", extra={"prefix": prefix, "error": str(exc)})
            return []

    # -- public API ----------------------------------------------------------

    def get(
        self,
        namespace: CacheNamespace | str,
        key: str,
        default: Any = None,
        *,
        allow_stale: bool = False,
    ) -> Any:
        """
        Return the cached value, or `default` on a miss.

        A normal read honours the entry's own TTL. With `allow_stale=True`
        (offline / throttled paths) the ceiling is extended to
        `max(ttl, offline_ttl)`. Entries past that ceiling are removed.
        """
        full_key = self._full_key(namespace, key)
        entry = self._load(full_key)
        if entry is None:
            return default
        age = entry.age(self.clock())
        if age > self._stale_ceiling(entry):
            self._safe_delete(full_key)
            return default
        if age <= entry.ttl or allow_stale:
            return entry.value
        return default

    def get_entry(self, namespace: CacheNamespace | str, key: str) -> Optional[CacheEntry]:
        """Return the raw entry regardless of freshness."""
        return self._load(self._full_key(namespace, key))

    def has(self, namespace: CacheNamespace | str, key: str) -> bool:
        """True when a fresh entry exists."""
        sentinel = object()
        return self.get(namespace, key, sentinel) is not sentinel

    def set(
        self,
        namespace: CacheNamespace | str,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
    ) -> bool:
        """Upsert a value. Returns False if it could not be stored."""
        ns = CacheNamespace(namespace)
        ttl = self.ttl_for(ns) if ttl is None else float(ttl)
        entry = CacheEntry(value=value, written_at=self.clock(), ttl=ttl)
        try:
            payload = entry.to_json()
        except (TypeError, ValueError) as exc:
            logger.error("Cache value is not serializable", extra={"namespace": ns.value, "key": key, "error": str(exc)})
            return False

        full_key = self._full_key(ns, key)
        self._enforce_limit(ns, full_key)
        try:
            self.backend.write(full_key, payload, expire_seconds=math.ceil(self._stale_ceiling(entry)))
        except Exception as exc:
            logger.error("Cache write failed", extra={"namespace": ns.value, "key": key, "error": str(exc)})
            return False
        return True

    def _enforce_limit(self, namespace: CacheNamespace, full_key: str) -> None:
        """Evict the oldest entries so a new key fits under the namespace limit."""
        limit = self.namespace_limits.get(namespace.value)
        if not limit:
            return
        keys = self._safe_keys(self._namespace_prefix(namespace))
        if full_key in keys or len(keys) < limit:
            return

        def written_at(k: str) -> float:
            entry = self._load(k)
            return entry.written_at if entry else float("-inf")

        overflow = len(keys) - limit + 1
        for victim in sorted(keys, key=written_at)[:overflow]:
            logger.info("Evicting oldest cache entry", extra={"namespace": namespace.value, "key": victim})
            self._safe_delete(victim)

    def update(self, namespace: CacheNamespace | str, key: str, partial: Mapping[str, Any]) -> bool:
        """Merge `partial` into a fresh cached dict, keeping its age and TTL."""
        full_key = self._full_key(namespace, key)
        entry = self._load(full_key)
        if entry is None or entry.age(self.clock()) > entry.ttl or not isinstance(entry.value, dict):
            return False
        merged = CacheEntry(value={**entry.value, **dict(partial)}, written_at=entry.written_at, ttl=entry.ttl)
        try:
            self.backend.write(full_key, merged.to_json(), expire_seconds=math.ceil(self._stale_ceiling(merged)))
        except Exception as exc:
            logger.error("Cache update failed", extra={"key": full_key, "error": str(exc)})
            return False
        return True

    def remove(self, namespace: CacheNamespace | str, key: str) -> bool:
        """Delete one entry."""
        return self._safe_delete(self._full_key(namespace, key))

    def clear_namespace(self, namespace: CacheNamespace | str) -> bool:
        """Delete every entry of a namespace."""
        try:
            self.backend.clear(self._namespace_prefix(namespace))
            return True
        except Exception as exc:
            logger.error("Cache namespace clear failed", extra={"namespace": str(namespace), "error": str(exc)})
            return False

    def list_keys(self, namespace: CacheNamespace | str) -> list[str]:
        """Keys (without prefix) currently stored in a namespace, fresh or not."""
        prefix = self._namespace_prefix(namespace)
        return sorted(k[len(prefix):] for k in self._safe_keys(prefix))

    def age_of(self, namespace: CacheNamespace | str, key: str) -> Optional[float]:
        """Seconds since the entry was written, or None when unknown."""
        entry = self.get_entry(namespace, key)
        if entry is None:
            return None
        return entry.age(self.clock())

    def namespace_items(self, namespace: CacheNamespace | str) -> dict[str, Any]:
        """All fresh values of a namespace keyed by their short key."""
        items: dict[str, Any] = {}
        sentinel = object()
        for key in self.list_keys(namespace):
            value = self.get(namespace, key, sentinel)
            if value is not sentinel:
                items[key] = value
        return items

    def clear_expired(self) -> int:
        """Drop entries past their stale ceiling; returns how many were removed."""
        removed = 0
        now = self.clock()
        for ns in CacheNamespace:
            for full_key in self._safe_keys(self._namespace_prefix(ns)):
                entry = self._load(full_key)
                if entry is None:
                    removed += 1
                    continue
                if entry.age(now) > self._stale_ceiling(entry):
                    if self._safe_delete(full_key):
                        removed += 1
        if removed:
            logger.info("Removed expired cache entries", extra={"count": removed})
        return removed

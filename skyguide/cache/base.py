"""Shared types and protocol for cache storage backends."""

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import date, datetime
from typing import Any, Optional, Protocol

CACHE_SCHEMA_VERSION = "1.0.0"


class CacheNamespace(str, enum.Enum):
    """Closed set of cache namespaces; one per data domain."""

    WEATHER = "weather"
    LOCATIONS = "locations"
    SETTINGS = "settings"
    POI = "poi"
    AI_INSIGHTS = "ai_insights"
    ALERTS = "alerts"
    UI_STATE = "ui_state"
    WEATHER_DATA = "weather_data"
    ACTIVITIES = "activities"


def _json_default(obj):
    """JSON fallback for datetimes, dataclasses and pydantic models."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    model_dump = getattr(obj, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@dataclass
class CacheEntry:
    """A cached value plus the metadata needed to judge its freshness."""

    value: Any
    written_at: float
    ttl: float
    version: str = CACHE_SCHEMA_VERSION

    def age(self, now: float) -> float:
        """Seconds since the entry was written (never negative)."""
        return max(0.0, now - self.written_at)

    def to_json(self) -> str:
        """Serialize to the on-disk payload."""
        return json.dumps(
            {
                "value": self.value,
                "written_at": self.written_at,
                "ttl": self.ttl,
                "version": self.version,
            },
            default=_json_default,
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CacheEntry":
        """Parse a stored payload; raises ValueError/KeyError/TypeError when corrupt."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cache payload is not an object")
        return cls(
            value=data["value"],
            written_at=float(data["written_at"]),
            ttl=float(data["ttl"]),
            version=str(data.get("version", "")),
        )


class CacheBackend(Protocol):
    """Raw string storage. Backends may raise; the store absorbs failures."""

    def read(self, key: str) -> Optional[str]:
        """Return the payload stored under key, or None."""

    def write(self, key: str, payload: str, *, expire_seconds: Optional[int] = None) -> None:
        """Upsert a payload; expire_seconds is a hint for self-expiring stores."""

    def delete(self, key: str) -> None:
        """Remove a key without raising if it is absent."""

    def keys(self, prefix: str) -> list[str]:
        """Return every stored key starting with prefix."""

    def clear(self, prefix: str = "") -> None:
        """Remove every key starting with prefix."""

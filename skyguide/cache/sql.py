"""SQL-backed cache backend (SQLite by default, any SQLAlchemy URL works).

SQLite gives the durable, device-local store: a single file next to the
process that survives restarts, so stale entries remain available for
offline reads.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from skyguide.cache.base import CacheBackend
from skyguide.errors import StorageError
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="cache/sql_backend")


@contextmanager
def _storage_errors(operation: str, key: str):
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"SQL cache {operation} failed: {exc}", details={"key": key}) from exc


class SqlCacheBackend(CacheBackend):
    """Key/payload rows in a single table."""

    def __init__(self, engine: Engine, *, table: str = "skyguide_cache") -> None:
        """Bind to an engine and create the cache table if needed."""
        self.engine = engine
        self.table = table
        self._create_table()

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlCacheBackend":
        """Create an engine from a URL and build the backend."""
        connect_args = {}
        if database_url.startswith("sqlite"):
            # API handlers and worker threads share the engine.
            connect_args["check_same_thread"] = False
        engine = create_engine(database_url, future=True, connect_args=connect_args)
        logger.info("Using SQL cache backend", extra={"db_url": mask_url(database_url)})
        return cls(engine, **kwargs)

    def _create_table(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    f"CREATE TABLE IF NOT EXISTS {self.table} ("
                    " cache_key VARCHAR(512) PRIMARY KEY,"
                    " payload TEXT NOT NULL,"
                    " updated_at DOUBLE PRECISION NOT NULL)"
                )
            )

    def read(self, key: str) -> Optional[str]:
        with _storage_errors("read", key), self.engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT payload FROM {self.table} WHERE cache_key = :key"),
                {"key": key},
            ).first()
        return row[0] if row else None

    def write(self, key: str, payload: str, *, expire_seconds: Optional[int] = None) -> None:
        # Delete + insert in one transaction keeps the upsert dialect-neutral.
        with _storage_errors("write", key), self.engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {self.table} WHERE cache_key = :key"), {"key": key})
            conn.execute(
                text(
                    f"INSERT INTO {self.table} (cache_key, payload, updated_at) "
                    "VALUES (:key, :payload, :updated_at)"
                ),
                {"key": key, "payload": payload, "updated_at": time.time()},
            )

    def delete(self, key: str) -> None:
        with _storage_errors("delete", key), self.engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {self.table} WHERE cache_key = :key"), {"key": key})

    def keys(self, prefix: str) -> list[str]:
        # substr() instead of LIKE: keys contain "_" which LIKE treats as a wildcard.
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"SELECT cache_key FROM {self.table} "
                    "WHERE substr(cache_key, 1, :n) = :prefix"
                ),
                {"n": len(prefix), "prefix": prefix},
            ).all()
        return [r[0] for r in rows]

    def clear(self, prefix: str = "") -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(f"DELETE FROM {self.table} WHERE substr(cache_key, 1, :n) = :prefix"),
                {"n": len(prefix), "prefix": prefix},
            )

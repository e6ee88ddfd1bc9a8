import unittest

import redis
from sqlalchemy import create_engine, text

from skyguide.cache import CacheStore, InMemoryCacheBackend, RedisCacheBackend, SqlCacheBackend, build_cache_backend
from skyguide.config import Settings
from skyguide.errors import StorageError


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expires = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value.encode("utf-8")
        if ex is not None:
            self.expires[key] = ex

    def delete(self, key):
        self.store.pop(key, None)
        self.expires.pop(key, None)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [k.encode("utf-8") for k in list(self.store) if k.startswith(prefix)]


class BackendContract:
    """Behaviour every backend shares."""

    def make_backend(self):
        raise NotImplementedError

    def setUp(self):
        self.backend = self.make_backend()

    def test_write_read_delete(self):
        self.backend.write("skyguide:poi:a_b", "payload")
        self.assertEqual(self.backend.read("skyguide:poi:a_b"), "payload")
        self.backend.delete("skyguide:poi:a_b")
        self.assertIsNone(self.backend.read("skyguide:poi:a_b"))

    def test_write_overwrites(self):
        self.backend.write("k", "one")
        self.backend.write("k", "two")
        self.assertEqual(self.backend.read("k"), "two")

    def test_keys_and_clear_by_prefix(self):
        self.backend.write("skyguide:poi:1", "x")
        self.backend.write("skyguide:poi:2", "x")
        self.backend.write("skyguide:alerts:1", "x")
        self.assertEqual(sorted(self.backend.keys("skyguide:poi:")), ["skyguide:poi:1", "skyguide:poi:2"])
        self.backend.clear("skyguide:poi:")
        self.assertEqual(self.backend.keys("skyguide:poi:"), [])
        self.assertEqual(self.backend.keys("skyguide:alerts:"), ["skyguide:alerts:1"])

    def test_delete_missing_key_is_silent(self):
        self.backend.delete("never-written")


class TestInMemoryBackend(BackendContract, unittest.TestCase):
    def make_backend(self):
        return InMemoryCacheBackend()


class TestSqlBackend(BackendContract, unittest.TestCase):
    def make_backend(self):
        return SqlCacheBackend(create_engine("sqlite:///:memory:", future=True))

    def test_prefix_with_underscores_is_literal(self):
        self.backend.write("skyguide:poi:a_b", "x")
        self.backend.write("skyguide:poi:aXb", "x")
        self.assertEqual(self.backend.keys("skyguide:poi:a_"), ["skyguide:poi:a_b"])

    def test_driver_errors_become_storage_errors(self):
        with self.backend.engine.begin() as conn:
            conn.execute(text(f"DROP TABLE {self.backend.table}"))
        with self.assertRaises(StorageError):
            self.backend.read("k")
        with self.assertRaises(StorageError):
            self.backend.write("k", "v")

    def test_store_treats_broken_table_as_miss(self):
        store = CacheStore(self.backend)
        with self.backend.engine.begin() as conn:
            conn.execute(text(f"DROP TABLE {self.backend.table}"))
        self.assertEqual(store.get("poi", "k", default="fallback"), "fallback")
        self.assertFalse(store.set("poi", "k", [1]))


class TestRedisBackend(BackendContract, unittest.TestCase):
    def make_backend(self):
        self.client = FakeRedis()
        return RedisCacheBackend(self.client)

    def test_expiry_hint_is_forwarded(self):
        self.backend.write("k", "v", expire_seconds=60)
        self.assertEqual(self.client.expires["k"], 60)

    def test_connection_errors_become_storage_errors(self):
        class DownRedis(FakeRedis):
            def get(self, key):
                raise redis.ConnectionError("down")

        with self.assertRaises(StorageError):
            RedisCacheBackend(DownRedis()).read("k")


class TestBackendFactory(unittest.TestCase):
    def test_memory_backend(self):
        backend = build_cache_backend(Settings(cache_backend="memory"))
        self.assertIsInstance(backend, InMemoryCacheBackend)

    def test_sqlite_backend(self):
        backend = build_cache_backend(Settings(cache_backend="sqlite", cache_database_url="sqlite:///:memory:"))
        self.assertIsInstance(backend, SqlCacheBackend)

    def test_redis_requires_url(self):
        with self.assertRaises(ValueError):
            build_cache_backend(Settings(cache_backend="redis", cache_redis_url=None))

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            build_cache_backend(Settings(cache_backend="floppy"))


if __name__ == "__main__":
    unittest.main()

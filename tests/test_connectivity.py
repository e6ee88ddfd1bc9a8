import unittest

import requests

from skyguide.cache import CacheNamespace, CacheStore, InMemoryCacheBackend
from skyguide.connectivity import STATE_KEY, ConnectivityMonitor


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeTransport:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def send(self, method, url, **kwargs):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return FakeResponse(self.result)


class TestConnectivityMonitor(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = CacheStore(InMemoryCacheBackend(), clock=self.clock)

    def test_listeners_fire_only_on_change(self):
        monitor = ConnectivityMonitor()
        seen = []
        monitor.subscribe(seen.append)
        monitor.set_online(True)
        monitor.set_online(False)
        monitor.set_online(False)
        monitor.set_online(True)
        self.assertEqual(seen, [True, False, True])

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor()
        seen = []
        unsubscribe = monitor.subscribe(seen.append, immediate=False)
        unsubscribe()
        monitor.set_online(False)
        self.assertEqual(seen, [])

    def test_failing_listener_does_not_break_others(self):
        monitor = ConnectivityMonitor()
        seen = []

        def broken(_online):
            raise RuntimeError("boom")

        monitor.subscribe(broken, immediate=False)
        monitor.subscribe(seen.append, immediate=False)
        monitor.set_online(False)
        self.assertEqual(seen, [False])
        self.assertTrue(monitor.is_offline())

    def test_state_is_persisted_and_restored(self):
        monitor = ConnectivityMonitor(cache=self.cache, clock=self.clock)
        monitor.set_online(False)
        self.assertEqual(self.cache.get(CacheNamespace.UI_STATE, STATE_KEY)["online"], False)
        restored = ConnectivityMonitor(cache=self.cache, clock=self.clock)
        self.assertFalse(restored.is_online)

    def test_old_state_is_ignored(self):
        monitor = ConnectivityMonitor(cache=self.cache, clock=self.clock, restore_window=300)
        monitor.set_online(False)
        self.clock.now += 301
        restored = ConnectivityMonitor(cache=self.cache, clock=self.clock, restore_window=300)
        self.assertTrue(restored.is_online)


class TestConnectivityProbe(unittest.IsolatedAsyncioTestCase):
    async def test_probe_failure_marks_offline(self):
        transport = FakeTransport(requests.exceptions.ConnectionError("no route"))
        monitor = ConnectivityMonitor(transport=transport, clock=FakeClock())
        self.assertFalse(await monitor.check())
        self.assertTrue(monitor.is_offline())

    async def test_probe_success_marks_online(self):
        monitor = ConnectivityMonitor(online=False, transport=FakeTransport(204), clock=FakeClock())
        self.assertTrue(await monitor.check())
        self.assertTrue(monitor.is_online)

    async def test_probe_is_rate_limited(self):
        clock = FakeClock()
        transport = FakeTransport(204)
        monitor = ConnectivityMonitor(transport=transport, clock=clock, check_interval=30)
        await monitor.check()
        await monitor.check()
        self.assertEqual(transport.calls, 1)
        await monitor.check(force=True)
        self.assertEqual(transport.calls, 2)
        clock.now += 31
        await monitor.check()
        self.assertEqual(transport.calls, 3)


if __name__ == "__main__":
    unittest.main()

import unittest

from skyguide.connectivity import ConnectivityMonitor
from skyguide.throttle import ApiCallThrottle


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestApiCallThrottle(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.connectivity = ConnectivityMonitor()
        self.throttle = ApiCallThrottle(
            self.connectivity, intervals={"forecast": 900, "alerts": 60}, clock=self.clock
        )

    def test_first_call_is_allowed(self):
        self.assertTrue(self.throttle.can_call("forecast"))

    def test_bucket_closes_until_interval_elapses(self):
        self.throttle.record_call("forecast")
        self.clock.now = 899
        self.assertFalse(self.throttle.can_call("forecast"))
        self.assertAlmostEqual(self.throttle.seconds_until_allowed("forecast"), 1)
        self.clock.now = 900
        self.assertTrue(self.throttle.can_call("forecast"))

    def test_buckets_are_independent(self):
        self.throttle.record_call("forecast")
        self.assertTrue(self.throttle.can_call("alerts"))

    def test_unknown_bucket_uses_default_interval(self):
        self.throttle.record_call("insight")
        self.assertTrue(self.throttle.can_call("insight"))

    def test_offline_always_closed(self):
        self.connectivity.set_online(False)
        self.assertFalse(self.throttle.can_call("alerts"))

    def test_reset(self):
        self.throttle.record_call("forecast")
        self.throttle.reset("forecast")
        self.assertTrue(self.throttle.can_call("forecast"))


class TestWaitForSlot(unittest.IsolatedAsyncioTestCase):
    async def test_waits_for_remaining_interval(self):
        clock = FakeClock()
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)
            clock.now += seconds

        throttle = ApiCallThrottle(ConnectivityMonitor(), intervals={"alerts": 60}, clock=clock, sleep=fake_sleep)
        throttle.record_call("alerts")
        clock.now = 20
        self.assertTrue(await throttle.wait_for_slot("alerts"))
        self.assertEqual(slept, [40])
        self.assertTrue(throttle.can_call("alerts"))


if __name__ == "__main__":
    unittest.main()

import asyncio
import unittest

from skyguide.errors import NetworkError
from skyguide.streams import TextStream


class TestTextStream(unittest.IsolatedAsyncioTestCase):
    async def test_items_then_close(self):
        stream = TextStream()

        async def produce():
            for item in ("a", "b", "c"):
                await stream.push(item)
            stream.close()

        asyncio.ensure_future(produce())
        self.assertEqual(await stream.collect(), ["a", "b", "c"])

    async def test_error_is_raised_after_buffered_items(self):
        stream = TextStream()
        await stream.push("a")
        stream.close(NetworkError("reset"))
        received = []
        with self.assertRaises(NetworkError):
            async for item in stream:
                received.append(item)
        self.assertEqual(received, ["a"])

    async def test_cancel_stops_delivery_and_rejects_pushes(self):
        stream = TextStream()
        cancelled = []
        stream.add_cancel_callback(lambda: cancelled.append(True))
        await stream.push("a")
        stream.cancel()
        self.assertFalse(await stream.push("b"))
        self.assertEqual(await stream.collect(), [])
        self.assertEqual(cancelled, [True])

    async def test_cancel_unblocks_waiting_producer(self):
        stream = TextStream(maxsize=1)
        await stream.push("a")
        pending = asyncio.ensure_future(stream.push("b"))
        await asyncio.sleep(0)
        self.assertFalse(pending.done())
        stream.cancel()
        self.assertFalse(await asyncio.wait_for(pending, 1))

    async def test_push_nowait_on_unbounded_stream(self):
        stream = TextStream(maxsize=0)
        self.assertTrue(stream.push_nowait("x"))
        stream.close()
        self.assertFalse(stream.push_nowait("y"))
        self.assertEqual(await stream.collect(), ["x"])


if __name__ == "__main__":
    unittest.main()

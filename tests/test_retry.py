import asyncio
import unittest

import requests

from skyguide.errors import EndpointsExhaustedError, ParseError
from skyguide.retry import EndpointRotator, EndpointSet, ProxyRotator, RequestDescriptor


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeTransport:
    """Replies per URL from a queue of results; exceptions are raised."""

    def __init__(self, replies):
        self.replies = {url: list(results) for url, results in replies.items()}
        self.calls = []

    async def send(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.replies[url].pop(0) if len(self.replies[url]) > 1 else self.replies[url][0]
        if isinstance(result, BaseException):
            raise result
        if result == "hang":
            await asyncio.sleep(10)
        return result


def json_body(response):
    return response.json()


class TestEndpointSet(unittest.TestCase):
    def test_empty_set_is_rejected(self):
        with self.assertRaises(ValueError):
            EndpointSet("none", [])

    def test_sticky_set_starts_at_last_success(self):
        es = EndpointSet("p", ["a", "b", "c"], sticky=True)
        es.mark_success("b")
        self.assertEqual(es.ordered(), ["b", "c", "a"])

    def test_non_sticky_set_always_starts_first(self):
        es = EndpointSet("p", ["a", "b", "c"])
        es.mark_success("c")
        self.assertEqual(es.ordered(), ["a", "b", "c"])


class TestProxyRotator(unittest.TestCase):
    def test_disabled_returns_direct_url(self):
        rotator = ProxyRotator(["https://proxy/{url}"], enabled=False)
        self.assertEqual(rotator.endpoint_set("x", "https://api/a?b=1").endpoints, ("https://api/a?b=1",))

    def test_templates_are_applied(self):
        rotator = ProxyRotator(["https://p1/{url}", "https://p2/?u={url_encoded}"], enabled=True)
        es = rotator.endpoint_set("x", "https://api/a?b=1")
        self.assertEqual(es.endpoints, ("https://p1/https://api/a?b=1", "https://p2/?u=https%3A%2F%2Fapi%2Fa%3Fb%3D1"))

    def test_working_proxy_is_remembered_across_sets(self):
        rotator = ProxyRotator(["https://p1/{url}", "https://p2/{url}"], enabled=True)
        first = rotator.endpoint_set("x", "https://api/a")
        first.mark_success("https://p2/https://api/a")
        second = rotator.endpoint_set("y", "https://api/b")
        self.assertEqual(second.ordered()[0], "https://p2/https://api/b")


class TestEndpointRotator(unittest.IsolatedAsyncioTestCase):
    def make_rotator(self, transport, **kwargs):
        self.slept = []

        async def fake_sleep(seconds):
            self.slept.append(seconds)

        return EndpointRotator(transport, sleep=fake_sleep, **kwargs)

    async def test_first_success_wins(self):
        transport = FakeTransport({"https://a": [FakeResponse(payload={"ok": 1})]})
        rotator = self.make_rotator(transport)
        result = await rotator.fetch(EndpointSet("s", ["https://a", "https://b"]), RequestDescriptor(), json_body)
        self.assertEqual(result, {"ok": 1})
        self.assertEqual(len(transport.calls), 1)
        self.assertEqual(self.slept, [])

    async def test_rotates_on_status_network_and_parse_failures(self):
        transport = FakeTransport(
            {
                "https://a": [FakeResponse(status_code=503, text="busy")],
                "https://b": [requests.exceptions.ConnectionError("reset")],
                "https://c": [FakeResponse(payload=None, text="<html>")],
                "https://d": [FakeResponse(payload=[1, 2])],
            }
        )
        rotator = self.make_rotator(transport)
        es = EndpointSet("s", ["https://a", "https://b", "https://c", "https://d"])
        self.assertEqual(await rotator.fetch(es, RequestDescriptor(), json_body), [1, 2])
        self.assertEqual([c[1] for c in transport.calls], ["https://a", "https://b", "https://c", "https://d"])

    async def test_exhaustion_makes_m_plus_one_attempts_with_growing_backoff(self):
        urls = ["https://m0", "https://m1", "https://m2", "https://m3"]
        transport = FakeTransport({u: [FakeResponse(status_code=500)] for u in urls})
        rotator = self.make_rotator(transport, retry_attempts=2, backoff_base=1, backoff_cap=5)
        with self.assertRaises(EndpointsExhaustedError) as ctx:
            await rotator.fetch_tiered(EndpointSet("overpass", urls), RequestDescriptor(method="POST"), json_body)
        # primary retried twice, then one pass over the three mirrors
        self.assertEqual([c[1] for c in transport.calls], ["https://m0", "https://m0", "https://m1", "https://m2", "https://m3"])
        self.assertEqual(len(ctx.exception.failures), 5)
        self.assertEqual(self.slept, sorted(self.slept))
        self.assertEqual(self.slept, [1.0, 1.5, 2.25, 3.375])
        self.assertTrue(all(f.kind == "api" for f in ctx.exception.failures))

    async def test_backoff_is_capped(self):
        rotator = self.make_rotator(FakeTransport({}), backoff_base=1, backoff_cap=5)
        self.assertEqual(rotator.backoff_delay(10), 5)
        self.assertEqual(rotator.attempt_timeout(0), 10)
        self.assertEqual(rotator.attempt_timeout(10), 20)

    async def test_attempt_timeout_rotates(self):
        transport = FakeTransport({"https://slow": ["hang"], "https://fast": [FakeResponse(payload={"v": 2})]})
        rotator = self.make_rotator(transport, timeout=0.01, timeout_cap=0.01)
        es = EndpointSet("s", ["https://slow", "https://fast"])
        self.assertEqual(await rotator.fetch(es, RequestDescriptor(), json_body), {"v": 2})

    async def test_parse_errors_from_parser_rotate(self):
        def strict(response):
            raise ParseError("missing field")

        transport = FakeTransport({"https://a": [FakeResponse(payload={})]})
        rotator = self.make_rotator(transport)
        with self.assertRaises(EndpointsExhaustedError) as ctx:
            await rotator.fetch_with_retry("https://a", RequestDescriptor(), strict)
        self.assertEqual(len(transport.calls), 3)
        self.assertEqual(ctx.exception.failures[0].kind, "parse")

    async def test_sticky_set_records_success(self):
        transport = FakeTransport(
            {"https://p1/x": [FakeResponse(status_code=502)], "https://p2/x": [FakeResponse(payload=1)]}
        )
        rotator = self.make_rotator(transport)
        es = EndpointSet("proxy", ["https://p1/x", "https://p2/x"], sticky=True)
        await rotator.fetch(es, RequestDescriptor(), json_body)
        self.assertEqual(es.cursor, 1)

    async def test_failure_urls_are_masked(self):
        url = "https://api/x?api_key=secret"
        transport = FakeTransport({url: [FakeResponse(status_code=401)]})
        rotator = self.make_rotator(transport, retry_attempts=1)
        with self.assertRaises(EndpointsExhaustedError) as ctx:
            await rotator.fetch_with_retry(url, RequestDescriptor(), json_body)
        self.assertNotIn("secret", ctx.exception.failures[0].url)


if __name__ == "__main__":
    unittest.main()

import asyncio
import json
import threading
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from skyguide.api import Services, get_services, health
from skyguide.cache import InMemoryCacheBackend
from skyguide.config import Settings, settings
from skyguide.main import app as fastapi_app
from skyguide.runtime import FetchRuntime
from skyguide.streams import TextStream


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self):
        return self._payload


class FakeTransport:
    """Overpass answers with one beach; the narrative backend streams two chunks."""

    def __init__(self):
        self.urls = []

    async def send(self, method, url, **kwargs):
        self.urls.append(url)
        if "interpreter" in url:
            return FakeResponse(payload={"elements": [
                {"type": "node", "id": 7, "lat": 28.14, "lon": -15.44,
                 "tags": {"name": "Playa de Las Canteras", "natural": "beach"}},
            ]})
        return FakeResponse(status_code=503)

    def stream_lines(self, method, url, *, json=None, headers=None, timeout=60.0, maxsize=64):
        stream = TextStream(maxsize=maxsize)

        async def feed():
            for line in ('{"message": {"content": "Hola"}}', '{"message": {"content": " mi niño"}, "done": true}'):
                await stream.push(line)
                await asyncio.sleep(0)
            stream.close()

        stream.producer = asyncio.ensure_future(feed())
        return stream

    def close(self):
        pass


class TestApi(unittest.TestCase):
    def setUp(self):
        async def no_sleep(_s):
            return None

        runtime = FetchRuntime.from_settings(
            Settings(cache_backend="memory", overpass_endpoints=["https://o1/api/interpreter"]),
            backend=InMemoryCacheBackend(),
            transport=FakeTransport(),
            sleep=no_sleep,
        )
        self.services = Services.from_runtime(runtime)
        fastapi_app.dependency_overrides[get_services] = lambda: self.services
        self._orig_api_key = settings.api_key
        settings.api_key = None
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        fastapi_app.dependency_overrides.clear()
        settings.api_key = self._orig_api_key

    def test_pois_endpoint(self):
        resp = self.client.get("/v1/pois", params={"lat": 28.13, "lon": -15.43, "radius": 5000})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body[0]["id"], "node/7")
        self.assertEqual(body[0]["category"], "natural")

    def test_pois_rejects_bad_radius(self):
        resp = self.client.get("/v1/pois", params={"lat": 28.13, "lon": -15.43, "radius": 0})
        self.assertEqual(resp.status_code, 422)

    def test_alerts_endpoint_without_keys_is_empty(self):
        resp = self.client.get("/v1/alerts", params={"lat": 28.1, "lon": -15.4})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), [])

    def test_weather_endpoint_falls_back_to_mock(self):
        resp = self.client.get("/v1/weather", params={"lat": 28.1, "lon": -15.4})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["is_fallback"])

    def test_insight_endpoint(self):
        payload = {"location": "Las Palmas", "condition": "sunny", "temperature": 24}
        resp = self.client.post("/v1/insight", json=payload)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"text": "Hola mi niño"})

    def test_insight_stream_endpoint(self):
        payload = {"location": "Las Palmas", "condition": "sunny", "temperature": 25}
        resp = self.client.post("/v1/insight/stream", json=payload)
        self.assertEqual(resp.status_code, 200)
        lines = [json.loads(line) for line in resp.text.splitlines() if line]
        self.assertEqual([l["text"] for l in lines], ["Hola", "Hola mi niño"])

    def test_health_endpoint(self):
        status = {"ok": False, "reachable": False}
        with patch("skyguide.api.get_narrative_backend_status", return_value=status):
            resp = self.client.get("/v1/health")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["online"])
        self.assertEqual(body["pending_requests"], 0)
        self.assertEqual(body["narrative_backend"], status)

    def test_api_key_required_when_configured(self):
        settings.api_key = "secret"
        resp = self.client.get("/v1/alerts", params={"lat": 28.1, "lon": -15.4})
        self.assertEqual(resp.status_code, 401)
        resp = self.client.get("/v1/alerts", params={"lat": 28.1, "lon": -15.4}, headers={"X-API-Key": "wrong"})
        self.assertEqual(resp.status_code, 401)
        resp = self.client.get("/v1/alerts", params={"lat": 28.1, "lon": -15.4}, headers={"X-API-Key": "secret"})
        self.assertEqual(resp.status_code, 200)


class TestHealthProbe(unittest.IsolatedAsyncioTestCase):
    async def test_backend_status_runs_off_the_event_loop(self):
        async def no_sleep(_s):
            return None

        runtime = FetchRuntime.from_settings(
            Settings(cache_backend="memory"), backend=InMemoryCacheBackend(), transport=FakeTransport(), sleep=no_sleep
        )
        loop_thread = threading.get_ident()
        seen = []

        def status(_settings):
            seen.append(threading.get_ident())
            return {"ok": True}

        with patch("skyguide.api.get_narrative_backend_status", side_effect=status):
            body = await health(Services.from_runtime(runtime))
        self.assertEqual(body["narrative_backend"], {"ok": True})
        self.assertEqual(len(seen), 1)
        self.assertNotEqual(seen[0], loop_thread)


if __name__ == "__main__":
    unittest.main()

import asyncio
import json
import unittest

from skyguide.config import Settings
from skyguide.errors import ApiError, EndpointsExhaustedError, ParseError
from skyguide.retry import EndpointRotator
from skyguide.streams import TextStream
from skyguide.text_client import TextGenerationClient

MESSAGES = [{"role": "user", "content": "¿Qué tiempo hace?"}]


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
    def __init__(self, lines=(), stream_error=None, replies=None):
        self.lines = list(lines)
        self.stream_error = stream_error
        self.replies = replies or {}
        self.stream_calls = []
        self.send_calls = []
        self.stream_cancelled = False

    def stream_lines(self, method, url, *, json=None, headers=None, timeout=60.0, maxsize=64):
        self.stream_calls.append((method, url, json, headers))
        stream = TextStream(maxsize=maxsize)
        stream.add_cancel_callback(lambda: setattr(self, "stream_cancelled", True))

        async def feed():
            for line in self.lines:
                if not await stream.push(line):
                    return
                await asyncio.sleep(0)
            stream.close(self.stream_error)

        stream.producer = asyncio.ensure_future(feed())
        return stream

    async def send(self, method, url, **kwargs):
        self.send_calls.append((method, url, kwargs))
        return self.replies.get(url, FakeResponse(status_code=503))


def ollama_line(content, done=False):
    return json.dumps({"message": {"role": "assistant", "content": content}, "done": done})


def sse_line(content, finish=None):
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}, "finish_reason": finish}]})


class TestRequestShapes(unittest.TestCase):
    def test_ollama_payload_and_url(self):
        client = TextGenerationClient(None, model="phi4-mini", options={"temperature": 0.7}, max_tokens=150)
        self.assertEqual(client.chat_url(), "http://localhost:11434/api/chat")
        payload = client.payload(MESSAGES, stream=True)
        self.assertEqual(payload["options"], {"temperature": 0.7, "num_predict": 150})
        self.assertTrue(payload["stream"])
        self.assertNotIn("Authorization", client.headers())

    def test_openai_payload_and_headers(self):
        client = TextGenerationClient(
            None, backend="openai", base_url="https://llm.test/v1/", model="chat", api_key="sk-1",
            options={"temperature": 0.7, "top_p": 0.9, "seed": 1},
        )
        self.assertEqual(client.chat_url(), "https://llm.test/v1/chat/completions")
        payload = client.payload(MESSAGES, stream=False)
        self.assertEqual(payload["max_tokens"], 150)
        self.assertEqual(payload["temperature"], 0.7)
        self.assertNotIn("seed", payload)
        self.assertEqual(client.headers()["Authorization"], "Bearer sk-1")

    def test_endpoint_set_includes_fallbacks_once(self):
        client = TextGenerationClient(None, fallback_urls=["http://b:11434", "http://localhost:11434"])
        self.assertEqual(
            client.endpoint_set().endpoints, ("http://localhost:11434/api/chat", "http://b:11434/api/chat")
        )

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            TextGenerationClient(None, backend="carrier-pigeon")

    def test_from_settings(self):
        s = Settings(narrative_backend="openai", narrative_base_url="https://x/v1", narrative_model="m")
        client = TextGenerationClient.from_settings(s, None)
        self.assertEqual(client.backend, "openai")
        self.assertEqual(client.chat_url(), "https://x/v1/chat/completions")


class TestParsing(unittest.TestCase):
    def test_ollama_stream_lines(self):
        client = TextGenerationClient(None)
        self.assertEqual(client.parse_stream_line(ollama_line("Hola")), ("Hola", False))
        self.assertEqual(client.parse_stream_line(ollama_line("", done=True)), ("", True))
        self.assertEqual(client.parse_stream_line("not json"), ("", False))

    def test_sse_lines(self):
        client = TextGenerationClient(None, backend="openai")
        self.assertEqual(client.parse_stream_line(sse_line("Hi")), ("Hi", False))
        self.assertEqual(client.parse_stream_line(sse_line("", finish="stop")), ("", True))
        self.assertEqual(client.parse_stream_line("data: [DONE]"), ("", True))
        self.assertEqual(client.parse_stream_line(": keep-alive"), ("", False))

    def test_stream_error_object(self):
        client = TextGenerationClient(None)
        with self.assertRaises(ApiError):
            client.parse_stream_line(json.dumps({"error": "model not found"}))

    def test_completion_parsing(self):
        ollama = TextGenerationClient(None)
        self.assertEqual(ollama.parse_completion(FakeResponse(payload={"message": {"content": "Hola"}})), "Hola")
        openai = TextGenerationClient(None, backend="openai")
        reply = FakeResponse(payload={"choices": [{"message": {"content": "Hi"}}]})
        self.assertEqual(openai.parse_completion(reply), "Hi")
        with self.assertRaises(ParseError):
            openai.parse_completion(FakeResponse(payload={"choices": []}))
        with self.assertRaises(ParseError):
            ollama.parse_completion(FakeResponse(payload={"message": {"content": "  "}}))
        with self.assertRaises(ParseError):
            ollama.parse_completion(FakeResponse(payload=None, text="<html>"))


class TestStreaming(unittest.IsolatedAsyncioTestCase):
    async def test_ollama_deltas(self):
        transport = FakeTransport(lines=[ollama_line("Hola"), ollama_line(" mi"), ollama_line(" niño", done=True)])
        client = TextGenerationClient(transport)
        self.assertEqual(await client.stream_chat(MESSAGES).collect(), ["Hola", " mi", " niño"])
        method, url, payload, _headers = transport.stream_calls[0]
        self.assertEqual((method, url), ("POST", "http://localhost:11434/api/chat"))
        self.assertTrue(payload["stream"])

    async def test_sse_deltas_stop_at_done(self):
        transport = FakeTransport(lines=[sse_line("Hi"), sse_line("!"), "data: [DONE]", sse_line("ignored")])
        client = TextGenerationClient(transport, backend="openai", base_url="https://llm.test/v1")
        self.assertEqual(await client.stream_chat(MESSAGES).collect(), ["Hi", "!"])
        self.assertTrue(transport.stream_cancelled)

    async def test_stream_failure_propagates(self):
        transport = FakeTransport(lines=[ollama_line("Ho")], stream_error=ApiError("boom", status_code=500))
        client = TextGenerationClient(transport)
        received = []
        with self.assertRaises(ApiError):
            async for delta in client.stream_chat(MESSAGES):
                received.append(delta)
        self.assertEqual(received, ["Ho"])

    async def test_cancel_stops_underlying_stream(self):
        transport = FakeTransport(lines=[ollama_line(str(i)) for i in range(100)])
        client = TextGenerationClient(transport)
        stream = client.stream_chat(MESSAGES)
        async for _ in stream:
            break
        stream.cancel()
        self.assertTrue(transport.stream_cancelled)

    async def test_complete_rotates_to_fallback_url(self):
        transport = FakeTransport(
            replies={"http://b:11434/api/chat": FakeResponse(payload={"message": {"content": "Desde b"}})}
        )
        client = TextGenerationClient(transport, fallback_urls=["http://b:11434"])

        async def no_sleep(_s):
            return None

        rotator = EndpointRotator(transport, sleep=no_sleep)
        self.assertEqual(await client.complete(MESSAGES, rotator), "Desde b")
        self.assertEqual([c[1] for c in transport.send_calls], ["http://localhost:11434/api/chat", "http://b:11434/api/chat"])
        self.assertFalse(transport.send_calls[0][2]["json"]["stream"])

    async def test_complete_exhausted(self):
        client = TextGenerationClient(FakeTransport())

        async def no_sleep(_s):
            return None

        with self.assertRaises(EndpointsExhaustedError):
            await client.complete(MESSAGES, EndpointRotator(client.transport, sleep=no_sleep))


if __name__ == "__main__":
    unittest.main()

"""Client for chat-style text generation backends (Ollama or OpenAI-compatible)."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from skyguide.errors import ApiError, ParseError
from skyguide.http import HttpTransport
from skyguide.retry import EndpointRotator, EndpointSet, RequestDescriptor
from skyguide.streams import TextStream
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="text_client")

Messages = List[Dict[str, str]]

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class TextGenerationClient:
    """
    Thin client over one chat endpoint plus optional fallback mirrors.

    `ollama` talks to `/api/chat` and streams newline-delimited JSON;
    `openai` talks to `/chat/completions` and streams server-sent events.
    """

    def __init__(
        self,
        transport: HttpTransport,
        *,
        backend: str = "ollama",
        base_url: str = "http://localhost:11434",
        model: str = "phi4-mini",
        api_key: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        max_tokens: int = 150,
        fallback_urls: Sequence[str] = (),
        timeout: float = 60.0,
    ) -> None:
        if backend not in ("ollama", "openai"):
            raise ValueError(f"Unsupported text generation backend: {backend!r}")
        self.transport = transport
        self.backend = backend
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.options = dict(options or {})
        self.max_tokens = max_tokens
        self.fallback_urls = [u.rstrip("/") for u in fallback_urls]
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings, transport: HttpTransport) -> "TextGenerationClient":
        return cls(
            transport,
            backend=settings.narrative_backend,
            base_url=settings.narrative_base_url,
            model=settings.narrative_model,
            api_key=settings.narrative_api_key,
            options=settings.narrative_options,
            max_tokens=settings.narrative_max_tokens,
            fallback_urls=settings.narrative_fallback_urls,
            timeout=settings.narrative_timeout_seconds,
        )

    def chat_url(self, base: Optional[str] = None) -> str:
        base = (base or self.base_url).rstrip("/")
        if self.backend == "ollama":
            return f"{base}/api/chat"
        return f"{base}/chat/completions"

    def endpoint_set(self) -> EndpointSet:
        urls = [self.chat_url()] + [self.chat_url(u) for u in self.fallback_urls]
        return EndpointSet("narrative", tuple(dict.fromkeys(urls)))

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def payload(self, messages: Messages, *, stream: bool) -> Dict[str, Any]:
        if self.backend == "ollama":
            options = dict(self.options)
            options.setdefault("num_predict", self.max_tokens)
            return {"model": self.model, "messages": messages, "stream": stream, "options": options}
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "max_tokens": self.max_tokens,
        }
        for name in ("temperature", "top_p"):
            if name in self.options:
                payload[name] = self.options[name]
        return payload

    def parse_completion(self, response: requests.Response) -> str:
        """Extract the assistant text from a non-streamed reply."""
        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError(f"Text backend returned non-JSON response: {(response.text or '')[:200]}") from exc
        if isinstance(data, dict) and data.get("error"):
            raise ApiError(f"Text backend reported an error: {data['error']}", status_code=response.status_code)
        if self.backend == "ollama":
            content = (data.get("message") or {}).get("content", "")
        else:
            choices = data.get("choices") or []
            if not choices:
                raise ParseError("Text backend reply has no choices")
            content = (choices[0].get("message") or {}).get("content", "")
        if isinstance(content, (dict, list)):
            content = str(content)
        if not content or not content.strip():
            raise ParseError("Text backend returned an empty reply")
        return content

    def parse_stream_line(self, line: str) -> Tuple[str, bool]:
        """Return `(delta, done)` for one streamed line; unreadable lines yield nothing."""
        if self.backend == "openai":
            line = line.strip()
            if not line.startswith(_SSE_PREFIX):
                return "", False
            line = line[len(_SSE_PREFIX):].strip()
            if line == _SSE_DONE:
                return "", True
        try:
            data = json.loads(line)
        except ValueError:
            logger.debug("Skipping unreadable stream line: %s", line[:80])
            return "", False
        if not isinstance(data, dict):
            return "", False
        if data.get("error"):
            raise ApiError(f"Text backend reported an error: {data['error']}")
        if self.backend == "ollama":
            delta = (data.get("message") or {}).get("content") or ""
            return delta, bool(data.get("done"))
        choices = data.get("choices") or []
        if not choices:
            return "", False
        delta = (choices[0].get("delta") or {}).get("content") or ""
        return delta, choices[0].get("finish_reason") is not None

    async def complete(self, messages: Messages, rotator: EndpointRotator) -> str:
        """Non-streamed completion, rotating across the primary and fallback URLs."""
        request = RequestDescriptor(
            method="POST",
            json=self.payload(messages, stream=False),
            headers=self.headers(),
        )
        return await rotator.fetch(self.endpoint_set(), request, self.parse_completion, timeout=self.timeout)

    def stream_chat(self, messages: Messages) -> TextStream:
        """
        Stream text deltas from the primary URL.

        Cancelling the returned stream cancels the underlying line stream,
        which stops the worker reading the response body.
        """
        url = self.chat_url()
        lines = self.transport.stream_lines(
            "POST",
            url,
            json=self.payload(messages, stream=True),
            headers=self.headers(),
            timeout=self.timeout,
        )
        deltas = TextStream()
        deltas.add_cancel_callback(lines.cancel)

        async def pump() -> None:
            try:
                async for line in lines:
                    delta, done = self.parse_stream_line(line)
                    if delta and not await deltas.push(delta):
                        break
                    if done:
                        break
            except Exception as exc:
                logger.warning("Stream from %s failed: %s", mask_url(url), exc)
                deltas.close(exc)
                return
            finally:
                lines.cancel()
            deltas.close()

        deltas.producer = asyncio.ensure_future(pump())
        return deltas

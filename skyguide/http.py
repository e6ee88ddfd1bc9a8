"""Async facade over a blocking `requests.Session`."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping, Optional

import requests

from skyguide.errors import ApiError
from skyguide.streams import TextStream
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="http")


class HttpTransport:
    """Runs requests calls in worker threads so the event loop never blocks."""

    def __init__(self, session: Optional[requests.Session] = None, *, user_agent: Optional[str] = None) -> None:
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def _send_sync(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
    ) -> requests.Response:
        started = time.monotonic()
        response = self.session.request(
            method, url, params=params, data=data, json=json, headers=headers, timeout=timeout
        )
        logger.debug(
            "%s %s -> %s in %.2fs",
            method,
            mask_url(url),
            response.status_code,
            time.monotonic() - started,
        )
        return response

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
    ) -> requests.Response:
        """Perform one request; the body is read before returning."""
        return await asyncio.to_thread(
            self._send_sync,
            method,
            url,
            params=params,
            data=data,
            json=json,
            headers=headers,
            timeout=timeout,
        )

    def stream_lines(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 60.0,
        maxsize: int = 64,
    ) -> TextStream:
        """
        Open a streamed response and deliver its non-empty lines.

        A worker thread reads the body and pushes into the returned stream;
        it blocks while the stream's buffer is full and stops once the
        consumer cancels. Non-2xx responses close the stream with ApiError.
        """
        loop = asyncio.get_running_loop()
        stream = TextStream(maxsize=maxsize)

        def worker() -> None:
            try:
                with self.session.request(
                    method, url, json=json, headers=headers, timeout=timeout, stream=True
                ) as response:
                    if not 200 <= response.status_code < 300:
                        raise ApiError(
                            f"Streaming request failed with status {response.status_code}",
                            status_code=response.status_code,
                            details={"url": mask_url(url), "body": (response.text or "")[:200]},
                        )
                    for line in response.iter_lines(decode_unicode=True):
                        if stream.cancelled:
                            break
                        if not line:
                            continue
                        if isinstance(line, bytes):
                            line = line.decode("utf-8", errors="replace")
                        pushed = asyncio.run_coroutine_threadsafe(stream.push(line), loop).result()
                        if not pushed:
                            break
            except Exception as exc:
                loop.call_soon_threadsafe(stream.close, exc)
                return
            loop.call_soon_threadsafe(stream.close)

        stream.producer = loop.run_in_executor(None, worker)
        return stream

    def close(self) -> None:
        self.session.close()

"""Push-based, cancellable async stream of text chunks."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

_CLOSED = object()


class TextStream:
    """
    Async iterator fed by a producer via `push()`.

    The buffer is bounded: `push()` waits while the consumer lags behind.
    `cancel()` (consumer side) stops delivery and unblocks a waiting
    producer; `close(error)` (producer side) ends the stream, re-raising
    `error` to the consumer after the buffered items are drained.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._cancelled = False
        self._error: Optional[BaseException] = None
        self._cancel_callbacks: list[Callable[[], None]] = []
        # future of the task or thread feeding this stream, if any
        self.producer: Optional[asyncio.Future] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_cancel_callback(self, callback: Callable[[], None]) -> None:
        self._cancel_callbacks.append(callback)

    async def push(self, item: str) -> bool:
        """Queue an item; returns False once the stream is closed or cancelled."""
        if self._closed or self._cancelled:
            return False
        await self._queue.put(item)
        return not self._cancelled

    def push_nowait(self, item: str) -> bool:
        """Non-blocking push for unbounded streams fed from synchronous callbacks."""
        if self._closed or self._cancelled:
            return False
        self._queue.put_nowait(item)
        return True

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        if self._queue.empty():
            # wake a consumer blocked in get()
            self._queue.put_nowait(_CLOSED)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        drained = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            drained += 1
        if drained == 0:
            self._queue.put_nowait(_CLOSED)
        for callback in self._cancel_callbacks:
            callback()

    async def aclose(self) -> None:
        self.cancel()

    def __aiter__(self) -> "TextStream":
        return self

    async def __anext__(self) -> str:
        if self._cancelled:
            raise StopAsyncIteration
        if self._closed and self._queue.empty():
            self._finish()
        item = await self._queue.get()
        if item is _CLOSED or self._cancelled:
            self._finish()
        return item

    def _finish(self):
        error, self._error = self._error, None
        if error is not None and not self._cancelled:
            raise error
        raise StopAsyncIteration

    async def collect(self) -> list[str]:
        """Drain the stream into a list."""
        return [item async for item in self]

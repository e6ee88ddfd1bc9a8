"""Collapse concurrent identical requests into one in-flight operation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="dedup")

T = TypeVar("T")


@dataclass
class PendingRequest:
    """An in-flight operation registered under its fingerprint."""

    fingerprint: str
    task: asyncio.Task
    started_at: float


class RequestDeduplicator:
    """
    Pending-request table keyed by fingerprint.

    Callers await the shared task through `asyncio.shield`, so a caller that
    gives up (timeout, cancelled handler) never cancels work other joiners
    still wait on; the task runs to completion and fills the cache anyway.
    """

    def __init__(self, *, window_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_seconds = window_seconds
        self.clock = clock
        self._pending: dict[str, PendingRequest] = {}

    def _joinable(self, pending: PendingRequest) -> bool:
        return not pending.task.done() and self.clock() - pending.started_at < self.window_seconds

    def is_joinable(self, fingerprint: str) -> bool:
        pending = self._pending.get(fingerprint)
        return pending is not None and self._joinable(pending)

    def pending_count(self) -> int:
        return len(self._pending)

    async def join_or_start(self, fingerprint: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Return the result of the pending operation for fingerprint, starting it if needed."""
        # no await between the lookup and the registration below
        pending = self._pending.get(fingerprint)
        if pending is not None and self._joinable(pending):
            logger.debug("Joining pending request %s", fingerprint)
            task = pending.task
        else:
            if pending is not None:
                logger.info("Pending request %s outlived the join window; starting fresh", fingerprint)
            task = asyncio.ensure_future(operation())
            entry = PendingRequest(fingerprint=fingerprint, task=task, started_at=self.clock())
            self._pending[fingerprint] = entry
            task.add_done_callback(lambda _t, e=entry: self._settle(e))
        return await asyncio.shield(task)

    def _settle(self, entry: PendingRequest) -> None:
        # a newer registration under the same fingerprint stays in place
        if self._pending.get(entry.fingerprint) is entry:
            del self._pending[entry.fingerprint]
        if not entry.task.cancelled() and entry.task.exception() is not None:
            logger.warning(
                "Pending request %s failed: %s", entry.fingerprint, entry.task.exception()
            )

"""Per-bucket minimum interval between upstream calls."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Mapping, Optional

from skyguide.connectivity import ConnectivityMonitor
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="throttle")


class ApiCallThrottle:
    """
    Advisory backpressure for globally rate-limited upstreams.

    A bucket opens again once `interval(bucket)` seconds have passed since the
    last recorded call. Offline always reads as closed.
    """

    def __init__(
        self,
        connectivity: ConnectivityMonitor,
        *,
        intervals: Optional[Mapping[str, float]] = None,
        default_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.connectivity = connectivity
        self.intervals = {str(k): float(v) for k, v in (intervals or {}).items()}
        self.default_interval = float(default_interval)
        self.clock = clock
        self.sleep = sleep
        self._last_calls: dict[str, float] = {}

    def interval(self, bucket: str) -> float:
        return self.intervals.get(bucket, self.default_interval)

    def seconds_until_allowed(self, bucket: str) -> float:
        last = self._last_calls.get(bucket)
        if last is None:
            return 0.0
        return max(0.0, self.interval(bucket) - (self.clock() - last))

    def can_call(self, bucket: str) -> bool:
        """True when online and the bucket's interval has elapsed."""
        if self.connectivity.is_offline():
            return False
        return self.seconds_until_allowed(bucket) <= 0

    def record_call(self, bucket: str) -> None:
        self._last_calls[bucket] = self.clock()

    def reset(self, bucket: Optional[str] = None) -> None:
        if bucket is None:
            self._last_calls.clear()
        else:
            self._last_calls.pop(bucket, None)

    async def wait_for_slot(self, bucket: str) -> bool:
        """Sleep until the bucket opens; returns False if offline afterwards."""
        delay = self.seconds_until_allowed(bucket)
        if delay > 0:
            logger.info("Throttled; waiting %.1fs for bucket '%s'", delay, bucket)
            await self.sleep(delay)
        return not self.connectivity.is_offline()

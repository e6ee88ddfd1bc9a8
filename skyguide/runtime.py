"""The fetch runtime: one explicitly constructed bundle of shared engine state.

The application root builds a single `FetchRuntime` and hands it to every
domain fetcher, so the pending-request table, the proxy cursor and the
connectivity flag are shared per process without module-level globals.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from skyguide.cache import CacheBackend, CacheStore, build_cache_backend
from skyguide.config import Settings, settings as default_settings
from skyguide.connectivity import ConnectivityMonitor
from skyguide.dedup import RequestDeduplicator
from skyguide.http import HttpTransport
from skyguide.retry import EndpointRotator, ProxyRotator
from skyguide.throttle import ApiCallThrottle
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="runtime")


@dataclass
class FetchRuntime:
    settings: Settings
    cache: CacheStore
    connectivity: ConnectivityMonitor
    throttle: ApiCallThrottle
    dedup: RequestDeduplicator
    transport: HttpTransport
    proxies: ProxyRotator
    retry: EndpointRotator
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        backend: Optional[CacheBackend] = None,
        transport: Optional[HttpTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "FetchRuntime":
        """
        Wire every engine component from settings.

        `backend`, `transport`, `sleep` and `clock` are injection points for
        tests; `clock` drives cache ages, throttle buckets and dedup windows.
        """
        settings = settings or default_settings
        sleep = sleep or asyncio.sleep
        wall_clock = clock or time.time
        mono_clock = clock or time.monotonic

        backend = backend if backend is not None else build_cache_backend(settings)
        transport = transport or HttpTransport(user_agent=settings.user_agent)
        cache = CacheStore.from_settings(settings, backend, clock=wall_clock)
        connectivity = ConnectivityMonitor.from_settings(
            settings, cache=cache, transport=transport, clock=wall_clock
        )
        throttle = ApiCallThrottle(
            connectivity,
            intervals=settings.throttle_intervals,
            default_interval=settings.throttle_default_interval_seconds,
            clock=mono_clock,
            sleep=sleep,
        )
        dedup = RequestDeduplicator(window_seconds=settings.dedup_window_seconds, clock=mono_clock)
        proxies = ProxyRotator(settings.cors_proxies, enabled=settings.dev_mode)
        retry = EndpointRotator.from_settings(settings, transport, sleep=sleep)
        logger.info(
            "Fetch runtime ready",
            extra={"cache_backend": type(backend).__name__, "dev_mode": settings.dev_mode},
        )
        return cls(
            settings=settings,
            cache=cache,
            connectivity=connectivity,
            throttle=throttle,
            dedup=dedup,
            transport=transport,
            proxies=proxies,
            retry=retry,
            sleep=sleep,
        )

    def close(self) -> None:
        self.transport.close()

"""Process-wide online/offline state consulted before any network I/O."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Optional

import requests

from skyguide.cache.base import CacheNamespace
from utils.logging_utils import get_tagged_logger

if TYPE_CHECKING:
    from skyguide.cache.store import CacheStore
    from skyguide.http import HttpTransport

logger = get_tagged_logger(__name__, tag="connectivity")

Listener = Callable[[bool], None]

STATE_KEY = "connectivity"


class ConnectivityMonitor:
    """Single source of truth for connectivity; notifies listeners on flips."""

    def __init__(
        self,
        *,
        online: bool = True,
        cache: Optional["CacheStore"] = None,
        transport: Optional["HttpTransport"] = None,
        check_url: str = "https://www.google.com/generate_204",
        check_timeout: float = 5.0,
        check_interval: float = 30.0,
        restore_window: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._online = bool(online)
        self._listeners: list[Listener] = []
        self._last_check: Optional[float] = None
        self.cache = cache
        self.transport = transport
        self.check_url = check_url
        self.check_timeout = check_timeout
        self.check_interval = check_interval
        self.restore_window = restore_window
        self.clock = clock
        if cache is not None:
            self._restore()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ConnectivityMonitor":
        """Build a monitor with the probe settings from config."""
        return cls(
            check_url=settings.connectivity_check_url,
            check_timeout=settings.connectivity_check_timeout_seconds,
            check_interval=settings.connectivity_check_interval_seconds,
            restore_window=settings.connectivity_restore_window_seconds,
            **kwargs,
        )

    @property
    def is_online(self) -> bool:
        return self._online

    def is_offline(self) -> bool:
        """True when fetchers must not attempt network I/O."""
        return not self._online

    def set_online(self, online: bool) -> None:
        """Record a transport-level signal; listeners fire only on change."""
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._persist()
        for listener in list(self._listeners):
            self._call(listener)

    def subscribe(self, listener: Listener, *, immediate: bool = True) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        if immediate:
            self._call(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _call(self, listener: Listener) -> None:
        try:
            listener(self._online)
        except Exception as exc:
            logger.warning("Connectivity listener raised", extra={"error": str(exc)})

    async def check(self, *, force: bool = False) -> bool:
        """
        Probe a generate-204 endpoint and update the state.

        Rate limited to one probe per `check_interval`; between probes the
        last known state is returned.
        """
        if self.transport is None:
            return self._online
        now = self.clock()
        if not force and self._last_check is not None and now - self._last_check < self.check_interval:
            return self._online
        self._last_check = now
        try:
            response = await self.transport.send("HEAD", self.check_url, timeout=self.check_timeout)
            online = response.status_code < 500
        except (requests.exceptions.RequestException, asyncio.TimeoutError) as exc:
            logger.info("Connectivity probe failed", extra={"error": str(exc)})
            online = False
        self.set_online(online)
        return online

    def _persist(self) -> None:
        if self.cache is None:
            return
        self.cache.set(
            CacheNamespace.UI_STATE,
            STATE_KEY,
            {"online": self._online, "timestamp": self.clock()},
            ttl=self.restore_window,
        )

    def _restore(self) -> None:
        """Adopt the persisted state if it was written within the restore window."""
        state = self.cache.get(CacheNamespace.UI_STATE, STATE_KEY)
        if not isinstance(state, dict) or "online" not in state:
            return
        if self.clock() - float(state.get("timestamp", 0)) > self.restore_window:
            return
        self._online = bool(state["online"])
        logger.debug("Restored connectivity state: %s", "online" if self._online else "offline")

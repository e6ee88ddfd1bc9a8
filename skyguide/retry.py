"""Endpoint rotation with per-attempt timeouts and exponential backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar
from urllib.parse import quote

import requests

from skyguide.errors import (
    ApiError,
    AttemptFailure,
    EndpointsExhaustedError,
    NetworkError,
    ParseError,
    SkyGuideError,
)
from skyguide.http import HttpTransport
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="retry")

T = TypeVar("T")
ParseFn = Callable[[requests.Response], T]

# Exceptions a parse function may raise on a malformed body.
_PARSE_ERRORS = (ValueError, KeyError, TypeError, IndexError, AttributeError)
_ROTATE_ON = (NetworkError, ApiError, ParseError)


@dataclass(frozen=True)
class RequestDescriptor:
    """What to send; the URL comes from the endpoint being attempted."""

    method: str = "GET"
    params: Optional[Mapping[str, Any]] = None
    data: Any = None
    json: Any = None
    headers: Optional[Mapping[str, str]] = None


@dataclass
class EndpointSet:
    """
    Ordered, equivalent URLs for one upstream.

    A sticky set starts each rotation at the last endpoint that worked; a
    non-sticky set always starts from the first.
    """

    name: str
    endpoints: Sequence[str]
    sticky: bool = False
    cursor: int = 0
    on_success: Optional[Callable[[int], None]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.endpoints = tuple(self.endpoints)
        if not self.endpoints:
            raise ValueError(f"Endpoint set '{self.name}' is empty")
        self.cursor %= len(self.endpoints)

    def __len__(self) -> int:
        return len(self.endpoints)

    def ordered(self) -> list[str]:
        start = self.cursor if self.sticky else 0
        return list(self.endpoints[start:]) + list(self.endpoints[:start])

    def mark_success(self, url: str) -> None:
        if not self.sticky or url not in self.endpoints:
            return
        self.cursor = self.endpoints.index(url)
        if self.on_success is not None:
            self.on_success(self.cursor)


class ProxyRotator:
    """
    Development-only CORS proxies placed in front of otherwise unreachable URLs.

    The proxy that last worked is remembered across requests, so proxy
    failover is plain sticky endpoint rotation.
    """

    def __init__(self, templates: Sequence[str] = (), *, enabled: bool = False) -> None:
        self.templates = tuple(templates)
        self.enabled = enabled
        self.cursor = 0

    @staticmethod
    def apply(template: str, url: str) -> str:
        return template.replace("{url_encoded}", quote(url, safe="")).replace("{url}", url)

    def _remember(self, cursor: int) -> None:
        if cursor != self.cursor:
            logger.info("Switching CORS proxy to %d/%d", cursor + 1, len(self.templates))
        self.cursor = cursor

    def endpoint_set(self, name: str, url: str) -> EndpointSet:
        """Wrap url with every proxy when enabled; otherwise a single direct endpoint."""
        if not self.enabled or not self.templates:
            return EndpointSet(name, (url,))
        return EndpointSet(
            name,
            tuple(self.apply(t, url) for t in self.templates),
            sticky=True,
            cursor=self.cursor,
            on_success=self._remember,
        )


class EndpointRotator:
    """
    Try endpoints in order until one yields a parsed result.

    Attempt n (0-based, counted across the whole rotation) is bounded by
    `min(timeout * growth**n, timeout_cap)`; the pause before attempt n+1 is
    `min(backoff_base * growth**n, backoff_cap)`. Non-2xx, transport errors,
    timeouts and parse failures all move on to the next attempt.
    """

    def __init__(
        self,
        transport: HttpTransport,
        *,
        timeout: float = 10.0,
        timeout_cap: float = 20.0,
        retry_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 5.0,
        growth: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.timeout = timeout
        self.timeout_cap = timeout_cap
        self.retry_attempts = max(1, int(retry_attempts))
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.growth = growth
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, transport: HttpTransport, **kwargs) -> "EndpointRotator":
        return cls(
            transport,
            timeout=settings.http_timeout_seconds,
            timeout_cap=settings.http_timeout_cap_seconds,
            retry_attempts=settings.retry_attempts,
            backoff_base=settings.retry_backoff_base_seconds,
            backoff_cap=settings.retry_backoff_cap_seconds,
            **kwargs,
        )

    def attempt_timeout(self, attempt: int) -> float:
        return min(self.timeout * self.growth ** attempt, self.timeout_cap)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * self.growth ** attempt, self.backoff_cap)

    async def _attempt(
        self, url: str, request: RequestDescriptor, parse: ParseFn, attempt: int, fixed_timeout: Optional[float] = None
    ):
        timeout = fixed_timeout or self.attempt_timeout(attempt)
        try:
            response = await asyncio.wait_for(
                self.transport.send(
                    request.method,
                    url,
                    params=request.params,
                    data=request.data,
                    json=request.json,
                    headers=request.headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Attempt timed out after {timeout:.1f}s") from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(str(exc)) from exc

        if not 200 <= response.status_code < 300:
            raise ApiError(
                f"Upstream returned status {response.status_code}",
                status_code=response.status_code,
                details={"body": (getattr(response, "text", "") or "")[:200]},
            )
        try:
            return parse(response)
        except SkyGuideError:
            raise
        except _PARSE_ERRORS as exc:
            raise ParseError(f"Malformed response body: {exc}") from exc

    async def fetch(
        self,
        endpoint_set: EndpointSet,
        request: RequestDescriptor,
        parse: ParseFn,
        *,
        attempts_per_endpoint: int = 1,
        primary_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """
        Run the rotation and return the first successful parse.

        `primary_attempts` overrides how often the first endpoint is tried
        (the retried primary tier); every other endpoint gets
        `attempts_per_endpoint`. A `timeout` replaces the growing per-attempt
        bound with a fixed one (slow upstreams such as text generation).
        Raises EndpointsExhaustedError when all fail.
        """
        failures: list[AttemptFailure] = []
        attempt = 0
        for position, url in enumerate(endpoint_set.ordered()):
            tries = primary_attempts if position == 0 and primary_attempts else attempts_per_endpoint
            for _ in range(max(1, tries)):
                if attempt > 0:
                    await self.sleep(self.backoff_delay(attempt - 1))
                try:
                    result = await self._attempt(url, request, parse, attempt, timeout)
                except _ROTATE_ON as exc:
                    failures.append(AttemptFailure(url=mask_url(url), attempt=attempt, kind=exc.kind, error=str(exc)))
                    logger.warning(
                        "Attempt %d on %s failed (%s): %s",
                        attempt + 1,
                        mask_url(url),
                        exc.kind,
                        exc.message,
                    )
                    attempt += 1
                    continue
                endpoint_set.mark_success(url)
                if attempt:
                    logger.info("Recovered on attempt %d via %s", attempt + 1, mask_url(url))
                return result
        raise EndpointsExhaustedError(endpoint_set.name, failures)

    async def fetch_tiered(self, endpoint_set: EndpointSet, request: RequestDescriptor, parse: ParseFn):
        """Primary tier (first endpoint, retried) then one pass over the rest."""
        return await self.fetch(endpoint_set, request, parse, primary_attempts=self.retry_attempts)

    async def fetch_with_retry(self, url: str, request: RequestDescriptor, parse: ParseFn):
        """Single URL with the configured retry count."""
        return await self.fetch(EndpointSet(url, (url,)), request, parse, primary_attempts=self.retry_attempts)

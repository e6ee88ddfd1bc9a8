"""Error taxonomy for the fetch engine.

Only the retry engine tells these apart (to decide whether to rotate); domain
fetchers collapse every subclass into a single "fetch failed" branch and
answer with cached or synthesized content instead.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional


class SkyGuideError(Exception):
    """Base class for engine errors; `kind` names the taxonomy bucket."""

    kind = "unknown"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging and the health endpoint."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class InputValidationError(SkyGuideError):
    """Caller-supplied parameters are missing or malformed."""

    kind = "validation"


class NetworkError(SkyGuideError):
    """Transport failure: DNS, connection reset, TLS, or attempt timeout."""

    kind = "network"


class ApiError(SkyGuideError):
    """Upstream answered, but with a non-2xx status or an error state."""

    kind = "api"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.status_code = status_code


class ParseError(SkyGuideError):
    """Response body is malformed or missing expected fields."""

    kind = "parse"


class StorageError(SkyGuideError):
    """Cache backend read/write failure."""

    kind = "storage"


@dataclass(frozen=True)
class AttemptFailure:
    """One failed endpoint attempt inside a rotation."""

    url: str
    attempt: int
    kind: str
    error: str


class EndpointsExhaustedError(SkyGuideError):
    """Every endpoint of a rotation failed."""

    kind = "exhausted"

    def __init__(self, endpoint_set: str, failures: list[AttemptFailure]) -> None:
        super().__init__(
            f"All endpoints failed for '{endpoint_set}' after {len(failures)} attempt(s)",
            details={"endpoint_set": endpoint_set},
        )
        self.endpoint_set = endpoint_set
        self.failures = list(failures)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["failures"] = [asdict(f) for f in self.failures]
        return data

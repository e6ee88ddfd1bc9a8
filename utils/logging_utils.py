"""
Logging setup shared by the SkyGuide fetch engine, API server and tooling.

Usage
-----
In an entrypoint (API server, preflight check, one-off script):

    from utils.logging_utils import setup_logging

    def main() -> None:
        setup_logging(level="INFO", job_name="skyguide_api")
        ...

In a module:

    from utils.logging_utils import get_tagged_logger

    logger = get_tagged_logger(__name__, tag="skyguide/pois")

    async def get_pois(...):
        logger.info("Fetching POIs from Overpass")

Every record carries `job_name` and `tag` fields, and API keys that leak into
messages (query strings, bearer headers) are scrubbed before they are written.
"""

from __future__ import annotations

import logging
import logging.config
import re
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


# ---------------------------------------------------------------------------
# Bootstrap config for anything logged before setup_logging()
# ---------------------------------------------------------------------------

BOOTSTRAP_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
BOOTSTRAP_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    level=logging.INFO,
    format=BOOTSTRAP_FORMAT,
    datefmt=BOOTSTRAP_DATEFMT,
)


DEFAULT_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(job_name)s | %(tag)s | %(name)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Query parameter names whose values never reach a log line.
SENSITIVE_PARAM_TOKENS = ("pass", "pwd", "secret", "token", "key", "appid")

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)
_INLINE_SECRET_RE = re.compile(
    r"((?:api_key|apikey|appid|token|access_token)=)[^&\s\"']+", re.IGNORECASE
)

_CONFIGURED: bool = False


# ---------------------------------------------------------------------------
# Record filters
# ---------------------------------------------------------------------------

class MaxLevelFilter(logging.Filter):
    """Pass only records at or below `max_level` (routes INFO to stdout)."""

    def __init__(self, max_level: int) -> None:
        """Initialize with a maximum log level."""
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        """Return True if the record is within the allowed level."""
        return record.levelno <= self.max_level


class EnsureTagFilter(logging.Filter):
    """
    Guarantee a `tag` attribute on every record.

    Records coming through `get_tagged_logger` already have one; third-party
    loggers (uvicorn, urllib3) get the last segment of their logger name.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        """Ensure the record has a tag attribute."""
        if not hasattr(record, "tag"):
            logger_name = getattr(record, "name", "")
            record.tag = logger_name.split(".")[-1] if logger_name else "-"
        return True


class JobNameFilter(logging.Filter):
    """Stamp the process-wide job name (e.g. "skyguide_api") onto records."""

    def __init__(self, job_name: Optional[str] = None) -> None:
        """Initialize with a fixed job name."""
        super().__init__()
        self._job_name = job_name or "-"

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        """Inject the job_name attribute when missing."""
        if not hasattr(record, "job_name"):
            record.job_name = self._job_name
        return True


class RedactSecretsFilter(logging.Filter):
    """
    Scrub API keys and bearer tokens from the rendered message.

    Upstream URLs carry credentials in the query string (`api_key=`, `appid=`),
    and exception text from `requests` echoes those URLs verbatim.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        """Replace the record message with its redacted rendering."""
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format args
            return True
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


# ---------------------------------------------------------------------------
# Config builder and setup function
# ---------------------------------------------------------------------------


def build_logging_config(
    *,
    level: str | int = "INFO",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    job_name: Optional[str] = None,
) -> Mapping[str, Any]:
    """
    Build a dictConfig-style logging configuration.

    Parameters
    ----------
    level:
        Root logger level (e.g., "DEBUG", "INFO", logging.INFO).
    log_format:
        Formatter pattern for log messages.
    date_format:
        Formatter pattern for timestamps.
    job_name:
        Logical name for this process (e.g. "skyguide_api").

    Returns
    -------
    dict suitable for logging.config.dictConfig().
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "ensure_tag": {"()": EnsureTagFilter},
            "job_name": {"()": JobNameFilter, "job_name": job_name},
            "redact": {"()": RedactSecretsFilter},
            "stdout_max_info": {
                "()": MaxLevelFilter,
                "max_level": logging.INFO,
            },
        },
        "formatters": {
            "standard": {
                "format": log_format,
                "datefmt": date_format,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["ensure_tag", "job_name", "redact", "stdout_max_info"],
                "level": "DEBUG",
                "stream": "ext://sys.stdout",
            },
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["ensure_tag", "job_name", "redact"],
                "level": "WARNING",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level,
            "handlers": ["stdout", "stderr"],
        },
    }


def setup_logging(
    *,
    level: str | int = "INFO",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    job_name: Optional[str] = None,
    override_existing: bool = False,
) -> None:
    """
    Configure process-wide logging once.

    Repeated calls are no-ops unless `override_existing` is True, so library
    modules can call this without clobbering the entrypoint's
    choice of level or job name.
    """
    global _CONFIGURED

    if _CONFIGURED and not override_existing:
        return

    config_dict = build_logging_config(
        level=level,
        log_format=log_format,
        date_format=date_format,
        job_name=job_name,
    )
    logging.config.dictConfig(config_dict)
    _CONFIGURED = True


def get_tagged_logger(
    name: str,
    *,
    tag: Optional[str] = None,
) -> logging.LoggerAdapter:
    """
    Return a LoggerAdapter whose records always carry a `tag` field.

    The tag defaults to the last segment of `name`, so
    "skyguide.cache.store" becomes "store".
    """
    base_logger = logging.getLogger(name)
    if tag is None:
        tag = name.split(".")[-1]
    return logging.LoggerAdapter(base_logger, {"tag": tag})


# ---------------------------------------------------------------------------
# Redaction helpers
# ---------------------------------------------------------------------------


def redact_secrets(text: str) -> str:
    """Mask bearer tokens and inline `api_key=`/`appid=` values in free text."""
    if not text:
        return text
    text = _BEARER_RE.sub(r"\1***", text)
    return _INLINE_SECRET_RE.sub(r"\1***", text)


def mask_url(url: str) -> str:
    """Return a copy of a URL with credentials and secret query values masked.

    Examples
    --------
    - https://api.openweathermap.org/data/2.5/weather?lat=1&appid=abc
      -> https://api.openweathermap.org/data/2.5/weather?lat=1&appid=%2A%2A%2A
    - redis://:secret@cache:6379/0 -> redis://:***@cache:6379/0
    - sqlite:///./skyguide_cache.db -> unchanged
    """
    try:
        parsed = urlparse(url)
    except Exception:
        return url

    masked_pairs = []
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        if any(token in key.lower() for token in SENSITIVE_PARAM_TOKENS):
            masked_pairs.append((key, "***"))
        else:
            masked_pairs.append((key, value))
    masked_query = urlencode(masked_pairs)

    netloc = ""
    if parsed.username:
        netloc += "***"
    if parsed.password is not None:
        netloc += ":***"
    if netloc:
        netloc += "@"
    if parsed.hostname:
        netloc += parsed.hostname
    if parsed.port:
        netloc += f":{parsed.port}"

    # sqlite:/// and file:/// have no netloc; keep the triple slash
    if not netloc and parsed.netloc == "" and (parsed.path or "").startswith("/"):
        base = f"{parsed.scheme}:///{(parsed.path or '').lstrip('/')}"
        if masked_query:
            base = f"{base}?{masked_query}"
        if parsed.fragment:
            base = f"{base}#{parsed.fragment}"
        return base

    return urlunparse(
        (parsed.scheme, netloc, parsed.path or "", parsed.params or "", masked_query, parsed.fragment or "")
    )

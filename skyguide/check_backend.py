"""Health checks and optional model pulling for the narrative backend."""

from __future__ import annotations

import sys
from typing import Any, Dict, Optional

import requests

from skyguide.config import Settings, settings as default_settings
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="check_backend")


def _models_url(settings: Settings) -> str:
    if settings.narrative_backend == "ollama":
        return f"{settings.narrative_base_url}/api/tags"
    return f"{settings.narrative_base_url}/models"


def _installed_model_names(settings: Settings, body: dict) -> set[str]:
    """Model names (and tag-less base names for Ollama) advertised by the backend."""
    names: set[str] = set()
    if settings.narrative_backend == "ollama":
        for m in body.get("models", []):
            name = m.get("name")
            if name:
                names.add(name)
                names.add(name.split(":")[0])
    else:
        for m in body.get("data", []):
            if m.get("id"):
                names.add(m["id"])
    return names


def get_narrative_backend_status(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Non-fatal probe of the narrative backend, suitable for health endpoints.

    Returns `ok`, `reachable`, `backend`, `base_url`, `model`,
    `installed_models`, `model_available` and `error`.
    """
    settings = settings or default_settings
    status: Dict[str, Any] = {
        "ok": False,
        "reachable": False,
        "backend": settings.narrative_backend,
        "base_url": mask_url(settings.narrative_base_url),
        "model": settings.narrative_model,
        "installed_models": [],
        "model_available": False,
        "error": None,
    }
    headers = {}
    if settings.narrative_api_key:
        headers["Authorization"] = f"Bearer {settings.narrative_api_key}"
    try:
        resp = requests.get(_models_url(settings), headers=headers, timeout=3)
        resp.raise_for_status()
        body = resp.json()
    except (requests.exceptions.RequestException, ValueError) as exc:
        status["error"] = str(exc)
        return status

    status["reachable"] = True
    installed = _installed_model_names(settings, body)
    status["installed_models"] = sorted(installed)
    status["model_available"] = settings.narrative_model in installed
    status["ok"] = status["model_available"]
    return status


def _pull_model(settings: Settings, name: str) -> None:
    """Ask Ollama to pull `name`; blocks until the pull ends. Exits on failure."""
    logger.info("Model '%s' not found; asking Ollama to pull it", name)
    try:
        with requests.post(
            f"{settings.narrative_base_url}/api/pull", json={"name": name}, stream=True, timeout=None
        ) as resp:
            resp.raise_for_status()
            for line in resp.iter_lines(decode_unicode=True):
                if line and '"status"' in line:
                    logger.info("[ollama] %s", line)
    except requests.exceptions.RequestException as exc:
        logger.error("Failed to pull model '%s': %s. Try `ollama pull %s`.", name, exc, name)
        sys.exit(1)

    if not get_narrative_backend_status(settings)["model_available"]:
        logger.error("Model '%s' still not visible after pull", name)
        sys.exit(1)
    logger.info("Model '%s' is now available", name)


def check_narrative_backend(settings: Optional[Settings] = None, auto_pull: Optional[bool] = None) -> None:
    """
    Startup check; exits with status 1 when the backend is unusable.

    Narratives degrade to canned text without a backend, so callers may
    prefer to skip this in development.
    """
    settings = settings or default_settings
    if auto_pull is None:
        auto_pull = settings.narrative_auto_pull
    status = get_narrative_backend_status(settings)

    if not status["reachable"]:
        logger.error(
            "Narrative backend unreachable at %s: %s", status["base_url"], status["error"]
        )
        sys.exit(1)

    if status["model_available"]:
        logger.info("Narrative backend reachable at %s with model %s", status["base_url"], settings.narrative_model)
        return

    if auto_pull and settings.narrative_backend == "ollama":
        _pull_model(settings, settings.narrative_model)
        return

    logger.error(
        "Model %s is not available on %s (installed: %s)",
        settings.narrative_model,
        status["base_url"],
        ", ".join(status["installed_models"]) or "none",
    )
    sys.exit(1)

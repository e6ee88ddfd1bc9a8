import os

import uvicorn

from skyguide.check_backend import check_narrative_backend
from skyguide.config import settings
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="server")


def maybe_check_backend() -> None:
    """
    Optionally run the narrative backend preflight.

    SKYGUIDE_SKIP_BACKEND_CHECK=true skips it; narratives then fall back to
    canned text until the backend comes up.
    """
    if settings.skip_backend_check:
        logger.info("Skipping narrative backend preflight (SKYGUIDE_SKIP_BACKEND_CHECK=true)")
        return
    try:
        check_narrative_backend(settings)
    except SystemExit:
        logger.error("Narrative backend preflight failed; set SKYGUIDE_SKIP_BACKEND_CHECK=true to bypass.")
        raise


if __name__ == "__main__":
    maybe_check_backend()

    uvicorn.run(
        "skyguide.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )

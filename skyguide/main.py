"""FastAPI application for the SkyGuide fetch engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from skyguide.api import get_services, router as api_router
from skyguide.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

setup_logging(level=settings.log_level, job_name=settings.job_name)
logger = get_tagged_logger(__name__, tag="main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = get_services()
    await services.runtime.connectivity.check(force=True)
    logger.info("SkyGuide started", extra={"online": services.runtime.connectivity.is_online})
    yield
    services.runtime.close()
    get_services.cache_clear()


app = FastAPI(title="SkyGuide", lifespan=lifespan)

app.include_router(api_router, prefix="/v1")

"""HTTP API over the fetch engine."""

from __future__ import annotations

import asyncio
import hmac
import json
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from skyguide.alerts import WeatherAlertsFetcher
from skyguide.check_backend import get_narrative_backend_status
from skyguide.config import settings
from skyguide.domain import POI, CurrentWeather, POICategory, WeatherAlert
from skyguide.narrative import NarrativeContext, NarrativeFetcher
from skyguide.pois import DEFAULT_RADIUS, PoiFetcher
from skyguide.runtime import FetchRuntime
from skyguide.weather import WeatherFetcher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api")


def require_api_key(x_api_key: str | None = Header(default=None)):
    """Validate the X-API-Key header against the configured static key."""
    if not settings.api_key:
        logger.debug("No API key configured; allowing all requests")
        return
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")
    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return
    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


@dataclass
class Services:
    """The runtime and the fetchers sharing it."""

    runtime: FetchRuntime
    alerts: WeatherAlertsFetcher
    pois: PoiFetcher
    narrative: NarrativeFetcher
    weather: WeatherFetcher

    @classmethod
    def from_runtime(cls, runtime: FetchRuntime) -> "Services":
        return cls(
            runtime=runtime,
            alerts=WeatherAlertsFetcher(runtime),
            pois=PoiFetcher(runtime),
            narrative=NarrativeFetcher(runtime),
            weather=WeatherFetcher(runtime),
        )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return Services.from_runtime(FetchRuntime.from_settings(settings))


router = APIRouter(dependencies=[Depends(require_api_key)])


class InsightRequest(BaseModel):
    """Narrative request; `prompt` switches to a freeform question."""
    location: str = ""
    condition: str = ""
    temperature: Optional[float] = None
    alerts: List[WeatherAlert] = Field(default_factory=list)
    pois: List[POI] = Field(default_factory=list)
    prompt: Optional[str] = None

    def to_context(self) -> NarrativeContext:
        return NarrativeContext(
            location=self.location,
            condition=self.condition,
            temperature=self.temperature,
            alerts=tuple(self.alerts),
            pois=tuple(self.pois),
        )


class InsightResponse(BaseModel):
    text: str


@router.get("/alerts", response_model=List[WeatherAlert])
async def alerts(
    lat: float,
    lon: float,
    area: Optional[str] = None,
    services: Services = Depends(get_services),
):
    return await services.alerts.get_alerts(lat, lon, area)


@router.get("/pois", response_model=List[POI])
async def pois(
    lat: float,
    lon: float,
    radius: int = Query(DEFAULT_RADIUS, gt=0),
    category: Optional[POICategory] = None,
    force_refresh: bool = False,
    services: Services = Depends(get_services),
):
    if category is not None:
        return await services.pois.get_pois_by_category(lat, lon, category, radius, show_only_interesting=False)
    return await services.pois.get_pois(lat, lon, radius, force_refresh=force_refresh)


@router.post("/insight", response_model=InsightResponse)
async def insight(req: InsightRequest, services: Services = Depends(get_services)):
    if req.prompt:
        text = await services.narrative.get_freeform(req.prompt)
    else:
        text = await services.narrative.get_insight(req.to_context())
    return InsightResponse(text=text)


@router.post("/insight/stream")
async def insight_stream(req: InsightRequest, services: Services = Depends(get_services)):
    """Cumulative narrative texts, one JSON object per line."""
    stream = services.narrative.stream_insight(req.to_context())

    async def body():
        try:
            async for text in stream:
                yield json.dumps({"text": text}, ensure_ascii=False) + "\n"
        finally:
            stream.cancel()

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.get("/weather", response_model=CurrentWeather)
async def weather(lat: float, lon: float, services: Services = Depends(get_services)):
    return await services.weather.get_weather(lat, lon)


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    rt = services.runtime
    return {
        "online": rt.connectivity.is_online,
        "pending_requests": rt.dedup.pending_count(),
        "narrative_backend": await asyncio.to_thread(get_narrative_backend_status, rt.settings),
    }

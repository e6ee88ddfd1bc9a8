"""Normalized records produced by the domain fetchers.

Upstream payloads (AEMET, OpenWeather, Overpass) are heterogeneous; these
models are the single shape handed to consumers and written to the cache.
All of them are immutable once built.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class _FrozenModel(BaseModel):
    """Base model: no unknown fields, no mutation after construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class AlertSource(str, Enum):
    AEMET = "AEMET"
    OPENWEATHER = "OpenWeather"


class AlertLevel(str, Enum):
    """Colour-coded warning level; OpenWeather alerts are always unknown."""
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"
    UNKNOWN = "unknown"


class WeatherAlert(_FrozenModel):
    source: AlertSource
    id: str
    zone: str
    province: str
    description: str
    level: AlertLevel = AlertLevel.UNKNOWN
    start_time: datetime
    end_time: datetime
    phenomenon: str


class POICategory(str, Enum):
    """Closed set of categories; `OTHER` is the default branch."""
    TOURISM = "tourism"
    NATURAL = "natural"
    LEISURE = "leisure"
    AMENITY = "amenity"
    SHOP = "shop"
    HISTORIC = "historic"
    ROUTE = "route"
    PUBLIC_TRANSPORT = "public_transport"
    AEROWAY = "aeroway"
    HEALTHCARE = "healthcare"
    EMERGENCY = "emergency"
    SPORT = "sport"
    OTHER = "other"


class POI(_FrozenModel):
    """A point of interest; `distance` is meters from the query point."""
    id: str
    name: str
    type: str
    category: POICategory
    lat: float
    lon: float
    distance: float = 0.0
    tags: Dict[str, str] = Field(default_factory=dict)
    icon: str = "fa-map-marker-alt"
    is_interesting: bool = False


class HourlyForecast(_FrozenModel):
    time: datetime
    temperature: float
    condition: str
    precipitation_probability: float | None = None


class CurrentWeather(_FrozenModel):
    """Current conditions plus a short forecast; `is_fallback` marks synthesized data."""
    location: str
    temperature: float
    feels_like: float | None = None
    humidity: float | None = None
    wind_speed: float | None = None
    condition: str
    condition_code: int | None = None
    description: str = ""
    alert: str | None = None
    lat: float
    lon: float
    hourly_forecast: List[HourlyForecast] = Field(default_factory=list)
    is_fallback: bool = False

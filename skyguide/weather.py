"""Current conditions and a short forecast from OpenWeather, with simulated fallback data."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import requests

from skyguide.cache import CacheNamespace
from skyguide.domain import CurrentWeather, HourlyForecast
from skyguide.errors import ApiError, InputValidationError, SkyGuideError
from skyguide.geo import coordinate_key
from skyguide.retry import RequestDescriptor
from skyguide.runtime import FetchRuntime
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather")

THROTTLE_BUCKET = "forecast"
FORECAST_HOURS = 8

OFFLINE_NOTICE = "Offline mode. Showing cached data."
THROTTLED_NOTICE = "API limit reached. Showing cached data."
STALE_ERROR_NOTICE = "Error de API. Mostrando últimos datos disponibles."
MOCK_ERROR_NOTICE = "No se pudieron obtener datos meteorológicos. Mostrando datos de ejemplo."
MOCK_NOTICE = "[DATOS SIMULADOS] No se pudieron obtener datos meteorológicos actuales."
INVALID_NOTICE = "Coordenadas no válidas. Mostrando datos de ejemplo."


def map_weather_condition(code: Any) -> str:
    """Collapse an OpenWeather condition id into a coarse condition name."""
    try:
        code = int(code)
    except (TypeError, ValueError):
        return "clear"
    if 200 <= code < 300:
        return "thunderstorm"
    if 300 <= code < 400:
        return "drizzle"
    if 500 <= code < 600:
        return "rain"
    if 600 <= code < 700:
        return "snow"
    if 700 <= code < 800:
        return "mist"
    if code == 800:
        return "clear"
    if code > 800:
        return "cloudy"
    return "clear"


def mock_weather(
    lat: float,
    lon: float,
    *,
    location: str = "",
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> CurrentWeather:
    """Plausible Canary-Islands-style conditions for the current season and hour."""
    now = now or datetime.now()
    rng = rng or random.Random()
    month, hour = now.month, now.hour

    base_temp = 22
    if 6 <= month <= 9:
        base_temp = 26
    elif month >= 10 or month <= 3:
        base_temp = 20
    if 12 <= hour <= 15:
        base_temp += 3
    elif 0 <= hour <= 6:
        base_temp -= 3
    temp = base_temp + rng.randint(-1, 1)

    daytime = 6 <= hour <= 18
    hourly = [
        HourlyForecast(
            time=now + timedelta(hours=3 * i),
            temperature=temp - i // 2,
            condition="sunny" if i < 3 else ("partly cloudy" if i < 6 else "cloudy"),
        )
        for i in range(FORECAST_HOURS)
    ]
    return CurrentWeather(
        location=location or coordinate_key(lat, lon),
        temperature=temp,
        feels_like=temp + 1,
        humidity=65,
        wind_speed=15 + rng.randint(0, 9),
        condition="sunny" if daytime else "clear",
        alert=MOCK_NOTICE,
        lat=lat,
        lon=lon,
        hourly_forecast=hourly,
        is_fallback=True,
    )


def parse_current(payload: dict) -> dict:
    main = payload["main"]
    condition = payload["weather"][0]
    return {
        "location": payload.get("name") or "",
        "temperature": round(main["temp"]),
        "feels_like": round(main["feels_like"]) if main.get("feels_like") is not None else None,
        "humidity": main.get("humidity"),
        # m/s -> km/h
        "wind_speed": round(payload.get("wind", {}).get("speed", 0) * 3.6),
        "condition": map_weather_condition(condition["id"]),
        "condition_code": condition["id"],
        "description": condition.get("description") or "",
        "lat": payload["coord"]["lat"],
        "lon": payload["coord"]["lon"],
    }


def parse_forecast(payload: dict) -> list[HourlyForecast]:
    return [
        HourlyForecast(
            time=datetime.fromtimestamp(item["dt"], tz=timezone.utc),
            temperature=round(item["main"]["temp"]),
            condition=map_weather_condition(item["weather"][0]["id"]),
            precipitation_probability=item.get("pop"),
        )
        for item in payload["list"][:FORECAST_HOURS]
    ]


class WeatherFetcher:
    """Current weather by coordinates; never raises."""

    def __init__(self, runtime: FetchRuntime, *, rng: Optional[random.Random] = None,
                 now: Callable[[], datetime] = datetime.now) -> None:
        self.runtime = runtime
        self.settings = runtime.settings
        self.rng = rng or random.Random()
        self.now = now

    @staticmethod
    def cache_key(lat: float, lon: float) -> str:
        return f"weather_{coordinate_key(lat, lon)}"

    def _cached(self, key: str, *, allow_stale: bool = False) -> Optional[CurrentWeather]:
        raw = self.runtime.cache.get(CacheNamespace.WEATHER_DATA, key, allow_stale=allow_stale)
        if raw is None:
            return None
        try:
            return CurrentWeather.model_validate(raw)
        except ValueError as exc:
            logger.warning("Discarding unreadable cached weather", extra={"key": key, "error": str(exc)})
            self.runtime.cache.remove(CacheNamespace.WEATHER_DATA, key)
            return None

    def _stale_or_mock(self, key: str, lat: float, lon: float, notice: str, *, keep_alert: bool = False) -> CurrentWeather:
        stale = self._cached(key, allow_stale=True)
        if stale is not None:
            alert = stale.alert if keep_alert and stale.alert else notice
            return stale.model_copy(update={"alert": alert})
        # simulated data is never cached
        return mock_weather(lat, lon, now=self.now(), rng=self.rng)

    async def get_weather(self, lat: float, lon: float) -> CurrentWeather:
        try:
            lat, lon = _validate(lat, lon)
        except InputValidationError as exc:
            logger.warning("Invalid weather request", extra={"error": exc.message})
            weather = mock_weather(0.0, 0.0, location="-", now=self.now(), rng=self.rng)
            return weather.model_copy(update={"alert": INVALID_NOTICE})

        key = self.cache_key(lat, lon)
        cached = self._cached(key)
        if cached is not None:
            logger.debug("Weather cache hit %s", key)
            return cached
        try:
            return await self.runtime.dedup.join_or_start(key, lambda: self._load(lat, lon, key))
        except Exception as exc:  # pragma: no cover
            logger.error("Weather lookup failed unexpectedly", extra={"error": str(exc)})
            return mock_weather(lat, lon, now=self.now(), rng=self.rng)

    async def _load(self, lat: float, lon: float, key: str) -> CurrentWeather:
        rt = self.runtime
        if rt.connectivity.is_offline():
            logger.info("Offline; using stale or simulated weather for %s", key)
            return self._stale_or_mock(key, lat, lon, OFFLINE_NOTICE)
        if not rt.throttle.can_call(THROTTLE_BUCKET):
            logger.info("Forecast bucket throttled; using stale or simulated weather for %s", key)
            return self._stale_or_mock(key, lat, lon, THROTTLED_NOTICE)
        try:
            weather = await self._fetch(lat, lon)
        except SkyGuideError as exc:
            logger.error("Weather fetch failed", extra={"key": key, "error": exc.message})
            fallback = self._stale_or_mock(key, lat, lon, STALE_ERROR_NOTICE, keep_alert=True)
            if fallback.is_fallback:
                fallback = fallback.model_copy(update={"alert": MOCK_ERROR_NOTICE})
            return fallback
        rt.throttle.record_call(THROTTLE_BUCKET)
        rt.cache.set(CacheNamespace.WEATHER_DATA, key, weather.model_dump(mode="json"))
        return weather

    async def _fetch(self, lat: float, lon: float) -> CurrentWeather:
        api_key = self.settings.openweather_api_key
        if not api_key:
            raise ApiError("OpenWeather API key is not configured")
        params = {"lat": lat, "lon": lon, "units": "metric", "appid": api_key}
        base = self.settings.openweather_base_url
        retry = self.runtime.retry

        def current(response: requests.Response) -> dict:
            return parse_current(response.json())

        def forecast(response: requests.Response) -> list[HourlyForecast]:
            return parse_forecast(response.json())

        fields = await retry.fetch_with_retry(f"{base}/weather", RequestDescriptor(params=params), current)
        hourly = await retry.fetch_with_retry(f"{base}/forecast", RequestDescriptor(params=params), forecast)
        return CurrentWeather(**fields, hourly_forecast=hourly)


def _validate(lat: Any, lon: Any) -> tuple[float, float]:
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError) as exc:
        raise InputValidationError("Coordinates must be numeric") from exc
    if not (-90 <= lat_f <= 90 and -180 <= lon_f <= 180):
        raise InputValidationError("Coordinates out of range", details={"lat": lat_f, "lon": lon_f})
    return lat_f, lon_f

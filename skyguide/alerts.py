"""Weather alerts: AEMET regional warnings with an OpenWeather heuristic fallback."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Optional
from urllib.parse import urlencode

import requests

from skyguide.cache import CacheNamespace
from skyguide.domain import AlertLevel, AlertSource, WeatherAlert
from skyguide.errors import ApiError, InputValidationError, SkyGuideError
from skyguide.geo import coordinate_key
from skyguide.retry import RequestDescriptor
from skyguide.runtime import FetchRuntime
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="alerts")

THROTTLE_BUCKET = "alerts"
ALERTS_ENDPOINT = "/avisos_cap/ultimoelaborado/area"
FORECAST_ENDPOINT = "/prediccion/especifica/municipio/diaria"
OPENWEATHER_ZONE = "OpenWeather API Free"


class AemetArea(str, Enum):
    """AEMET warning areas."""
    CANARIAS = "can"
    PENINSULA = "esp"
    BALEARES = "bal"
    ANDALUCIA = "and"
    ARAGON = "arn"
    ASTURIAS = "ast"
    CANTABRIA = "coo"
    CASTILLA_LEON = "cle"
    CASTILLA_MANCHA = "clm"
    CATALUNA = "cat"
    VALENCIA = "val"
    EXTREMADURA = "ext"
    GALICIA = "gal"
    MADRID = "mad"
    MURCIA = "mur"
    NAVARRA = "nav"
    PAIS_VASCO = "pva"
    RIOJA = "rio"


# An AEMET record belongs to an area when its province or zone name mentions one of these.
AREA_PROVINCES: dict[AemetArea, tuple[str, ...]] = {
    AemetArea.CANARIAS: (
        "Las Palmas", "Santa Cruz de Tenerife", "Tenerife", "Gran Canaria", "Lanzarote",
        "Fuerteventura", "La Palma", "La Gomera", "El Hierro",
    ),
    AemetArea.PENINSULA: (
        "Madrid", "Barcelona", "Valencia", "Sevilla", "Zaragoza", "Málaga", "Murcia",
        "Palma", "Bilbao", "Alicante",
    ),
    AemetArea.BALEARES: ("Mallorca", "Menorca", "Ibiza", "Formentera", "Palma"),
    AemetArea.ANDALUCIA: ("Sevilla", "Málaga", "Cádiz", "Granada", "Córdoba", "Almería", "Jaén", "Huelva"),
    AemetArea.ARAGON: ("Zaragoza", "Huesca", "Teruel"),
    AemetArea.ASTURIAS: ("Oviedo", "Gijón", "Avilés"),
    AemetArea.CANTABRIA: ("Santander", "Torrelavega"),
    AemetArea.CASTILLA_LEON: (
        "Valladolid", "Burgos", "Salamanca", "León", "Palencia", "Zamora", "Segovia", "Soria", "Ávila",
    ),
    AemetArea.CASTILLA_MANCHA: ("Toledo", "Ciudad Real", "Albacete", "Guadalajara", "Cuenca"),
    AemetArea.CATALUNA: ("Barcelona", "Tarragona", "Lérida", "Gerona"),
    AemetArea.VALENCIA: ("Valencia", "Alicante", "Castellón"),
    AemetArea.EXTREMADURA: ("Badajoz", "Cáceres"),
    AemetArea.GALICIA: ("La Coruña", "Pontevedra", "Lugo", "Orense"),
    AemetArea.MADRID: ("Madrid",),
    AemetArea.MURCIA: ("Murcia", "Cartagena"),
    AemetArea.NAVARRA: ("Pamplona",),
    AemetArea.PAIS_VASCO: ("Bilbao", "San Sebastián", "Vitoria"),
    AemetArea.RIOJA: ("Logroño",),
}

# OpenWeather condition codes severe enough to surface as an alert.
EXTREME_CONDITION_CODES = frozenset(
    [
        200, 201, 202, 210, 211, 212, 221, 230, 231, 232,  # thunderstorms
        502, 503, 504, 511, 522, 531,  # heavy rain
        602, 622,  # heavy snow
        762, 771, 781,  # volcanic ash, squalls, tornado
    ]
)

CANARY_MUNICIPALITY_IDS = {
    "Santa Cruz de Tenerife": "38038",
    "Las Palmas de Gran Canaria": "35016",
    "La Laguna": "38023",
    "Arrecife": "35004",
    "Puerto del Rosario": "35018",
    "San Cristóbal de La Laguna": "38023",
    "Santa Cruz de La Palma": "38037",
    "Valverde": "38048",
    "San Sebastián de La Gomera": "38036",
}

_LEVELS = {"amarillo": AlertLevel.YELLOW, "naranja": AlertLevel.ORANGE, "rojo": AlertLevel.RED}


def determine_aemet_area(lat: float, lon: float) -> AemetArea:
    """Pick the AEMET area from coordinates; mainland Spain is the default."""
    if 27 <= lat <= 29.5 and -18.5 <= lon <= -13:
        return AemetArea.CANARIAS
    if 38.5 <= lat <= 40 and 1 <= lon <= 4.5:
        return AemetArea.BALEARES
    return AemetArea.PENINSULA


def map_alert_level(level: Optional[str]) -> AlertLevel:
    return _LEVELS.get((level or "").strip().lower(), AlertLevel.UNKNOWN)


def is_extreme_condition(code: Any) -> bool:
    try:
        return int(code) in EXTREME_CONDITION_CODES
    except (TypeError, ValueError):
        return False


def _matches_area(record: dict, provinces: Iterable[str]) -> bool:
    provincia = str(record.get("provincia") or "")
    zona = str(record.get("nombreZona") or "")
    return any(p in provincia or p in zona for p in provinces)


def normalize_aemet_alerts(records: Any, area: AemetArea) -> list[WeatherAlert]:
    """Filter raw AEMET records to the area's provinces and normalize them.

    Records missing required fields are skipped rather than failing the batch.
    """
    if not isinstance(records, list):
        raise ValueError("AEMET alert payload is not a list")
    provinces = AREA_PROVINCES[area]
    alerts: list[WeatherAlert] = []
    for record in records:
        if not isinstance(record, dict) or not _matches_area(record, provinces):
            continue
        try:
            alerts.append(
                WeatherAlert(
                    source=AlertSource.AEMET,
                    id=str(record["idAviso"]),
                    zone=record["nombreZona"],
                    province=record["provincia"],
                    description=record.get("descripcion") or "",
                    level=map_alert_level(record.get("nivelAviso")),
                    start_time=record["fechaInicio"],
                    end_time=record["fechaFin"],
                    phenomenon=(record.get("fenomeno") or {}).get("nombre") or "",
                )
            )
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed AEMET alert", extra={"error": str(exc)})
    return alerts


def parse_aemet_metadata(response: requests.Response) -> str:
    """First AEMET step: `{estado, datos}` where `datos` is the data URL."""
    payload = response.json()
    if payload.get("estado") != 200 or not payload.get("datos"):
        raise ApiError(
            f"AEMET returned error state: {payload.get('estado')}",
            details={"descripcion": payload.get("descripcion")},
        )
    return str(payload["datos"])


def alert_from_condition(payload: dict, *, now: Optional[datetime] = None) -> list[WeatherAlert]:
    """Turn an OpenWeather current-weather payload into at most one coarse alert."""
    weather = payload.get("weather")
    if weather is None:
        raise KeyError("weather")
    condition = weather[0] if weather else None
    if not condition or not is_extreme_condition(condition.get("id")):
        return []
    start = now or datetime.now(timezone.utc)
    return [
        WeatherAlert(
            source=AlertSource.OPENWEATHER,
            id=f"ow-0-{int(start.timestamp() * 1000)}",
            zone=OPENWEATHER_ZONE,
            province=OPENWEATHER_ZONE.split(" ")[0],
            description=condition.get("description") or "",
            level=AlertLevel.UNKNOWN,
            start_time=start,
            end_time=start + timedelta(hours=1),
            phenomenon=condition.get("main") or "",
        )
    ]


class WeatherAlertsFetcher:
    """Resolve alerts for a point; never raises, always returns a list."""

    def __init__(self, runtime: FetchRuntime) -> None:
        self.runtime = runtime
        self.settings = runtime.settings

    @staticmethod
    def cache_key(lat: float, lon: float, area: AemetArea) -> str:
        return f"{area.value}_{coordinate_key(lat, lon)}"

    async def get_alerts(self, lat: float, lon: float, area: AemetArea | str | None = None) -> list[WeatherAlert]:
        try:
            lat, lon, area = self._validate(lat, lon, area)
        except InputValidationError as exc:
            logger.warning("Invalid alert request", extra={"error": exc.message})
            return []

        key = self.cache_key(lat, lon, area)
        cached = self._read_cache(key)
        if cached is not None:
            logger.debug("Alerts cache hit %s", key)
            return cached
        try:
            return await self.runtime.dedup.join_or_start(
                f"alerts:{key}", lambda: self._load(lat, lon, area, key)
            )
        except Exception as exc:  # pragma: no cover
            logger.error("Alert lookup failed unexpectedly", extra={"error": str(exc)})
            return []

    @staticmethod
    def _validate(lat: Any, lon: Any, area: AemetArea | str | None) -> tuple[float, float, AemetArea]:
        try:
            lat_f, lon_f = float(lat), float(lon)
        except (TypeError, ValueError) as exc:
            raise InputValidationError("Coordinates must be numeric") from exc
        if not (-90 <= lat_f <= 90 and -180 <= lon_f <= 180):
            raise InputValidationError("Coordinates out of range", details={"lat": lat_f, "lon": lon_f})
        if area is None or area == "":
            return lat_f, lon_f, determine_aemet_area(lat_f, lon_f)
        try:
            return lat_f, lon_f, AemetArea(area)
        except ValueError as exc:
            raise InputValidationError(f"Unknown AEMET area: {area}") from exc

    def _read_cache(self, key: str, *, allow_stale: bool = False) -> Optional[list[WeatherAlert]]:
        raw = self.runtime.cache.get(CacheNamespace.ALERTS, key, allow_stale=allow_stale)
        if raw is None:
            return None
        try:
            return [WeatherAlert.model_validate(item) for item in raw]
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable cached alerts", extra={"key": key, "error": str(exc)})
            self.runtime.cache.remove(CacheNamespace.ALERTS, key)
            return None

    async def _load(self, lat: float, lon: float, area: AemetArea, key: str) -> list[WeatherAlert]:
        rt = self.runtime
        if rt.connectivity.is_offline():
            logger.info("Offline; serving cached alerts for %s", key)
            return self._read_cache(key, allow_stale=True) or []
        if not rt.throttle.can_call(THROTTLE_BUCKET):
            logger.info("Alerts throttled; serving cached alerts for %s", key)
            return self._read_cache(key, allow_stale=True) or []

        reached_upstream = False
        alerts: list[WeatherAlert] = []
        try:
            alerts = await self._fetch_aemet(area)
            reached_upstream = True
        except SkyGuideError as exc:
            logger.warning("AEMET alerts unavailable", extra={"area": area.value, "error": exc.message})

        if not alerts:
            try:
                alerts = await self._fetch_openweather(lat, lon)
                reached_upstream = True
            except SkyGuideError as exc:
                logger.warning("OpenWeather alert heuristic unavailable", extra={"error": exc.message})

        if reached_upstream:
            rt.throttle.record_call(THROTTLE_BUCKET)
        # an empty result is cached too, so a failing upstream is not hammered
        rt.cache.set(CacheNamespace.ALERTS, key, [a.model_dump(mode="json") for a in alerts])
        logger.info("Resolved %d alert(s) for %s", len(alerts), key)
        return alerts

    def _aemet_url(self, endpoint: str) -> str:
        if not self.settings.aemet_api_key:
            raise ApiError("AEMET API key is not configured")
        return f"{self.settings.aemet_base_url}{endpoint}?{urlencode({'api_key': self.settings.aemet_api_key})}"

    async def _aemet_two_step(self, endpoint: str, name: str) -> Any:
        """Metadata call for the data URL, then the data call itself."""
        rt = self.runtime
        metadata_set = rt.proxies.endpoint_set(f"{name}-metadata", self._aemet_url(endpoint))
        data_url = await rt.retry.fetch_tiered(metadata_set, RequestDescriptor(), parse_aemet_metadata)
        data_set = rt.proxies.endpoint_set(f"{name}-data", data_url)
        return await rt.retry.fetch_tiered(data_set, RequestDescriptor(), lambda r: r.json())

    async def _fetch_aemet(self, area: AemetArea) -> list[WeatherAlert]:
        records = await self._aemet_two_step(f"{ALERTS_ENDPOINT}/{area.value}", "aemet-alerts")
        try:
            return normalize_aemet_alerts(records, area)
        except ValueError as exc:
            raise ApiError(str(exc)) from exc

    async def _fetch_openweather(self, lat: float, lon: float) -> list[WeatherAlert]:
        if not self.settings.openweather_api_key:
            raise ApiError("OpenWeather API key is not configured")
        request = RequestDescriptor(
            params={
                "lat": lat,
                "lon": lon,
                "appid": self.settings.openweather_api_key,
                "units": "metric",
                "lang": "es",
            }
        )
        url = f"{self.settings.openweather_base_url}/weather"
        return await self.runtime.retry.fetch_with_retry(url, request, lambda r: alert_from_condition(r.json()))

    async def fetch_municipality_forecast(self, municipality_id: str) -> Optional[Any]:
        """Daily AEMET forecast for one municipality; cached, None when unavailable."""
        key = f"aemet_forecast_{municipality_id}"
        cache = self.runtime.cache
        cached = cache.get(CacheNamespace.WEATHER_DATA, key)
        if cached is not None:
            return cached
        if self.runtime.connectivity.is_offline():
            return cache.get(CacheNamespace.WEATHER_DATA, key, allow_stale=True)
        try:
            forecast = await self._aemet_two_step(f"{FORECAST_ENDPOINT}/{municipality_id}", "aemet-forecast")
        except SkyGuideError as exc:
            logger.warning(
                "AEMET municipality forecast unavailable",
                extra={"municipality_id": municipality_id, "error": exc.message},
            )
            return cache.get(CacheNamespace.WEATHER_DATA, key, allow_stale=True)
        cache.set(CacheNamespace.WEATHER_DATA, key, forecast)
        return forecast

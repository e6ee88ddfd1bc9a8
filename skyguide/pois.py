"""Points of interest from OpenStreetMap (Overpass), with seeded fallbacks."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional, Sequence

import requests

from skyguide.cache import CacheNamespace
from skyguide.domain import POI, POICategory
from skyguide.errors import InputValidationError, SkyGuideError
from skyguide.geo import calculate_distance, within_box
from skyguide.poi_seeds import (
    CITY_SEEDS,
    GENERIC_RING,
    SANTA_CRUZ_CENTER,
    SANTA_CRUZ_DELTA,
    SANTA_CRUZ_SEEDS,
    SPAIN_BOX,
    SPAIN_OFFSETS,
    SeedPOI,
)
from skyguide.retry import EndpointSet, RequestDescriptor
from skyguide.runtime import FetchRuntime
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pois")

THROTTLE_BUCKET = "overpass"
DEFAULT_RADIUS = 20000
SANTA_CRUZ_MIN_RADIUS = 30000
UNNAMED = "Punto de interés"

SANTA_CRUZ_FILTERS = (
    'node["tourism"]',
    'node["natural"]',
    'node["amenity"~"restaurant|cafe|bar|pub|ice_cream|fast_food"]',
    'node["shop"~"bakery|supermarket|convenience|mall"]',
    'way["tourism"]',
    'way["natural"="beach"]',
    'way["leisure"="park"]',
)

# Classification contract: the first tag key present wins. A node tagged
# both tourism=* and amenity=* is tourism.
CATEGORY_PRIORITY: tuple[tuple[tuple[str, ...], POICategory], ...] = (
    (("tourism",), POICategory.TOURISM),
    (("natural",), POICategory.NATURAL),
    (("leisure",), POICategory.LEISURE),
    (("amenity",), POICategory.AMENITY),
    (("shop",), POICategory.SHOP),
    (("historic",), POICategory.HISTORIC),
    (("route",), POICategory.ROUTE),
    (("public_transport", "highway"), POICategory.PUBLIC_TRANSPORT),
    (("aeroway",), POICategory.AEROWAY),
    (("healthcare",), POICategory.HEALTHCARE),
    (("emergency",), POICategory.EMERGENCY),
    (("sport",), POICategory.SPORT),
)
TYPE_PRIORITY = ("tourism", "natural", "leisure", "amenity", "shop", "historic")
ICON_PRIORITY = ("tourism", "natural", "leisure", "amenity", "shop")

POI_ICONS = {
    # tourism
    "viewpoint": "fa-mountain",
    "attraction": "fa-monument",
    "museum": "fa-museum",
    "artwork": "fa-palette",
    "gallery": "fa-image",
    "information": "fa-info-circle",
    "hotel": "fa-hotel",
    "apartment": "fa-building",
    "guest_house": "fa-house",
    "hostel": "fa-bed",
    # natural
    "beach": "fa-umbrella-beach",
    "peak": "fa-mountain",
    "volcano": "fa-fire",
    "spring": "fa-water",
    "cave_entrance": "fa-dungeon",
    # leisure
    "beach_resort": "fa-umbrella-beach",
    "park": "fa-tree",
    "garden": "fa-leaf",
    "swimming_pool": "fa-swimming-pool",
    # amenity
    "cafe": "fa-coffee",
    "restaurant": "fa-utensils",
    "bar": "fa-glass-martini-alt",
    "pub": "fa-beer",
    "ice_cream": "fa-ice-cream",
    "marketplace": "fa-store",
    "fuel": "fa-gas-pump",
    "parking": "fa-parking",
    "hospital": "fa-hospital",
    "pharmacy": "fa-prescription-bottle-alt",
    "police": "fa-shield-alt",
    "fire_station": "fa-fire-extinguisher",
    # transport
    "bus_station": "fa-bus",
    "taxi": "fa-taxi",
    "ferry_terminal": "fa-ship",
    # shop
    "supermarket": "fa-shopping-cart",
    "bakery": "fa-bread-slice",
    "convenience": "fa-store-alt",
    # routes
    "scenic": "fa-route",
    "hiking": "fa-hiking",
    "default": "fa-map-marker-alt",
}

_INTERESTING_KEYS = (
    "tourism", "natural", "historic", "leisure", "amenity", "shop",
    "public_transport", "highway", "healthcare", "emergency", "sport",
)
_INTERESTING_TERMS = (
    "mirador", "playa", "parque", "museo", "iglesia", "castillo", "puerto", "sendero",
    "plaza", "calle", "mercado", "tienda", "bar", "café", "restaurante", "hotel",
    "centro", "estación", "parada", "edificio", "ayuntamiento", "casa", "montaña", "vista",
    "viewpoint", "beach", "park", "museum", "church", "castle", "port", "trail",
    "square", "street", "market", "shop", "cafe", "restaurant",
    "center", "station", "stop", "building", "town hall", "house", "mountain", "view",
    "el", "la", "los", "las", "del", "de", "san", "santa",
)
_INTERESTING_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(t) for t in _INTERESTING_TERMS) + r")\b", re.IGNORECASE
)
_ESSENTIAL_TAGS = (
    ("tourism", "viewpoint"),
    ("natural", "beach"),
    ("amenity", "restaurant"),
    ("amenity", "cafe"),
    ("amenity", "hospital"),
    ("amenity", "pharmacy"),
    ("amenity", "fuel"),
    ("highway", "bus_stop"),
    ("public_transport", "stop_position"),
)
_CONTACT_TAGS = ("website", "phone", "stars", "rating")

CATEGORY_FILTERS = {
    POICategory.TOURISM: (
        'node["tourism"="viewpoint"]',
        'node["tourism"="attraction"]',
        'node["tourism"="museum"]',
        'node["tourism"="gallery"]',
        'node["tourism"="information"]',
    ),
    POICategory.NATURAL: (
        'node["natural"="peak"]',
        'node["natural"="volcano"]',
        'node["natural"="beach"]',
        'node["natural"="spring"]',
        'node["natural"="cave_entrance"]',
    ),
    POICategory.LEISURE: (
        'way["leisure"="beach_resort"]',
        'way["leisure"="park"]',
        'way["leisure"="garden"]',
        'node["leisure"="swimming_pool"]',
    ),
    POICategory.AMENITY: (
        'node["amenity"="cafe"]',
        'node["amenity"="restaurant"]',
        'node["amenity"="bar"]',
        'node["amenity"="pub"]',
    ),
}

# category -> (element kinds searched by find_nearby_pois)
SEARCH_ELEMENTS = {
    POICategory.TOURISM: ("node",),
    POICategory.NATURAL: ("node",),
    POICategory.LEISURE: ("node", "way"),
    POICategory.AMENITY: ("node",),
    POICategory.SHOP: ("node",),
    POICategory.ROUTE: ("relation",),
}

BEACH_FILTERS = ('way["leisure"="beach_resort"]', 'node["natural"="beach"]', 'way["natural"="beach"]')
VIEWPOINT_FILTERS = ('node["tourism"="viewpoint"]',)
FOOD_AND_DRINK_FILTERS = CATEGORY_FILTERS[POICategory.AMENITY]
HIKING_FILTERS = (
    'way["highway"="path"]["sac_scale"]',
    'way["highway"="footway"]["trail_visibility"]',
    'relation["route"="hiking"]',
)

_GENERIC_SELECTORS = (
    'node["tourism"]', 'way["tourism"]', 'relation["tourism"]',
    'node["natural"]', 'way["natural"]',
    'node["leisure"]', 'way["leisure"]',
    'node["amenity"]', 'way["amenity"]',
    'node["public_transport"]', 'way["highway"="bus_stop"]', 'node["highway"="bus_stop"]',
    'node["shop"]', 'way["shop"]',
    'node["historic"]', 'way["historic"]',
    'way["highway"="primary"]', 'way["highway"="secondary"]', 'way["highway"="tertiary"]',
    'way["landuse"="residential"]', 'way["landuse"="commercial"]',
)


def classify_category(tags: Mapping[str, Any]) -> POICategory:
    for keys, category in CATEGORY_PRIORITY:
        if any(tags.get(k) for k in keys):
            return category
    return POICategory.OTHER


def poi_type(tags: Mapping[str, Any]) -> str:
    for key in TYPE_PRIORITY:
        if tags.get(key):
            return str(tags[key])
    return "point"


def poi_icon(tags: Mapping[str, Any]) -> str:
    for key in ICON_PRIORITY:
        value = tags.get(key)
        if value and value in POI_ICONS:
            return POI_ICONS[value]
    return POI_ICONS["default"]


def poi_name(tags: Mapping[str, Any]) -> str:
    return tags.get("name:es") or tags.get("name") or tags.get("name:en") or UNNAMED


def is_interesting(tags: Mapping[str, Any], name: Optional[str]) -> bool:
    """
    Permissive relevance heuristic.

    `name` is the element's own name, not the placeholder given to unnamed
    elements. Terms are matched as whole words, so "bar" does not match
    "Barbería".
    """
    if name:
        if any(tags.get(k) for k in _INTERESTING_KEYS):
            return True
        if _INTERESTING_RE.search(name):
            return True
    if any(tags.get(k) == v for k, v in _ESSENTIAL_TAGS):
        return True
    return any(tags.get(k) for k in _CONTACT_TAGS)


def normalize_elements(elements: Iterable[Mapping[str, Any]], lat: float, lon: float) -> list[POI]:
    """Convert Overpass nodes/ways into POIs relative to (lat, lon)."""
    pois: list[POI] = []
    seen: set[str] = set()
    for element in elements:
        if "lat" in element and "lon" in element:
            el_lat, el_lon = element["lat"], element["lon"]
        elif isinstance(element.get("center"), Mapping):
            el_lat, el_lon = element["center"]["lat"], element["center"]["lon"]
        else:
            continue
        poi_id = f"{element.get('type', 'node')}/{element['id']}"
        if poi_id in seen:
            continue
        seen.add(poi_id)
        tags = {str(k): str(v) for k, v in (element.get("tags") or {}).items() if v is not None}
        raw_name = tags.get("name:es") or tags.get("name") or tags.get("name:en")
        pois.append(
            POI(
                id=poi_id,
                name=poi_name(tags),
                type=poi_type(tags),
                category=classify_category(tags),
                lat=float(el_lat),
                lon=float(el_lon),
                distance=calculate_distance(lat, lon, float(el_lat), float(el_lon)),
                tags=tags,
                icon=poi_icon(tags),
                is_interesting=is_interesting(tags, raw_name),
            )
        )
    return pois


def build_overpass_query(lat: float, lon: float, radius: int = 10000, filters: Sequence[str] = ()) -> str:
    around = f"(around:{radius},{lat},{lon});"
    if not filters:
        body = "\n  ".join(f"{selector}{around}" for selector in _GENERIC_SELECTORS)
        return f"[out:json][timeout:50];\n(\n  {body}\n);\nout center body qt;"
    body = "\n  ".join(f"{selector}{around}" for selector in filters)
    return f"[out:json][timeout:30];\n(\n  {body}\n);\nout center;"


def cache_key(lat: float, lon: float, radius: int, filters: Sequence[str]) -> str:
    """Coordinates rounded to 0.01 degrees, so queries ~1 km apart share a slot."""
    return f"{lat:.2f}_{lon:.2f}_{radius}_{'|'.join(filters)}"


def trim_for_cache(pois: Sequence[POI], limit: int) -> list[POI]:
    """Keep at most `limit` POIs: interesting ones first, each group nearest first."""
    if len(pois) <= limit:
        return list(pois)
    interesting = sorted((p for p in pois if p.is_interesting), key=lambda p: p.distance)
    rest = sorted((p for p in pois if not p.is_interesting), key=lambda p: p.distance)
    return (interesting + rest)[:limit]


def is_santa_cruz(lat: float, lon: float) -> bool:
    return within_box(lat, lon, *SANTA_CRUZ_CENTER, SANTA_CRUZ_DELTA)


def _seed_to_poi(seed: SeedPOI, lat: float, lon: float, *, relative: bool) -> POI:
    seed_lat = lat + seed.lat if relative else seed.lat
    seed_lon = lon + seed.lon if relative else seed.lon
    return POI(
        id=seed.id,
        name=seed.name,
        type=seed.type,
        category=POICategory(seed.category),
        lat=seed_lat,
        lon=seed_lon,
        distance=calculate_distance(lat, lon, seed_lat, seed_lon),
        tags=dict(seed.tags),
        icon=POI_ICONS.get(seed.icon, POI_ICONS["default"]),
        is_interesting=True,
    )


def seed_pois(lat: float, lon: float) -> list[POI]:
    """Network-free POIs: a city seed list when one applies, else the generic ring."""
    if is_santa_cruz(lat, lon):
        return [_seed_to_poi(s, lat, lon, relative=False) for s in SANTA_CRUZ_SEEDS]
    for center_lat, center_lon, max_distance, seeds in CITY_SEEDS:
        if calculate_distance(lat, lon, center_lat, center_lon) < max_distance:
            return [_seed_to_poi(s, lat, lon, relative=False) for s in seeds]
    min_lat, max_lat, min_lon, max_lon = SPAIN_BOX
    if min_lat < lat < max_lat and min_lon < lon < max_lon:
        return [_seed_to_poi(s, lat, lon, relative=True) for s in SPAIN_OFFSETS]
    return [_seed_to_poi(s, lat, lon, relative=True) for s in GENERIC_RING]


def parse_overpass(response: requests.Response) -> list:
    elements = response.json()["elements"]
    if not isinstance(elements, list):
        raise TypeError("Overpass 'elements' is not a list")
    return elements


class PoiFetcher:
    """POI lookups around a point; never raises."""

    def __init__(self, runtime: FetchRuntime) -> None:
        self.runtime = runtime
        self.settings = runtime.settings

    def _read_cache(self, key: str, *, allow_stale: bool = False) -> Optional[list[POI]]:
        raw = self.runtime.cache.get(CacheNamespace.POI, key, allow_stale=allow_stale)
        if raw is None:
            return None
        try:
            return [POI.model_validate(item) for item in raw]
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable cached POIs", extra={"key": key, "error": str(exc)})
            self.runtime.cache.remove(CacheNamespace.POI, key)
            return None

    def _write_cache(self, key: str, pois: Sequence[POI]) -> None:
        trimmed = trim_for_cache(pois, self.settings.poi_max_cached_items)
        if len(trimmed) < len(pois):
            logger.info("Trimming cached POIs from %d to %d", len(pois), len(trimmed))
        self.runtime.cache.set(CacheNamespace.POI, key, [p.model_dump(mode="json") for p in trimmed])

    async def get_pois(
        self,
        lat: float,
        lon: float,
        radius: int = DEFAULT_RADIUS,
        filters: Sequence[str] = (),
        force_refresh: bool = False,
    ) -> list[POI]:
        try:
            lat, lon, radius = _validate(lat, lon, radius)
        except InputValidationError as exc:
            logger.warning("Invalid POI request", extra={"error": exc.message})
            return []

        filters = list(filters)
        if is_santa_cruz(lat, lon):
            logger.debug("Santa Cruz de Tenerife query; widening filters and radius")
            if not filters:
                filters = list(SANTA_CRUZ_FILTERS)
            radius = max(radius, SANTA_CRUZ_MIN_RADIUS)

        key = cache_key(lat, lon, radius, filters)
        if not force_refresh:
            cached = self._read_cache(key)
            if cached is not None:
                logger.debug("POI cache hit %s", key)
                return cached
        try:
            return await self.runtime.dedup.join_or_start(
                f"poi:{key}", lambda: self._load(lat, lon, radius, filters, key)
            )
        except Exception as exc:  # pragma: no cover
            logger.error("POI lookup failed unexpectedly", extra={"error": str(exc)})
            return seed_pois(lat, lon)

    async def _load(self, lat: float, lon: float, radius: int, filters: list[str], key: str) -> list[POI]:
        rt = self.runtime
        if rt.connectivity.is_offline() or not rt.throttle.can_call(THROTTLE_BUCKET):
            stale = self._read_cache(key, allow_stale=True)
            if stale is not None:
                logger.info("Serving stale POIs for %s", key)
                return stale
            logger.info("No network; serving seed POIs for %s", key)
            return seed_pois(lat, lon)

        query = build_overpass_query(lat, lon, radius, filters)
        endpoints = EndpointSet("overpass", self.settings.overpass_endpoints)
        request = RequestDescriptor(method="POST", data={"data": query})
        try:
            elements = await rt.retry.fetch_tiered(endpoints, request, parse_overpass)
            pois = normalize_elements(elements, lat, lon)
        except (SkyGuideError, ValueError, KeyError, TypeError) as exc:
            logger.error("Overpass unavailable; falling back to seed POIs", extra={"error": str(exc)})
            # cached so the mirrors are not retried until the entry expires
            pois = seed_pois(lat, lon)
            self._write_cache(key, pois)
            return pois

        rt.throttle.record_call(THROTTLE_BUCKET)
        pois.sort(key=lambda p: p.distance)
        self._write_cache(key, pois)
        logger.info("Fetched %d POIs for %s", len(pois), key)
        return pois

    async def get_pois_by_category(
        self,
        lat: float,
        lon: float,
        category: POICategory | str,
        radius: int = 4000,
        show_only_interesting: bool = True,
    ) -> list[POI]:
        try:
            category = _validate_category(category)
        except InputValidationError as exc:
            logger.warning("Invalid POI category", extra={"error": exc.message})
            return []
        filters = CATEGORY_FILTERS.get(category, ())
        pois = await self.get_pois(lat, lon, radius, filters)
        if show_only_interesting:
            return [p for p in pois if p.is_interesting]
        return pois

    async def get_nearby_beaches(self, lat: float, lon: float, radius: int = 5000) -> list[POI]:
        return await self.get_pois(lat, lon, radius, BEACH_FILTERS)

    async def get_nearby_viewpoints(self, lat: float, lon: float, radius: int = 5000) -> list[POI]:
        return await self.get_pois(lat, lon, radius, VIEWPOINT_FILTERS)

    async def get_nearby_food_and_drink(self, lat: float, lon: float, radius: int = 3000) -> list[POI]:
        return await self.get_pois(lat, lon, radius, FOOD_AND_DRINK_FILTERS)

    async def get_nearby_hiking_trails(self, lat: float, lon: float, radius: int = 5000) -> list[POI]:
        return await self.get_pois(lat, lon, radius, HIKING_FILTERS)

    async def find_nearby_pois(
        self,
        lat: float,
        lon: float,
        category: POICategory | str,
        radius: int = 5000,
        search_term: Optional[str] = None,
    ) -> list[POI]:
        """Search one category, optionally narrowed to a tag value or a name match."""
        try:
            category = _validate_category(category)
        except InputValidationError as exc:
            logger.warning("Invalid POI category", extra={"error": exc.message})
            return []
        filters = find_filters(category, search_term)
        pois = await self.get_pois(lat, lon, radius, filters)
        named = [p for p in pois if p.name.strip() and p.name != UNNAMED]
        return sorted(named, key=lambda p: p.distance)

    def clear_cache(self) -> bool:
        return self.runtime.cache.clear_namespace(CacheNamespace.POI)


def find_filters(category: POICategory, search_term: Optional[str] = None) -> list[str]:
    term = (search_term or "").replace('"', "").strip()
    kinds = SEARCH_ELEMENTS.get(category, ())
    if term:
        filters = [f'{kind}["{category.value}"="{term}"]' for kind in kinds]
    else:
        filters = [f'{kind}["{category.value}"]' for kind in kinds]
    if len(term) > 2:
        filters.append(f'node["name"~"{term}",i]')
    return filters


def _validate(lat: Any, lon: Any, radius: Any) -> tuple[float, float, int]:
    try:
        lat_f, lon_f, radius_i = float(lat), float(lon), int(radius)
    except (TypeError, ValueError) as exc:
        raise InputValidationError("Coordinates and radius must be numeric") from exc
    if not (-90 <= lat_f <= 90 and -180 <= lon_f <= 180):
        raise InputValidationError("Coordinates out of range", details={"lat": lat_f, "lon": lon_f})
    if radius_i <= 0:
        raise InputValidationError("Radius must be positive", details={"radius": radius_i})
    return lat_f, lon_f, radius_i


def _validate_category(category: Any) -> POICategory:
    try:
        return POICategory(category)
    except ValueError as exc:
        raise InputValidationError(f"Unknown POI category: {category}") from exc

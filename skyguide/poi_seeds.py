"""Hard-coded POIs served when Overpass is unreachable.

Absolute seeds carry real coordinates; the generic ring stores offsets in
degrees from the query point. Offsets ignore local geography, so near a
coast some ring points can land in the sea.
"""

from __future__ import annotations

from typing import NamedTuple


class SeedPOI(NamedTuple):
    id: str
    name: str
    type: str
    category: str
    lat: float
    lon: float
    tags: dict
    icon: str  # key into the icon table


SANTA_CRUZ_CENTER = (28.4578, -16.2637)
SANTA_CRUZ_DELTA = 0.1

SANTA_CRUZ_SEEDS = (
    SeedPOI("scz_1", "Playa de Las Teresitas", "beach", "natural", 28.5077, -16.1885, {"natural": "beach"}, "beach"),
    SeedPOI("scz_2", "Parque García Sanabria", "park", "leisure", 28.4698, -16.2569, {"leisure": "park"}, "park"),
    SeedPOI("scz_3", "Auditorio de Tenerife", "attraction", "tourism", 28.4584, -16.2475, {"tourism": "attraction"}, "attraction"),
    SeedPOI("scz_4", "Museo de la Naturaleza y el Hombre", "museum", "tourism", 28.4633, -16.2511, {"tourism": "museum"}, "museum"),
    SeedPOI("scz_5", "Mercado de Nuestra Señora de África", "marketplace", "amenity", 28.4632, -16.2649, {"amenity": "marketplace"}, "marketplace"),
    SeedPOI("scz_6", "Plaza de España", "attraction", "tourism", 28.4676, -16.2452, {"tourism": "attraction"}, "attraction"),
    SeedPOI(
        "scz_7", "Iglesia de la Concepción", "attraction", "tourism", 28.4686, -16.2496,
        {"tourism": "attraction", "amenity": "place_of_worship"}, "attraction",
    ),
    SeedPOI("scz_8", "Parque Marítimo César Manrique", "swimming_pool", "leisure", 28.4598, -16.2393, {"leisure": "swimming_pool"}, "swimming_pool"),
    SeedPOI("scz_9", "Castillo de San Juan Bautista", "attraction", "historic", 28.4578, -16.2416, {"historic": "castle"}, "attraction"),
    SeedPOI("scz_10", "Centro Comercial Meridiano", "mall", "shop", 28.4563, -16.2571, {"shop": "mall"}, "default"),
    SeedPOI("scz_11", "Playa de Benijo", "beach", "natural", 28.5734, -16.1802, {"natural": "beach"}, "beach"),
    SeedPOI("scz_12", "Palmetum", "garden", "tourism", 28.4532, -16.2443, {"tourism": "attraction", "leisure": "garden"}, "garden"),
    SeedPOI("scz_13", "Restaurante El Cine", "restaurant", "amenity", 28.4695, -16.2487, {"amenity": "restaurant"}, "restaurant"),
    SeedPOI("scz_14", "Mirador de Cruz del Carmen", "viewpoint", "tourism", 28.5358, -16.2984, {"tourism": "viewpoint"}, "viewpoint"),
    SeedPOI("scz_15", "Sendero de Los Sentidos", "hiking", "route", 28.5326, -16.2981, {"route": "hiking"}, "hiking"),
)

# (center lat, center lon, max distance in meters, seeds)
CITY_SEEDS = (
    (
        28.13, -15.43, 20000,
        (
            SeedPOI("default_1", "Playa de Las Canteras", "beach", "natural", 28.1427, -15.4420, {"natural": "beach"}, "beach"),
            SeedPOI("default_2", "Parque Santa Catalina", "park", "leisure", 28.1436, -15.4322, {"leisure": "park"}, "park"),
            SeedPOI("default_3", "Mirador del Palmarejo", "viewpoint", "tourism", 28.1095, -15.4178, {"tourism": "viewpoint"}, "viewpoint"),
            SeedPOI("default_4", "Centro Comercial Las Arenas", "mall", "shop", 28.1296, -15.4356, {"shop": "mall"}, "supermarket"),
            SeedPOI("default_5", "Museo Canario", "museum", "tourism", 28.1315, -15.4158, {"tourism": "museum"}, "museum"),
        ),
    ),
    (
        28.2916, -16.6291, 30000,
        (
            SeedPOI("default_1", "Playa de Las Teresitas", "beach", "natural", 28.5054, -16.1866, {"natural": "beach"}, "beach"),
            SeedPOI("default_2", "Teide National Park", "national_park", "natural", 28.2719, -16.6442, {"natural": "national_park"}, "peak"),
            SeedPOI("default_3", "Siam Park", "theme_park", "tourism", 28.0715, -16.7318, {"tourism": "theme_park"}, "viewpoint"),
        ),
    ),
    (
        40.4168, -3.7038, 30000,
        (
            SeedPOI("default_1", "Museo del Prado", "museum", "tourism", 40.4138, -3.6922, {"tourism": "museum"}, "museum"),
            SeedPOI("default_2", "Parque del Retiro", "park", "leisure", 40.4152, -3.6844, {"leisure": "park"}, "park"),
            SeedPOI("default_3", "Plaza Mayor", "attraction", "tourism", 40.4168, -3.7038, {"tourism": "attraction"}, "landmark"),
        ),
    ),
    (
        41.3874, 2.1686, 30000,
        (
            SeedPOI("default_1", "Sagrada Família", "attraction", "tourism", 41.4036, 2.1744, {"tourism": "attraction"}, "landmark"),
            SeedPOI("default_2", "Park Güell", "park", "leisure", 41.4145, 2.1527, {"leisure": "park"}, "park"),
            SeedPOI("default_3", "Barceloneta Beach", "beach", "natural", 41.3792, 2.1915, {"natural": "beach"}, "beach"),
        ),
    ),
)

# (min lat, max lat, min lon, max lon), exclusive bounds
SPAIN_BOX = (36.0, 44.0, -9.5, 3.5)

SPAIN_OFFSETS = (
    SeedPOI("default_1", "Plaza Central", "square", "tourism", 0.01, 0.01, {"tourism": "attraction"}, "landmark"),
    SeedPOI("default_2", "Restaurante Local", "restaurant", "amenity", -0.01, -0.01, {"amenity": "restaurant"}, "restaurant"),
    SeedPOI("default_3", "Parque Municipal", "park", "leisure", 0.0, 0.02, {"leisure": "park"}, "park"),
)

GENERIC_RING = (
    SeedPOI("generic_1", "Centro urbano", "town_center", "tourism", 0.0, 0.0, {"amenity": "town_center"}, "default"),
    SeedPOI("generic_2", "Área recreativa", "park", "leisure", 0.015, 0.015, {"leisure": "park"}, "park"),
    SeedPOI("generic_3", "Mirador panorámico", "viewpoint", "tourism", -0.02, -0.02, {"tourism": "viewpoint"}, "viewpoint"),
    SeedPOI("generic_4", "Restaurante local", "restaurant", "amenity", 0.008, -0.01, {"amenity": "restaurant"}, "restaurant"),
    SeedPOI("generic_5", "Café El Descanso", "cafe", "amenity", -0.005, 0.012, {"amenity": "cafe"}, "cafe"),
    SeedPOI("generic_6", "Supermercado", "supermarket", "shop", 0.01, 0.005, {"shop": "supermarket"}, "supermarket"),
    SeedPOI("generic_7", "Farmacia", "pharmacy", "healthcare", 0.007, -0.006, {"amenity": "pharmacy"}, "pharmacy"),
    SeedPOI("generic_8", "Bar El Paso", "bar", "amenity", -0.012, -0.007, {"amenity": "bar"}, "bar"),
    SeedPOI("generic_9", "Iglesia", "place_of_worship", "amenity", -0.005, -0.015, {"amenity": "place_of_worship"}, "default"),
    SeedPOI("generic_10", "Parada de Autobús", "bus_stop", "public_transport", 0.003, 0.003, {"highway": "bus_stop"}, "default"),
    SeedPOI("generic_11", "Tienda Local", "convenience", "shop", -0.008, 0.007, {"shop": "convenience"}, "convenience"),
    SeedPOI("generic_12", "Sendero local", "hiking", "route", -0.018, 0.02, {"route": "hiking"}, "hiking"),
)

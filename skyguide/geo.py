"""Small geographic helpers shared by the fetchers."""
from __future__ import annotations

import math

EARTH_RADIUS_M = 6371e3


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters (Haversine)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def coordinate_key(lat: float, lon: float, precision: int = 2) -> str:
    """Round coordinates into a cache-key fragment; 2 decimals is roughly 1.1 km."""
    return f"{lat:.{precision}f}_{lon:.{precision}f}"


def within_box(lat: float, lon: float, center_lat: float, center_lon: float, delta: float) -> bool:
    return abs(lat - center_lat) < delta and abs(lon - center_lon) < delta

from __future__ import annotations

import math
import re
from typing import Any

from .config import settings

EARTH_RADIUS_KM = 6371.0

Coordinate = tuple[float, float]

_SPLIT_RE = re.compile(r"\s*,\s*")


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def normalize_lat_lon(lat: Any, lon: Any) -> Coordinate | None:
    lat_value = _to_float(lat)
    lon_value = _to_float(lon)
    if lat_value is None or lon_value is None:
        return None
    if not math.isfinite(lat_value) or not math.isfinite(lon_value):
        return None
    # Pairs typed in lon-first are swapped back.
    if abs(lat_value) > 90 and abs(lon_value) <= 90:
        lat_value, lon_value = lon_value, lat_value
    if abs(lat_value) > 90 or abs(lon_value) > 180:
        return None
    return lat_value, lon_value


def parse_coordinate(text: Any) -> Coordinate | None:
    if text is None:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    parts = _SPLIT_RE.split(raw)
    if len(parts) != 2:
        return None
    return normalize_lat_lon(parts[0], parts[1])


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_km(a: Coordinate, b: Coordinate) -> float:
    return round(haversine_km(a, b), 3)


def is_within_radius(a: Coordinate, b: Coordinate, max_km: float) -> bool:
    return haversine_km(a, b) <= max_km


def _as_coordinate(value: Any) -> Coordinate | None:
    if value is None:
        return None
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return normalize_lat_lon(value[0], value[1])
    return parse_coordinate(value)


def compute_distance_km(coord_a: Any, coord_b: Any) -> float | None:
    a = _as_coordinate(coord_a)
    b = _as_coordinate(coord_b)
    if a is None or b is None:
        return None
    return distance_km(a, b)


def is_out_of_area(coord_a: Any, coord_b: Any, max_km: float | None = None) -> bool:
    a = _as_coordinate(coord_a)
    b = _as_coordinate(coord_b)
    if a is None or b is None:
        return False
    limit = settings.max_distance_km if max_km is None else max_km
    return not is_within_radius(a, b, limit)

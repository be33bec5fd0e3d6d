"""
Distance helpers for courier tracking
"""
import math
from typing import Any, Optional, Tuple

EARTH_RADIUS_KM = 6371.0
AVERAGE_COURIER_SPEED_KMH = 25.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def estimate_arrival_minutes(distance_km: float, speed_kmh: float = AVERAGE_COURIER_SPEED_KMH) -> int:
    return math.ceil(distance_km / speed_kmh * 60)


def coordinates(lat: Any, lon: Any) -> Optional[Tuple[float, float]]:
    """Both values as floats, or None when either is missing or zero"""
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        return None
    if not lat_f or not lon_f:
        return None
    return lat_f, lon_f

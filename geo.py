"""Great-circle distance helpers."""

import math
from typing import Tuple

EARTH_RADIUS_MILES = 3958.8
METERS_PER_MILE = 1609.344


def distance_miles(origin: Tuple[float, float], dest: Tuple[float, float]) -> float:
    """Haversine distance in miles between two (lat, lng) pairs."""
    lat1, lng1 = math.radians(origin[0]), math.radians(origin[1])
    lat2, lng2 = math.radians(dest[0]), math.radians(dest[1])

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_MILES * c


def miles_to_meters(miles: float) -> int:
    return int(round(miles * METERS_PER_MILE))


def format_distance(miles: float) -> str:
    """'1.3 mi' style label used on result cards."""
    return f"{miles:.1f} mi"

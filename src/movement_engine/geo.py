"""
Great-circle distance helpers for position fixes.

All distances are in kilometers on a sphere of radius 6371 km.
"""

import math
from typing import Iterable, Optional

from .models import PositionFix

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Compute the haversine distance between two lat/lon points.

    Args:
        lat1: Latitude 1 in decimal degrees
        lon1: Longitude 1 in decimal degrees
        lat2: Latitude 2 in decimal degrees
        lon2: Longitude 2 in decimal degrees

    Returns:
        Distance in kilometers
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # float error can push a slightly above 1 for antipodal points
    a = min(1.0, a)
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def fix_distance_km(a: PositionFix, b: PositionFix) -> float:
    """Haversine distance between two fixes in kilometers."""
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def path_distance_km(fixes: Iterable[PositionFix]) -> float:
    """Sum of consecutive segment lengths, recomputed from scratch."""
    total = 0.0
    previous: Optional[PositionFix] = None
    for fix in fixes:
        if previous is not None:
            total += fix_distance_km(previous, fix)
        previous = fix
    return total


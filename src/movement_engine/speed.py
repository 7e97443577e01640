"""
Speed Estimator.

The windowed estimate is the canonical speed signal: device-reported speed
is unreliable on several platforms and is only exposed as a diagnostic.
"""

from typing import Optional, Sequence

from .geo import fix_distance_km
from .models import PositionFix

DEFAULT_WINDOW_SIZE = 5


def windowed_speed_kmh(
    fixes: Sequence[PositionFix],
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> Optional[float]:
    """
    Estimate speed over the most recent fixes.

    Args:
        fixes: Accepted fixes in timestamp order
        window_size: Number of trailing fixes to use

    Returns:
        Speed in km/h, or None with fewer than 2 fixes or no elapsed time
    """
    count = min(window_size, len(fixes))
    if count < 2:
        return None

    window = fixes[len(fixes) - count:]
    distance_km = 0.0
    elapsed_s = 0.0
    for a, b in zip(window, window[1:]):
        distance_km += fix_distance_km(a, b)
        elapsed_s += (b.timestamp - a.timestamp).total_seconds()

    if elapsed_s <= 0:
        return None
    return distance_km / (elapsed_s / 3600)


def average_speed_kmh(fixes: Sequence[PositionFix]) -> Optional[float]:
    """Windowed estimate applied across the whole path."""
    return windowed_speed_kmh(fixes, window_size=len(fixes))


def max_reported_speed_kmh(fixes: Sequence[PositionFix]) -> Optional[float]:
    """Highest device-reported speed in km/h, or None if no fix carries one."""
    speeds = [f.speed_kmh for f in fixes if f.speed_kmh is not None]
    return max(speeds) if speeds else None

"""
Sample Filter for incoming position fixes.

Rejects fixes that are too imprecise to trust and fixes that barely moved
from the last accepted one (GPS jitter while standing still). Rejection is
routine and is only logged at DEBUG level.
"""

import logging
from typing import Optional

from .config import Settings, get_settings
from .geo import fix_distance_km
from .models import PositionFix

logger = logging.getLogger(__name__)

DEFAULT_ACCURACY_THRESHOLD_M = 20.0
DEFAULT_MIN_DISPLACEMENT_KM = 0.005


def is_stale(candidate: PositionFix, last_accepted: Optional[PositionFix]) -> bool:
    """True when the candidate is not strictly newer than the last accepted fix."""
    if last_accepted is None:
        return False
    return candidate.timestamp <= last_accepted.timestamp


class SampleFilter:
    """
    Accuracy and displacement filter.

    Both thresholds are configuration; accept() holds no other state and
    returns the same answer for the same pair of fixes.
    """

    def __init__(
        self,
        accuracy_threshold_m: float = DEFAULT_ACCURACY_THRESHOLD_M,
        min_displacement_km: float = DEFAULT_MIN_DISPLACEMENT_KM,
    ):
        self.accuracy_threshold_m = accuracy_threshold_m
        self.min_displacement_km = min_displacement_km

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SampleFilter":
        settings = settings or get_settings()
        return cls(
            accuracy_threshold_m=settings.accuracy_threshold_m,
            min_displacement_km=settings.min_displacement_km,
        )

    def accept(self, candidate: PositionFix, last_accepted: Optional[PositionFix]) -> bool:
        """
        Decide whether a fix enters the session path.

        Args:
            candidate: The incoming fix
            last_accepted: Most recently accepted fix, or None for the first one

        Returns:
            True if the fix should be accepted
        """
        if candidate.accuracy_m >= self.accuracy_threshold_m:
            logger.debug(
                f"[FILTER] Rejected fix: accuracy {candidate.accuracy_m:.1f}m "
                f">= {self.accuracy_threshold_m:.1f}m"
            )
            return False

        if last_accepted is not None:
            displacement = fix_distance_km(last_accepted, candidate)
            if displacement < self.min_displacement_km:
                logger.debug(
                    f"[FILTER] Rejected fix: moved {displacement * 1000:.1f}m "
                    f"< {self.min_displacement_km * 1000:.1f}m"
                )
                return False

        return True

    def __repr__(self) -> str:
        return (
            f"SampleFilter(accuracy_threshold_m={self.accuracy_threshold_m}, "
            f"min_displacement_km={self.min_displacement_km})"
        )


_default_filter = SampleFilter()


def accept(candidate: PositionFix, last_accepted: Optional[PositionFix]) -> bool:
    """Apply the default thresholds (20 m accuracy, 5 m displacement)."""
    return _default_filter.accept(candidate, last_accepted)

"""
Energy & Step Model.

Pure functions mapping distance, speed and body metrics to step counts,
MET values and calories. Invalid body metrics (non-positive height or
weight) produce zero results instead of raising, so a live session never
aborts over a profile data-quality issue.

Core equations:
    steps_per_km = 100000 / (height_cm * gender_constant * weight_adjustment)
    calories = duration_min * (MET * 3.5 * weight_kg) / 200
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from .models import BodyMetrics, Gender

# Fraction of height per step, used when deriving distance from steps
STRIDE_CONSTANTS = {
    Gender.MALE: 0.415,
    Gender.FEMALE: 0.413,
    Gender.OTHER: 0.414,
}

# Gender constants based on stride length studies
GENDER_CONSTANTS = {
    Gender.MALE: 0.43,
    Gender.FEMALE: 0.41,
    Gender.OTHER: 0.42,
}

DEFAULT_MET = 3.5  # moderate walk, ~3 mph
DEFAULT_WALKING_SPEED_KMH = 4.8
STEPS_ONLY_KCAL_PER_STEP = 0.04  # for a 70 kg baseline
STEPS_ONLY_BASELINE_WEIGHT_KG = 70

INTENSITY_MULTIPLIERS = {
    "slow": 0.8,      # ~3 km/h
    "moderate": 1.0,  # ~5 km/h
    "fast": 1.3,      # 6.5+ km/h
}


@dataclass(frozen=True)
class EnergyEstimate:
    """Result of estimate_energy()."""

    calories: int
    met: float
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return int(math.floor(value + 0.5))


def stride_constant(gender: Union[Gender, str]) -> float:
    return STRIDE_CONSTANTS[Gender.parse(gender)]


def stride_length_m(metrics: BodyMetrics) -> float:
    """Approximate per-step stride length in meters."""
    if metrics.height_cm <= 0:
        return 0.0
    return metrics.height_m * stride_constant(metrics.gender)


def bmi(weight_kg: float, height_cm: float) -> Optional[float]:
    if height_cm <= 0:
        return None
    height_m = height_cm / 100
    return weight_kg / (height_m * height_m)


def weight_adjustment(weight_kg: float, height_cm: float) -> float:
    """
    Stride adjustment factor from BMI.

    Underweight (< 18.5) strides longer, overweight and obese stride shorter.

    Returns:
        1.05, 1.0, 0.95 or 0.90; 1.0 when BMI cannot be computed
    """
    value = bmi(weight_kg, height_cm)
    if value is None:
        return 1.0
    if value < 18.5:
        return 1.05
    if value <= 24.9:
        return 1.0
    if value <= 29.9:
        return 0.95
    return 0.90


def steps_per_km(metrics: BodyMetrics) -> float:
    """Steps per kilometer for the given body, 0.0 for invalid metrics."""
    if not metrics.is_valid:
        return 0.0
    gender_constant = GENDER_CONSTANTS[Gender.parse(metrics.gender)]
    adjustment = weight_adjustment(metrics.weight_kg, metrics.height_cm)
    return 100000 / (metrics.height_cm * gender_constant * adjustment)


def steps_from_distance(distance_km: float, metrics: BodyMetrics) -> int:
    """
    Estimate steps taken over a distance.

    Args:
        distance_km: Distance in kilometers
        metrics: Height, weight and gender

    Returns:
        Estimated number of steps (0 for invalid metrics)
    """
    if distance_km <= 0:
        return 0
    return round_half_up(steps_per_km(metrics) * distance_km)


def distance_from_steps(steps: float, metrics: BodyMetrics) -> float:
    """Inverse of steps_from_distance, rounded to 2 decimal places."""
    per_km = steps_per_km(metrics)
    if per_km <= 0 or steps <= 0:
        return 0.0
    return round(steps / per_km, 2)


def distance_from_stride(steps: float, metrics: BodyMetrics) -> float:
    """Distance in km from stride length (height * stride constant)."""
    if steps <= 0:
        return 0.0
    return stride_length_m(metrics) * steps / 1000


def met_for_speed(speed_kmh: Optional[float]) -> float:
    """Map walking speed to a MET bucket; unknown speed is a moderate walk."""
    if speed_kmh is None or speed_kmh <= 0:
        return DEFAULT_MET
    if speed_kmh < 3.2:
        return 2.8  # < 2 mph
    if speed_kmh < 4.8:
        return 3.5  # ~3 mph
    return 5.0  # brisk, ~4 mph+


def duration_minutes(distance_km: float, speed_kmh: Optional[float] = None) -> float:
    """Time to cover a distance, assuming 4.8 km/h when speed is unknown."""
    if speed_kmh is None or speed_kmh <= 0:
        speed_kmh = DEFAULT_WALKING_SPEED_KMH
    return (distance_km / speed_kmh) * 60


def calories(weight_kg: float, met: float, duration_min: Optional[float]) -> int:
    """MET calories; 0 for non-positive weight or missing duration."""
    if weight_kg <= 0 or not duration_min or duration_min <= 0:
        return 0
    return round_half_up(duration_min * met * 3.5 * weight_kg / 200)


def calories_from_steps(steps: float, weight_kg: float) -> int:
    """Steps-only fallback scaled from a 70 kg baseline."""
    if weight_kg <= 0 or steps <= 0:
        return 0
    return round_half_up(STEPS_ONLY_KCAL_PER_STEP * steps * weight_kg / STEPS_ONLY_BASELINE_WEIGHT_KG)


def estimate_energy(
    weight_kg: float,
    *,
    height_cm: Optional[float] = None,
    steps: Optional[int] = None,
    distance_km: Optional[float] = None,
    gender: Union[Gender, str] = Gender.OTHER,
    speed_kmh: Optional[float] = None,
    met: Optional[float] = None,
    duration_min: Optional[float] = None,
) -> EnergyEstimate:
    """
    Estimate calories burned from whatever inputs are available.

    Distance is derived from steps and stride length when missing. Duration
    is taken as measured when given, otherwise derived from distance and
    speed. Without any duration the steps-only fallback is used.

    Args:
        weight_kg: Body weight in kilograms
        height_cm: Height in centimeters (for stride-derived distance)
        steps: Total steps taken
        distance_km: Distance in kilometers
        gender: Gender for the stride constant
        speed_kmh: Walking speed in km/h
        met: Explicit MET value, bypasses the speed lookup
        duration_min: Measured duration in minutes

    Returns:
        EnergyEstimate with calories, the MET used, distance and duration
    """
    if weight_kg is None or weight_kg <= 0:
        return EnergyEstimate(calories=0, met=met or met_for_speed(speed_kmh))

    if distance_km is None and steps and height_cm and height_cm > 0:
        metrics = BodyMetrics(height_cm=height_cm, weight_kg=weight_kg, gender=Gender.parse(gender))
        distance_km = distance_from_stride(steps, metrics)

    used_met = met if met else met_for_speed(speed_kmh)

    if duration_min is None and distance_km is not None:
        duration_min = duration_minutes(distance_km, speed_kmh)

    if duration_min and duration_min > 0:
        kcal = calories(weight_kg, used_met, duration_min)
    elif steps:
        kcal = calories_from_steps(steps, weight_kg)
    else:
        kcal = 0

    return EnergyEstimate(
        calories=kcal,
        met=used_met,
        distance_km=distance_km,
        duration_minutes=duration_min,
    )


def estimate_calories_by_intensity(
    distance_km: float,
    weight_kg: float,
    intensity: str = "moderate",
) -> int:
    """Quick estimate: weight * distance * 0.57, scaled by intensity."""
    if weight_kg <= 0 or distance_km <= 0:
        return 0
    multiplier = INTENSITY_MULTIPLIERS.get(intensity, INTENSITY_MULTIPLIERS["moderate"])
    return round_half_up(weight_kg * distance_km * 0.57 * multiplier)

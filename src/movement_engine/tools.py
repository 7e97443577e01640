"""
Movement Tracking Tools.

Agent tools exposing live tracking status and the energy model.

Follows SAM conventions:
- All tools are async functions
- Standard tool_context and tool_config parameters
- Consistent return format with status field

The session machine is never a module global: tools that need it read
`tool_context.session_machine`, set by whoever owns the machine.
"""

from typing import Any, Dict, Optional

from .energy import estimate_energy, met_for_speed, steps_from_distance
from .models import BodyMetrics, Gender, TrackingStatus


def _machine_from(tool_context: Optional[Any]):
    return getattr(tool_context, "session_machine", None) if tool_context else None


async def get_tracking_status(
    tool_context: Optional[Any] = None,
    tool_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Get the status of the live tracking session.

    Returns:
        Dict containing:
        - status: "success" or "no_session_machine"
        - tracking: Whether a session is currently tracking
        - session: Snapshot with distance, fix counts, errors, elapsed time
        - message: Human-readable summary
    """
    machine = _machine_from(tool_context)
    if machine is None:
        return {
            "status": "no_session_machine",
            "tracking": False,
            "session": {},
            "message": "Live tracking is not set up for this agent",
        }

    snapshot = machine.snapshot()
    tracking = machine.status == TrackingStatus.TRACKING

    if tracking:
        message = (
            f"Tracking for {int(snapshot['elapsed_seconds'])}s: "
            f"{snapshot['distance_km']:.2f} km over {snapshot['accepted_fixes']} fixes"
        )
        if snapshot["last_error"]:
            message += f" (last sensor error: {snapshot['last_error']})"
    elif snapshot["status"] == TrackingStatus.STOPPED.value:
        message = f"Last session ended after {snapshot['distance_km']:.2f} km"
    else:
        message = "No tracking session is active"

    return {
        "status": "success",
        "tracking": tracking,
        "session": snapshot,
        "message": message,
    }


async def estimate_activity_energy(
    distance_km: float,
    height_cm: float,
    weight_kg: float,
    gender: str = "other",
    speed_kmh: Optional[float] = None,
    duration_minutes: Optional[float] = None,
    tool_context: Optional[Any] = None,
    tool_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Estimate steps and calories for a walk or run.

    Args:
        distance_km: Distance covered in kilometers
        height_cm: Height in centimeters
        weight_kg: Weight in kilograms
        gender: "male", "female" or "other"
        speed_kmh: Average speed, if known
        duration_minutes: Measured duration, if known
        tool_context: SAM tool context (optional)
        tool_config: SAM tool configuration (optional)

    Returns:
        Dict with status, steps, calories, met and duration_minutes
    """
    metrics = BodyMetrics(height_cm=height_cm, weight_kg=weight_kg, gender=Gender.parse(gender))
    if not metrics.is_valid:
        return {
            "status": "error",
            "steps": 0,
            "calories": 0,
            "met": met_for_speed(speed_kmh),
            "duration_minutes": None,
            "message": "Height and weight must be positive to estimate steps and calories",
        }

    energy = estimate_energy(
        weight_kg,
        height_cm=height_cm,
        distance_km=distance_km,
        gender=metrics.gender,
        speed_kmh=speed_kmh,
        duration_min=duration_minutes,
    )
    steps = steps_from_distance(distance_km, metrics)

    return {
        "status": "success",
        "steps": steps,
        "calories": energy.calories,
        "met": energy.met,
        "duration_minutes": (
            round(energy.duration_minutes, 1) if energy.duration_minutes is not None else None
        ),
        "message": f"{distance_km:.2f} km is about {steps} steps and {energy.calories} kcal",
    }


async def format_session_summary(
    session: Dict[str, Any],
    tool_context: Optional[Any] = None,
    tool_config: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Format a saved session payload for user notification.

    Args:
        session: Session payload (camelCase keys, as sent to the session API)
        tool_context: SAM tool context (optional)
        tool_config: SAM tool configuration (optional)

    Returns:
        Formatted notification message
    """
    distance = session.get("totalDistanceKm", 0) or 0
    steps = session.get("totalSteps", 0) or 0
    calories = session.get("calories", 0) or 0
    avg_speed = session.get("avgSpeedKmh")
    max_speed = session.get("maxSpeedKmh")

    notification = f"""
🏃 **Session Complete**

**Distance:** {distance:.2f} km
**Steps:** {steps}
**Calories:** {calories} kcal
"""

    if avg_speed:
        notification += f"**Average speed:** {avg_speed:.1f} km/h\n"
    if max_speed:
        notification += f"**Max speed:** {max_speed:.1f} km/h\n"

    start = session.get("startTime")
    if start:
        notification += f"\n_Started: {start}_"

    return notification.strip()

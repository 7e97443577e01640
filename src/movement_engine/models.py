"""
Data models for the Movement Analytics Engine.

Position fixes arrive from a Geo Sample Source, body metrics come from the
user profile, and a tracking session accumulates accepted fixes into a
TrackingState until it is summarized into a SessionSummary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple


class Gender(str, Enum):
    """Gender used to pick stride and step constants."""

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Gender":
        """Parse a profile value, falling back to OTHER for unknown input."""
        if isinstance(value, Gender):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class TrackingStatus(str, Enum):
    """Lifecycle status of a tracking session."""

    IDLE = "idle"
    TRACKING = "tracking"
    STOPPED = "stopped"


class ErrorKind(str, Enum):
    """Error taxonomy shared by sources, the session machine and stores."""

    UNSUPPORTED_CAPABILITY = "unsupported_capability"
    PERMISSION_DENIED = "permission_denied"
    FIX_UNAVAILABLE = "fix_unavailable"
    TIMEOUT = "timeout"
    INVALID_BODY_METRICS = "invalid_body_metrics"
    PERSISTENCE_FAILURE = "persistence_failure"

    @classmethod
    def from_geolocation_code(cls, code: int) -> "ErrorKind":
        """Map a platform geolocation error code (1, 2, 3) to an ErrorKind."""
        return {
            1: cls.PERMISSION_DENIED,
            2: cls.FIX_UNAVAILABLE,
            3: cls.TIMEOUT,
        }.get(code, cls.FIX_UNAVAILABLE)

    @property
    def user_message(self) -> str:
        """User-facing description of the error."""
        return _ERROR_MESSAGES[self]

    @property
    def is_transient(self) -> bool:
        """Sensor-layer errors that keep a session alive."""
        return self in (ErrorKind.PERMISSION_DENIED, ErrorKind.FIX_UNAVAILABLE, ErrorKind.TIMEOUT)


_ERROR_MESSAGES = {
    ErrorKind.UNSUPPORTED_CAPABILITY: "Location tracking is not supported on this device.",
    ErrorKind.PERMISSION_DENIED: "Permission denied. Please enable location access in your settings.",
    ErrorKind.FIX_UNAVAILABLE: "Position unavailable. Please check your GPS/location services.",
    ErrorKind.TIMEOUT: "Request timed out. Waiting for the next position fix.",
    ErrorKind.INVALID_BODY_METRICS: "Height and weight must be positive to estimate steps and calories.",
    ErrorKind.PERSISTENCE_FAILURE: "The session could not be saved.",
}


@dataclass(frozen=True)
class PositionFix:
    """A single timestamped position reading.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        timestamp: Timezone-aware time of the reading.
        accuracy_m: Horizontal accuracy radius in meters.
        speed_mps: Device-reported speed in m/s (diagnostic only).
        altitude_m: Altitude in meters, when the device reports it.
    """

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: float
    speed_mps: Optional[float] = None
    altitude_m: Optional[float] = None

    @property
    def speed_kmh(self) -> Optional[float]:
        """Device-reported speed converted to km/h."""
        if self.speed_mps is None:
            return None
        return self.speed_mps * 3.6

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "accuracy": self.accuracy_m,
            "speed": self.speed_mps,
            "altitude": self.altitude_m,
        }


@dataclass(frozen=True)
class BodyMetrics:
    """Body metrics read from the user profile at session start."""

    height_cm: float
    weight_kg: float
    gender: Gender = Gender.OTHER

    @property
    def is_valid(self) -> bool:
        return self.height_cm > 0 and self.weight_kg > 0

    @property
    def height_m(self) -> float:
        return self.height_cm / 100


@dataclass
class LiveUpdate:
    """Live estimate pushed to the caller after an accepted fix or a sensor error."""

    distance_km: float
    steps: int
    calories: int
    speed_kmh: Optional[float] = None
    met: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[ErrorKind] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "distance_km": self.distance_km,
            "steps": self.steps,
            "calories": self.calories,
            "speed_kmh": self.speed_kmh,
            "met": self.met,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error.value if self.error else None,
        }


@dataclass
class TrackingState:
    """Mutable record owned by one session for its whole lifetime.

    accepted_fixes is non-decreasing in timestamp and cumulative_distance_km
    is the sum of consecutive haversine segments across it.
    """

    status: TrackingStatus = TrackingStatus.IDLE
    accepted_fixes: List[PositionFix] = field(default_factory=list)
    cumulative_distance_km: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_error: Optional[ErrorKind] = None
    max_speed_kmh: float = 0.0
    rejected_count: int = 0
    error_count: int = 0

    @property
    def last_fix(self) -> Optional[PositionFix]:
        return self.accepted_fixes[-1] if self.accepted_fixes else None


@dataclass(frozen=True)
class SessionSummary:
    """Immutable result of a completed, non-empty tracking session."""

    start_time: datetime
    end_time: datetime
    total_distance_km: float
    total_steps: int
    total_calories: int
    average_speed_kmh: float
    max_speed_kmh: float
    path: Tuple[PositionFix, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.end_time - self.start_time).total_seconds())


@dataclass(frozen=True)
class SaveResult:
    """Outcome of handing a SessionSummary to a store."""

    session_id: Optional[str] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.session_id is not None

    @classmethod
    def failure(cls, message: str, cached: bool = False) -> "SaveResult":
        return cls(error=ErrorKind.PERSISTENCE_FAILURE, message=message, cached=cached)

"""
Movement Analytics Engine.

Turns a noisy stream of position fixes into distance, speed, step and
calorie estimates, and manages a live tracking session from start to a
persisted summary.
"""

from .errors import (
    InvalidBodyMetricsError,
    MovementEngineError,
    SessionAlreadyActiveError,
    SessionNotActiveError,
    UnsupportedCapabilityError,
)
from .models import (
    BodyMetrics,
    ErrorKind,
    Gender,
    LiveUpdate,
    PositionFix,
    SaveResult,
    SessionSummary,
    TrackingState,
    TrackingStatus,
)
from .sample_filter import SampleFilter
from .session import (
    SessionStateMachine,
    StaticMetricsProvider,
    StopResult,
    validate_body_metrics,
)
from .sources import GeoSampleSource, InProcessGeoSource, SubscriptionHandle


__all__ = [
    "BodyMetrics",
    "ErrorKind",
    "Gender",
    "GeoSampleSource",
    "InProcessGeoSource",
    "InvalidBodyMetricsError",
    "LiveUpdate",
    "MovementEngineError",
    "PositionFix",
    "SampleFilter",
    "SaveResult",
    "SessionAlreadyActiveError",
    "SessionNotActiveError",
    "SessionStateMachine",
    "SessionSummary",
    "StaticMetricsProvider",
    "StopResult",
    "SubscriptionHandle",
    "TrackingState",
    "TrackingStatus",
    "UnsupportedCapabilityError",
    "validate_body_metrics",
]

"""Exceptions raised by the Movement Analytics Engine."""

from typing import Optional

from .models import ErrorKind


class MovementEngineError(Exception):
    """Base error carrying the matching ErrorKind, if any."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str = ""):
        super().__init__(message or (self.kind.user_message if self.kind else ""))


class UnsupportedCapabilityError(MovementEngineError):
    """The platform offers no positioning capability."""

    kind = ErrorKind.UNSUPPORTED_CAPABILITY


class InvalidBodyMetricsError(MovementEngineError):
    """Height or weight is not strictly positive."""

    kind = ErrorKind.INVALID_BODY_METRICS


class SessionAlreadyActiveError(MovementEngineError):
    """start() was called while a session is still tracking."""


class SessionNotActiveError(MovementEngineError):
    """stop() or cancel() was called with no tracking session."""

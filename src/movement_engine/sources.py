"""
Geo Sample Source capability.

A source pushes position fixes and sensor errors to subscribed callbacks.
The engine only consumes it; retrying a failing sensor is the source's
concern.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Protocol, Tuple, Union

from .models import ErrorKind, PositionFix

logger = logging.getLogger(__name__)

OnFix = Callable[[PositionFix], None]
OnError = Callable[[ErrorKind], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by subscribe()."""

    id: str


def new_handle() -> SubscriptionHandle:
    return SubscriptionHandle(id=uuid.uuid4().hex)


class GeoSampleSource(Protocol):
    """Interface every positioning backend implements."""

    async def check_availability(self) -> bool:
        """Whether the platform can deliver fixes (may await a permission prompt)."""
        ...

    def subscribe(self, on_fix: OnFix, on_error: OnError) -> SubscriptionHandle:
        ...

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        ...


class InProcessGeoSource:
    """
    Push-based source fed from inside the process.

    Used for recorded tracks, bridges from other transports, and tests.
    emit_fix() and emit_error() call every subscriber synchronously on the
    calling thread.
    """

    def __init__(self, available: bool = True):
        self.available = available
        self._subscriptions: Dict[str, Tuple[OnFix, OnError]] = {}
        self._lock = threading.Lock()

    async def check_availability(self) -> bool:
        return self.available

    def subscribe(self, on_fix: OnFix, on_error: OnError) -> SubscriptionHandle:
        handle = new_handle()
        with self._lock:
            self._subscriptions[handle.id] = (on_fix, on_error)
        logger.debug(f"[SOURCE] Subscribed {handle.id}")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        with self._lock:
            removed = self._subscriptions.pop(handle.id, None)
        if removed is not None:
            logger.debug(f"[SOURCE] Unsubscribed {handle.id}")

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _callbacks(self):
        with self._lock:
            return list(self._subscriptions.values())

    def emit_fix(self, fix: PositionFix) -> None:
        for on_fix, _ in self._callbacks():
            on_fix(fix)

    def emit_error(self, kind: ErrorKind) -> None:
        for _, on_error in self._callbacks():
            on_error(kind)

    def emit_many(self, events: Iterable[Union[PositionFix, ErrorKind]]) -> None:
        for event in events:
            if isinstance(event, PositionFix):
                self.emit_fix(event)
            else:
                self.emit_error(ErrorKind(event))

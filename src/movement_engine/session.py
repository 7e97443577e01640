"""
Session State Machine.

Owns one TrackingState at a time and drives it through
Idle -> Tracking -> Stopped. Fixes and sensor errors pushed by the Geo
Sample Source go through a bounded inbox and are applied by a single
consumer in arrival order, whichever thread delivers them.

Starting a session while another one is tracking is rejected with
SessionAlreadyActiveError; the running session is never stopped implicitly.
"""

import asyncio
import functools
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from .config import Settings, get_settings
from .errors import (
    InvalidBodyMetricsError,
    SessionAlreadyActiveError,
    SessionNotActiveError,
    UnsupportedCapabilityError,
)
from .models import (
    BodyMetrics,
    ErrorKind,
    LiveUpdate,
    PositionFix,
    SaveResult,
    SessionSummary,
    TrackingState,
    TrackingStatus,
)
from .sample_filter import SampleFilter
from .sources import GeoSampleSource, SubscriptionHandle
from .transitions import (
    TransitionContext,
    apply_error,
    apply_fix,
    begin,
    finish,
    summarize,
)

logger = logging.getLogger(__name__)

LiveUpdateSink = Callable[[LiveUpdate], None]


class BodyMetricsProvider(Protocol):
    def get_current_metrics(self) -> BodyMetrics:
        ...


def validate_body_metrics(metrics: BodyMetrics) -> BodyMetrics:
    """Fail fast on non-positive height or weight before starting a session."""
    if not metrics.is_valid:
        raise InvalidBodyMetricsError(
            f"Invalid body metrics: height_cm={metrics.height_cm}, weight_kg={metrics.weight_kg}"
        )
    return metrics


class StaticMetricsProvider:
    """Provider returning the same metrics every time."""

    def __init__(self, metrics: BodyMetrics):
        self.metrics = metrics

    def get_current_metrics(self) -> BodyMetrics:
        return self.metrics


class SessionStore(Protocol):
    def save(self, summary: SessionSummary) -> SaveResult:
        ...


@dataclass
class StopResult:
    """What stop() hands back to the caller."""

    state: TrackingState
    summary: Optional[SessionSummary] = None
    save_result: Optional[SaveResult] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStateMachine:
    """
    Live tracking session lifecycle.

    Args:
        source: Geo Sample Source to subscribe to
        metrics_provider: Body metrics, read once per session at start()
        on_update: Live-update sink, called once per accepted fix and once
            per sensor error (with LiveUpdate.error set)
        store: Session store; save() is called once per non-empty session
        settings: Engine settings (defaults to get_settings())
        clock: Returns the current timezone-aware time
        sample_filter: Overrides the filter built from settings
    """

    def __init__(
        self,
        source: GeoSampleSource,
        metrics_provider: BodyMetricsProvider,
        on_update: Optional[LiveUpdateSink] = None,
        store: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sample_filter: Optional[SampleFilter] = None,
    ):
        self.source = source
        self.metrics_provider = metrics_provider
        self.on_update = on_update
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock or _utcnow
        self._filter = sample_filter or SampleFilter.from_settings(self.settings)

        self._state: Optional[TrackingState] = None
        self._ctx: Optional[TransitionContext] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._inbox: "queue.Queue" = queue.Queue(maxsize=self.settings.inbox_size)
        self._generation = 0
        self._starting = False
        self._lock = threading.RLock()
        self._draining = False
        self.dropped_events = 0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def status(self) -> TrackingStatus:
        if self._state is None:
            return TrackingStatus.IDLE
        return self._state.status

    @property
    def state(self) -> Optional[TrackingState]:
        return self._state

    @property
    def metrics(self) -> Optional[BodyMetrics]:
        return self._ctx.metrics if self._ctx else None

    def elapsed_seconds(self) -> float:
        """Seconds since start, frozen at end_time once stopped."""
        state = self._state
        if state is None or state.start_time is None:
            return 0.0
        end = state.end_time or self._clock()
        return max(0.0, (end - state.start_time).total_seconds())

    def snapshot(self) -> Dict[str, Any]:
        """Current session status for monitoring."""
        state = self._state
        return {
            "status": self.status.value,
            "distance_km": state.cumulative_distance_km if state else 0.0,
            "accepted_fixes": len(state.accepted_fixes) if state else 0,
            "rejected_fixes": state.rejected_count if state else 0,
            "sensor_errors": state.error_count if state else 0,
            "last_error": state.last_error.value if state and state.last_error else None,
            "max_speed_kmh": state.max_speed_kmh if state else 0.0,
            "elapsed_seconds": self.elapsed_seconds(),
            "dropped_events": self.dropped_events,
            "start_time": (
                state.start_time.isoformat() if state and state.start_time else None
            ),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> TrackingState:
        """
        Idle/Stopped -> Tracking.

        Awaits the source's availability check, reads body metrics once and
        subscribes to fixes and errors.

        Raises:
            SessionAlreadyActiveError: A session is tracking or starting
            UnsupportedCapabilityError: The source reports no positioning
        """
        if self._starting or self.status == TrackingStatus.TRACKING:
            raise SessionAlreadyActiveError("A tracking session is already active")

        self._starting = True
        try:
            available = await self.source.check_availability()
            if not available:
                logger.warning("[SESSION] Positioning is not available on this platform")
                raise UnsupportedCapabilityError()

            metrics = self.metrics_provider.get_current_metrics()

            with self._lock:
                self._generation += 1
                generation = self._generation
                self._inbox = queue.Queue(maxsize=self.settings.inbox_size)
                self.dropped_events = 0
                self._ctx = TransitionContext(
                    metrics=metrics,
                    sample_filter=self._filter,
                    speed_window=self.settings.speed_window_size,
                )
                state = begin(self._clock())
                if not metrics.is_valid:
                    logger.warning(
                        f"[SESSION] Invalid body metrics (height={metrics.height_cm}, "
                        f"weight={metrics.weight_kg}); steps and calories will be zero"
                    )
                    state.last_error = ErrorKind.INVALID_BODY_METRICS
                self._state = state

            try:
                self._handle = self.source.subscribe(
                    functools.partial(self._enqueue, generation),
                    functools.partial(self._enqueue_error, generation),
                )
            except Exception:
                with self._lock:
                    finish(state, self._clock())
                    self._generation += 1
                    self._state = None
                raise
        finally:
            self._starting = False

        logger.info(f"[SESSION] Tracking started at {state.start_time.isoformat()}")
        return state

    def stop(self) -> StopResult:
        """
        Tracking -> Stopped.

        Releases the subscription, applies events already queued, then
        builds the summary. A session with no accepted fix produces no
        summary and nothing is saved. A failed save does not undo the stop.

        Raises:
            SessionNotActiveError: No session is tracking
        """
        with self._lock:
            state = self._state
            if state is None or state.status != TrackingStatus.TRACKING:
                raise SessionNotActiveError("No tracking session to stop")
            try:
                self._release_subscription()
                if not self._draining:
                    self._process_pending()
            finally:
                finish(state, self._clock())
                self._generation += 1

        summary = summarize(state, self._ctx)
        logger.info(
            f"[SESSION] Tracking stopped: {len(state.accepted_fixes)} fixes, "
            f"{state.cumulative_distance_km:.3f} km, {state.rejected_count} rejected"
        )

        if summary is None:
            logger.info("[SESSION] No accepted fixes; session discarded without a summary")
            return StopResult(state=state)

        save_result = self._save(summary) if self.store is not None else None
        return StopResult(state=state, summary=summary, save_result=save_result)

    def cancel(self) -> None:
        """Release the subscription and stop without producing a summary."""
        with self._lock:
            state = self._state
            try:
                self._release_subscription()
            finally:
                if state is not None:
                    finish(state, self._clock())
                self._generation += 1
                self._clear_inbox()
        logger.info("[SESSION] Tracking cancelled")

    def reset(self) -> None:
        """Stopped -> Idle: discard the finished session."""
        with self._lock:
            if self.status == TrackingStatus.TRACKING:
                raise SessionAlreadyActiveError("Stop or cancel the active session first")
            self._state = None
            self._ctx = None

    async def run_elapsed_ticker(
        self,
        on_tick: Callable[[float], None],
        interval_s: Optional[float] = None,
    ) -> None:
        """
        Report elapsed seconds about once per interval while tracking.

        Only the elapsed time is reported; distance and speed come solely
        from accepted fixes.
        """
        interval = interval_s if interval_s is not None else self.settings.tick_interval_s
        generation = self._generation
        while self.status == TrackingStatus.TRACKING and self._generation == generation:
            on_tick(self.elapsed_seconds())
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _enqueue(self, generation: int, event: Any) -> None:
        if generation != self._generation:
            return
        try:
            self._inbox.put_nowait((generation, event))
        except queue.Full:
            self.dropped_events += 1
            logger.warning(f"[SESSION] Inbox full, dropped event ({self.dropped_events} so far)")
            return
        self._drain()

    def _enqueue_error(self, generation: int, kind: ErrorKind) -> None:
        self._enqueue(generation, ErrorKind(kind))

    def _drain(self) -> None:
        # Single consumer: whoever holds the lock processes, others only enqueue.
        while True:
            if not self._lock.acquire(blocking=False):
                return
            try:
                if self._draining:
                    return
                self._process_pending()
            finally:
                self._lock.release()
            if self._inbox.empty():
                return

    def _process_pending(self) -> None:
        self._draining = True
        try:
            while True:
                try:
                    generation, event = self._inbox.get_nowait()
                except queue.Empty:
                    return
                self._dispatch(generation, event)
        finally:
            self._draining = False

    def _dispatch(self, generation: int, event: Any) -> None:
        state = self._state
        if generation != self._generation or state is None:
            return

        if isinstance(event, PositionFix):
            update = apply_fix(state, event, self._ctx)
        else:
            log = logger.warning if event.is_transient else logger.error
            log(f"[SESSION] Sensor error: {event.value} - {event.user_message}")
            update = apply_error(state, event, self._ctx, self._clock())

        if update is not None:
            self._notify(update)

    def _notify(self, update: LiveUpdate) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(update)
        except Exception as e:
            logger.error(f"[SESSION] Live-update callback failed: {e}")

    # ------------------------------------------------------------------
    # Cleanup and persistence
    # ------------------------------------------------------------------

    def _release_subscription(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self.source.unsubscribe(handle)
            logger.info("[SESSION] Unsubscribed from geo source")
        except Exception as e:
            logger.error(f"[SESSION] Failed to unsubscribe from geo source: {e}")

    def _clear_inbox(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return

    def _save(self, summary: SessionSummary) -> SaveResult:
        try:
            result = self.store.save(summary)
        except Exception as e:
            logger.error(f"[SESSION] Session store raised: {e}")
            return SaveResult.failure(str(e))

        if result.ok:
            logger.info(f"[SESSION] Session saved as {result.session_id}")
        else:
            logger.error(f"[SESSION] Session save failed: {result.message}")
        return result

"""
Tracking state transitions.

Each function applies one event to a TrackingState owned by the caller and
returns what should be reported to the live-update sink, if anything. The
session machine drives these from its inbox; replay() drives them from a
recorded event list, so a session can be reproduced deterministically.

Distance is accumulated incrementally: an accepted fix adds exactly one
haversine segment to the running total.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Union

from .energy import estimate_energy, steps_from_distance
from .geo import fix_distance_km
from .models import (
    BodyMetrics,
    ErrorKind,
    LiveUpdate,
    PositionFix,
    SessionSummary,
    TrackingState,
    TrackingStatus,
)
from .sample_filter import SampleFilter, is_stale
from .speed import DEFAULT_WINDOW_SIZE, average_speed_kmh, windowed_speed_kmh

logger = logging.getLogger(__name__)

Event = Union[PositionFix, ErrorKind]


@dataclass
class TransitionContext:
    """Inputs that stay fixed for one session."""

    metrics: BodyMetrics
    sample_filter: SampleFilter = field(default_factory=SampleFilter)
    speed_window: int = DEFAULT_WINDOW_SIZE


@dataclass
class ReplayResult:
    """Outcome of replaying a recorded event list."""

    state: TrackingState
    updates: List[LiveUpdate]
    summary: Optional[SessionSummary]


def begin(now: datetime) -> TrackingState:
    """Idle -> Tracking: a fresh state with an empty path."""
    return TrackingState(status=TrackingStatus.TRACKING, start_time=now)


def live_estimate(state: TrackingState, ctx: TransitionContext, timestamp: datetime) -> LiveUpdate:
    """Current distance, steps, calories, speed and MET for a state."""
    metrics = ctx.metrics
    speed = windowed_speed_kmh(state.accepted_fixes, ctx.speed_window)
    steps = steps_from_distance(state.cumulative_distance_km, metrics)
    energy = estimate_energy(
        metrics.weight_kg,
        height_cm=metrics.height_cm,
        distance_km=state.cumulative_distance_km,
        gender=metrics.gender,
        speed_kmh=speed,
    )
    return LiveUpdate(
        distance_km=state.cumulative_distance_km,
        steps=steps,
        calories=energy.calories,
        speed_kmh=speed,
        met=energy.met,
        timestamp=timestamp,
    )


def apply_fix(state: TrackingState, fix: PositionFix, ctx: TransitionContext) -> Optional[LiveUpdate]:
    """
    Tracking -> Tracking on a raw fix.

    Stale fixes (not newer than the last accepted one) and fixes rejected by
    the sample filter leave the state untouched apart from the rejection
    counter.

    Returns:
        The live update for an accepted fix, None otherwise
    """
    if state.status != TrackingStatus.TRACKING:
        return None

    last = state.last_fix
    if is_stale(fix, last):
        state.rejected_count += 1
        logger.debug(f"[TRANSITION] Discarded out-of-order fix at {fix.timestamp.isoformat()}")
        return None

    if not ctx.sample_filter.accept(fix, last):
        state.rejected_count += 1
        return None

    if last is not None:
        state.cumulative_distance_km += fix_distance_km(last, fix)
    state.accepted_fixes.append(fix)

    update = live_estimate(state, ctx, fix.timestamp)
    if update.speed_kmh is not None and update.speed_kmh > state.max_speed_kmh:
        state.max_speed_kmh = update.speed_kmh
    return update


def apply_error(
    state: TrackingState,
    kind: ErrorKind,
    ctx: TransitionContext,
    now: datetime,
) -> Optional[LiveUpdate]:
    """
    Tracking -> Tracking on a sensor error.

    The error is recorded and reported with the current totals; tracking
    continues.
    """
    if state.status != TrackingStatus.TRACKING:
        return None

    state.last_error = kind
    state.error_count += 1
    update = live_estimate(state, ctx, now)
    update.error = kind
    return update


def finish(state: TrackingState, now: datetime) -> TrackingState:
    """Tracking -> Stopped. No-op for a state that is not tracking."""
    if state.status == TrackingStatus.TRACKING:
        state.status = TrackingStatus.STOPPED
        state.end_time = now
    return state


def summarize(state: TrackingState, ctx: TransitionContext) -> Optional[SessionSummary]:
    """
    Build the SessionSummary of a stopped state.

    Average speed is the windowed estimator applied over the whole path, and
    total calories use that same speed for MET and duration.

    Returns:
        The summary, or None when no fix was accepted
    """
    fixes = state.accepted_fixes
    if not fixes:
        return None

    metrics = ctx.metrics
    total_km = state.cumulative_distance_km
    average = average_speed_kmh(fixes)
    energy = estimate_energy(
        metrics.weight_kg,
        height_cm=metrics.height_cm,
        distance_km=total_km,
        gender=metrics.gender,
        speed_kmh=average,
    )

    start_time = state.start_time or fixes[0].timestamp
    end_time = state.end_time or fixes[-1].timestamp
    return SessionSummary(
        start_time=start_time,
        end_time=end_time,
        total_distance_km=total_km,
        total_steps=steps_from_distance(total_km, metrics),
        total_calories=energy.calories,
        average_speed_kmh=average or 0.0,
        max_speed_kmh=state.max_speed_kmh,
        path=tuple(fixes),
    )


def replay(
    events: Iterable[Event],
    ctx: TransitionContext,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> ReplayResult:
    """
    Run a recorded list of fixes and errors through the transitions.

    Args:
        events: PositionFix and ErrorKind items in arrival order
        ctx: Session context (body metrics, filter, speed window)
        start_time: Session start, defaults to the first fix timestamp
        end_time: Session end, defaults to the last fix timestamp seen

    Returns:
        ReplayResult with the final state, every live update and the summary
    """
    events = list(events)
    fix_times = [e.timestamp for e in events if isinstance(e, PositionFix)]
    if start_time is None:
        start_time = fix_times[0] if fix_times else datetime.now().astimezone()
    if end_time is None:
        end_time = fix_times[-1] if fix_times else start_time

    state = begin(start_time)
    updates: List[LiveUpdate] = []
    last_seen = start_time
    for event in events:
        if isinstance(event, PositionFix):
            last_seen = max(last_seen, event.timestamp)
            update = apply_fix(state, event, ctx)
        else:
            update = apply_error(state, ErrorKind(event), ctx, last_seen)
        if update is not None:
            updates.append(update)

    finish(state, end_time)
    return ReplayResult(state=state, updates=updates, summary=summarize(state, ctx))

"""
Unit tests for the Session State Machine.

These tests verify:
1. start() checks availability, reads metrics once and subscribes
2. Fixes and errors pushed by the source produce live updates in order
3. stop() releases the subscription, summarizes and saves exactly once
4. Empty sessions produce no summary and are never saved
5. Events from a stopped session are ignored

These tests run WITHOUT requiring Solace broker connection.
They drive the machine through an in-process geo source.

Usage:
    pytest tests/test_session.py -v
"""
import asyncio
import logging
import threading
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from conftest import START_LAT, T0, make_fix, walk_fixes

from movement_engine.errors import (
    InvalidBodyMetricsError,
    SessionAlreadyActiveError,
    SessionNotActiveError,
    UnsupportedCapabilityError,
)
from movement_engine.models import BodyMetrics, ErrorKind, SaveResult, TrackingStatus
from movement_engine.session import SessionStateMachine, StaticMetricsProvider, validate_body_metrics
from movement_engine.sources import InProcessGeoSource


@pytest.fixture
def updates():
    return []


@pytest.fixture
def store():
    mock_store = MagicMock()
    mock_store.save.return_value = SaveResult(session_id="sess-1")
    return mock_store


@pytest.fixture
def machine(source, metrics, settings, clock, updates, store):
    return SessionStateMachine(
        source=source,
        metrics_provider=StaticMetricsProvider(metrics),
        on_update=updates.append,
        store=store,
        settings=settings,
        clock=clock,
    )


class TestStart:
    """Test the Idle -> Tracking transition."""

    @pytest.mark.asyncio
    async def test_start_subscribes(self, machine, source):
        state = await machine.start()

        assert machine.status == TrackingStatus.TRACKING
        assert state.start_time == T0
        assert state.accepted_fixes == []
        assert source.active_subscriptions == 1

    @pytest.mark.asyncio
    async def test_status_idle_before_start(self, machine):
        assert machine.status == TrackingStatus.IDLE
        assert machine.state is None
        assert machine.elapsed_seconds() == 0.0

    @pytest.mark.asyncio
    async def test_unsupported_capability(self, metrics, settings, clock):
        source = InProcessGeoSource(available=False)
        machine = SessionStateMachine(source, StaticMetricsProvider(metrics), settings=settings, clock=clock)

        with pytest.raises(UnsupportedCapabilityError):
            await machine.start()
        assert machine.status == TrackingStatus.IDLE
        assert source.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_start_while_tracking_rejected(self, machine, source):
        """A second start() never stops the running session implicitly."""
        await machine.start()
        with pytest.raises(SessionAlreadyActiveError):
            await machine.start()
        assert machine.status == TrackingStatus.TRACKING
        assert source.active_subscriptions == 1

    @pytest.mark.asyncio
    async def test_metrics_read_once(self, source, metrics, settings, clock):
        provider = MagicMock()
        provider.get_current_metrics.return_value = metrics
        machine = SessionStateMachine(source, provider, settings=settings, clock=clock)

        await machine.start()
        source.emit_many(walk_fixes(3))

        provider.get_current_metrics.assert_called_once()
        assert machine.metrics == metrics

    @pytest.mark.asyncio
    async def test_subscribe_failure_rolls_back(self, metrics, settings, clock):
        source = MagicMock()

        async def available():
            return True

        source.check_availability = available
        source.subscribe.side_effect = RuntimeError("receiver failed")
        machine = SessionStateMachine(source, StaticMetricsProvider(metrics), settings=settings, clock=clock)

        with pytest.raises(RuntimeError):
            await machine.start()
        assert machine.status == TrackingStatus.IDLE

    @pytest.mark.asyncio
    async def test_invalid_metrics_do_not_abort(self, source, settings, clock, updates):
        """Zero weight starts normally; steps and calories stay zero."""
        machine = SessionStateMachine(
            source,
            StaticMetricsProvider(BodyMetrics(height_cm=175, weight_kg=0)),
            on_update=updates.append,
            settings=settings,
            clock=clock,
        )
        state = await machine.start()
        source.emit_many(walk_fixes(3))

        assert state.last_error == ErrorKind.INVALID_BODY_METRICS
        assert updates[-1].distance_km > 0
        assert updates[-1].steps == 0
        assert updates[-1].calories == 0

    def test_validate_body_metrics(self, metrics):
        assert validate_body_metrics(metrics) is metrics
        with pytest.raises(InvalidBodyMetricsError):
            validate_body_metrics(BodyMetrics(height_cm=0, weight_kg=70))


class TestLiveUpdates:
    """Test fixes and errors flowing through the inbox."""

    @pytest.mark.asyncio
    async def test_update_per_accepted_fix(self, machine, source, updates):
        await machine.start()
        source.emit_many(walk_fixes(4))

        assert len(updates) == 4
        assert [u.distance_km for u in updates] == sorted(u.distance_km for u in updates)
        assert updates[-1].speed_kmh == pytest.approx(5.0, abs=0.1)

    @pytest.mark.asyncio
    async def test_rejected_fixes_produce_no_update(self, machine, source, updates):
        await machine.start()
        source.emit_fix(make_fix())
        source.emit_fix(make_fix(seconds=5, accuracy=60.0))
        source.emit_fix(make_fix(seconds=10))  # jitter

        assert len(updates) == 1
        assert machine.snapshot()["rejected_fixes"] == 2

    @pytest.mark.asyncio
    async def test_sensor_error_keeps_tracking(self, machine, source, updates):
        await machine.start()
        source.emit_fix(make_fix())
        source.emit_error(ErrorKind.PERMISSION_DENIED)

        assert machine.status == TrackingStatus.TRACKING
        assert updates[-1].error == ErrorKind.PERMISSION_DENIED
        assert machine.snapshot()["last_error"] == "permission_denied"

    @pytest.mark.asyncio
    async def test_low_accuracy_stream(self, machine, source, updates):
        """Every fix at 50 m accuracy: no fix accepted, still tracking."""
        await machine.start()
        source.emit_many(walk_fixes(15, accuracy=50.0))

        assert machine.status == TrackingStatus.TRACKING
        assert machine.state.accepted_fixes == []
        assert machine.state.cumulative_distance_km == 0
        assert updates == []

    @pytest.mark.asyncio
    async def test_filter_rejections_log_quietly(self, machine, source, updates, caplog):
        """Rejected and out-of-order fixes never log at WARNING or above."""
        caplog.set_level(logging.DEBUG)
        await machine.start()
        source.emit_fix(make_fix(seconds=60))
        source.emit_fix(make_fix(seconds=65, accuracy=60.0))
        source.emit_fix(make_fix(seconds=70))  # jitter
        source.emit_fix(make_fix(seconds=30, lat=START_LAT + 0.01))  # out of order

        assert len(updates) == 1
        assert machine.snapshot()["rejected_fixes"] == 3
        assert [r for r in caplog.records if r.levelno >= logging.WARNING] == []

    @pytest.mark.asyncio
    async def test_sensor_error_log_levels(self, machine, source, caplog):
        """Transient sensor errors log a warning, anything else an error."""
        caplog.set_level(logging.INFO, logger="movement_engine.session")
        await machine.start()
        source.emit_error(ErrorKind.TIMEOUT)
        source.emit_error(ErrorKind.UNSUPPORTED_CAPABILITY)

        levels = {r.getMessage().split(" - ")[0]: r.levelno for r in caplog.records if "Sensor error" in r.getMessage()}
        assert levels == {
            "[SESSION] Sensor error: timeout": logging.WARNING,
            "[SESSION] Sensor error: unsupported_capability": logging.ERROR,
        }
        assert ErrorKind.TIMEOUT.is_transient
        assert not ErrorKind.UNSUPPORTED_CAPABILITY.is_transient

    @pytest.mark.asyncio
    async def test_invalid_weight_keeps_speed_met(self, source, settings, clock, updates):
        machine = SessionStateMachine(
            source,
            StaticMetricsProvider(BodyMetrics(height_cm=175, weight_kg=0)),
            on_update=updates.append,
            settings=settings,
            clock=clock,
        )
        await machine.start()
        source.emit_many(walk_fixes(3))

        assert updates[-1].calories == 0
        assert updates[-1].met == 5.0

    @pytest.mark.asyncio
    async def test_sink_exception_does_not_corrupt_state(self, source, metrics, settings, clock):
        sink = MagicMock(side_effect=ValueError("ui gone"))
        machine = SessionStateMachine(
            source, StaticMetricsProvider(metrics), on_update=sink, settings=settings, clock=clock
        )
        await machine.start()
        source.emit_many(walk_fixes(3))

        assert sink.call_count == 3
        assert len(machine.state.accepted_fixes) == 3

    @pytest.mark.asyncio
    async def test_concurrent_delivery_from_threads(self, machine, source, updates):
        """Fixes pushed from several threads are all applied, one at a time."""
        await machine.start()
        fixes = walk_fixes(40, interval_s=10.0, lat_step=0.0002)
        barrier = threading.Barrier(4)

        def push(chunk):
            barrier.wait()
            for fix in chunk:
                source.emit_fix(fix)

        threads = [threading.Thread(target=push, args=(fixes[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = machine.state
        accepted = state.accepted_fixes
        assert all(a.timestamp < b.timestamp for a, b in zip(accepted, accepted[1:]))
        assert len(accepted) + state.rejected_count == len(fixes)
        assert len(updates) == len(accepted)

    @pytest.mark.asyncio
    async def test_inbox_overflow_counts_drops(self, source, metrics, settings, clock):
        settings.inbox_size = 1
        machine = SessionStateMachine(source, StaticMetricsProvider(metrics), settings=settings, clock=clock)
        await machine.start()

        # Hold the consumer lock so events pile up in the inbox
        with machine._lock:
            machine._draining = True
            source.emit_many(walk_fixes(3))
            machine._draining = False

        assert machine.dropped_events == 2
        machine.stop()
        assert len(machine.state.accepted_fixes) == 1


class TestStop:
    """Test the Tracking -> Stopped transition."""

    @pytest.mark.asyncio
    async def test_stop_summarizes_and_saves_once(self, machine, source, store, clock):
        await machine.start()
        source.emit_many(walk_fixes(6))
        clock.advance(300)

        result = machine.stop()

        assert machine.status == TrackingStatus.STOPPED
        assert source.active_subscriptions == 0
        assert result.summary.total_distance_km == pytest.approx(0.415, abs=0.005)
        assert result.summary.end_time == T0 + timedelta(seconds=300)
        assert result.save_result.session_id == "sess-1"
        store.save.assert_called_once_with(result.summary)

    @pytest.mark.asyncio
    async def test_empty_session_not_saved(self, machine, store):
        await machine.start()
        result = machine.stop()

        assert result.summary is None
        assert result.save_result is None
        store.save.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_when_idle_raises(self, machine):
        with pytest.raises(SessionNotActiveError):
            machine.stop()

    @pytest.mark.asyncio
    async def test_double_stop_raises(self, machine):
        await machine.start()
        machine.stop()
        with pytest.raises(SessionNotActiveError):
            machine.stop()

    @pytest.mark.asyncio
    async def test_events_after_stop_ignored(self, machine, source, updates):
        """Late fixes from a stopped session never mutate it."""
        await machine.start()
        late_on_fix = source._callbacks()[0][0]
        source.emit_many(walk_fixes(2))
        machine.stop()

        late_on_fix(make_fix(seconds=600, lat=51.51))
        assert len(machine.state.accepted_fixes) == 2
        assert len(updates) == 2

    @pytest.mark.asyncio
    async def test_save_failure_does_not_undo_stop(self, machine, source, store):
        store.save.return_value = SaveResult.failure("API down")
        await machine.start()
        source.emit_many(walk_fixes(3))

        result = machine.stop()

        assert machine.status == TrackingStatus.STOPPED
        assert result.summary is not None
        assert not result.save_result.ok
        assert result.save_result.error == ErrorKind.PERSISTENCE_FAILURE

    @pytest.mark.asyncio
    async def test_store_exception_becomes_failure(self, machine, source, store):
        store.save.side_effect = OSError("disk full")
        await machine.start()
        source.emit_many(walk_fixes(2))

        result = machine.stop()
        assert result.save_result.error == ErrorKind.PERSISTENCE_FAILURE
        assert "disk full" in result.save_result.message

    @pytest.mark.asyncio
    async def test_stop_from_update_callback(self, source, metrics, settings, clock, store):
        """The sink may stop the session from inside a live update."""
        holder = {}

        def on_update(update):
            if update.distance_km > 0.1:
                holder["result"] = holder["machine"].stop()

        machine = SessionStateMachine(
            source, StaticMetricsProvider(metrics), on_update=on_update,
            store=store, settings=settings, clock=clock,
        )
        holder["machine"] = machine
        await machine.start()
        source.emit_many(walk_fixes(6))

        assert machine.status == TrackingStatus.STOPPED
        assert len(holder["result"].summary.path) == 3
        store.save.assert_called_once()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, machine, source, updates):
        await machine.start()
        source.emit_many(walk_fixes(3))
        machine.stop()

        state = await machine.start()
        assert state.accepted_fixes == []
        assert machine.status == TrackingStatus.TRACKING
        assert source.active_subscriptions == 1

    @pytest.mark.asyncio
    async def test_cancel_and_reset(self, machine, source, store):
        await machine.start()
        source.emit_many(walk_fixes(3))
        machine.cancel()

        assert machine.status == TrackingStatus.STOPPED
        assert source.active_subscriptions == 0
        store.save.assert_not_called()

        machine.reset()
        assert machine.status == TrackingStatus.IDLE

    @pytest.mark.asyncio
    async def test_reset_while_tracking_rejected(self, machine):
        await machine.start()
        with pytest.raises(SessionAlreadyActiveError):
            machine.reset()


class TestElapsedTicker:
    """Test elapsed time reporting."""

    @pytest.mark.asyncio
    async def test_ticker_stops_with_session(self, machine, clock):
        ticks = []
        await machine.start()

        def on_tick(elapsed):
            ticks.append(elapsed)
            clock.advance(1)
            if len(ticks) == 3:
                machine.stop()

        await asyncio.wait_for(machine.run_elapsed_ticker(on_tick, interval_s=0.001), timeout=2)
        assert ticks == [0.0, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_elapsed_frozen_after_stop(self, machine, clock):
        await machine.start()
        clock.advance(42)
        machine.stop()
        clock.advance(100)

        assert machine.elapsed_seconds() == 42.0
        assert machine.snapshot()["status"] == "stopped"

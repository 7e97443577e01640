"""
Unit tests for movement tracking agent tools.

These tests verify:
1. Tracking status reports the session machine snapshot
2. Energy estimates return steps and calories with a status field
3. Session notifications are formatted for the user

Usage:
    pytest tests/test_tools.py -v
"""
import pytest
from unittest.mock import MagicMock

from conftest import walk_fixes

from movement_engine.session import SessionStateMachine, StaticMetricsProvider
from movement_engine.tools import (
    estimate_activity_energy,
    format_session_summary,
    get_tracking_status,
)


class TestTrackingStatus:
    """Test get_tracking_status."""

    @pytest.mark.asyncio
    async def test_without_session_machine(self):
        result = await get_tracking_status()
        assert result["status"] == "no_session_machine"
        assert result["tracking"] is False

    @pytest.mark.asyncio
    async def test_idle(self, source, metrics, settings, clock):
        context = MagicMock()
        context.session_machine = SessionStateMachine(
            source, StaticMetricsProvider(metrics), settings=settings, clock=clock
        )

        result = await get_tracking_status(tool_context=context)
        assert result["status"] == "success"
        assert result["tracking"] is False
        assert result["message"] == "No tracking session is active"

    @pytest.mark.asyncio
    async def test_tracking_and_stopped(self, source, metrics, settings, clock):
        machine = SessionStateMachine(source, StaticMetricsProvider(metrics), settings=settings, clock=clock)
        context = MagicMock()
        context.session_machine = machine

        await machine.start()
        source.emit_many(walk_fixes(3))
        clock.advance(125)
        result = await get_tracking_status(tool_context=context)

        assert result["tracking"] is True
        assert result["session"]["accepted_fixes"] == 3
        assert result["message"].startswith("Tracking for 125s: 0.17 km")

        machine.stop()
        result = await get_tracking_status(tool_context=context)
        assert result["tracking"] is False
        assert "ended after 0.17 km" in result["message"]


class TestEstimateActivityEnergy:
    """Test estimate_activity_energy."""

    @pytest.mark.asyncio
    async def test_estimate(self):
        result = await estimate_activity_energy(
            distance_km=5.0, height_cm=175, weight_kg=70, gender="male", speed_kmh=5.0
        )

        assert result["status"] == "success"
        assert result["steps"] > 6000
        assert result["calories"] == 368
        assert result["met"] == 5.0
        assert result["duration_minutes"] == 60.0

    @pytest.mark.asyncio
    async def test_invalid_metrics(self):
        result = await estimate_activity_energy(distance_km=5.0, height_cm=0, weight_kg=70)

        assert result["status"] == "error"
        assert result["steps"] == 0
        assert result["calories"] == 0


class TestFormatSessionSummary:
    """Test format_session_summary."""

    @pytest.mark.asyncio
    async def test_full_session(self):
        message = await format_session_summary({
            "startTime": "2025-03-01T08:00:00Z",
            "totalDistanceKm": 2.346,
            "totalSteps": 3100,
            "calories": 150,
            "avgSpeedKmh": 4.92,
            "maxSpeedKmh": 6.1,
        })

        assert message.startswith("🏃 **Session Complete**")
        assert "**Distance:** 2.35 km" in message
        assert "**Steps:** 3100" in message
        assert "**Calories:** 150 kcal" in message
        assert "**Average speed:** 4.9 km/h" in message
        assert "_Started: 2025-03-01T08:00:00Z_" in message

    @pytest.mark.asyncio
    async def test_minimal_session(self):
        message = await format_session_summary({"totalDistanceKm": 0.5})

        assert "**Distance:** 0.50 km" in message
        assert "**Steps:** 0" in message
        assert "Average speed" not in message

"""
Pytest fixtures for Movement Analytics Engine tests.
"""
import sys
import pytest
from pathlib import Path
from datetime import datetime, timedelta, timezone
from dotenv import load_dotenv

# Ensure src/ and scripts/ are on sys.path so tests can import movement_engine and the simulator.
ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
SCRIPTS = ROOT / "scripts"
for path in (SRC, SCRIPTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

# Load environment variables
load_dotenv()

from movement_engine.config import Settings
from movement_engine.models import BodyMetrics, Gender, PositionFix
from movement_engine.sources import InProcessGeoSource


T0 = datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

# London, Westminster
START_LAT = 51.5007
START_LON = -0.1246

# Latitude step of ~83 m
WALK_LAT_STEP = 0.000746


def make_fix(seconds=0.0, lat=START_LAT, lon=START_LON, accuracy=5.0, speed=None, altitude=None):
    """Build a fix `seconds` after T0."""
    return PositionFix(
        latitude=lat,
        longitude=lon,
        timestamp=T0 + timedelta(seconds=seconds),
        accuracy_m=accuracy,
        speed_mps=speed,
        altitude_m=altitude,
    )


def walk_fixes(count, interval_s=60.0, lat_step=WALK_LAT_STEP, accuracy=5.0):
    """Straight-line walk north, one fix per interval."""
    return [
        make_fix(seconds=i * interval_s, lat=START_LAT + i * lat_step, accuracy=accuracy)
        for i in range(count)
    ]


class FakeClock:
    """Settable clock for the session machine."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def metrics():
    """Reference body metrics: 175 cm, 75 kg, male."""
    return BodyMetrics(height_cm=175, weight_kg=75, gender=Gender.MALE)


@pytest.fixture
def settings():
    """Default settings, independent of the environment."""
    return Settings(
        accuracy_threshold_m=20.0,
        min_displacement_km=0.005,
        speed_window_size=5,
        inbox_size=256,
        tick_interval_s=0.01,
        session_api_url="http://sessions.test",
        session_api_token=None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return InProcessGeoSource()

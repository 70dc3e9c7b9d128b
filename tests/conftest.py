from __future__ import annotations

from typing import Optional

import pytest

from roadwatch.storage.dao import DAO
from roadwatch.utils.validate import Accelerometer, Detection, GpsFix, SensorReading

DELHI = (28.6139, 77.2090)
GRAVITY = 9.81


class ManualClock:
    """Settable "now" in ms."""

    def __init__(self, now_ms: float = 0.0) -> None:
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms


def make_reading(
    ts: int,
    extra_z: float = 0.0,
    speed: Optional[float] = 10.0,
    lat: float = DELHI[0],
    lon: float = DELHI[1],
) -> SensorReading:
    return SensorReading(
        timestamp=ts,
        accelerometer=Accelerometer(x=0.0, y=0.0, z=GRAVITY + extra_z),
        gps=GpsFix(latitude=lat, longitude=lon, accuracy=5.0, speed=speed),
    )


def make_detection(
    user_id: str = "user-a",
    lat: float = DELHI[0],
    lon: float = DELHI[1],
    defect_type: str = "pothole",
    severity: int = 6,
    timestamp: int = 1_700_000_000_000,
) -> Detection:
    return Detection(
        session_id="session-1",
        user_id=user_id,
        timestamp=timestamp,
        lat=lat,
        lon=lon,
        defect_type=defect_type,
        confidence=0.8,
        severity=severity,
    )


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "roadwatch.sqlite")


@pytest.fixture
def dao(db_path):
    d = DAO(db_path)
    yield d
    d.close()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()

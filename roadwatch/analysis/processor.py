"""
Turn a stream of raw sensor readings into gated, overlapping windows.

Each call to ``SignalProcessor.add_reading`` may complete at most one window:
- prune readings older than twice the window duration relative to now
- once the buffer spans a full window, summarize its first window slice
- emit the summary if it passes the speed/peak/sample-count gate
- slide the buffer forward by half a window
"""

from __future__ import annotations

import math
import time
from typing import Callable, Iterable, Optional

from roadwatch.analysis.config import ProcessorConfig
from roadwatch.analysis.types import ProcessedWindow
from roadwatch.utils.log import get_logger
from roadwatch.utils.validate import SensorReading

logger = get_logger(__name__)

GRAVITY = 9.81  # m/s²
MPS_TO_KMH = 3.6

WindowCallback = Callable[[ProcessedWindow], None]


def wall_clock_ms() -> float:
    return time.time() * 1000


def calculate_magnitude(x: float, y: float, z: float) -> float:
    """
    Approximate linear acceleration by subtracting gravity from the total magnitude.

    Orientation-free, so it overestimates slightly when the device is tilted.
    """
    return abs(math.sqrt(x**2 + y**2 + z**2) - GRAVITY)


def calculate_rms(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return math.sqrt(sum(v**2 for v in values) / len(values))


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


class SignalProcessor:
    """
    Stateful windowing engine over a reading stream.

    Readings are assumed to arrive in non-decreasing timestamp order.
    ``clock`` returns "now" in ms and drives buffer pruning; it defaults to
    the wall clock, so replays of recorded captures should pass a clock that
    follows the capture timestamps.
    """
    def __init__(
        self,
        cfg: ProcessorConfig | None = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cfg = cfg or ProcessorConfig()
        self.clock = clock or wall_clock_ms
        self._buffer: list[SensorReading] = []
        self._callback: Optional[WindowCallback] = None

    def set_window_callback(self, callback: Optional[WindowCallback]) -> None:
        self._callback = callback

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def add_reading(self, reading: SensorReading) -> Optional[ProcessedWindow]:
        """
        Buffer one reading and run the window check.

        Returns the emitted window, or None when nothing passed the gate.
        Readings with a missing accelerometer axis or GPS fix are skipped.
        """
        acc = reading.accelerometer
        if acc.x is None or acc.y is None or acc.z is None:
            logger.debug("Skipping reading at %s: incomplete accelerometer", reading.timestamp)
            return None
        if reading.gps is None:
            logger.debug("Skipping reading at %s: no GPS fix", reading.timestamp)
            return None

        self._buffer.append(reading)
        self._prune()
        return self._check_window_complete()

    def reset(self) -> None:
        self._buffer = []

    def _prune(self) -> None:
        cutoff = self.clock() - self.cfg.window_duration_ms * 2
        self._buffer = [r for r in self._buffer if r.timestamp > cutoff]

    def _check_window_complete(self) -> Optional[ProcessedWindow]:
        if len(self._buffer) < 2:
            return None

        duration = self.cfg.window_duration_ms
        window_start = self._buffer[0].timestamp
        window_end = self._buffer[-1].timestamp
        if window_end - window_start < duration:
            return None

        selected = [r for r in self._buffer if window_start <= r.timestamp < window_start + duration]
        if not selected:
            return None

        window = self.process_window(selected)
        emitted = None
        if self.should_emit(window):
            emitted = window
            if self._callback is not None:
                self._callback(window)
        else:
            logger.debug(
                "Dropped window %s-%s (speed=%.1f, peak=%.2f, n=%d)",
                window.start_time, window.end_time,
                window.average_speed, window.peak_magnitude, window.sample_count,
            )

        # slide by half a window so consecutive windows overlap 50%
        slide_point = window_start + duration / 2
        self._buffer = [r for r in self._buffer if r.timestamp >= slide_point]
        return emitted

    def process_window(self, readings: list[SensorReading]) -> ProcessedWindow:
        """
        Summarize a non-empty slice of readings.
        """
        magnitudes = [
            calculate_magnitude(r.accelerometer.x, r.accelerometer.y, r.accelerometer.z)
            for r in readings
        ]
        speeds = [r.gps.speed for r in readings if r.gps.speed is not None]

        return ProcessedWindow(
            start_time=readings[0].timestamp,
            end_time=readings[-1].timestamp,
            magnitude=calculate_rms(magnitudes),
            peak_magnitude=max(magnitudes),
            average_speed=_mean(speeds) * MPS_TO_KMH,
            centroid=(
                _mean([r.gps.latitude for r in readings]),
                _mean([r.gps.longitude for r in readings]),
            ),
            sample_count=len(readings),
        )

    def should_emit(self, window: ProcessedWindow) -> bool:
        # a lone reading spans no time
        if window.end_time <= window.start_time:
            return False
        if window.average_speed < self.cfg.min_speed_threshold:
            return False
        if window.peak_magnitude < self.cfg.magnitude_threshold:
            return False
        if window.sample_count < self.cfg.min_sample_count:
            return False
        return True

from __future__ import annotations

import math

import pytest

from roadwatch.analysis.config import ProcessorConfig
from roadwatch.analysis.processor import SignalProcessor, calculate_magnitude, calculate_rms
from roadwatch.utils.validate import Accelerometer, GpsFix, SensorReading

from conftest import ManualClock, make_reading


def _run(proc: SignalProcessor, clock: ManualClock, readings) -> list:
    windows = []
    proc.set_window_callback(windows.append)
    for r in readings:
        clock.now_ms = r.timestamp
        proc.add_reading(r)
    return windows


def test_calculate_rms() -> None:
    assert calculate_rms([]) == 0
    assert calculate_rms([3, 4]) == pytest.approx(math.sqrt(12.5))
    assert calculate_rms([3, 4]) == pytest.approx(3.5355, abs=1e-4)


def test_calculate_magnitude_removes_gravity() -> None:
    assert calculate_magnitude(0.0, 0.0, 9.81) == pytest.approx(0.0)
    assert calculate_magnitude(0.0, 0.0, 15.81) == pytest.approx(6.0)
    # free fall reads as a full-gravity magnitude, not a negative one
    assert calculate_magnitude(0.0, 0.0, 0.0) == pytest.approx(9.81)


def test_emits_single_spiked_window(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [make_reading(ts, extra_z=6.0 if ts == 160 else 0.0) for ts in range(0, 4000, 16)]

    windows = _run(proc, clock, readings)

    assert len(windows) == 1
    w = windows[0]
    assert (w.start_time, w.end_time) == (0, 1488)
    assert w.sample_count == 94
    assert w.peak_magnitude == pytest.approx(6.0)
    assert w.magnitude == pytest.approx(6.0 / math.sqrt(94))
    assert w.average_speed == pytest.approx(36.0)
    assert w.centroid == pytest.approx((28.6139, 77.2090))


def test_windows_are_unique_and_non_empty(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [make_reading(ts, extra_z=10.0) for ts in range(0, 30000, 16)]

    windows = _run(proc, clock, readings)

    assert len(windows) > 10
    keys = [(w.start_time, w.end_time) for w in windows]
    assert len(set(keys)) == len(keys)
    assert all(w.sample_count >= 1 for w in windows)
    starts = [w.start_time for w in windows]
    assert starts == sorted(starts)


def test_windows_overlap_by_half(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [make_reading(ts, extra_z=10.0) for ts in range(0, 6000, 10)]

    windows = _run(proc, clock, readings)

    assert [w.start_time for w in windows[:3]] == [0, 750, 1500]


def test_slow_windows_never_emitted(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    # 1 m/s = 3.6 km/h, below the 5 km/h gate
    readings = [make_reading(ts, extra_z=12.0, speed=1.0) for ts in range(0, 10000, 16)]
    assert _run(proc, clock, readings) == []


def test_windows_without_speed_never_emitted(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [make_reading(ts, extra_z=12.0, speed=None) for ts in range(0, 10000, 16)]
    assert _run(proc, clock, readings) == []


def test_quiet_windows_never_emitted(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [make_reading(ts, extra_z=1.0, speed=25.0) for ts in range(0, 10000, 16)]
    assert _run(proc, clock, readings) == []


def test_sparse_windows_never_emitted(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    # 10 Hz gives 15 samples per window, below half of 1.5 s * 60 Hz
    readings = [make_reading(ts, extra_z=12.0) for ts in range(0, 10000, 100)]
    assert _run(proc, clock, readings) == []


def test_null_speed_samples_excluded_from_average(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    readings = [
        make_reading(ts, extra_z=6.0, speed=None if i % 2 else 10.0)
        for i, ts in enumerate(range(0, 1600, 16))
    ]
    windows = _run(proc, clock, readings)
    assert len(windows) == 1
    assert windows[0].average_speed == pytest.approx(36.0)


def test_incomplete_readings_are_skipped(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    proc.add_reading(SensorReading(
        timestamp=0,
        accelerometer=Accelerometer(x=0.0, y=None, z=9.81),
        gps=GpsFix(latitude=1.0, longitude=1.0, speed=5.0),
    ))
    proc.add_reading(SensorReading(timestamp=1, accelerometer=Accelerometer(x=0.0, y=0.0, z=9.81)))
    assert proc.buffered == 0


def test_prunes_relative_to_clock() -> None:
    clock = ManualClock(now_ms=10_000)
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    proc.add_reading(make_reading(0))
    proc.add_reading(make_reading(7_500))
    assert proc.buffered == 1


def test_reset_discards_buffer(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    for ts in range(0, 500, 16):
        clock.now_ms = ts
        proc.add_reading(make_reading(ts))
    assert proc.buffered > 0
    proc.reset()
    assert proc.buffered == 0


def test_add_reading_returns_emitted_window(clock) -> None:
    proc = SignalProcessor(ProcessorConfig(), clock=clock)
    emitted = []
    for ts in range(0, 1600, 16):
        clock.now_ms = ts
        w = proc.add_reading(make_reading(ts, extra_z=5.0))
        if w is not None:
            emitted.append(w)
    assert len(emitted) == 1


def test_single_reading_selection_is_not_emitted(clock) -> None:
    # a low nominal rate lets one reading pass the sample-count gate
    proc = SignalProcessor(ProcessorConfig(sample_rate_hz=0.1), clock=clock)

    windows = _run(proc, clock, [make_reading(ts, extra_z=12.0) for ts in (0, 2000, 4000, 6000)])

    assert windows == []

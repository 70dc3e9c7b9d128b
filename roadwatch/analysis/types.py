# roadwatch/analysis/types.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

@dataclass(frozen=True)
class ProcessedWindow:
    """
    Summary of one contiguous slice of buffered sensor readings.

    Parameters
    ----------
    start_time : int
        Timestamp (ms) of the first reading in the slice.
    end_time : int
        Timestamp (ms) of the last reading in the slice.
    magnitude : float
        RMS of the de-gravitied acceleration magnitude.
    peak_magnitude : float
        Maximum of the de-gravitied acceleration magnitude.
    average_speed : float
        Mean GPS speed in km/h, 0 when no reading carried a speed.
    centroid : Tuple[float, float]
        Mean (latitude, longitude) over the slice.
    sample_count : int
        Number of readings summarized, always at least 1.
    """
    start_time: int
    end_time: int
    magnitude: float
    peak_magnitude: float
    average_speed: float
    centroid: Tuple[float, float]
    sample_count: int

@dataclass(frozen=True)
class DetectionResult:
    """
    Classifier output for one window.

    Parameters
    ----------
    defect_type : str
        One of ``pothole``, ``speed_breaker`` or ``normal``.
    confidence : float
        Confidence in [0, 1].
    severity : int
        Severity in 0..10.
    """
    defect_type: str
    confidence: float
    severity: int

    @property
    def is_defect(self) -> bool:
        return self.defect_type != "normal"

# roadwatch/analysis/config.py

from dataclasses import dataclass

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class ProcessorConfig:
    """
    Configuration for the windowing signal processor and ride pipeline.

    Attributes
    ----------
    min_speed_threshold
        Minimum mean speed (km/h) for a window to be classified.
    window_duration_ms
        Length of one analysis window (ms). Windows overlap by half.
    magnitude_threshold
        Minimum peak de-gravitied acceleration (m/s²) for a window to be classified.
    confidence_threshold
        Minimum classifier confidence for a defect to be saved as a detection.
    sample_rate_hz
        Nominal accelerometer rate; windows with fewer than half the expected
        samples are dropped.
    """
    min_speed_threshold:  float = 5.0
    window_duration_ms:   int   = 1500
    magnitude_threshold:  float = 2.5
    confidence_threshold: float = 0.7
    sample_rate_hz:       float = 60.0

    @property
    def min_sample_count(self) -> float:
        return (self.window_duration_ms / 1000) * self.sample_rate_hz * 0.5


@dataclass
class ClassifierThresholds:
    """
    Breakpoints and confidence/severity formulas of the heuristic classifier.

    Pothole: ``peak > pothole_peak and rms > pothole_rms``, confidence
    ``pothole_conf_base + pothole_conf_peak_gain * (peak - pothole_peak)
    + pothole_conf_rms_gain * (rms - pothole_rms)`` capped at
    ``pothole_conf_cap``, severity ``peak / pothole_severity_divisor``.

    Speed breaker: ``rms > breaker_rms and peak < breaker_peak_max and
    speed < breaker_speed_max``, confidence ``breaker_conf_base +
    breaker_conf_gain * rms`` capped at ``breaker_conf_cap``, severity
    ``rms * breaker_severity_gain``.
    """
    pothole_peak:             float = 8.0
    pothole_rms:              float = 4.0
    pothole_conf_base:        float = 8.0 / 15
    pothole_conf_peak_gain:   float = 1.0 / 15
    pothole_conf_rms_gain:    float = 0.0
    pothole_conf_cap:         float = 0.85
    pothole_severity_divisor: float = 1.5

    breaker_rms:              float = 3.0
    breaker_peak_max:         float = 10.0
    breaker_speed_max:        float = 30.0
    breaker_conf_base:        float = 0.0
    breaker_conf_gain:        float = 1.0 / 6
    breaker_conf_cap:         float = 0.9
    breaker_severity_gain:    float = 1.5

    normal_confidence:        float = 0.95

    @classmethod
    def local(cls):
        """Preset for the on-device heuristic (default thresholds)."""
        return cls()

    @classmethod
    def server(cls):
        """Preset for the server-side heuristic (wider speed-breaker band)."""
        return cls(
            pothole_conf_base=0.6,
            pothole_conf_peak_gain=0.05,
            pothole_conf_rms_gain=0.03,
            pothole_conf_cap=0.95,
            pothole_severity_divisor=1.2,
            breaker_peak_max=12.0,
            breaker_speed_max=35.0,
            breaker_conf_base=0.5,
            breaker_conf_gain=0.1,
            breaker_conf_cap=0.92,
            breaker_severity_gain=2.0,
        )


@dataclass
class AggregationConfig:
    """
    Attributes
    ----------
    radius_m
        Maximum distance (m) between a detection and a report's first point to merge.
    geohash_precision
        Precision of the geohash stored on each report.
    prefix_len
        Geohash prefix length used for the coarse candidate query.
    base_credibility
        Credibility of an unverified single-report cluster.
    user_weight
        Credibility added per unique reporter.
    volume_weight
        Credibility added per decade of report volume.
    """
    radius_m:          float = 25.0
    geohash_precision: int   = 7
    prefix_len:        int   = 5
    base_credibility:  float = 0.3
    user_weight:       float = 0.15
    volume_weight:     float = 0.2


@dataclass
class RetentionConfig:
    """
    Attributes
    ----------
    max_age_days
        Single-report clusters not seen for longer than this are deleted.
    interval_hours
        Period between scheduled sweeps.
    """
    max_age_days:   float = 30.0
    interval_hours: float = 24.0

    @property
    def max_age_ms(self) -> int:
        return int(self.max_age_days * DAY_MS)

"""
Classify processed windows as pothole, speed breaker or normal road.

All classifiers share one contract, ``classify(window) -> DetectionResult``,
reading only ``magnitude``, ``peak_magnitude`` and ``average_speed``:
- HeuristicClassifier: threshold rules, local or server breakpoints
- RemoteClassifier: calls the roadwatch service over HTTP
- FallbackClassifier: bounded-time primary with a local fallback
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import asdict
from typing import Optional, Protocol

import httpx

from roadwatch.analysis.config import ClassifierThresholds
from roadwatch.analysis.types import DetectionResult, ProcessedWindow
from roadwatch.utils.log import get_logger
from roadwatch.utils.validate import Classification, WindowSummary

logger = get_logger(__name__)

DEFAULT_REMOTE_TIMEOUT = 3.0  # seconds


class Classifier(Protocol):
    def classify(self, window: ProcessedWindow) -> DetectionResult: ...


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class HeuristicClassifier:
    """
    Rule-based classifier. Pothole rules are checked before speed-breaker rules.
    """
    def __init__(self, thresholds: ClassifierThresholds | None = None) -> None:
        self.t = thresholds or ClassifierThresholds.local()

    def classify(self, window: ProcessedWindow) -> DetectionResult:
        t = self.t
        rms = window.magnitude
        peak = window.peak_magnitude
        speed = window.average_speed

        if peak > t.pothole_peak and rms > t.pothole_rms:
            conf = (
                t.pothole_conf_base
                + t.pothole_conf_peak_gain * (peak - t.pothole_peak)
                + t.pothole_conf_rms_gain * (rms - t.pothole_rms)
            )
            return DetectionResult(
                defect_type="pothole",
                confidence=_clamp(min(t.pothole_conf_cap, conf), 0.0, 1.0),
                severity=min(10, _round_half_up(peak / t.pothole_severity_divisor)),
            )

        if rms > t.breaker_rms and peak < t.breaker_peak_max and speed < t.breaker_speed_max:
            conf = t.breaker_conf_base + t.breaker_conf_gain * rms
            return DetectionResult(
                defect_type="speed_breaker",
                confidence=_clamp(min(t.breaker_conf_cap, conf), 0.0, 1.0),
                severity=min(10, _round_half_up(rms * t.breaker_severity_gain)),
            )

        return DetectionResult(defect_type="normal", confidence=t.normal_confidence, severity=0)

    def classify_batch(self, windows: list[ProcessedWindow]) -> list[DetectionResult]:
        return [self.classify(w) for w in windows]


def local_classifier() -> HeuristicClassifier:
    return HeuristicClassifier(ClassifierThresholds.local())


def server_classifier() -> HeuristicClassifier:
    return HeuristicClassifier(ClassifierThresholds.server())


def _to_payload(window: ProcessedWindow) -> dict:
    return WindowSummary(**asdict(window)).model_dump(mode="json")


def _to_result(data: dict) -> DetectionResult:
    c = Classification.model_validate(data)
    return DetectionResult(c.defect_type, c.confidence, c.severity)


class RemoteClassifier:
    """
    HTTP client for the roadwatch classification endpoints.

    Raises ``httpx.HTTPError`` (or a validation error) on any failure;
    wrap in ``FallbackClassifier`` for graceful degradation.
    """
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def classify(self, window: ProcessedWindow) -> DetectionResult:
        response = self._client.post(f"{self.base_url}/api/classify", json=_to_payload(window))
        response.raise_for_status()
        return _to_result(response.json())

    def classify_batch(self, windows: list[ProcessedWindow]) -> list[DetectionResult]:
        response = self._client.post(
            f"{self.base_url}/api/classify/batch",
            json=[_to_payload(w) for w in windows],
        )
        response.raise_for_status()
        return [_to_result(item) for item in response.json()]

    def close(self) -> None:
        self._client.close()


class FallbackClassifier:
    """
    Run ``primary`` with a bounded timeout, falling back to ``fallback``.

    Primary failures and timeouts are logged, never raised. A timed-out
    primary call keeps running on its worker thread; its result is discarded.
    """
    def __init__(
        self,
        primary: Classifier,
        fallback: Classifier | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        max_workers: int = 4,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or local_classifier()
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="classify")

    def classify(self, window: ProcessedWindow) -> DetectionResult:
        future = self._executor.submit(self.primary.classify, window)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning("Classifier timed out after %.1fs, using local classifier", self.timeout)
        except Exception as e:
            logger.warning("Classifier failed, using local classifier: %s", e)
        return self.fallback.classify(window)

    def classify_batch(self, windows: list[ProcessedWindow]) -> list[DetectionResult]:
        batch = getattr(self.primary, "classify_batch", None)
        if batch is None:
            return [self.classify(w) for w in windows]
        future = self._executor.submit(batch, windows)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning("Batch classifier timed out after %.1fs, using local classifier", self.timeout)
        except Exception as e:
            logger.warning("Batch classifier failed, using local classifier: %s", e)
        return [self.fallback.classify(w) for w in windows]

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        close = getattr(self.primary, "close", None)
        if close is not None:
            close()

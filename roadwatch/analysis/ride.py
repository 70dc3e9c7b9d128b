"""
One ride: readings in, persisted detections and aggregated reports out.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict
from typing import Callable, Optional

from roadwatch.analysis.aggregation import AggregationEngine
from roadwatch.analysis.classifier import Classifier, local_classifier
from roadwatch.analysis.config import ProcessorConfig
from roadwatch.analysis.processor import SignalProcessor, wall_clock_ms
from roadwatch.analysis.types import ProcessedWindow
from roadwatch.storage.dao import DAO
from roadwatch.storage.db import StorageError
from roadwatch.utils.geo import haversine
from roadwatch.utils.log import get_logger, ride_context
from roadwatch.utils.validate import Detection, RideSessionRecord, SensorReading, WindowSummary

logger = get_logger(__name__)


class RideSession:
    """
    Drive a SignalProcessor from a reading stream and persist what it finds.

    Emitted windows are classified; defects at or above the confidence
    threshold are saved and folded into the aggregated reports. Storage
    failures are logged and never end the ride.
    """
    def __init__(
        self,
        dao: DAO,
        user_id: str,
        classifier: Classifier | None = None,
        cfg: ProcessorConfig | None = None,
        engine: AggregationEngine | None = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.dao = dao
        self.user_id = user_id
        self.classifier = classifier or local_classifier()
        self.cfg = cfg or ProcessorConfig()
        self.engine = engine or AggregationEngine(dao)
        self.clock = clock or wall_clock_ms
        self.processor = SignalProcessor(self.cfg, clock=self.clock)
        self.processor.set_window_callback(self._on_window)

        self.session_id: Optional[str] = None
        self.detection_count = 0
        self.distance_m = 0.0
        self.failed_writes = 0
        self._last_point: Optional[tuple[float, float]] = None

    @property
    def _log_extra(self) -> dict:
        return ride_context(self.session_id, self.user_id)

    def start(self) -> str:
        self.session_id = str(uuid.uuid4())
        record = RideSessionRecord(
            id=self.session_id,
            user_id=self.user_id,
            start_ts=int(self.clock()),
        )
        try:
            self.dao.add_session(record)
        except StorageError as e:
            self.failed_writes += 1
            logger.error("Could not record session %s: %s", self.session_id, e, extra=self._log_extra)
        logger.info("Ride %s started for user %s", self.session_id, self.user_id, extra=self._log_extra)
        return self.session_id

    def add_reading(self, reading: SensorReading) -> None:
        if self.session_id is None:
            raise RuntimeError("ride not started")
        if reading.gps is not None:
            point = (reading.gps.latitude, reading.gps.longitude)
            if self._last_point is not None:
                self.distance_m += haversine(self._last_point, point)
            self._last_point = point
        self.processor.add_reading(reading)

    def stop(self) -> None:
        self.processor.reset()
        if self.session_id is None:
            return
        try:
            self.dao.end_session(
                self.session_id, int(self.clock()), self.detection_count, self.distance_m
            )
        except StorageError as e:
            self.failed_writes += 1
            logger.error("Could not close session %s: %s", self.session_id, e, extra=self._log_extra)
        logger.info(
            "Ride %s stopped: %d detections over %.0f m",
            self.session_id, self.detection_count, self.distance_m,
            extra=self._log_extra,
        )
        self._last_point = None

    def _on_window(self, window: ProcessedWindow) -> None:
        result = self.classifier.classify(window)
        if not result.is_defect or result.confidence < self.cfg.confidence_threshold:
            return

        det = Detection(
            session_id=self.session_id,
            user_id=self.user_id,
            timestamp=window.end_time,
            lat=window.centroid[0],
            lon=window.centroid[1],
            defect_type=result.defect_type,
            confidence=result.confidence,
            severity=result.severity,
            window=WindowSummary(**asdict(window)),
        )
        try:
            det_id, _ = self.engine.record(det)
            det = det.model_copy(update={"id": det_id})
            self.detection_count += 1
        except StorageError as e:
            self.failed_writes += 1
            logger.error("Could not persist %s detection: %s", det.defect_type, e, extra=self._log_extra)
            return
        logger.info(
            "Detected %s (confidence=%.2f, severity=%d) at %.5f,%.5f",
            det.defect_type, det.confidence, det.severity, det.lat, det.lon,
            extra=self._log_extra,
        )

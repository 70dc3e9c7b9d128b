"""
Merge classified detections into persistent, spatially clustered reports.

For each pothole/speed-breaker detection:
- geohash the point (precision 7) and collect the 5-char prefixes covering
  the aggregation radius
- among same-type reports under those prefixes, take the first whose stored
  point lies within the radius
- merge into it (count, running severity mean, unique users, credibility)
  or create a new single-report cluster

The match-or-create step is one store transaction, and in-process callers
are additionally serialized per geohash prefix.
"""

from __future__ import annotations

import math
import threading
import weakref
from contextlib import ExitStack
from typing import Optional

from roadwatch.analysis.config import AggregationConfig
from roadwatch.storage.dao import DAO
from roadwatch.utils.geo import covering_prefixes, encode_geohash, haversine
from roadwatch.utils.log import get_logger, ride_context
from roadwatch.utils.validate import AggregatedReport, Detection

logger = get_logger(__name__)


class PrefixLocks:
    """
    Registry of one lock per geohash prefix.

    Entries are weak: a prefix's lock lives only while some caller holds a
    reference to it, so the registry stays bounded by current contention.
    """
    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, prefix: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(prefix)
            if lock is None:
                lock = self._locks[prefix] = threading.Lock()
            return lock

    def hold(self, prefixes: list[str]) -> ExitStack:
        """
        Acquire the locks of ``prefixes`` in sorted order and return a stack releasing them.
        """
        stack = ExitStack()
        for prefix in sorted(set(prefixes)):
            stack.enter_context(self.get(prefix))
        return stack


# shared so that every engine in the process serializes on the same neighbourhoods
PREFIX_LOCKS = PrefixLocks()


def credibility(unique_users: int, report_count: int, cfg: AggregationConfig) -> float:
    """
    Credibility of a cluster: unique reporters weigh more than repeat reports.
    """
    score = cfg.base_credibility + unique_users * cfg.user_weight + math.log10(report_count) * cfg.volume_weight
    return min(1.0, score)


class AggregationEngine:
    def __init__(
        self,
        dao: DAO,
        cfg: AggregationConfig | None = None,
        locks: PrefixLocks | None = None,
    ) -> None:
        self.dao = dao
        self.cfg = cfg or AggregationConfig()
        self.locks = locks or PREFIX_LOCKS

    def _plan(self, det: Detection):
        """
        Covering prefixes plus the match/create/merge steps for one detection.
        """
        cfg = self.cfg
        point = (det.lat, det.lon)
        geohash = encode_geohash(det.lat, det.lon, cfg.geohash_precision)
        prefixes = covering_prefixes(det.lat, det.lon, cfg.radius_m, cfg.prefix_len)

        def is_match(report: AggregatedReport) -> bool:
            return haversine(point, (report.lat, report.lon)) <= cfg.radius_m

        def create() -> AggregatedReport:
            return AggregatedReport(
                geohash=geohash,
                lat=det.lat,
                lon=det.lon,
                defect_type=det.defect_type,
                average_severity=float(det.severity),
                report_count=1,
                unique_users=[det.user_id],
                first_reported=det.timestamp,
                last_reported=det.timestamp,
                credibility_score=cfg.base_credibility,
            )

        def merge(report: AggregatedReport) -> AggregatedReport:
            users = list(report.unique_users)
            if det.user_id not in users:
                users.append(det.user_id)
            count = report.report_count + 1
            return report.model_copy(update={
                "report_count": count,
                "average_severity": (report.average_severity * report.report_count + det.severity) / count,
                "unique_users": users,
                "last_reported": det.timestamp,
                "credibility_score": credibility(len(users), count, cfg),
            })

        return prefixes, is_match, create, merge

    def aggregate(self, det: Detection) -> Optional[AggregatedReport]:
        """
        Fold one already stored detection into its cluster. Normal detections are ignored.
        """
        if det.defect_type == "normal":
            return None

        prefixes, is_match, create, merge = self._plan(det)
        with self.locks.hold(prefixes):
            report = self.dao.match_or_create_report(
                prefixes, det.defect_type, is_match, create, merge
            )
        self._log_report(det, report)
        return report

    def record(self, det: Detection) -> tuple[int, Optional[AggregatedReport]]:
        """
        Store a detection and fold it into its cluster in one transaction.

        Either both writes land or neither does, so a caller may retry after
        a StorageError without double counting.

        Returns
        -------
        tuple
            The new detection id and the report it joined (None for normal).
        """
        if det.defect_type == "normal":
            return self.dao.add_detection(det), None

        prefixes, is_match, create, merge = self._plan(det)
        with self.locks.hold(prefixes):
            det_id, report = self.dao.save_and_aggregate(det, prefixes, is_match, create, merge)
        self._log_report(det, report)
        return det_id, report

    def _log_report(self, det: Detection, report: AggregatedReport) -> None:
        extra = {**ride_context(det.session_id, det.user_id), "report_id": report.id}
        if report.report_count == 1:
            logger.info(
                "New %s report %s at %s", report.defect_type, report.id, report.geohash, extra=extra
            )
        else:
            logger.info(
                "Merged into %s report %s (count=%d, credibility=%.2f)",
                report.defect_type, report.id, report.report_count, report.credibility_score,
                extra=extra,
            )

"""
Data fetchers providing the public counters.
"""
import time

from roadwatch.storage.dao import DAO
from roadwatch.utils.validate import PublicStats

VERIFIED_MIN_REPORTS = 2


def fetch_public_stats(dao: DAO) -> PublicStats:
    """
    Count all detections and the reports confirmed at least twice.
    """
    return PublicStats(
        total_detections=dao.count_detections(),
        verified_reports=dao.count_verified_reports(VERIFIED_MIN_REPORTS),
        timestamp=int(time.time() * 1000),
    )

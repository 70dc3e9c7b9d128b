"""
Prune unverified single-report clusters that were never confirmed.
"""

import time
from typing import Optional

from roadwatch.analysis.config import RetentionConfig
from roadwatch.storage.dao import DAO
from roadwatch.utils.log import get_logger

logger = get_logger(__name__)


def sweep_unverified(
    dao: DAO,
    cfg: RetentionConfig | None = None,
    now_ms: Optional[int] = None,
) -> int:
    """
    Delete every report with a single observation last seen before the cutoff.

    The selection is recomputed on every run, so an interrupted sweep is
    finished by the next one.

    Parameters
    ----------
    dao
        Store to sweep.
    cfg
        Retention settings; defaults to 30 days.
    now_ms
        Reference time in epoch ms, defaults to the wall clock.

    Returns
    -------
    int
        Number of reports deleted.
    """
    cfg = cfg or RetentionConfig()
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    cutoff = now_ms - cfg.max_age_ms

    stale = dao.get_stale_unverified_report_ids(cutoff)
    if not stale:
        logger.info("Retention sweep: nothing to delete")
        return 0
    deleted = dao.delete_stale_reports_bulk(stale, cutoff)
    logger.info("Retention sweep: deleted %d unverified reports", deleted)
    return deleted

from __future__ import annotations

import pytest

from roadwatch.analysis.aggregation import AggregationEngine
from roadwatch.analysis.stats import fetch_public_stats
from roadwatch.storage.dao import DAO
from roadwatch.storage.db import StorageError
from roadwatch.utils.validate import Bounds, RideSessionRecord, RTIDraft, RTIDraftUpdate, WindowSummary

from conftest import make_detection


def test_detection_roundtrip_keeps_window(dao) -> None:
    window = WindowSummary(
        start_time=0, end_time=1490, magnitude=5.0, peak_magnitude=12.0,
        average_speed=30.0, centroid=(28.6139, 77.2090), sample_count=90,
    )
    det_id = dao.add_detection(make_detection().model_copy(update={"window": window}))

    [saved] = dao.get_detections()
    assert saved.id == det_id
    assert saved.window == window


def test_get_detections_filters_normal_and_bounds(dao) -> None:
    dao.add_detection(make_detection(defect_type="normal"))
    dao.add_detection(make_detection(lat=28.6, lon=77.2, timestamp=1))
    dao.add_detection(make_detection(lat=19.0, lon=72.8, timestamp=2))

    assert [d.timestamp for d in dao.get_detections()] == [2, 1]
    box = Bounds(north=29.0, south=28.0, east=78.0, west=77.0)
    assert [d.lat for d in dao.get_detections(bounds=box)] == [28.6]
    assert dao.count_detections() == 3


def test_session_lifecycle(dao) -> None:
    dao.add_session(RideSessionRecord(id="s1", user_id="user-a", start_ts=100))
    dao.end_session("s1", end_ts=900, detection_count=3, distance_m=420.5)

    session = dao.get_session("s1")
    assert session.status == "completed"
    assert (session.end_ts, session.detection_count, session.distance_m) == (900, 3, 420.5)
    assert dao.get_session("missing") is None


def test_public_stats_counts_verified(dao) -> None:
    engine = AggregationEngine(dao)
    for user, lat in [("a", 28.60), ("b", 28.60), ("c", 28.70)]:
        det = make_detection(user, lat=lat)
        dao.add_detection(det)
        engine.aggregate(det)

    stats = fetch_public_stats(dao)
    assert stats.total_detections == 3
    assert stats.verified_reports == 1
    assert stats.timestamp > 0


def test_subscribe_reports_pushes_full_result_set(db_path) -> None:
    dao = DAO(db_path)
    pushes = []
    unsubscribe = dao.subscribe_reports(pushes.append)
    assert pushes == [[]]

    engine = AggregationEngine(DAO(db_path))
    engine.aggregate(make_detection("a"))
    engine.aggregate(make_detection("b"))

    assert pushes[-1][0].report_count == 2
    count = len(pushes)
    unsubscribe()
    engine.aggregate(make_detection("c"))
    assert len(pushes) == count
    dao.close()
    engine.dao.close()


def test_subscribe_detections(dao) -> None:
    pushes = []
    unsubscribe = dao.subscribe_detections(pushes.append, limit=1)
    dao.add_detection(make_detection(timestamp=1))
    dao.add_detection(make_detection(timestamp=2))
    unsubscribe()

    assert [len(p) for p in pushes] == [0, 1, 1]
    assert pushes[-1][0].timestamp == 2


def test_failures_raise_storage_error(db_path) -> None:
    dao = DAO(db_path)
    dao.close()
    with pytest.raises(StorageError):
        dao.count_detections()


def test_unopenable_database_raises_storage_error(tmp_path) -> None:
    with pytest.raises(StorageError):
        DAO(str(tmp_path))


def _draft(user_id: str = "user-a", created_at: int = 1_700_000_000_000, **kwargs) -> RTIDraft:
    return RTIDraft(
        user_id=user_id,
        created_at=created_at,
        report_ids=[3, 7],
        municipal_authority="Municipal Corporation of Delhi",
        lat=28.6139,
        lon=77.2090,
        address="Janpath, New Delhi",
        defect_type="pothole",
        severity="high",
        detection_count=5,
        **kwargs,
    )


def test_rti_drafts_listed_per_user_newest_first(dao) -> None:
    older = dao.add_rti_draft(_draft(created_at=1))
    newer = dao.add_rti_draft(_draft(created_at=2))
    dao.add_rti_draft(_draft("user-b"))

    drafts = dao.get_user_rti_drafts("user-a")

    assert [d.id for d in drafts] == [newer, older]
    assert drafts[0].report_ids == [3, 7]
    assert drafts[0].status == "draft"
    assert dao.get_user_rti_drafts("nobody") == []


def test_update_rti_draft(dao) -> None:
    draft_id = dao.add_rti_draft(_draft(content="To the Public Information Officer"))

    updated = dao.update_rti_draft(draft_id, RTIDraftUpdate(status="finalized"))

    assert updated.status == "finalized"
    assert updated.content == "To the Public Information Officer"
    assert updated.address == "Janpath, New Delhi"
    assert dao.update_rti_draft(999, RTIDraftUpdate(status="finalized")) is None

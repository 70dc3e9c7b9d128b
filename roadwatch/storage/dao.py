import functools
import json
import os
import threading
from contextlib import contextmanager
from sqlite3 import Connection, Error as SQLiteError, Row
from typing import Callable, Optional

from roadwatch.utils.validate import (
    AggregatedReport,
    Bounds,
    Detection,
    RideSessionRecord,
    RTIDraft,
    RTIDraftUpdate,
    WindowSummary,
)
from roadwatch.storage.db import StorageError, init_db
from roadwatch.utils.log import get_logger

logger = get_logger(__name__)

# sorts after every geohash character, closing a prefix range query
HIGH_SENTINEL = "\uf8ff"

REPORTED_TYPES = ("pothole", "speed_breaker")

# (db key, collection) -> list of (fetch, on_change); shared by every DAO on the same file
_subscribers: dict[tuple[str, str], list[tuple[Callable, Callable]]] = {}
_subscribers_lock = threading.Lock()


def _storage_op(fn):
    """
    Re-raise sqlite errors from a DAO method as StorageError.
    """
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLiteError as e:
            raise StorageError(f"{fn.__name__} failed: {e}") from e
    return wrapper


def _row_to_report(row: Row) -> AggregatedReport:
    return AggregatedReport(
        id=row["id"],
        geohash=row["geohash"],
        lat=row["lat"],
        lon=row["lon"],
        defect_type=row["defect_type"],
        average_severity=row["average_severity"],
        report_count=row["report_count"],
        unique_users=json.loads(row["unique_users"]),
        first_reported=row["first_reported"],
        last_reported=row["last_reported"],
        credibility_score=row["credibility_score"],
    )


def _row_to_detection(row: Row) -> Detection:
    window = row["window_json"]
    return Detection(
        id=row["id"],
        session_id=row["session_id"],
        user_id=row["user_id"],
        timestamp=row["ts"],
        lat=row["lat"],
        lon=row["lon"],
        defect_type=row["defect_type"],
        confidence=row["confidence"],
        severity=row["severity"],
        window=WindowSummary.model_validate_json(window) if window else None,
    )


def _row_to_rti_draft(row: Row) -> RTIDraft:
    fields = dict(row)
    fields["report_ids"] = json.loads(fields["report_ids"])
    return RTIDraft(**fields)


class DAO:
    """
    Encapsulates all inserts/queries against the RoadWatch DB.
    """

    def __init__(self, db_path: str):
        """
        Create/connect and apply schema if needed.
        """
        self.db_path = db_path
        self._db_key = db_path if db_path == ":memory:" else os.path.abspath(db_path)
        self.conn: Connection = init_db(db_path)

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------ sessions

    @_storage_op
    def add_session(self, session: RideSessionRecord) -> None:
        """
        Insert a new ride session.
        """
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO sessions
                  (id, user_id, start_ts, end_ts, detection_count, distance_m, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.user_id,
                    session.start_ts,
                    session.end_ts,
                    session.detection_count,
                    session.distance_m,
                    session.status,
                ),
            )

    @_storage_op
    def end_session(
        self,
        session_id: str,
        end_ts: int,
        detection_count: int,
        distance_m: float,
    ) -> None:
        """
        Close a ride session with its final counters.
        """
        with self.conn:
            self.conn.execute(
                """
                UPDATE sessions
                SET end_ts = ?, detection_count = ?, distance_m = ?, status = 'completed'
                WHERE id = ?
                """,
                (end_ts, detection_count, distance_m, session_id),
            )

    @_storage_op
    def get_session(self, session_id: str) -> Optional[RideSessionRecord]:
        row = self.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return RideSessionRecord(**dict(row))

    # ---------------------------------------------------------------- detections

    @_storage_op
    def add_detection(self, det: Detection) -> int:
        """
        Persist one detection and return its id.
        """
        with self.conn:
            det_id = self._insert_detection(det)
        self._notify("detections")
        return det_id

    def _insert_detection(self, det: Detection) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO detections
              (session_id, user_id, ts, lat, lon, defect_type, confidence, severity, window_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                det.session_id,
                det.user_id,
                det.timestamp,
                det.lat,
                det.lon,
                det.defect_type,
                det.confidence,
                det.severity,
                det.window.model_dump_json() if det.window else None,
            ),
        )
        return cur.lastrowid

    @_storage_op
    def get_detections(self, limit: int = 200, bounds: Optional[Bounds] = None) -> list[Detection]:
        """
        Return the newest pothole/speed-breaker detections, optionally inside a bounding box.
        """
        sql = "SELECT * FROM detections WHERE defect_type IN (?, ?)"
        params: list = list(REPORTED_TYPES)
        if bounds is not None:
            sql += " AND lat BETWEEN ? AND ? AND lon BETWEEN ? AND ?"
            params += [bounds.south, bounds.north, bounds.west, bounds.east]
        sql += " ORDER BY ts DESC, id DESC LIMIT ?"
        params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [_row_to_detection(r) for r in rows]

    @_storage_op
    def count_detections(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM detections").fetchone()[0]

    # ------------------------------------------------------------------- reports

    @_storage_op
    def match_or_create_report(
        self,
        prefixes: list[str],
        defect_type: str,
        is_match: Callable[[AggregatedReport], bool],
        create: Callable[[], AggregatedReport],
        merge: Callable[[AggregatedReport], AggregatedReport],
    ) -> AggregatedReport:
        """
        Atomically merge into the first matching report or insert a new one.

        Candidates are reports of ``defect_type`` whose geohash starts with one
        of ``prefixes``, visited prefix by prefix in insertion order. The whole
        read-modify-write runs in one IMMEDIATE transaction, so concurrent
        callers on the same database file are linearized.
        """
        with self._immediate():
            report = self._match_or_create(prefixes, defect_type, is_match, create, merge)
        self._notify("aggregated_reports")
        return report

    @_storage_op
    def save_and_aggregate(
        self,
        det: Detection,
        prefixes: list[str],
        is_match: Callable[[AggregatedReport], bool],
        create: Callable[[], AggregatedReport],
        merge: Callable[[AggregatedReport], AggregatedReport],
    ) -> tuple[int, AggregatedReport]:
        """
        Insert ``det`` and match-or-create its report in one IMMEDIATE transaction.

        On failure nothing is written, so the whole call can be retried.
        """
        with self._immediate():
            det_id = self._insert_detection(det)
            report = self._match_or_create(prefixes, det.defect_type, is_match, create, merge)
        self._notify("detections")
        self._notify("aggregated_reports")
        return det_id, report

    @contextmanager
    def _immediate(self):
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise

    def _match_or_create(self, prefixes, defect_type, is_match, create, merge) -> AggregatedReport:
        matched: Optional[AggregatedReport] = None
        for prefix in prefixes:
            rows = self.conn.execute(
                """
                SELECT * FROM aggregated_reports
                WHERE geohash >= ? AND geohash <= ? AND defect_type = ?
                ORDER BY id
                """,
                (prefix, prefix + HIGH_SENTINEL, defect_type),
            ).fetchall()
            matched = next((r for r in map(_row_to_report, rows) if is_match(r)), None)
            if matched is not None:
                break

        if matched is not None:
            report = merge(matched)
            self.conn.execute(
                """
                UPDATE aggregated_reports
                SET average_severity = ?, report_count = ?, unique_users = ?,
                    last_reported = ?, credibility_score = ?
                WHERE id = ?
                """,
                (
                    report.average_severity,
                    report.report_count,
                    json.dumps(report.unique_users),
                    report.last_reported,
                    report.credibility_score,
                    matched.id,
                ),
            )
            return report

        report = create()
        cur = self.conn.execute(
            """
            INSERT INTO aggregated_reports
              (geohash, lat, lon, defect_type, average_severity, report_count,
               unique_users, first_reported, last_reported, credibility_score)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report.geohash,
                report.lat,
                report.lon,
                report.defect_type,
                report.average_severity,
                report.report_count,
                json.dumps(report.unique_users),
                report.first_reported,
                report.last_reported,
                report.credibility_score,
            ),
        )
        return report.model_copy(update={"id": cur.lastrowid})

    @_storage_op
    def get_report(self, report_id: int) -> Optional[AggregatedReport]:
        row = self.conn.execute(
            "SELECT * FROM aggregated_reports WHERE id = ?", (report_id,)
        ).fetchone()
        return _row_to_report(row) if row else None

    @_storage_op
    def get_reports(self) -> list[AggregatedReport]:
        rows = self.conn.execute("SELECT * FROM aggregated_reports ORDER BY id").fetchall()
        return [_row_to_report(r) for r in rows]

    @_storage_op
    def get_verified_reports(self, min_count: int = 2, limit: int = 100) -> list[AggregatedReport]:
        """
        Reports confirmed at least ``min_count`` times, most reported first.
        """
        rows = self.conn.execute(
            """
            SELECT * FROM aggregated_reports
            WHERE report_count >= ?
            ORDER BY report_count DESC, id
            LIMIT ?
            """,
            (min_count, limit),
        ).fetchall()
        return [_row_to_report(r) for r in rows]

    @_storage_op
    def count_verified_reports(self, min_count: int = 2) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM aggregated_reports WHERE report_count >= ?",
            (min_count,),
        ).fetchone()[0]

    @_storage_op
    def get_stale_unverified_report_ids(self, cutoff_ts: int) -> list[int]:
        """
        Ids of single-report clusters last reported before ``cutoff_ts``.
        """
        rows = self.conn.execute(
            "SELECT id FROM aggregated_reports WHERE report_count = 1 AND last_reported < ?",
            (cutoff_ts,),
        ).fetchall()
        return [r["id"] for r in rows]

    @_storage_op
    def delete_stale_reports_bulk(self, report_ids: list[int], cutoff_ts: int) -> int:
        """
        Delete the given reports in a single transaction, skipping any that
        were confirmed or re-reported since they were selected.
        """
        if not report_ids:
            return 0
        with self._immediate():
            cur = self.conn.executemany(
                """
                DELETE FROM aggregated_reports
                WHERE id = ? AND report_count = 1 AND last_reported < ?
                """,
                ((i, cutoff_ts) for i in report_ids),
            )
        self._notify("aggregated_reports")
        return cur.rowcount

    # ---------------------------------------------------------------- rti drafts

    @_storage_op
    def add_rti_draft(self, draft: RTIDraft) -> int:
        """
        Store a new complaint draft and return its id.
        """
        with self.conn:
            cur = self.conn.execute(
                """
                INSERT INTO rti_drafts
                  (user_id, created_at, report_ids, municipal_authority, lat, lon, address,
                   defect_type, severity, detection_count, content, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.user_id,
                    draft.created_at,
                    json.dumps(draft.report_ids),
                    draft.municipal_authority,
                    draft.lat,
                    draft.lon,
                    draft.address,
                    draft.defect_type,
                    draft.severity,
                    draft.detection_count,
                    draft.content,
                    draft.status,
                ),
            )
        return cur.lastrowid

    @_storage_op
    def get_rti_draft(self, draft_id: int) -> Optional[RTIDraft]:
        row = self.conn.execute("SELECT * FROM rti_drafts WHERE id = ?", (draft_id,)).fetchone()
        return _row_to_rti_draft(row) if row else None

    @_storage_op
    def get_user_rti_drafts(self, user_id: str) -> list[RTIDraft]:
        """
        Drafts of one user, newest first.
        """
        rows = self.conn.execute(
            "SELECT * FROM rti_drafts WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (user_id,),
        ).fetchall()
        return [_row_to_rti_draft(r) for r in rows]

    @_storage_op
    def update_rti_draft(self, draft_id: int, updates: RTIDraftUpdate) -> Optional[RTIDraft]:
        """
        Apply the fields set on ``updates`` and return the stored draft,
        or None when no draft has that id.
        """
        fields = updates.model_dump(exclude_none=True)
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            with self.conn:
                self.conn.execute(
                    f"UPDATE rti_drafts SET {assignments} WHERE id = ?",
                    (*fields.values(), draft_id),
                )
        return self.get_rti_draft(draft_id)

    # -------------------------------------------------------------- live queries

    def subscribe_reports(
        self,
        on_change: Callable[[list[AggregatedReport]], None],
        min_count: int = 2,
        limit: int = 100,
    ) -> Callable[[], None]:
        """
        Push the current verified-report list now and after every report write.

        Returns a callable that removes the subscription.
        """
        return self._subscribe(
            "aggregated_reports",
            lambda dao: dao.get_verified_reports(min_count, limit),
            on_change,
        )

    def subscribe_detections(
        self,
        on_change: Callable[[list[Detection]], None],
        limit: int = 200,
    ) -> Callable[[], None]:
        """
        Push the newest detections now and after every detection write.
        """
        return self._subscribe("detections", lambda dao: dao.get_detections(limit), on_change)

    def _subscribe(self, collection: str, fetch: Callable, on_change: Callable) -> Callable[[], None]:
        entry = (fetch, on_change)
        key = (self._db_key, collection)
        with _subscribers_lock:
            _subscribers.setdefault(key, []).append(entry)
        on_change(fetch(self))

        def unsubscribe() -> None:
            with _subscribers_lock:
                subs = _subscribers.get(key, [])
                if entry in subs:
                    subs.remove(entry)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        with _subscribers_lock:
            subs = list(_subscribers.get((self._db_key, collection), []))
        for fetch, on_change in subs:
            try:
                on_change(fetch(self))
            except Exception:
                logger.exception("Subscriber on %s failed", collection)

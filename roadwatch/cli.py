#!/usr/bin/env python3
"""
CLI entry point for the roadwatch toolkit.

Defines the following commands:
  roadwatch replay DB CAPTURE --user USER [--remote-url URL]
  roadwatch sweep DB [--max-age-days 30]
  roadwatch stats DB
  roadwatch serve DB [--port 8000] [--sweep-interval-hours 24]
  roadwatch version
"""

import json
import sys
from argparse import ArgumentParser, Namespace
from importlib.metadata import PackageNotFoundError, version as _get_version

import uvicorn

from roadwatch.utils.log import get_logger
from roadwatch.storage.dao import DAO
from roadwatch.server import create_app
from roadwatch.parsers.readings import parse_readings
from roadwatch.analysis.classifier import FallbackClassifier, RemoteClassifier, local_classifier
from roadwatch.analysis.config import RetentionConfig
from roadwatch.analysis.retention import sweep_unverified
from roadwatch.analysis.ride import RideSession
from roadwatch.analysis.stats import fetch_public_stats

logger = get_logger(__name__)


class CaptureClock:
    """
    "Now" for a replayed capture: the timestamp of the latest reading seen.
    """
    def __init__(self) -> None:
        self.now_ms = 0.0

    def advance(self, ts: float) -> None:
        self.now_ms = max(self.now_ms, ts)

    def __call__(self) -> float:
        return self.now_ms


def replay(db_path: str, capture: str, user: str, remote_url: str | None, timeout: float) -> None:
    """
    Run a recorded capture through the full ride pipeline.

    Parameters
    ----------
    db_path
        SQLite database file.
    capture
        JSON-lines capture of sensor readings.
    user
        User id the detections are attributed to.
    remote_url
        Base URL of a roadwatch server to classify with; local heuristic otherwise.
    timeout
        Seconds to wait for the remote classifier before falling back.
    """
    logger.info("Replay: db=%s, capture=%s, user=%s, remote=%s", db_path, capture, user, remote_url)
    dao = DAO(db_path)
    if remote_url:
        classifier = FallbackClassifier(RemoteClassifier(remote_url, timeout), local_classifier(), timeout)
    else:
        classifier = local_classifier()

    clock = CaptureClock()
    ride = RideSession(dao, user, classifier, clock=clock)
    readings = iter(parse_readings(capture))
    first = next(readings, None)
    if first is None:
        logger.warning("Capture %s holds no readings", capture)
        return
    clock.advance(first.timestamp)
    ride.start()
    try:
        ride.add_reading(first)
        for reading in readings:
            clock.advance(reading.timestamp)
            ride.add_reading(reading)
    finally:
        ride.stop()
        if isinstance(classifier, FallbackClassifier):
            classifier.close()
        dao.close()


def sweep(db_path: str, max_age_days: float) -> None:
    """
    Delete unverified single-report clusters older than ``max_age_days``.
    """
    logger.info("Sweep: db=%s, max_age_days=%s", db_path, max_age_days)
    dao = DAO(db_path)
    try:
        sweep_unverified(dao, RetentionConfig(max_age_days=max_age_days))
    finally:
        dao.close()


def stats(db_path: str) -> None:
    """
    Print the public counters as JSON.
    """
    dao = DAO(db_path)
    try:
        result = fetch_public_stats(dao)
    finally:
        dao.close()
    print(json.dumps({
        "totalDetections": result.total_detections,
        "verifiedReports": result.verified_reports,
        "timestamp": result.timestamp,
    }))


def serve(db_path: str, port: int, sweep_interval_hours: float) -> None:
    """
    Spin up FastAPI+Uvicorn to serve classification, detections and stats.

    Parameters
    ----------
    db_path
        SQLite database file.
    port
        Port on which to serve HTTP.
    sweep_interval_hours
        Period of the background retention sweep; 0 disables it.
    """
    logger.info("Serve: db=%s, port=%d", db_path, port)
    interval_s = sweep_interval_hours * 3600 if sweep_interval_hours > 0 else None
    app = create_app(db_path, sweep_interval_s=interval_s)
    uvicorn.run(app, host="127.0.0.1", port=port)


def version() -> None:
    """
    Print the installed roadwatch package version.
    """
    try:
        ver = _get_version("roadwatch")
    except PackageNotFoundError:
        ver = "unknown"
    logger.info("roadwatch version %s", ver)


def parse_args(argv: list[str] | None = None) -> Namespace:
    """
    Parse command-line arguments and return the populated namespace.
    """
    parser = ArgumentParser(prog="roadwatch")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # roadwatch replay
    p = subparsers.add_parser("replay", help="Replay a recorded sensor capture.")
    p.add_argument("db", type=str, help="SQLite database file.")
    p.add_argument("capture", type=str, help="JSON-lines capture file.")
    p.add_argument("--user", type=str, required=True, help="User id for detections.")
    p.add_argument("--remote-url", type=str, help="roadwatch server used for classification.")
    p.add_argument(
        "--timeout", type=float, default=3.0, help="Remote classifier timeout (s)."
    )

    # roadwatch sweep
    p = subparsers.add_parser("sweep", help="Delete stale unverified reports.")
    p.add_argument("db", type=str, help="SQLite database file.")
    p.add_argument(
        "--max-age-days", type=float, default=RetentionConfig.max_age_days,
        help="Age after which single reports are deleted.",
    )

    # roadwatch stats
    p = subparsers.add_parser("stats", help="Print public statistics.")
    p.add_argument("db", type=str, help="SQLite database file.")

    # roadwatch serve
    p = subparsers.add_parser("serve", help="Serve via FastAPI + Uvicorn.")
    p.add_argument("db", type=str, help="SQLite database file.")
    p.add_argument(
        "--port", type=int, default=8000, help="Port number to serve on."
    )
    p.add_argument(
        "--sweep-interval-hours", type=float, default=RetentionConfig.interval_hours,
        help="Hours between retention sweeps (0 disables).",
    )

    # roadwatch version
    subparsers.add_parser("version", help="Show roadwatch version and exit.")

    return parser.parse_args(argv)


def main() -> None:
    """
    Entry point: dispatch to the selected subcommand.
    """
    args = parse_args()
    match args.command:
        case "replay":
            replay(args.db, args.capture, args.user, args.remote_url, args.timeout)
        case "sweep":
            sweep(args.db, args.max_age_days)
        case "stats":
            stats(args.db)
        case "serve":
            serve(args.db, args.port, args.sweep_interval_hours)
        case "version":
            version()
        case _:
            sys.exit(1)


if __name__ == "__main__":
    main()

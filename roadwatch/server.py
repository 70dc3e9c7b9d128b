# roadwatch/server.py
"""
FastAPI server for the roadwatch CLI.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from roadwatch.analysis.aggregation import AggregationEngine
from roadwatch.analysis.classifier import server_classifier
from roadwatch.analysis.config import RetentionConfig
from roadwatch.analysis.retention import sweep_unverified
from roadwatch.analysis.stats import fetch_public_stats
from roadwatch.analysis.types import ProcessedWindow
from roadwatch.storage.dao import DAO
from roadwatch.storage.db import StorageError
from roadwatch.utils.log import get_logger
from roadwatch.utils.validate import (
    AggregatedReport,
    Bounds,
    Classification,
    Detection,
    RTIDraft,
    RTIDraftUpdate,
    WindowSummary,
)

logger = get_logger(__name__)


def _run_sweep(db_path: str, cfg: RetentionConfig) -> int:
    dao = DAO(db_path)
    try:
        return sweep_unverified(dao, cfg)
    finally:
        dao.close()


async def _sweep_forever(db_path: str, cfg: RetentionConfig, interval_s: float) -> None:
    """
    Run the retention sweep now and then every ``interval_s`` seconds.
    """
    while True:
        try:
            await run_in_threadpool(_run_sweep, db_path, cfg)
        except StorageError as e:
            logger.error("Retention sweep failed, retrying next run: %s", e)
        await asyncio.sleep(interval_s)


def create_app(db_path: str, sweep_interval_s: Optional[float] = None) -> FastAPI:
    """
    Build a FastAPI instance bound to a specific database file.

    When ``sweep_interval_s`` is set, the retention sweep runs in the
    background for the lifetime of the app.
    """
    retention = RetentionConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if sweep_interval_s:
            logger.info("Scheduling retention sweep every %.0fs", sweep_interval_s)
            task = asyncio.create_task(_sweep_forever(db_path, retention, sweep_interval_s))
        yield
        if task is not None:
            task.cancel()

    app = FastAPI(lifespan=lifespan)
    app.state.db_path = db_path
    app.state.classifier = server_classifier()

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"])

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"error": "storage unavailable", "retryable": True},
        )

    @app.get("/api/status", response_class=JSONResponse)
    async def status() -> JSONResponse:
        return JSONResponse(status_code=200, content={"status": "ok"})

    @app.post("/api/classify", response_model=Classification)
    async def classify(request: Request, window: WindowSummary):
        result = request.app.state.classifier.classify(ProcessedWindow(**window.model_dump()))
        return Classification(
            defect_type=result.defect_type,
            confidence=result.confidence,
            severity=result.severity,
        )

    @app.post("/api/classify/batch", response_model=list[Classification])
    async def classify_batch(request: Request, windows: list[WindowSummary]):
        classifier = request.app.state.classifier
        results = classifier.classify_batch([ProcessedWindow(**w.model_dump()) for w in windows])
        return [
            Classification(defect_type=r.defect_type, confidence=r.confidence, severity=r.severity)
            for r in results
        ]

    @app.post("/api/detections", response_class=JSONResponse)
    def save_detection(request: Request, detection: Detection) -> JSONResponse:
        """
        Persist a detection and fold it into its aggregated report.
        """
        dao = DAO(request.app.state.db_path)
        try:
            det_id, report = AggregationEngine(dao).record(detection)
        finally:
            dao.close()
        return JSONResponse(
            status_code=201,
            content={
                "id": det_id,
                "report": report.model_dump() if report else None,
            },
        )

    @app.get("/api/detections", response_model=list[Detection])
    def get_detections(
        request: Request,
        limit: int = 100,
        north: Optional[float] = None,
        south: Optional[float] = None,
        east: Optional[float] = None,
        west: Optional[float] = None,
    ):
        bounds = None
        if None not in (north, south, east, west):
            bounds = Bounds(north=north, south=south, east=east, west=west)
        dao = DAO(request.app.state.db_path)
        try:
            return dao.get_detections(limit, bounds)
        finally:
            dao.close()

    @app.get("/api/reports", response_model=list[AggregatedReport])
    def get_reports(request: Request, limit: int = 100):
        """
        Return verified reports, most reported first.
        """
        dao = DAO(request.app.state.db_path)
        try:
            return dao.get_verified_reports(limit=limit)
        finally:
            dao.close()

    @app.get("/api/stats", response_class=JSONResponse)
    def get_stats(request: Request) -> JSONResponse:
        dao = DAO(request.app.state.db_path)
        try:
            stats = fetch_public_stats(dao)
        finally:
            dao.close()
        return JSONResponse(
            status_code=200,
            content={
                "totalDetections": stats.total_detections,
                "verifiedReports": stats.verified_reports,
                "timestamp": stats.timestamp,
            },
        )

    @app.post("/api/rti-drafts", response_model=RTIDraft, status_code=201)
    def save_rti_draft(request: Request, draft: RTIDraft):
        dao = DAO(request.app.state.db_path)
        try:
            draft_id = dao.add_rti_draft(draft)
            return dao.get_rti_draft(draft_id)
        finally:
            dao.close()

    @app.get("/api/rti-drafts", response_model=list[RTIDraft])
    def get_rti_drafts(request: Request, user_id: str):
        """
        Return one user's drafts, newest first.
        """
        dao = DAO(request.app.state.db_path)
        try:
            return dao.get_user_rti_drafts(user_id)
        finally:
            dao.close()

    @app.patch("/api/rti-drafts/{draft_id}", response_model=RTIDraft)
    def update_rti_draft(request: Request, draft_id: int, updates: RTIDraftUpdate):
        dao = DAO(request.app.state.db_path)
        try:
            draft = dao.update_rti_draft(draft_id, updates)
        finally:
            dao.close()
        if draft is None:
            raise HTTPException(status_code=404, detail=f"no draft {draft_id}")
        return draft

    return app

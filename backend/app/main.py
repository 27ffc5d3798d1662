"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring, scheduler
    lifecycle for the nightly maintenance jobs, and Mongo error mapping.

Dependencies:
    - app.database
    - app.workers.expiration
    - app.services.websocket_manager
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import app.database as _db
from app.config import settings
from app.database import close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging

logger = logging.getLogger("cobage")
scheduler = AsyncIOScheduler(timezone="UTC")


def _build_job_specs() -> list[dict]:
    from app.workers.expiration import (
        AUDIT_JOB_ID,
        REQUEST_JOB_ID,
        TRIP_JOB_ID,
        run_audit_retention,
        run_request_expiration,
        run_trip_expiration,
    )
    return [
        {"id": TRIP_JOB_ID, "func": run_trip_expiration, "cron": settings.EXPIRE_TRIPS_CRON},
        {"id": REQUEST_JOB_ID, "func": run_request_expiration, "cron": settings.EXPIRE_REQUESTS_CRON},
        {"id": AUDIT_JOB_ID, "func": run_audit_retention, "cron": settings.AUDIT_CLEANUP_CRON},
    ]


def register_scheduled_jobs() -> int:
    added = 0
    for job in _build_job_specs():
        scheduler.add_job(
            job["func"],
            CronTrigger.from_crontab(job["cron"], timezone="UTC"),
            id=job["id"],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Scheduled %s (%s UTC)", job["id"], job["cron"])
        added += 1
    return added


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await connect_db()
    from app.services.websocket_manager import websocket_manager

    if settings.WS_EVENTS_ENABLED:
        await websocket_manager.start()
        logger.info("WebSocket realtime manager enabled")
    else:
        logger.info("WebSocket realtime manager disabled via config")

    if settings.EXPIRATION_SCHEDULER_ENABLED:
        register_scheduled_jobs()
        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.info("Background scheduler disabled via config")

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    if settings.WS_EVENTS_ENABLED:
        await websocket_manager.stop()
    await close_db()


app = FastAPI(
    title="Cobage",
    description="Parcel delivery marketplace between travelers and senders",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.admin import router as admin_router
from app.routers.reports import router as reports_router
from app.routers.ws import router as ws_router

app.include_router(admin_router)
app.include_router(reports_router)
app.include_router(ws_router)


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid ID."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        # Strip the "body" / "query" prefix for cleaner messages
        field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check: DB connection, realtime manager and scheduler state."""
    from app.services.websocket_manager import websocket_manager

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "realtime": websocket_manager.running,
        "scheduler": scheduler.running,
    }

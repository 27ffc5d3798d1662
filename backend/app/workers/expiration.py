"""Nightly maintenance jobs: listing expiration and audit log retention."""

import logging

from app.config import settings
from app.services import audit_service
from app.services.expiration_service import expire_delivery_requests, expire_trips
from app.workers._state import record_run

logger = logging.getLogger("cobage.workers.expiration")

TRIP_JOB_ID = "expire_trips"
REQUEST_JOB_ID = "expire_requests"
AUDIT_JOB_ID = "audit_retention"


async def run_trip_expiration() -> None:
    """Expire active trips whose departure date has passed."""
    summary = await expire_trips(settings.EXPIRATION_BATCH_SIZE)
    await record_run(TRIP_JOB_ID, summary.as_dict())


async def run_request_expiration() -> None:
    """Expire searching delivery requests whose limit date has passed."""
    summary = await expire_delivery_requests(settings.EXPIRATION_BATCH_SIZE)
    await record_run(REQUEST_JOB_ID, summary.as_dict())


async def run_audit_retention() -> None:
    if settings.AUDIT_RETENTION_DAYS <= 0:
        logger.debug("Audit retention disabled")
        return
    deleted = await audit_service.clean_old_logs(settings.AUDIT_RETENTION_DAYS)
    await record_run(AUDIT_JOB_ID, {"deleted": deleted, "days_to_keep": settings.AUDIT_RETENTION_DAYS})

"""User reports on trips, delivery requests, messages or other users."""

import logging
import math
from typing import Optional

from fastapi import HTTPException, Request, status

import app.database as _db
from app.models.admin import CreateReportBody
from app.models.resources import Report, ReportStatus, ResourceKind
from app.models.user import Actor
from app.services import audit_service
from app.services.authorization import Capability, decide
from app.services.event_models import REPORT_CREATED, REPORT_HANDLED, REPORT_REJECTED
from app.services.realtime_notifier import NotificationDeliveryError, notifier
from app.utils import ensure_utc, to_object_id, utcnow

logger = logging.getLogger("cobage.reports")

MAX_PAGE_SIZE = 100


def report_to_dict(report: Report) -> dict:
    data = report.model_dump()
    data["status"] = report.status.value
    for key in ("created_at", "updated_at"):
        if data.get(key) is not None:
            data[key] = ensure_utc(data[key]).isoformat()
    return data


async def _load_report(report_id: str) -> Report:
    oid = to_object_id(report_id)
    if oid is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid id.")
    doc = await _db.db.reports.find_one({"_id": oid})
    if not doc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found.")
    return Report.from_doc(doc)


async def create_report(reporter: Actor, body: CreateReportBody) -> dict:
    if not decide(reporter, Capability.CREATE, ResourceKind.REPORT):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Complete your profile before reporting content.",
        )
    if not any((body.trip_id, body.request_id, body.message_id, body.reported_user_id)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A report needs a trip, a request, a message or a user.",
        )
    if body.reported_user_id and body.reported_user_id == reporter.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot report yourself.")

    now = utcnow()
    doc = {
        "reporter_id": reporter.id,
        "reported_user_id": body.reported_user_id,
        "reported_message_id": body.message_id,
        "reported_trip_id": body.trip_id,
        "reported_request_id": body.request_id,
        "reason": body.reason,
        "description": body.description,
        "status": ReportStatus.PENDING.value,
        "admin_response": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.reports.insert_one(doc)
    doc["_id"] = result.inserted_id
    report = Report.from_doc(doc)

    try:
        await notifier.publish_to_group(
            "admin",
            {"report_id": report.id, "reason": report.reason, "reporter_id": reporter.id},
            REPORT_CREATED,
        )
    except NotificationDeliveryError as exc:
        logger.error("Staff push failed for report %s: %s", report.id, exc)

    logger.info("User %s filed report %s (%s)", reporter.id, report.id, report.reason)
    return report_to_dict(report)


async def get_report(actor: Actor, report_id: str) -> dict:
    report = await _load_report(report_id)
    if not decide(actor, Capability.VIEW, report):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
    return report_to_dict(report)


async def _paginate(query: dict, page: int, limit: int) -> dict:
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    total = await _db.db.reports.count_documents(query)
    docs = await (
        _db.db.reports.find(query)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .to_list(length=limit)
    )
    return {
        "data": [report_to_dict(Report.from_doc(d)) for d in docs],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


async def list_reports(status_filter: Optional[str] = None, page: int = 1, limit: int = 20) -> dict:
    """Staff listing; callers check MANAGE_REPORTS."""
    query: dict = {}
    if status_filter:
        try:
            query["status"] = ReportStatus(status_filter).value
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status.")
    return await _paginate(query, page, limit)


async def list_user_reports(actor: Actor, page: int = 1, limit: int = 20) -> dict:
    return await _paginate({"reporter_id": actor.id}, page, limit)


async def process_report(
    report_id: str,
    admin: Actor,
    new_status: str,
    admin_response: Optional[str] = None,
    *,
    request: Optional[Request] = None,
) -> dict:
    report = await _load_report(report_id)
    if not decide(admin, Capability.PROCESS, report):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
    if new_status not in (ReportStatus.HANDLED.value, ReportStatus.REJECTED.value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status.")

    old_status = report.status.value
    now = utcnow()
    await _db.db.reports.update_one(
        {"_id": to_object_id(report.id)},
        {"$set": {"status": new_status, "admin_response": admin_response, "updated_at": now}},
    )
    report = report.model_copy(update={
        "status": ReportStatus(new_status),
        "admin_response": admin_response,
        "updated_at": now,
    })

    event_type = REPORT_HANDLED if new_status == ReportStatus.HANDLED.value else REPORT_REJECTED
    try:
        await notifier.publish_to_user(
            report.reporter_id,
            {"report_id": report.id, "status": new_status, "admin_response": admin_response},
            event_type,
        )
    except NotificationDeliveryError as exc:
        logger.error("Reporter push failed for report %s: %s", report.id, exc)

    await audit_service.record(
        admin, "process_report", "report", report.id,
        {"old_status": old_status, "new_status": new_status, "admin_response": admin_response},
        request=request,
    )
    return report_to_dict(report)

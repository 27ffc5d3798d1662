"""
backend/app/routers/admin.py

Purpose:
    Admin HTTP router: dashboard counters, user moderation, content removal,
    report processing, audit log viewer/export and manual maintenance jobs.
    Access is decided per endpoint by the authorization engine through
    ``require_capability``; target-specific rules live in the services.

Dependencies:
    - app.services.auth_service
    - app.services.moderation_service
    - app.services.report_service
    - app.services.audit_service
    - app.services.expiration_service
"""

import logging
import math
import re
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

import app.database as _db
from app.config import settings
from app.models.admin import (
    BanUserBody,
    DeleteContentBody,
    DeleteUserBody,
    ProcessReportBody,
    RunExpirationBody,
    UpdateRolesBody,
)
from app.models.resources import DeliveryRequestStatus, ReportStatus, ResourceKind, TripStatus
from app.models.user import Actor
from app.services import audit_service, moderation_service, report_service
from app.services.auth_service import require_capability
from app.services.authorization import Capability
from app.services.expiration_service import VARIANTS, build_worker
from app.services.websocket_manager import websocket_manager
from app.utils import ensure_utc, start_of_day, utcnow
from app.workers._state import get_last_run, record_run
from app.workers.expiration import AUDIT_JOB_ID, REQUEST_JOB_ID, TRIP_JOB_ID

logger = logging.getLogger("cobage.admin")
router = APIRouter(prefix="/api/admin", tags=["admin"])

# URL segment -> content kind
CONTENT_PATHS = {
    "trips": ResourceKind.TRIP,
    "requests": ResourceKind.DELIVERY_REQUEST,
    "reviews": ResourceKind.REVIEW,
    "messages": ResourceKind.MESSAGE,
}

_JOB_IDS = {"trips": TRIP_JOB_ID, "requests": REQUEST_JOB_ID}


# --- Dashboard ---

@router.get("/dashboard")
async def dashboard(admin: Actor = Depends(require_capability(Capability.VIEW_DASHBOARD))):
    """Headline counters for the admin landing page."""
    return {
        "users": {
            "total": await _db.db.users.count_documents({}),
            "banned": await _db.db.users.count_documents({"is_banned": True}),
        },
        "trips": {
            "active": await _db.db.trips.count_documents({"status": TripStatus.ACTIVE.value}),
            "expired": await _db.db.trips.count_documents({"status": TripStatus.EXPIRED.value}),
        },
        "delivery_requests": {
            "searching": await _db.db.delivery_requests.count_documents(
                {"status": DeliveryRequestStatus.SEARCHING.value}
            ),
            "expired": await _db.db.delivery_requests.count_documents(
                {"status": DeliveryRequestStatus.EXPIRED.value}
            ),
        },
        "reports": {
            "pending": await _db.db.reports.count_documents({"status": ReportStatus.PENDING.value}),
        },
    }


# --- User Management ---

@router.get("/users")
async def list_users(
    search: Optional[str] = Query(None),
    banned: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(require_capability(Capability.VIEW_ALL_USERS)),
):
    """List users, optionally filtered by email/name search or ban state."""
    query: dict = {}
    if search:
        escaped = re.escape(search)
        query["$or"] = [
            {"email": {"$regex": escaped, "$options": "i"}},
            {"first_name": {"$regex": escaped, "$options": "i"}},
            {"last_name": {"$regex": escaped, "$options": "i"}},
        ]
    if banned is not None:
        query["is_banned"] = banned

    total = await _db.db.users.count_documents(query)
    users = await (
        _db.db.users.find(query)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .to_list(length=limit)
    )
    return {
        "data": [
            {
                "id": str(u["_id"]),
                "email": u.get("email", ""),
                "first_name": u.get("first_name", ""),
                "last_name": u.get("last_name", ""),
                "roles": sorted(u.get("roles") or ["user"]),
                "is_banned": u.get("is_banned", False),
                "ban_reason": u.get("ban_reason"),
                "created_at": ensure_utc(u["created_at"]).isoformat() if u.get("created_at") else None,
            }
            for u in users
        ],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.post("/users/{user_id}/ban")
async def ban_user(
    user_id: str, body: BanUserBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.BAN_USER)),
):
    return await moderation_service.ban_user(user_id, admin, body.reason, request=request)


@router.post("/users/{user_id}/unban")
async def unban_user(
    user_id: str, request: Request,
    admin: Actor = Depends(require_capability(Capability.UNBAN_USER)),
):
    return await moderation_service.unban_user(user_id, admin, request=request)


@router.put("/users/{user_id}/roles")
async def update_user_roles(
    user_id: str, body: UpdateRolesBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.MANAGE_ROLES)),
):
    return await moderation_service.update_user_roles(user_id, body.roles, admin, request=request)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str, body: DeleteUserBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.DELETE_USER)),
):
    return await moderation_service.delete_user(user_id, admin, body.reason, request=request)


@router.delete("/users/{user_id}/content")
async def delete_all_user_content(
    user_id: str, body: DeleteContentBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.DELETE_CONTENT)),
):
    return await moderation_service.delete_all_user_content(user_id, admin, body.reason, request=request)


# --- Content Moderation ---

@router.delete("/content/{content_type}/{content_id}")
async def delete_content(
    content_type: str, content_id: str, body: DeleteContentBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.DELETE_CONTENT)),
):
    kind = CONTENT_PATHS.get(content_type)
    if kind is None:
        raise HTTPException(status_code=404, detail="Unknown content type.")
    return await moderation_service.delete_content(
        kind, content_id, admin, body.reason, body.notify_user, request=request,
    )


# --- Reports ---

@router.get("/reports")
async def list_reports(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Actor = Depends(require_capability(Capability.MANAGE_REPORTS)),
):
    return await report_service.list_reports(status, page, limit)


@router.patch("/reports/{report_id}")
async def process_report(
    report_id: str, body: ProcessReportBody, request: Request,
    admin: Actor = Depends(require_capability(Capability.MANAGE_REPORTS)),
):
    return await report_service.process_report(
        report_id, admin, body.status, body.admin_response, request=request,
    )


# --- Audit Log Viewer ---

def _audit_filters(
    admin_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
) -> dict:
    return {
        "admin_id": admin_id,
        "action": action,
        "target_type": target_type,
        "target_id": target_id,
        "date_from": date_from,
        "date_to": date_to,
    }


@router.get("/audit-logs")
async def list_audit_logs(
    filters: dict = Depends(_audit_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(require_capability(Capability.VIEW_LOGS)),
):
    """List audit logs with filtering and pagination (admin only)."""
    return await audit_service.search_logs(filters, page, limit)


@router.get("/audit-logs/export")
async def export_audit_logs(
    request: Request,
    filters: dict = Depends(_audit_filters),
    admin: Actor = Depends(require_capability(Capability.EXPORT_LOGS)),
):
    """Export audit logs as CSV for regulatory requests (admin only)."""
    content = await audit_service.export_logs_csv(filters, settings.AUDIT_EXPORT_MAX_ROWS)
    await audit_service.record(
        admin, "export_audit_logs", "audit_logs", "export",
        {key: value for key, value in filters.items() if value},
        request=request,
    )
    filename = f"cobage-audit-logs-{utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/audit-logs/stats")
async def audit_log_stats(
    days: int = Query(30, ge=1, le=365),
    admin: Actor = Depends(require_capability(Capability.VIEW_LOGS)),
):
    end = utcnow()
    start = start_of_day(end - timedelta(days=days))
    return {
        "from": start.isoformat(),
        "to": end.isoformat(),
        "actions": await audit_service.get_action_stats(start, end),
    }


@router.get("/audit-logs/history/{target_type}/{target_id}")
async def audit_log_history(
    target_type: str, target_id: str,
    admin: Actor = Depends(require_capability(Capability.VIEW_LOGS)),
):
    return await audit_service.get_target_history(target_type, target_id)


@router.post("/audit-logs/cleanup")
async def cleanup_audit_logs(
    request: Request,
    days: int = Query(settings.AUDIT_RETENTION_DAYS, ge=1),
    admin: Actor = Depends(require_capability(Capability.RUN_JOBS)),
):
    deleted = await audit_service.clean_old_logs(days)
    await record_run(AUDIT_JOB_ID, {"deleted": deleted, "days_to_keep": days})
    await audit_service.record(
        admin, "clean_audit_logs", "audit_logs", "retention",
        {"days_to_keep": days, "deleted": deleted},
        request=request,
    )
    return {"deleted": deleted}


# --- Maintenance Jobs ---

@router.get("/jobs")
async def list_jobs(admin: Actor = Depends(require_capability(Capability.RUN_JOBS))):
    """Last run of each scheduled job plus realtime manager health."""
    return {
        "jobs": [
            await get_last_run(job_id) or {"worker_id": job_id, "last_run_at": None, "last_summary": {}}
            for job_id in (TRIP_JOB_ID, REQUEST_JOB_ID, AUDIT_JOB_ID)
        ],
        "realtime": websocket_manager.stats(),
    }


@router.post("/jobs/expire/{variant}")
async def run_expiration(
    variant: str, request: Request, body: Optional[RunExpirationBody] = None,
    admin: Actor = Depends(require_capability(Capability.RUN_JOBS)),
):
    """Run one expiration pass now, same code path as the nightly job."""
    if variant not in VARIANTS:
        raise HTTPException(status_code=404, detail="Unknown expiration job.")
    batch_size = body.batch_size if body and body.batch_size else settings.EXPIRATION_BATCH_SIZE

    summary = await build_worker(variant, batch_size).run()
    await record_run(_JOB_IDS[variant], summary.as_dict())
    await audit_service.record(
        admin, "run_expiration", "job", variant, summary.as_dict(), request=request,
    )
    logger.info("Admin %s ran %s", admin.id, summary.describe())
    if summary.failed:
        raise HTTPException(status_code=500, detail=f"Expiration failed: {summary.fatal_error}")
    return summary.as_dict()

"""Immutable audit logging for privileged (admin/moderator) actions.

All audit entries are insert-only. The only delete path is the retention
sweep ``clean_old_logs``; there is intentionally no update operation on the
audit_logs collection.
"""

import csv
import io
import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request

import app.database as _db
from app.models.audit import AuditLogEntry
from app.models.user import Actor
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("cobage.audit")

MAX_PAGE_SIZE = 200


def _truncate_ip(ip: str) -> str:
    """Anonymize an IP address by replacing the last segment (GDPR-compliant).

    IPv4: 192.168.1.42  -> 192.168.1.xxx
    IPv6: 2001:db8::1   -> 2001:db8::xxx
    """
    if not ip:
        return ""

    # IPv4
    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            parts[-1] = "xxx"
            return ".".join(parts)
        return ip

    # IPv6
    if ":" in ip:
        parts = ip.rsplit(":", 1)
        if len(parts) == 2:
            return f"{parts[0]}:xxx"
        return ip

    return ip


def _get_client_ip(request: Optional[Request]) -> str:
    """Extract client IP from request, preferring X-Forwarded-For (behind nginx)."""
    if request is None:
        return ""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # Take the first IP (original client)
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return ""


async def record(
    actor: Actor,
    action: str,
    target_type: str,
    target_id: str,
    details: Optional[dict] = None,
    *,
    request: Optional[Request] = None,
) -> None:
    """Write an immutable audit record to the audit_logs collection.

    Args:
        actor: Admin or moderator who performed the action.
        action: Action identifier, e.g. "ban_user", "delete_trip".
        target_type: Kind of the affected object ("user", "trip", ...).
        target_id: Id of the affected object.
        details: Optional dict with before/after values or extra context.
        request: Optional FastAPI request for IP and user agent extraction.
    """
    entry = AuditLogEntry(
        timestamp=utcnow(),
        admin_id=actor.id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        details=details or {},
        ip_truncated=_truncate_ip(_get_client_ip(request)),
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    try:
        await _db.db.audit_logs.insert_one(entry.model_dump())
    except Exception:
        # Audit logging must never crash the request
        logger.exception("Failed to write audit log: action=%s admin=%s", action, actor.id)


def _parse_day(value: str, *, end_of_day: bool = False) -> Optional[datetime]:
    try:
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    if end_of_day:
        return day.replace(hour=23, minute=59, second=59)
    return day


def build_query(filters: dict) -> dict:
    """Translate API filters into a Mongo query. Unknown keys are ignored."""
    query: dict = {}
    for key in ("admin_id", "action", "target_type", "target_id"):
        if filters.get(key):
            query[key] = str(filters[key])

    ts_query: dict = {}
    if filters.get("date_from"):
        start = _parse_day(filters["date_from"])
        if start:
            ts_query["$gte"] = start
    if filters.get("date_to"):
        end = _parse_day(filters["date_to"], end_of_day=True)
        if end:
            ts_query["$lte"] = end
    if ts_query:
        query["timestamp"] = ts_query
    return query


def _entry_to_dict(entry: dict) -> dict:
    return {
        "id": str(entry["_id"]),
        "timestamp": ensure_utc(entry["timestamp"]).isoformat(),
        "admin_id": entry["admin_id"],
        "action": entry["action"],
        "target_type": entry["target_type"],
        "target_id": entry["target_id"],
        "details": entry.get("details", {}),
        "ip_truncated": entry.get("ip_truncated", ""),
        "user_agent": entry.get("user_agent"),
    }


async def search_logs(filters: dict, page: int = 1, limit: int = 50) -> dict:
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = build_query(filters)

    total = await _db.db.audit_logs.count_documents(query)
    entries = await (
        _db.db.audit_logs.find(query)
        .sort("timestamp", -1)
        .skip((page - 1) * limit)
        .to_list(length=limit)
    )
    return {
        "data": [_entry_to_dict(e) for e in entries],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


async def get_target_history(target_type: str, target_id: str) -> list[dict]:
    """Full audit trail of one object, newest first."""
    entries = await (
        _db.db.audit_logs.find({"target_type": target_type, "target_id": str(target_id)})
        .sort("timestamp", -1)
        .to_list(length=None)
    )
    return [_entry_to_dict(e) for e in entries]


async def get_action_stats(start: datetime, end: datetime) -> dict[str, int]:
    """Number of audit entries per action within [start, end)."""
    pipeline = [
        {"$match": {"timestamp": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": "$action", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]
    rows = await _db.db.audit_logs.aggregate(pipeline).to_list(length=None)
    return {row["_id"]: row["count"] for row in rows}


async def export_logs_csv(filters: dict, max_rows: int = 10000) -> str:
    """Export matching entries as CSV for regulatory requests."""
    entries = await (
        _db.db.audit_logs.find(build_query(filters))
        .sort("timestamp", -1)
        .to_list(length=max_rows)
    )

    output = io.StringIO()
    writer = csv.writer(output, delimiter=";")
    writer.writerow(["id", "admin_id", "action", "target_type", "target_id", "timestamp", "ip", "details"])
    for entry in entries:
        writer.writerow([
            str(entry["_id"]),
            entry["admin_id"],
            entry["action"],
            entry["target_type"],
            entry["target_id"],
            ensure_utc(entry["timestamp"]).isoformat(),
            entry.get("ip_truncated") or "N/A",
            json.dumps(entry.get("details", {}), default=str),
        ])
    return output.getvalue()


async def clean_old_logs(days_to_keep: int = 365) -> int:
    """Retention sweep: delete entries older than ``days_to_keep`` days."""
    if days_to_keep <= 0:
        raise ValueError("days_to_keep must be positive")
    cutoff = utcnow() - timedelta(days=days_to_keep)
    result = await _db.db.audit_logs.delete_many({"timestamp": {"$lt": cutoff}})
    logger.info("Audit retention: removed %d entries older than %s", result.deleted_count, cutoff.isoformat())
    return result.deleted_count

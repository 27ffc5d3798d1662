"""Persisted in-app notifications with a best-effort realtime push."""

import logging
from typing import Optional

import app.database as _db
from app.models.user import Actor
from app.services.event_models import NOTIFICATION_NEW
from app.services.realtime_notifier import NotificationDeliveryError, notifier
from app.utils import utcnow

logger = logging.getLogger("cobage.notifications")


async def create_notification(
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: Optional[dict] = None,
) -> dict:
    """Store a notification for ``user_id`` and push it to their topic."""
    doc = {
        "user_id": str(user_id),
        "type": type,
        "title": title,
        "message": message,
        "data": data or {},
        "is_read": False,
        "created_at": utcnow(),
    }
    result = await _db.db.notifications.insert_one(doc)
    doc["_id"] = result.inserted_id

    try:
        await notifier.publish_to_user(
            str(user_id),
            {
                "id": str(result.inserted_id),
                "type": type,
                "title": title,
                "message": message,
                "data": data or {},
            },
            NOTIFICATION_NEW,
        )
    except NotificationDeliveryError as exc:
        logger.error("Realtime push failed for notification %s: %s", result.inserted_id, exc)

    return doc


async def notify_user_banned(user: Actor, admin: Actor, reason: str) -> dict:
    return await create_notification(
        user.id,
        "account_banned",
        "Account suspended",
        f"Your account has been suspended. Reason: {reason}",
        {"banned_by": admin.id, "reason": reason},
    )

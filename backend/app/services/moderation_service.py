"""
backend/app/services/moderation_service.py

Purpose:
    Privileged moderation actions: ban/unban, role edits, account deletion and
    content removal. Every action asks the authorization engine first, writes
    one audit entry and notifies the affected user where it makes sense.
    Errors surface as HTTPException so routers can call straight through.

Dependencies:
    - app.services.authorization
    - app.services.audit_service
    - app.services.notification_service
    - app.services.auth_service
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, Request, status

import app.database as _db
from app.models.resources import DeliveryRequest, Message, ResourceKind, Review, Trip
from app.models.user import Actor, Role
from app.services import audit_service
from app.services.auth_service import invalidate_user_tokens
from app.services.authorization import Capability, decide
from app.services.event_models import USER_BANNED
from app.services.notification_service import create_notification, notify_user_banned
from app.services.realtime_notifier import NotificationDeliveryError, notifier
from app.utils import to_object_id, utcnow

logger = logging.getLogger("cobage.moderation")


@dataclass(frozen=True)
class _ContentKind:
    model: type
    owner_field: str
    label: str


CONTENT_KINDS: dict[ResourceKind, _ContentKind] = {
    ResourceKind.TRIP: _ContentKind(Trip, "owner_id", "trip"),
    ResourceKind.DELIVERY_REQUEST: _ContentKind(DeliveryRequest, "owner_id", "delivery request"),
    ResourceKind.REVIEW: _ContentKind(Review, "author_id", "review"),
    ResourceKind.MESSAGE: _ContentKind(Message, "sender_id", "message"),
}


def _object_id(value: str) -> ObjectId:
    oid = to_object_id(value)
    if oid is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid id.")
    return oid


async def _load_user(user_id: str) -> Actor:
    doc = await _db.db.users.find_one({"_id": _object_id(user_id)})
    if not doc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return Actor.from_doc(doc)


def _authorize_target(admin: Actor, capability: Capability, target: Actor, verb: str) -> None:
    """Raise 400 for the self/admin target rules, 403 for any other denial."""
    if decide(admin, capability, target):
        return
    if admin.is_admin and not admin.is_banned:
        if admin.id == target.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"You cannot {verb} yourself.")
        if target.is_admin:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot {verb} an admin.")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")


def _require(admin: Actor, capability: Capability) -> None:
    if not decide(admin, capability):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")


# --- Users ---

async def ban_user(
    target_id: str, admin: Actor, reason: str, *, request: Optional[Request] = None,
) -> dict:
    target = await _load_user(target_id)
    _authorize_target(admin, Capability.BAN_USER, target, "ban")
    if target.is_banned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already banned.")

    now = utcnow()
    await _db.db.users.update_one(
        {"_id": _object_id(target.id)},
        {"$set": {
            "is_banned": True,
            "banned_at": now,
            "ban_reason": reason,
            "banned_by": admin.id,
            "updated_at": now,
        }},
    )
    await invalidate_user_tokens(target.id)

    await notify_user_banned(target, admin, reason)
    try:
        await notifier.publish_to_user(
            target,
            {"reason": reason, "banned_at": now.isoformat()},
            USER_BANNED,
        )
    except NotificationDeliveryError as exc:
        logger.error("Ban push failed for user %s: %s", target.id, exc)

    logger.info("Admin %s banned user %s", admin.id, target.id)
    await audit_service.record(
        admin, "ban_user", "user", target.id,
        {"reason": reason, "user_email": target.email},
        request=request,
    )
    return {"message": f"{target.email} has been banned."}


async def unban_user(target_id: str, admin: Actor, *, request: Optional[Request] = None) -> dict:
    _require(admin, Capability.UNBAN_USER)
    target = await _load_user(target_id)
    if not target.is_banned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is not banned.")

    await _db.db.users.update_one(
        {"_id": _object_id(target.id)},
        {"$set": {
            "is_banned": False,
            "banned_at": None,
            "ban_reason": None,
            "banned_by": None,
            "updated_at": utcnow(),
        }},
    )
    await create_notification(
        target.id,
        "account_unbanned",
        "Account restored",
        "Your account has been reactivated.",
        {"unbanned_by": admin.id},
    )
    logger.info("Admin %s unbanned user %s", admin.id, target.id)
    await audit_service.record(
        admin, "unban_user", "user", target.id,
        {"previous_reason": target.ban_reason, "user_email": target.email},
        request=request,
    )
    return {"message": "Ban lifted."}


async def update_user_roles(
    target_id: str, roles: list[str], admin: Actor, *, request: Optional[Request] = None,
) -> dict:
    try:
        new_roles = {Role(role) for role in roles}
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role.")
    new_roles.add(Role.USER)

    target = await _load_user(target_id)
    _authorize_target(admin, Capability.MANAGE_ROLES, target, "change the roles of")

    old_values = sorted(r.value for r in target.roles)
    new_values = sorted(r.value for r in new_roles)
    await _db.db.users.update_one(
        {"_id": _object_id(target.id)},
        {"$set": {"roles": new_values, "updated_at": utcnow()}},
    )
    await create_notification(
        target.id,
        "roles_updated",
        "Roles updated",
        f"Your roles are now: {', '.join(new_values)}",
        {"roles": new_values},
    )
    await audit_service.record(
        admin, "update_roles", "user", target.id,
        {"old_roles": old_values, "new_roles": new_values},
        request=request,
    )
    return {"message": "Roles updated.", "roles": new_values}


async def delete_user(
    target_id: str, admin: Actor, reason: str, *, request: Optional[Request] = None,
) -> dict:
    target = await _load_user(target_id)
    _authorize_target(admin, Capability.DELETE_USER, target, "delete")

    trips_count = await _db.db.trips.count_documents({"owner_id": target.id})
    requests_count = await _db.db.delivery_requests.count_documents({"owner_id": target.id})

    # Written before the delete so the trail survives a partial failure
    await audit_service.record(
        admin, "delete_user", "user", target.id,
        {
            "reason": reason,
            "user_email": target.email,
            "user_name": target.display_name,
            "trips_count": trips_count,
            "requests_count": requests_count,
        },
        request=request,
    )

    await _delete_owned_content(target.id)
    await _delete_counterpart_records(target.id)
    await _db.db.notifications.delete_many({"user_id": target.id})
    await invalidate_user_tokens(target.id)
    await _db.db.users.delete_one({"_id": _object_id(target.id)})

    logger.info("Admin %s deleted user %s", admin.id, target.id)
    return {"message": f"{target.email} has been deleted."}


# --- Content ---

async def _delete_owned_content(user_id: str) -> dict[str, int]:
    """Content the user authored: trips, requests, written reviews, sent messages."""
    counts = {}
    for kind, content_kind in CONTENT_KINDS.items():
        result = await _db.db[content_kind.model.collection].delete_many({content_kind.owner_field: user_id})
        counts[kind.value] = result.deleted_count
    return counts


async def _delete_counterpart_records(user_id: str) -> None:
    """Reviews about the user and messages sent to them.

    Both need the user on the other side, so they go with the account but not
    with a content wipe.
    """
    reviews = await _db.db.reviews.delete_many({"subject_id": user_id})
    messages = await _db.db.messages.delete_many({"recipient_id": user_id})
    logger.info(
        "Removed %d reviews about and %d messages to deleted user %s",
        reviews.deleted_count, messages.deleted_count, user_id,
    )


async def delete_content(
    kind: ResourceKind,
    content_id: str,
    admin: Actor,
    reason: str,
    notify_user: bool = True,
    *,
    request: Optional[Request] = None,
) -> dict:
    """Remove one trip, delivery request, review or message."""
    content_kind = CONTENT_KINDS.get(kind)
    if content_kind is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported content type.")
    _require(admin, Capability.DELETE_CONTENT)

    collection = _db.db[content_kind.model.collection]
    oid = _object_id(content_id)
    doc = await collection.find_one({"_id": oid})
    if not doc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{content_kind.label.capitalize()} not found.",
        )
    resource = content_kind.model.from_doc(doc)
    owner_id = getattr(resource, content_kind.owner_field)

    if notify_user:
        await create_notification(
            owner_id,
            "content_deleted",
            f"Your {content_kind.label} was removed",
            f"Your {content_kind.label} was removed by a moderator. Reason: {reason}",
            {"content_type": kind.value, "content_id": resource.id, "reason": reason},
        )

    await audit_service.record(
        admin, f"delete_{kind.value}", kind.value, resource.id,
        {"reason": reason, "owner_id": owner_id, "notified": notify_user},
        request=request,
    )
    await collection.delete_one({"_id": oid})
    logger.info("Admin %s deleted %s %s", admin.id, content_kind.label, resource.id)
    return {"message": f"{content_kind.label.capitalize()} deleted."}


async def delete_trip(trip_id: str, admin: Actor, reason: str, notify_user: bool = True, **kwargs) -> dict:
    return await delete_content(ResourceKind.TRIP, trip_id, admin, reason, notify_user, **kwargs)


async def delete_request(request_id: str, admin: Actor, reason: str, notify_user: bool = True, **kwargs) -> dict:
    return await delete_content(ResourceKind.DELIVERY_REQUEST, request_id, admin, reason, notify_user, **kwargs)


async def delete_review(review_id: str, admin: Actor, reason: str, notify_user: bool = True, **kwargs) -> dict:
    return await delete_content(ResourceKind.REVIEW, review_id, admin, reason, notify_user, **kwargs)


async def delete_message(message_id: str, admin: Actor, reason: str, notify_user: bool = True, **kwargs) -> dict:
    return await delete_content(ResourceKind.MESSAGE, message_id, admin, reason, notify_user, **kwargs)


async def delete_all_user_content(
    user_id: str, admin: Actor, reason: str, *, request: Optional[Request] = None,
) -> dict:
    """Wipe a user's trips, requests, reviews and messages without notifying them."""
    _require(admin, Capability.DELETE_CONTENT)
    target = await _load_user(user_id)

    counts = await _delete_owned_content(target.id)
    await audit_service.record(
        admin, "delete_all_user_content", "user", target.id,
        {"reason": reason, "user_email": target.email, **counts},
        request=request,
    )
    logger.info("Admin %s deleted all content of user %s: %s", admin.id, target.id, counts)
    return {"message": "All content deleted.", "deleted": counts}

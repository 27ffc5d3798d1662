"""
backend/app/services/authorization.py

Purpose:
    Authorization decisions for marketplace content and the admin area.
    ``decide(actor, capability, resource)`` is a pure function over in-memory
    snapshots: no I/O, no logging, never raises. Callers translate ``False``
    into a 403 and record allowed privileged actions through the audit service.

Dependencies:
    - app.models.user
    - app.models.resources
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from app.models.resources import (
    PUBLIC_REQUEST_STATUSES,
    PUBLIC_TRIP_STATUSES,
    DeliveryRequest,
    Message,
    Report,
    ResourceKind,
    Review,
    Trip,
)
from app.models.user import Actor, Role


class Capability(str, Enum):
    # Content capabilities, interpreted per resource kind
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    PROCESS = "process"

    # Admin area
    VIEW_DASHBOARD = "admin.view_dashboard"
    VIEW_STATS = "admin.view_stats"
    VIEW_LOGS = "admin.view_logs"
    EXPORT_LOGS = "admin.export_logs"
    VIEW_ALL_USERS = "admin.view_all_users"
    BAN_USER = "admin.ban_user"
    UNBAN_USER = "admin.unban_user"
    DELETE_USER = "admin.delete_user"
    MANAGE_ROLES = "admin.manage_roles"
    DELETE_CONTENT = "admin.delete_content"
    MANAGE_REPORTS = "admin.manage_reports"
    RUN_JOBS = "admin.run_jobs"


_STAFF_CAPABILITIES = frozenset({
    Capability.VIEW_DASHBOARD,
    Capability.VIEW_STATS,
    Capability.DELETE_CONTENT,
    Capability.MANAGE_REPORTS,
})
_ADMIN_ONLY_CAPABILITIES = frozenset({
    Capability.VIEW_LOGS,
    Capability.EXPORT_LOGS,
    Capability.VIEW_ALL_USERS,
    Capability.BAN_USER,
    Capability.UNBAN_USER,
    Capability.DELETE_USER,
    Capability.MANAGE_ROLES,
    Capability.RUN_JOBS,
})
ADMIN_CAPABILITIES = _STAFF_CAPABILITIES | _ADMIN_ONLY_CAPABILITIES

# Capabilities whose target user is protected: never self, never another admin.
TARGET_PROTECTED_CAPABILITIES = frozenset({
    Capability.BAN_USER,
    Capability.DELETE_USER,
    Capability.MANAGE_ROLES,
})

Subject = Union[Trip, DeliveryRequest, Review, Message, Report, Actor, ResourceKind, int, str, None]


def _is_admin(actor: Actor) -> bool:
    return Role.ADMIN in actor.roles


def _is_staff(actor: Actor) -> bool:
    return Role.ADMIN in actor.roles or Role.MODERATOR in actor.roles


def _coerce_capability(capability: Any) -> Capability | None:
    if isinstance(capability, Capability):
        return capability
    try:
        return Capability(capability)
    except ValueError:
        return None


def _is_bare_id(resource: Any) -> bool:
    # bool is an int subclass; a stray flag is not an identifier
    return isinstance(resource, (int, str)) and not isinstance(resource, (bool, Enum))


def decide(actor: Actor | None, capability: Capability | str, resource: Subject = None) -> bool:
    """Return True when ``actor`` may exercise ``capability`` on ``resource``.

    ``resource`` may be a materialized resource, the target ``Actor`` of an
    admin action, a ``ResourceKind`` (creation, no instance yet), a bare id,
    or None. Unsupported combinations are denied.
    """
    if actor is None:
        return False
    cap = _coerce_capability(capability)
    if cap is None:
        return False

    if cap in ADMIN_CAPABILITIES:
        return _decide_admin(actor, cap, resource)

    # A bare id cannot be checked for ownership: only admins pass.
    # Kept as an explicit conservative fallback for callers that do not
    # hydrate the resource.
    if _is_bare_id(resource):
        return _is_admin(actor)

    if isinstance(resource, Trip):
        return _decide_listing(actor, cap, resource.owner_id, resource.status in PUBLIC_TRIP_STATUSES)
    if isinstance(resource, DeliveryRequest):
        return _decide_listing(actor, cap, resource.owner_id, resource.status in PUBLIC_REQUEST_STATUSES)
    if isinstance(resource, Review):
        return _decide_review(actor, cap, resource)
    if isinstance(resource, Message):
        return _decide_message(actor, cap, resource)
    if isinstance(resource, Report):
        return _decide_report(actor, cap, resource)
    if isinstance(resource, ResourceKind):
        return _decide_creation(actor, cap, resource)
    return False


def _decide_admin(actor: Actor, cap: Capability, resource: Subject) -> bool:
    # Ban status is checked before any role match.
    if actor.is_banned:
        return False

    if cap in _STAFF_CAPABILITIES:
        return _is_staff(actor)

    if not _is_admin(actor):
        return False

    if cap in TARGET_PROTECTED_CAPABILITIES and isinstance(resource, Actor):
        return can_target_user(actor, resource)
    return True


def can_target_user(actor: Actor, target: Actor) -> bool:
    """Self-target and admin-on-admin protection for ban/delete/role edits."""
    if actor.id == target.id:
        return False
    if Role.ADMIN in target.roles:
        return False
    return _is_admin(actor)


def _decide_listing(actor: Actor, cap: Capability, owner_id: str, publicly_browsable: bool) -> bool:
    is_owner = actor.id == owner_id
    if cap == Capability.VIEW:
        return publicly_browsable or is_owner or _is_admin(actor)
    if cap in (Capability.EDIT, Capability.DELETE):
        return is_owner or _is_admin(actor)
    return False


def _decide_review(actor: Actor, cap: Capability, review: Review) -> bool:
    if cap == Capability.VIEW:
        return True
    if cap == Capability.EDIT:
        return actor.id == review.author_id or _is_admin(actor)
    if cap == Capability.DELETE:
        return actor.id in (review.author_id, review.subject_id) or _is_admin(actor)
    return False


def _decide_message(actor: Actor, cap: Capability, message: Message) -> bool:
    if cap == Capability.VIEW:
        return actor.id in (message.sender_id, message.recipient_id) or _is_admin(actor)
    if cap == Capability.DELETE:
        return actor.id == message.sender_id or _is_admin(actor)
    return False


def _decide_report(actor: Actor, cap: Capability, report: Report) -> bool:
    if cap == Capability.VIEW:
        return actor.id == report.reporter_id or _is_staff(actor)
    if cap == Capability.PROCESS:
        return _is_staff(actor)
    return False


def _decide_creation(actor: Actor, cap: Capability, kind: ResourceKind) -> bool:
    if kind == ResourceKind.REPORT and cap == Capability.PROCESS:
        return _is_staff(actor)
    if cap != Capability.CREATE:
        return False
    if kind in (ResourceKind.REPORT, ResourceKind.REVIEW, ResourceKind.MESSAGE):
        # Complete profile required to post, admins exempt
        return _is_admin(actor) or actor.is_profile_complete
    return False

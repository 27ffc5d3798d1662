"""
backend/app/services/event_models.py

Purpose:
    Realtime event contracts. Event type names are the stable strings clients
    filter on; ``RealtimeEnvelope`` is the wire shape pushed to subscribers.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.utils import utcnow

EventType = Literal[
    "user.banned",
    "user.unbanned",
    "user.deleted",
    "user.role.changed",
    "trip.expired",
    "trip.deleted",
    "delivery_request.expired",
    "delivery_request.deleted",
    "review.deleted",
    "message.deleted",
    "report.created",
    "report.handled",
    "report.rejected",
    "notification.new",
    "admin.stats.updated",
]

TRIP_EXPIRED: EventType = "trip.expired"
DELIVERY_REQUEST_EXPIRED: EventType = "delivery_request.expired"
ADMIN_STATS_UPDATED: EventType = "admin.stats.updated"
NOTIFICATION_NEW: EventType = "notification.new"
REPORT_CREATED: EventType = "report.created"
REPORT_HANDLED: EventType = "report.handled"
REPORT_REJECTED: EventType = "report.rejected"
USER_BANNED: EventType = "user.banned"


class RealtimeEnvelope(BaseModel):
    event_type: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

"""Marketplace content variants evaluated by the authorization engine.

Every variant is a snapshot of a Mongo document; ``from_doc`` maps ``_id`` to
``id``. Owner references are plain user-id strings and never change after
creation.
"""

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from pydantic import BaseModel


class ResourceKind(str, Enum):
    TRIP = "trip"
    DELIVERY_REQUEST = "delivery_request"
    REVIEW = "review"
    MESSAGE = "message"
    REPORT = "report"


class TripStatus(str, Enum):
    ACTIVE = "active"
    FULL = "full"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class DeliveryRequestStatus(str, Enum):
    SEARCHING = "searching"
    TRAVELER_FOUND = "traveler_found"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ReportStatus(str, Enum):
    PENDING = "pending"
    HANDLED = "handled"
    REJECTED = "rejected"


class _Document(BaseModel):
    kind: ClassVar[ResourceKind]
    collection: ClassVar[str]

    id: str

    @classmethod
    def from_doc(cls, doc: dict):
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class Trip(_Document):
    kind: ClassVar[ResourceKind] = ResourceKind.TRIP
    collection: ClassVar[str] = "trips"

    owner_id: str
    status: TripStatus = TripStatus.ACTIVE
    departure_city: str = ""
    arrival_city: str = ""
    departure_date: datetime
    available_kg: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeliveryRequest(_Document):
    kind: ClassVar[ResourceKind] = ResourceKind.DELIVERY_REQUEST
    collection: ClassVar[str] = "delivery_requests"

    owner_id: str
    status: DeliveryRequestStatus = DeliveryRequestStatus.SEARCHING
    departure_city: str = ""
    arrival_city: str = ""
    deadline: Optional[datetime] = None
    weight_kg: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Review(_Document):
    kind: ClassVar[ResourceKind] = ResourceKind.REVIEW
    collection: ClassVar[str] = "reviews"

    author_id: str
    subject_id: str
    rating: int = 0
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class Message(_Document):
    kind: ClassVar[ResourceKind] = ResourceKind.MESSAGE
    collection: ClassVar[str] = "messages"

    sender_id: str
    recipient_id: str
    content: str = ""
    created_at: Optional[datetime] = None


class Report(_Document):
    kind: ClassVar[ResourceKind] = ResourceKind.REPORT
    collection: ClassVar[str] = "reports"

    reporter_id: str
    reported_user_id: Optional[str] = None
    reported_message_id: Optional[str] = None
    reported_trip_id: Optional[str] = None
    reported_request_id: Optional[str] = None
    reason: str = ""
    description: Optional[str] = None
    status: ReportStatus = ReportStatus.PENDING
    admin_response: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


Resource = Union[Trip, DeliveryRequest, Review, Message, Report]

# Statuses in which listings are browsable by anyone.
PUBLIC_TRIP_STATUSES = frozenset({TripStatus.ACTIVE})
PUBLIC_REQUEST_STATUSES = frozenset({DeliveryRequestStatus.SEARCHING})

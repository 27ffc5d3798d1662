from datetime import date, datetime, time, timezone

from bson import ObjectId
from bson.errors import InvalidId


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB hands datetimes back without tzinfo. Wrap them before comparing
    with utcnow(), otherwise Python refuses to compare naive and aware values.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(dt: datetime | None) -> datetime | None:
    """None-safe UTC conversion for JSON serialization at API boundaries."""
    if dt is None:
        return None
    return ensure_utc(dt)


def start_of_day(moment: datetime | date | None = None) -> datetime:
    """Midnight (UTC) of the given day; today when omitted.

    Deadline comparisons are date-granular, so every expiration cutoff is
    computed through here.
    """
    if moment is None:
        moment = utcnow()
    if isinstance(moment, datetime):
        moment = ensure_utc(moment).date()
    return datetime.combine(moment, time.min, tzinfo=timezone.utc)


def to_object_id(value: str | ObjectId) -> ObjectId | None:
    """Parse an id coming from a path/body. Returns None when malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AuditLogEntry(BaseModel):
    """Immutable record of one privileged action.

    Insert-only. The retention sweep is the only path that removes entries.
    """

    admin_id: str  # Who did it?
    action: str  # e.g. "ban_user", "delete_trip"
    target_type: str  # "user", "trip", "delivery_request", ...
    target_id: str
    details: dict = Field(default_factory=dict)
    ip_truncated: str = ""  # e.g. "192.168.1.xxx" (GDPR-compliant)
    user_agent: Optional[str] = None
    timestamp: datetime

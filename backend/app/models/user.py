from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class Actor(BaseModel):
    """Authenticated identity as seen by authorization and moderation.

    Roles are an unordered set of independent grants: ADMIN does not imply
    MODERATOR and vice versa.
    """
    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    roles: set[Role] = Field(default_factory=lambda: {Role.USER})
    is_banned: bool = False
    banned_at: Optional[datetime] = None
    ban_reason: Optional[str] = None
    banned_by: Optional[str] = None  # id of the banning actor, may dangle
    # Profile completeness inputs
    email_verified: bool = False
    phone_verified: bool = False
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    address_line1: Optional[str] = None
    postal_code: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("roles", mode="before")
    @classmethod
    def _ignore_unknown_roles(cls, v):
        if v is None:
            return {Role.USER}
        known = {r.value for r in Role}
        return {r for r in v if (r.value if isinstance(r, Role) else r) in known}

    @classmethod
    def from_doc(cls, doc: dict) -> "Actor":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        if data.get("banned_by") is not None:
            data["banned_by"] = str(data["banned_by"])
        return cls.model_validate(data)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_moderator(self) -> bool:
        return Role.MODERATOR in self.roles

    @property
    def display_name(self) -> str:
        return f"{self.last_name} {self.first_name}".strip()

    @property
    def is_profile_complete(self) -> bool:
        """Verified contact data plus one complete address format.

        Either the district-based format or the postal format (line 1 +
        postal code) satisfies the address requirement.
        """
        base_complete = (
            self.email_verified
            and self.phone_verified
            and bool(self.phone)
            and bool(self.country)
            and bool(self.city)
        )
        if not base_complete:
            return False
        district_format = bool(self.district)
        postal_format = bool(self.address_line1) and bool(self.postal_code)
        return district_format or postal_format

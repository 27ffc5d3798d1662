from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.user import Role


class BanUserBody(BaseModel):
    """Request body for banning a user."""
    reason: str = Field(..., min_length=3, max_length=500)


class DeleteUserBody(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class UpdateRolesBody(BaseModel):
    """Replace the role set of a user."""
    roles: list[str] = Field(..., min_length=1)

    @field_validator("roles")
    @classmethod
    def roles_known(cls, v: list[str]) -> list[str]:
        known = {r.value for r in Role}
        for role in v:
            if role not in known:
                raise ValueError(f"Invalid role: {role}")
        return v


class DeleteContentBody(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
    notify_user: bool = True


class ProcessReportBody(BaseModel):
    status: Literal["handled", "rejected"]
    admin_response: Optional[str] = Field(None, max_length=2000)


class CreateReportBody(BaseModel):
    """Report a trip, a delivery request, a message or a user."""
    reason: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    trip_id: Optional[str] = None
    request_id: Optional[str] = None
    message_id: Optional[str] = None
    reported_user_id: Optional[str] = None


class RunExpirationBody(BaseModel):
    batch_size: Optional[int] = Field(None, gt=0, le=10000)

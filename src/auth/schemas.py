"""Pydantic schemas for authentication payloads."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.auth.permissions import UserRole


class UserResponse(BaseModel):
    """Authenticated user, as carried by the access token."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role: UserRole
    email: str | None = None
    teacher_id: UUID | None = Field(
        default=None, description="Linked teacher (students only)"
    )


class AdminTokenClaims(BaseModel):
    """Claims of an anonymous admin token.

    Every field is required. Audience membership is checked against the
    configured portal allow-list by the admin override policy.
    """

    model_config = ConfigDict(extra="ignore")

    type: Literal["anonymous_admin"]
    aud: str
    exp: datetime


class AnonymousAdminTokenRequest(BaseModel):
    """Request to issue an anonymous admin token."""

    audience: Literal["teacher_portal", "student_portal"]
    expires_minutes: int | None = Field(default=None, ge=1, le=24 * 60)


class AnonymousAdminTokenResponse(BaseModel):
    """Issued anonymous admin token."""

    token: str
    audience: str
    expires_at: datetime

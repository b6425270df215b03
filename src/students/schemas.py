"""Pydantic schemas for the student portal."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from src.auth.permissions import UserRole

from .models import InvitationCode, LinkSource, TeacherLink


# ==============================================================================
# Gate
# ==============================================================================


class GateRequirements(BaseModel):
    """What a student needs to enter the portal."""

    authentication_required: bool = False
    invitation_code_required: bool = False
    parent_consent_required: bool = False


class GateResult(BaseModel):
    """Outcome of a student portal access check."""

    access_allowed: bool
    access_mode: str
    requirements: GateRequirements = Field(default_factory=GateRequirements)
    student_onboarding_enabled: bool = False
    teacher_onboarding_enabled: bool = True
    reason: str = ""


class AccessRequirementsResponse(BaseModel):
    """Current portal mode and its requirements."""

    access_mode: str
    requirements: GateRequirements
    student_onboarding_enabled: bool = False
    teacher_onboarding_enabled: bool = True


class ValidateAccessRequest(BaseModel):
    """Codes presented at portal entry."""

    invitation_code: str | None = Field(default=None, max_length=32)
    lobby_code: str | None = Field(default=None, max_length=32)


class GateContext(BaseModel):
    """Who is knocking on the portal."""

    is_authenticated: bool = False
    role: UserRole = UserRole.GUEST
    has_invitation_code: bool = False
    has_lobby_code: bool = False


# ==============================================================================
# Links and invitation codes
# ==============================================================================


class InvitationCodeResponse(BaseModel):
    """A teacher's invitation code."""

    code: str
    teacher_id: UUID
    created_at: datetime

    @classmethod
    def from_invitation(cls, invitation: InvitationCode) -> "InvitationCodeResponse":
        """Create response from InvitationCode entity."""
        return cls(
            code=invitation.code,
            teacher_id=invitation.teacher_id,
            created_at=invitation.created_at,
        )


class RedeemCodeRequest(BaseModel):
    """Invitation code typed by a student."""

    code: str = Field(..., min_length=4, max_length=32)


class TeacherLinkResponse(BaseModel):
    """A student's link to a teacher."""

    student_id: UUID
    teacher_id: UUID
    source: LinkSource
    linked_at: datetime

    @classmethod
    def from_link(cls, link: TeacherLink) -> "TeacherLinkResponse":
        """Create response from TeacherLink entity."""
        return cls(
            student_id=link.student_id,
            teacher_id=link.teacher_id,
            source=link.source,
            linked_at=link.linked_at,
        )

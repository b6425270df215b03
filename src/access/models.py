"""Core access-control types.

Subjects and entity references are supplied per request and never
persisted. Products, purchases, claims and links live in their own
modules and are reached through the provider protocols.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal
from uuid import UUID

from src.auth.permissions import UserRole, parse_role


if TYPE_CHECKING:
    from src.auth.schemas import UserResponse


class EntityType(str, Enum):
    """Kinds of content that can be sold, claimed or shared."""

    FILE = "file"
    GAME = "game"
    WORKSHOP = "workshop"
    COURSE = "course"
    TOOL = "tool"
    LESSON_PLAN = "lesson_plan"
    BUNDLE = "bundle"


class AccessType(str, Enum):
    """Channel through which access was granted."""

    CREATOR = "creator"
    PURCHASE = "purchase"
    SUBSCRIPTION_CLAIM = "subscription_claim"
    STUDENT_VIA_TEACHER = "student_via_teacher"
    NONE = "none"


UNLIMITED: Literal["unlimited"] = "unlimited"

AllowanceAmount = int | Literal["unlimited"]


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive timestamps)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def current_month_year(now: datetime | None = None) -> str:
    """Billing bucket for a moment in time, formatted YYYY-MM (UTC)."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).strftime("%Y-%m")


@dataclass(frozen=True)
class Subject:
    """Actor requesting access."""

    id: UUID | None
    role: UserRole
    teacher_link_id: UUID | None = None

    @classmethod
    def guest(cls) -> "Subject":
        """Anonymous visitor."""
        return cls(id=None, role=UserRole.GUEST)

    @classmethod
    def from_user(cls, user: "UserResponse | None") -> "Subject":
        """Build a subject from the authenticated user, or a guest."""
        if user is None:
            return cls.guest()
        return cls(id=user.id, role=parse_role(user.role), teacher_link_id=user.teacher_id)


@dataclass(frozen=True)
class EntityRef:
    """Reference to a piece of content."""

    entity_type: EntityType
    entity_id: UUID


@dataclass(frozen=True)
class RequestContext:
    """Request-level data consulted by admin overrides."""

    anonymous_admin_token: str | None = None

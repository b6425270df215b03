"""Teacher link models and Cassandra schema.

Provides:
- TeacherLink entity (one active teacher per student)
- InvitationCode entity (short code a teacher hands to students)
- Cassandra table definitions for links and codes
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from src.access.models import ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row


class LinkSource(str, Enum):
    """How a student got linked to a teacher."""

    INVITATION_CODE = "invitation_code"
    LOBBY = "lobby"
    ADMIN = "admin"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

TEACHER_LINKS_BY_STUDENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.teacher_links_by_student (
    student_id UUID,
    teacher_id UUID,
    source TEXT,
    linked_at TIMESTAMP,
    is_active BOOLEAN,
    PRIMARY KEY (student_id)
)
"""

STUDENTS_BY_TEACHER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.students_by_teacher (
    teacher_id UUID,
    student_id UUID,
    source TEXT,
    linked_at TIMESTAMP,
    PRIMARY KEY ((teacher_id), student_id)
)
"""

INVITATION_CODES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.invitation_codes (
    code TEXT,
    teacher_id UUID,
    is_active BOOLEAN,
    created_at TIMESTAMP,
    PRIMARY KEY (code)
)
"""

STUDENTS_TABLES_CQL = [
    TEACHER_LINKS_BY_STUDENT_TABLE_CQL,
    STUDENTS_BY_TEACHER_TABLE_CQL,
    INVITATION_CODES_TABLE_CQL,
]


# ==============================================================================
# Entities
# ==============================================================================


@dataclass
class TeacherLink:
    """Link from a student to the teacher whose access they share."""

    student_id: UUID
    teacher_id: UUID
    source: LinkSource = LinkSource.INVITATION_CODE
    linked_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_active: bool = True

    @classmethod
    def from_row(cls, row: "Row") -> "TeacherLink":
        """Create instance from Cassandra row."""
        return cls(
            student_id=row.student_id,
            teacher_id=row.teacher_id,
            source=LinkSource(row.source),
            linked_at=ensure_utc_aware(row.linked_at) or datetime.now(UTC),
            is_active=bool(row.is_active),
        )


@dataclass
class InvitationCode:
    """Short code that links a student to a teacher."""

    code: str
    teacher_id: UUID
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "InvitationCode":
        """Create instance from Cassandra row."""
        return cls(
            code=row.code,
            teacher_id=row.teacher_id,
            is_active=bool(row.is_active),
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
        )

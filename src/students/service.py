# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Teacher link service layer.

Business logic for:
- Looking up a student's teacher
- Linking students to teachers
- Creating and redeeming invitation codes
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from cassandra.query import BatchStatement, BatchType

from src.access.errors import InvalidInvitationCodeError
from src.access.models import ensure_utc_aware
from src.core.logging import get_logger

from .models import InvitationCode, LinkSource, TeacherLink
from .security import (
    INVITATION_CODE_LENGTH,
    generate_invitation_code,
    normalize_invitation_code,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)

MAX_CODE_ATTEMPTS = 5


class TeacherLinkService:
    """Service for teacher-student links and invitation codes."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        code_length: int = INVITATION_CODE_LENGTH,
    ):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self.code_length = code_length
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        ks = self.keyspace

        self._get_link = self.session.prepare(
            f"SELECT * FROM {ks}.teacher_links_by_student WHERE student_id = ?"
        )
        self._upsert_link = self.session.prepare(f"""
            INSERT INTO {ks}.teacher_links_by_student
            (student_id, teacher_id, source, linked_at, is_active)
            VALUES (?, ?, ?, ?, ?)
        """)
        self._insert_student_by_teacher = self.session.prepare(f"""
            INSERT INTO {ks}.students_by_teacher
            (teacher_id, student_id, source, linked_at)
            VALUES (?, ?, ?, ?)
        """)
        self._delete_student_by_teacher = self.session.prepare(f"""
            DELETE FROM {ks}.students_by_teacher
            WHERE teacher_id = ? AND student_id = ?
        """)
        self._list_students = self.session.prepare(
            f"SELECT * FROM {ks}.students_by_teacher WHERE teacher_id = ?"
        )

        self._get_code = self.session.prepare(
            f"SELECT * FROM {ks}.invitation_codes WHERE code = ?"
        )
        self._insert_code = self.session.prepare(f"""
            INSERT INTO {ks}.invitation_codes (code, teacher_id, is_active, created_at)
            VALUES (?, ?, ?, ?)
            IF NOT EXISTS
        """)

    # ==========================================================================
    # Links
    # ==========================================================================

    async def get_link(self, student_id: UUID) -> TeacherLink | None:
        """Current link of a student (active or not)."""
        result = await self.session.aexecute(self._get_link, [student_id])
        row = result.one()
        return TeacherLink.from_row(row) if row else None

    async def find_teacher_for_student(self, student_id: UUID) -> UUID | None:
        """Teacher of the student's active link."""
        link = await self.get_link(student_id)
        if link is None or not link.is_active:
            return None
        return link.teacher_id

    async def link_student(
        self,
        student_id: UUID,
        teacher_id: UUID,
        source: LinkSource = LinkSource.ADMIN,
    ) -> TeacherLink:
        """Link a student to a teacher, replacing any previous link."""
        if student_id == teacher_id:
            msg = "A user cannot be linked to themselves"
            raise ValueError(msg)

        previous = await self.get_link(student_id)
        link = TeacherLink(
            student_id=student_id,
            teacher_id=teacher_id,
            source=source,
            linked_at=datetime.now(UTC),
        )

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(
            self._upsert_link,
            [link.student_id, link.teacher_id, link.source.value, link.linked_at, True],
        )
        batch.add(
            self._insert_student_by_teacher,
            [link.teacher_id, link.student_id, link.source.value, link.linked_at],
        )
        if previous and previous.teacher_id != teacher_id:
            batch.add(self._delete_student_by_teacher, [previous.teacher_id, student_id])
        await self.session.aexecute(batch)

        logger.info(
            "student_linked",
            student_id=str(student_id),
            teacher_id=str(teacher_id),
            source=source.value,
            previous_teacher_id=str(previous.teacher_id) if previous else None,
        )
        return link

    async def list_students(self, teacher_id: UUID) -> list[TeacherLink]:
        """Students linked to a teacher, most recent first."""
        rows = await self.session.aexecute(self._list_students, [teacher_id])
        links = [
            TeacherLink(
                student_id=row.student_id,
                teacher_id=row.teacher_id,
                source=LinkSource(row.source),
                linked_at=ensure_utc_aware(row.linked_at) or datetime.now(UTC),
            )
            for row in rows
        ]
        return sorted(links, key=lambda link: link.linked_at, reverse=True)

    # ==========================================================================
    # Invitation codes
    # ==========================================================================

    async def create_invitation_code(self, teacher_id: UUID) -> InvitationCode:
        """Create a fresh invitation code for a teacher.

        Raises:
            RuntimeError: If no free code was found
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            invitation = InvitationCode(
                code=generate_invitation_code(self.code_length),
                teacher_id=teacher_id,
            )
            result = await self.session.aexecute(
                self._insert_code,
                [
                    invitation.code,
                    invitation.teacher_id,
                    invitation.is_active,
                    invitation.created_at,
                ],
            )
            if result.was_applied:
                logger.info(
                    "invitation_code_created",
                    teacher_id=str(teacher_id),
                    code=invitation.code,
                )
                return invitation

            logger.warning("invitation_code_collision", teacher_id=str(teacher_id))

        msg = "Could not generate a unique invitation code"
        raise RuntimeError(msg)

    async def get_invitation_code(self, code: str) -> InvitationCode | None:
        """Active invitation code, or None."""
        result = await self.session.aexecute(
            self._get_code, [normalize_invitation_code(code)]
        )
        row = result.one()
        if not row:
            return None
        invitation = InvitationCode.from_row(row)
        return invitation if invitation.is_active else None

    async def redeem_invitation_code(self, student_id: UUID, code: str) -> TeacherLink:
        """Link a student to the teacher behind an invitation code.

        Raises:
            InvalidInvitationCodeError: If the code is unknown or inactive
        """
        invitation = await self.get_invitation_code(code)
        if invitation is None:
            raise InvalidInvitationCodeError

        return await self.link_student(
            student_id, invitation.teacher_id, LinkSource.INVITATION_CODE
        )

"""Students module.

Teacher-student links, invitation codes and the student portal gate.
A student's content access is always the linked teacher's access.
"""

from .models import STUDENTS_TABLES_CQL, InvitationCode, LinkSource, TeacherLink


__all__ = ["STUDENTS_TABLES_CQL", "InvitationCode", "LinkSource", "TeacherLink"]

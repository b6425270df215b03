"""Dependency injection for the students module."""

from typing import Annotated

from fastapi import Depends

from .gate import StudentAccessGate
from .service import TeacherLinkService


# Module-level references to be overridden by main.py
_teacher_link_service_getter = None
_gate_getter = None


def set_teacher_link_service_getter(getter):
    """Set the teacher link service getter function.

    Called by main.py during app initialization.
    """
    global _teacher_link_service_getter  # noqa: PLW0603 - Required for DI pattern
    _teacher_link_service_getter = getter


def set_gate_getter(getter):
    """Set the student access gate getter function."""
    global _gate_getter  # noqa: PLW0603 - Required for DI pattern
    _gate_getter = getter


def get_teacher_link_service() -> TeacherLinkService:
    """Get TeacherLinkService instance."""
    if _teacher_link_service_getter is None:
        raise RuntimeError(
            "TeacherLinkService not configured - call set_teacher_link_service_getter first"
        )
    return _teacher_link_service_getter()


def get_student_gate() -> StudentAccessGate:
    """Get StudentAccessGate instance."""
    if _gate_getter is None:
        raise RuntimeError("StudentAccessGate not configured - call set_gate_getter first")
    return _gate_getter()


TeacherLinkServiceDep = Annotated[TeacherLinkService, Depends(get_teacher_link_service)]
StudentGateDep = Annotated[StudentAccessGate, Depends(get_student_gate)]

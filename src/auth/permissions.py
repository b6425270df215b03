"""Roles and role checks for Ludora.

Hierarchical levels:
- ADMIN (4): Full system access
- SYSADMIN (3): Admin access minus a configurable set of forbidden actions
- TEACHER (2): Buys and claims content, manages linked students
- STUDENT (1): Reaches content through a linked teacher
- GUEST (0): Anonymous or unregistered visitor
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles, ordered by permission level."""

    GUEST = "guest"
    STUDENT = "student"
    TEACHER = "teacher"
    SYSADMIN = "sysadmin"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.GUEST: 0,
    UserRole.STUDENT: 1,
    UserRole.TEACHER: 2,
    UserRole.SYSADMIN: 3,
    UserRole.ADMIN: 4,
}


def parse_role(role: UserRole | str | None) -> UserRole:
    """Parse a role value, falling back to GUEST for unknown roles."""
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(role)
    except ValueError:
        return UserRole.GUEST


def get_role_level(role: UserRole | str | None) -> int:
    """Get the permission level for a role (0 for unknown roles)."""
    return ROLE_HIERARCHY[parse_role(role)]


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.TEACHER)
        True
        >>> has_permission("student", "teacher")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_admin(role: UserRole | str | None) -> bool:
    """Check if role is ADMIN."""
    return parse_role(role) == UserRole.ADMIN


def is_sysadmin(role: UserRole | str | None) -> bool:
    """Check if role is SYSADMIN."""
    return parse_role(role) == UserRole.SYSADMIN


def is_teacher(role: UserRole | str | None) -> bool:
    """Check if role is TEACHER."""
    return parse_role(role) == UserRole.TEACHER


def is_student(role: UserRole | str | None) -> bool:
    """Check if role is STUDENT."""
    return parse_role(role) == UserRole.STUDENT


def is_staff(role: UserRole | str | None) -> bool:
    """Check if role is ADMIN or SYSADMIN."""
    return parse_role(role) in {UserRole.ADMIN, UserRole.SYSADMIN}


def is_at_least_teacher(role: UserRole | str | None) -> bool:
    """Check if role is TEACHER or higher."""
    return has_permission(parse_role(role), UserRole.TEACHER)

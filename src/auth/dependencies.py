"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current user extraction from JWT
- Role-based access control
- Permission checks
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from pydantic import ValidationError

from src.auth.permissions import UserRole, has_permission, parse_role
from src.auth.schemas import UserResponse
from src.auth.security import decode_access_token
from src.core.context import bind_subject


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: FastAPI request

    Returns:
        Token string or None if not present
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


def _user_from_token(token: str) -> UserResponse:
    """Build the user carried by an access token.

    Raises:
        JWTError: If the token is invalid, expired or malformed
    """
    payload = decode_access_token(token)
    try:
        user = UserResponse(
            id=payload["sub"],
            role=parse_role(payload.get("role")),
            email=payload.get("email"),
            teacher_id=payload.get("teacher_id"),
        )
    except (KeyError, ValidationError) as e:
        msg = "Malformed token payload"
        raise JWTError(msg) from e

    bind_subject(user.id, user.role.value)
    return user


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> UserResponse:
    """Get current authenticated user from JWT token.

    This is the main authentication dependency.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return _user_from_token(token)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user_optional(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> UserResponse | None:
    """Get current user if authenticated, None otherwise.

    Use this for endpoints that work for both authenticated and anonymous users.
    """
    if not token:
        return None

    try:
        return _user_from_token(token)
    except JWTError:
        return None


def require_role(*allowed_roles: UserRole):
    """Create dependency requiring specific role(s).

    Args:
        *allowed_roles: Roles that are allowed (exact match)

    Returns:
        Dependency function
    """

    async def role_checker(
        user: Annotated[UserResponse, Depends(get_current_user)],
    ) -> UserResponse:
        if user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return user

    return role_checker


def require_permission(required_role: UserRole):
    """Create dependency requiring at least a permission level.

    Uses hierarchical comparison: ADMIN >= SYSADMIN >= TEACHER >= STUDENT >= GUEST

    Example:
        @router.get("/teacher-area")
        async def teacher_endpoint(
            user: Annotated[UserResponse, Depends(require_permission(UserRole.TEACHER))]
        ):
            # Accessible by TEACHER, SYSADMIN and ADMIN
            ...
    """

    async def permission_checker(
        user: Annotated[UserResponse, Depends(get_current_user)],
    ) -> UserResponse:
        if not has_permission(user.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return user

    return permission_checker


# ==============================================================================
# Pre-built Role Dependencies
# ==============================================================================


def require_teacher():
    """Require TEACHER or higher role."""
    return require_permission(UserRole.TEACHER)


def require_student():
    """Require STUDENT role (exact)."""
    return require_role(UserRole.STUDENT)


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

# Basic authenticated user
CurrentUser = Annotated[UserResponse, Depends(get_current_user)]

# Optional user (for endpoints that work both ways)
OptionalUser = Annotated[UserResponse | None, Depends(get_current_user_optional)]

# Role-specific dependencies
TeacherUser = Annotated[UserResponse, Depends(require_teacher())]
StudentUser = Annotated[UserResponse, Depends(require_student())]

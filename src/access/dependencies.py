"""Dependency injection for the access module."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.auth.dependencies import OptionalUser
from src.auth.schemas import UserResponse
from src.config.settings import Settings, get_settings
from src.purchases.service import PurchaseService

from .admin import AdminAction, AdminOverridePolicy
from .models import RequestContext, Subject
from .resolver import AccessResolver


# Module-level references to be overridden by main.py
_resolver_getter = None
_purchase_service_getter = None


def set_resolver_getter(getter):
    """Set the access resolver getter function.

    Called by main.py during app initialization.
    """
    global _resolver_getter  # noqa: PLW0603 - Required for DI pattern
    _resolver_getter = getter


def set_purchase_service_getter(getter):
    """Set the purchase service getter function."""
    global _purchase_service_getter  # noqa: PLW0603 - Required for DI pattern
    _purchase_service_getter = getter


def get_access_resolver() -> AccessResolver:
    """Get AccessResolver instance."""
    if _resolver_getter is None:
        raise RuntimeError("AccessResolver not configured - call set_resolver_getter first")
    return _resolver_getter()


def get_purchase_service() -> PurchaseService:
    """Get PurchaseService instance."""
    if _purchase_service_getter is None:
        raise RuntimeError(
            "PurchaseService not configured - call set_purchase_service_getter first"
        )
    return _purchase_service_getter()


def get_admin_policy(
    settings: Annotated[Settings, Depends(get_settings)],
) -> AdminOverridePolicy:
    """Admin override policy built from settings."""
    return AdminOverridePolicy.from_settings(settings)


def get_request_context(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> RequestContext:
    """Anonymous admin token from the header, falling back to the cookie."""
    token = request.headers.get(settings.anonymous_admin_header) or request.cookies.get(
        settings.anonymous_admin_cookie
    )
    return RequestContext(anonymous_admin_token=token or None)


def get_subject(user: OptionalUser) -> Subject:
    """Subject for the caller (guest when anonymous)."""
    return Subject.from_user(user)


AccessResolverDep = Annotated[AccessResolver, Depends(get_access_resolver)]
PurchaseServiceDep = Annotated[PurchaseService, Depends(get_purchase_service)]
AdminPolicyDep = Annotated[AdminOverridePolicy, Depends(get_admin_policy)]
RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]
SubjectDep = Annotated[Subject, Depends(get_subject)]


# ==============================================================================
# Admin action guards
# ==============================================================================


def require_admin_action(action: AdminAction, allow_anonymous: bool = False):
    """Create dependency allowing only callers with admin power for an action.

    Mutations need an identified caller for the audit trail, so anonymous
    admin tokens are only honored when allow_anonymous is set.

    Returns:
        Dependency function yielding the caller (None for anonymous admins)
    """

    async def admin_checker(
        user: OptionalUser,
        policy: AdminPolicyDep,
        ctx: RequestContextDep,
    ) -> UserResponse | None:
        if user is not None and policy.have_admin_access(user.role, action):
            return user
        if allow_anonymous and policy.is_anonymous_admin(ctx):
            return user

        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Access token not provided",
                headers={"WWW-Authenticate": "Bearer"},
            )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    return admin_checker

"""HTTP endpoints for access checks and admin access management.

Provides:
- GET    /v1/access/check/{entity_type}/{entity_id} - Access decision for the caller
- GET    /v1/access/my-purchases - Caller's purchases
- POST   /v1/access/grant - Grant access (admin)
- DELETE /v1/access/revoke - Revoke access (admin)
- GET    /v1/access/entity/{entity_type}/{entity_id}/users - Users with access (admin)
- GET    /v1/access/entity/{entity_type}/{entity_id}/stats - Access stats (admin)
- POST   /v1/access/anonymous-admin-token - Issue a portal preview token (admin)
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from src.auth.dependencies import CurrentUser, require_role
from src.auth.permissions import UserRole
from src.auth.schemas import (
    AnonymousAdminTokenRequest,
    AnonymousAdminTokenResponse,
    UserResponse,
)
from src.auth.security import create_anonymous_admin_token
from src.config.settings import get_settings

from .admin import AdminAction
from .dependencies import (
    AccessResolverDep,
    PurchaseServiceDep,
    RequestContextDep,
    SubjectDep,
    require_admin_action,
)
from .errors import AccessControlError, handle_access_error
from .models import EntityRef, EntityType
from .schemas import (
    AccessDecision,
    EntityAccessStatsResponse,
    GrantAccessRequest,
    PurchaseListResponse,
    PurchaseResponse,
    RevokeAccessRequest,
    RevokeAccessResponse,
)


router = APIRouter(prefix="/v1/access", tags=["access"])

AdminCaller = UserResponse | None


# ==============================================================================
# User Endpoints
# ==============================================================================


@router.get(
    "/check/{entity_type}/{entity_id}",
    response_model=AccessDecision,
    response_model_by_alias=True,
    summary="Check access to an entity",
)
async def check_access(
    entity_type: EntityType,
    entity_id: UUID,
    resolver: AccessResolverDep,
    subject: SubjectDep,
    ctx: RequestContextDep,
) -> AccessDecision:
    """Access decision for the caller.

    Works anonymously; an anonymous admin token in the request grants the
    admin bypass.
    """
    try:
        return await resolver.resolve_access(
            subject, EntityRef(entity_type, entity_id), ctx
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e


@router.get(
    "/my-purchases",
    response_model=PurchaseListResponse,
    summary="List my purchases",
)
async def list_my_purchases(
    service: PurchaseServiceDep,
    current_user: CurrentUser,
    entity_type: EntityType | None = None,
    active_only: bool = False,
) -> PurchaseListResponse:
    """List the caller's purchases, newest first."""
    purchases = await service.get_user_purchases(
        user_id=current_user.id,
        entity_type=entity_type,
        active_only=active_only,
    )
    items = [PurchaseResponse.from_purchase(p) for p in purchases]
    return PurchaseListResponse(items=items, total=len(items))


# ==============================================================================
# Admin Endpoints
# ==============================================================================


@router.post(
    "/grant",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Grant access to a user",
)
async def grant_access(
    request: GrantAccessRequest,
    service: PurchaseServiceDep,
    admin: Annotated[AdminCaller, Depends(require_admin_action(AdminAction.ACCESS_GRANT))],
) -> PurchaseResponse:
    """Grant access by creating a completed admin purchase.

    Without access_days the product's own access duration applies.
    """
    try:
        purchase = await service.grant_access(
            user_id=request.user_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            granted_by=admin.id,
            access_days=request.access_days,
            is_lifetime=request.is_lifetime,
            price=request.price,
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e

    return PurchaseResponse.from_purchase(purchase)


@router.delete(
    "/revoke",
    response_model=RevokeAccessResponse,
    summary="Revoke access from a user",
)
async def revoke_access(
    request: RevokeAccessRequest,
    service: PurchaseServiceDep,
    admin: Annotated[AdminCaller, Depends(require_admin_action(AdminAction.ACCESS_GRANT))],
) -> RevokeAccessResponse:
    """Revoke access by refunding every active purchase of the entity."""
    try:
        revoked = await service.revoke_access(
            user_id=request.user_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            revoked_by=admin.id,
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e

    return RevokeAccessResponse(revoked_purchases=revoked)


@router.get(
    "/entity/{entity_type}/{entity_id}/users",
    response_model=PurchaseListResponse,
    summary="List users with access to an entity",
)
async def list_entity_users(
    entity_type: EntityType,
    entity_id: UUID,
    service: PurchaseServiceDep,
    _: Annotated[
        AdminCaller,
        Depends(
            require_admin_action(AdminAction.ENTITY_USERS_ACCESS, allow_anonymous=True)
        ),
    ],
) -> PurchaseListResponse:
    """Latest active purchase of each user with access."""
    try:
        purchases = await service.get_entity_users(entity_type, entity_id)
    except AccessControlError as e:
        raise handle_access_error(e) from e

    items = [PurchaseResponse.from_purchase(p) for p in purchases]
    return PurchaseListResponse(items=items, total=len(items))


@router.get(
    "/entity/{entity_type}/{entity_id}/stats",
    response_model=EntityAccessStatsResponse,
    summary="Access stats of an entity",
)
async def get_entity_stats(
    entity_type: EntityType,
    entity_id: UUID,
    service: PurchaseServiceDep,
    _: Annotated[
        AdminCaller,
        Depends(
            require_admin_action(AdminAction.ENTITY_STATS_ACCESS, allow_anonymous=True)
        ),
    ],
) -> EntityAccessStatsResponse:
    """Purchase and revenue totals of an entity."""
    try:
        stats = await service.get_entity_access_stats(entity_type, entity_id)
    except AccessControlError as e:
        raise handle_access_error(e) from e

    return EntityAccessStatsResponse(entity_type=entity_type, entity_id=entity_id, **stats)


@router.post(
    "/anonymous-admin-token",
    response_model=AnonymousAdminTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an anonymous admin token",
)
async def issue_anonymous_admin_token(
    request: AnonymousAdminTokenRequest,
    _: Annotated[UserResponse, Depends(require_role(UserRole.ADMIN))],
) -> AnonymousAdminTokenResponse:
    """Token that lets staff preview one portal without a user account."""
    settings = get_settings()
    minutes = request.expires_minutes or settings.anonymous_admin_token_expire_minutes
    expires_delta = timedelta(minutes=minutes)

    try:
        token = create_anonymous_admin_token(request.audience, expires_delta)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_audience", "message": str(e)},
        ) from e

    return AnonymousAdminTokenResponse(
        token=token,
        audience=request.audience,
        expires_at=datetime.now(UTC) + expires_delta,
    )

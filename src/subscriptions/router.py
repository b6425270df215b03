"""HTTP endpoints for subscription claims and allowances.

Provides:
- GET  /v1/subscriptions/allowances - Monthly allowances
- POST /v1/subscriptions/claim - Claim a product (two-phase)
- POST /v1/subscriptions/usage - Record a usage session
- GET  /v1/subscriptions/usage-summary - Claims of a month by product type
- POST /v1/admin/subscriptions/{subscription_id}/allowance/adjust - Ledger correction
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.access.admin import AdminAction
from src.access.dependencies import require_admin_action
from src.access.errors import AccessControlError, handle_access_error
from src.auth.dependencies import CurrentUser, TeacherUser
from src.auth.schemas import UserResponse

from .dependencies import ClaimServiceDep
from .schemas import (
    AllowanceAdjustRequest,
    AllowanceStateResponse,
    ClaimRequest,
    ClaimResponse,
    ClaimResult,
    MonthlyAllowancesResponse,
    RecordUsageRequest,
    UsageSummaryResponse,
)


router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])
admin_router = APIRouter(prefix="/v1/admin/subscriptions", tags=["admin-subscriptions"])

MonthYearQuery = Annotated[
    str | None, Query(pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM")
]


def _no_subscription() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "no_active_subscription", "message": "No active subscription"},
    )


@router.get(
    "/allowances",
    response_model=MonthlyAllowancesResponse,
    summary="Monthly allowances",
)
async def get_allowances(
    service: ClaimServiceDep,
    current_user: CurrentUser,
    month_year: MonthYearQuery = None,
) -> MonthlyAllowancesResponse:
    """Allowed, used and remaining claims per product type."""
    allowances = await service.get_monthly_allowances(current_user.id, month_year)
    if allowances is None:
        raise _no_subscription()
    return allowances


@router.post(
    "/claim",
    response_model=ClaimResult,
    summary="Claim a product",
)
async def claim_product(
    request: ClaimRequest,
    service: ClaimServiceDep,
    current_user: TeacherUser,
) -> ClaimResult:
    """Claim a product with the subscription allowance.

    Flow:
    1. First call returns needs_confirmation with the remaining count
    2. Repeat with skip_confirmation=true to consume one claim

    Unlimited benefits and products already claimed this month skip step 1.
    """
    try:
        return await service.claim_product(
            user_id=current_user.id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            skip_confirmation=request.skip_confirmation,
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e


@router.post(
    "/usage",
    response_model=ClaimResponse,
    summary="Record usage of a claimed product",
)
async def record_usage(
    request: RecordUsageRequest,
    service: ClaimServiceDep,
    current_user: CurrentUser,
) -> ClaimResponse:
    """Add one session to the claim's usage counters."""
    try:
        claim = await service.record_usage(
            user_id=current_user.id,
            product_type=request.product_type,
            product_id=request.product_id,
            duration_minutes=request.duration_minutes,
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e

    return ClaimResponse.from_claim(claim)


@router.get(
    "/usage-summary",
    response_model=UsageSummaryResponse,
    summary="Usage summary of a month",
)
async def get_usage_summary(
    service: ClaimServiceDep,
    current_user: CurrentUser,
    month_year: MonthYearQuery = None,
) -> UsageSummaryResponse:
    """Claims grouped by product type, with allowances."""
    summary = await service.get_user_usage_summary(current_user.id, month_year)
    if summary is None:
        raise _no_subscription()
    return summary


# ==============================================================================
# Admin Endpoints
# ==============================================================================


@admin_router.post(
    "/{subscription_id}/allowance/adjust",
    response_model=AllowanceStateResponse,
    summary="Adjust a monthly allowance",
)
async def adjust_allowance(
    subscription_id: UUID,
    request: AllowanceAdjustRequest,
    service: ClaimServiceDep,
    admin: Annotated[
        UserResponse | None, Depends(require_admin_action(AdminAction.ALLOWANCE_ADJUST))
    ],
) -> AllowanceStateResponse:
    """Correct the used count of a ledger row. Every change is audited."""
    try:
        return await service.adjust_allowance(
            subscription_id=subscription_id,
            product_type=request.product_type,
            delta=request.delta,
            reason=request.reason,
            admin_id=admin.id,
            month_year=request.month_year,
        )
    except AccessControlError as e:
        raise handle_access_error(e) from e

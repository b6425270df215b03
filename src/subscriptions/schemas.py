"""Pydantic schemas for subscription claims and allowances."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.access.models import EntityType

from .models import SubscriptionClaim


AllowanceValue = int | Literal["unlimited"]


# ==============================================================================
# Response Schemas
# ==============================================================================


class ClaimResponse(BaseModel):
    """Response schema for a single claim."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    user_id: UUID
    month_year: str
    product_type: EntityType
    product_id: UUID
    claimed_at: datetime
    total_sessions: int = 0
    total_usage_minutes: int = 0
    first_accessed: datetime | None = None
    last_accessed: datetime | None = None

    @classmethod
    def from_claim(cls, claim: SubscriptionClaim) -> "ClaimResponse":
        """Create response from SubscriptionClaim entity."""
        return cls.model_validate(claim)


class ClaimResult(BaseModel):
    """Outcome of a claim request.

    needs_confirmation=True means nothing was consumed; the client shows the
    remaining count and repeats the request with skip_confirmation.
    """

    success: bool
    needs_confirmation: bool = False
    already_claimed: bool = False
    claim: ClaimResponse | None = None
    remaining_claims: AllowanceValue = 0
    low_allowance_warning: bool = False
    message: str = ""


class AllowanceInfo(BaseModel):
    """Allowance for one product type in a month."""

    allowed: AllowanceValue
    used: int
    remaining: AllowanceValue
    is_limited: bool
    has_reached_limit: bool
    not_included: bool


class MonthlyAllowancesResponse(BaseModel):
    """Allowances of the caller's active subscription."""

    subscription_id: UUID
    plan_id: UUID
    plan_name: str
    month_year: str
    allowances: dict[EntityType, AllowanceInfo]


class ProductTypeUsage(BaseModel):
    """Claims of one product type in a month."""

    claimed: int
    total_sessions: int
    total_usage_minutes: int
    claims: list[ClaimResponse]


class UsageSummaryResponse(BaseModel):
    """Claims grouped by product type, plus allowances."""

    subscription_id: UUID
    month_year: str
    total_claims: int
    by_product_type: dict[EntityType, ProductTypeUsage]
    allowances: dict[EntityType, AllowanceInfo]


class AllowanceStateResponse(BaseModel):
    """Ledger row after an admin adjustment."""

    subscription_id: UUID
    month_year: str
    product_type: EntityType
    limit: AllowanceValue
    used: int
    remaining: AllowanceValue


# ==============================================================================
# Request Schemas
# ==============================================================================


class ClaimRequest(BaseModel):
    """Request to claim a product with the subscription allowance."""

    entity_type: EntityType
    entity_id: UUID
    skip_confirmation: bool = False


class RecordUsageRequest(BaseModel):
    """Usage report for a claimed product."""

    product_type: EntityType
    product_id: UUID
    duration_minutes: int = Field(default=0, ge=0, le=24 * 60)


class AllowanceAdjustRequest(BaseModel):
    """Admin correction of a ledger row."""

    product_type: EntityType
    delta: int = Field(..., ge=-1000, le=1000)
    reason: str = Field(..., min_length=3, max_length=500)
    month_year: str | None = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")

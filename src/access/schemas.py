"""Pydantic schemas for access checks and admin access management.

The AccessDecision JSON uses camelCase keys (hasAccess, accessType, ...);
the remaining schemas follow the API's snake_case convention.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.purchases.models import PaymentMethod, PaymentStatus, Purchase

from .models import AccessType, EntityType


# ==============================================================================
# Access decision
# ==============================================================================


class AccessDecision(BaseModel):
    """Outcome of an access check. Computed per request, never cached."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_access: bool
    access_type: AccessType = AccessType.NONE
    can_download: bool = False
    can_preview: bool = False
    can_play: bool = False
    remaining_allowance: int | Literal["unlimited"] = 0
    expires_at: datetime | None = None
    reason: str = ""
    entity_not_product: bool = Field(
        default=False, description="Entity exists but is not sold (system asset)"
    )
    is_admin_override: bool = Field(
        default=False, description="Granted through the admin bypass"
    )

    @classmethod
    def full_access(
        cls,
        access_type: AccessType,
        reason: str,
        expires_at: datetime | None = None,
        is_admin_override: bool = False,
        entity_not_product: bool = False,
    ) -> "AccessDecision":
        """Download, preview and play, no allowance involved."""
        return cls(
            has_access=True,
            access_type=access_type,
            can_download=True,
            can_preview=True,
            can_play=True,
            remaining_allowance="unlimited",
            expires_at=expires_at,
            reason=reason,
            is_admin_override=is_admin_override,
            entity_not_product=entity_not_product,
        )

    @classmethod
    def denied(cls, reason: str, entity_not_product: bool = False) -> "AccessDecision":
        """No access through any channel."""
        return cls(
            has_access=False,
            access_type=AccessType.NONE,
            remaining_allowance=0,
            reason=reason,
            entity_not_product=entity_not_product,
        )


# ==============================================================================
# Purchases
# ==============================================================================


class PurchaseResponse(BaseModel):
    """Response schema for a single purchase."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    buyer_user_id: UUID
    product_id: UUID
    product_type: EntityType
    entity_id: UUID
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_amount: Decimal
    access_expires_at: datetime | None = None
    bundle_parent_purchase_id: UUID | None = None
    granted_by: UUID | None = None
    created_at: datetime
    is_lifetime: bool
    is_active: bool = Field(..., description="Whether the purchase grants access now")

    @classmethod
    def from_purchase(cls, purchase: Purchase) -> "PurchaseResponse":
        """Create response from Purchase entity."""
        return cls(
            id=purchase.id,
            buyer_user_id=purchase.buyer_user_id,
            product_id=purchase.product_id,
            product_type=purchase.product_type,
            entity_id=purchase.entity_id,
            payment_status=purchase.payment_status,
            payment_method=purchase.payment_method,
            payment_amount=purchase.payment_amount,
            access_expires_at=purchase.access_expires_at,
            bundle_parent_purchase_id=purchase.bundle_parent_purchase_id,
            granted_by=purchase.granted_by,
            created_at=purchase.created_at,
            is_lifetime=purchase.is_lifetime,
            is_active=purchase.is_active(),
        )


class PurchaseListResponse(BaseModel):
    """Response schema for listing purchases."""

    items: list[PurchaseResponse]
    total: int


class EntityAccessStatsResponse(BaseModel):
    """Purchase totals for one entity."""

    entity_type: EntityType
    entity_id: UUID
    product_id: UUID
    total_purchases: int
    active_access: int
    lifetime_access: int
    total_revenue: Decimal


# ==============================================================================
# Request Schemas
# ==============================================================================


class GrantAccessRequest(BaseModel):
    """Admin request to grant access outside the checkout."""

    user_id: UUID
    entity_type: EntityType
    entity_id: UUID
    access_days: int | None = Field(
        default=None, ge=1, le=3650, description="Defaults to the product's duration"
    )
    is_lifetime: bool = False
    price: Decimal = Field(default=Decimal("0"), ge=0)


class RevokeAccessRequest(BaseModel):
    """Admin request to revoke access."""

    user_id: UUID
    entity_type: EntityType
    entity_id: UUID


class RevokeAccessResponse(BaseModel):
    """Result of a revoke."""

    revoked_purchases: int

"""Subscription claim service layer.

Business logic for:
- Two-phase claims (confirm, then consume allowance)
- Monthly allowances per plan benefit
- Usage tracking and monthly usage summary
- Admin allowance adjustments
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from src.access.errors import (
    AllowanceExceededError,
    ClaimNotAllowedError,
    NoActiveSubscriptionError,
    ProductNotFoundError,
    SubscriptionNotFoundError,
)
from src.access.models import UNLIMITED, EntityType, current_month_year
from src.access.providers import ProductCatalog, PurchaseStore, SubscriptionStore
from src.core.logging import get_logger

from .ledger import AllowanceExceeded, AllowanceLedger, AllowanceState
from .schemas import (
    AllowanceInfo,
    AllowanceStateResponse,
    ClaimResponse,
    ClaimResult,
    MonthlyAllowancesResponse,
    ProductTypeUsage,
    UsageSummaryResponse,
)


if TYPE_CHECKING:
    from src.catalog.models import Product

    from .models import Subscription, SubscriptionClaim


logger = get_logger(__name__)


@dataclass(frozen=True)
class ClaimEligibility:
    """Whether a product can be claimed right now."""

    allowed: bool
    reason: str = ""
    already_claimed: bool = False
    state: AllowanceState | None = None

    @property
    def limit_reached(self) -> bool:
        return self.state is not None and self.state.is_included and not self.allowed


def allowance_info(state: AllowanceState) -> AllowanceInfo:
    """Client view of a ledger snapshot."""
    return AllowanceInfo(
        allowed=state.limit,
        used=state.used,
        remaining=state.remaining,
        is_limited=not state.is_unlimited,
        has_reached_limit=(
            state.is_included and not state.is_unlimited and state.remaining == 0
        ),
        not_included=not state.is_included,
    )


class ClaimService:
    """Service for subscription claims and allowances."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        ledger: AllowanceLedger,
        catalog: ProductCatalog,
        purchases: PurchaseStore,
        low_allowance_threshold: int = 2,
    ):
        self.subscriptions = subscriptions
        self.ledger = ledger
        self.catalog = catalog
        self.purchases = purchases
        self.low_allowance_threshold = low_allowance_threshold

    async def _require_subscription(self, user_id: UUID) -> "Subscription":
        subscription = await self.subscriptions.find_active_subscription(user_id)
        if subscription is None:
            raise NoActiveSubscriptionError
        return subscription

    # ==========================================================================
    # Allowances
    # ==========================================================================

    async def _allowances_for(
        self, subscription: "Subscription", month_year: str
    ) -> dict[EntityType, AllowanceInfo]:
        plan = await self.subscriptions.get_plan(subscription.plan_id)
        if plan is None:
            return {}

        allowances: dict[EntityType, AllowanceInfo] = {}
        for key in plan.benefits:
            try:
                product_type = EntityType(key)
            except ValueError:
                logger.warning(
                    "plan_benefit_unknown", plan_id=str(plan.id), benefit=key
                )
                continue
            state = await self.ledger.check_allowance(
                subscription.id, month_year, product_type
            )
            allowances[product_type] = allowance_info(state)
        return allowances

    async def get_monthly_allowances(
        self, user_id: UUID, month_year: str | None = None
    ) -> MonthlyAllowancesResponse | None:
        """Allowances of the user's active subscription, None without one."""
        subscription = await self.subscriptions.find_active_subscription(user_id)
        if subscription is None:
            return None

        month_year = month_year or current_month_year()
        plan = await self.subscriptions.get_plan(subscription.plan_id)
        return MonthlyAllowancesResponse(
            subscription_id=subscription.id,
            plan_id=subscription.plan_id,
            plan_name=plan.name if plan else "",
            month_year=month_year,
            allowances=await self._allowances_for(subscription, month_year),
        )

    # ==========================================================================
    # Claims
    # ==========================================================================

    async def _eligibility(
        self,
        user_id: UUID,
        product: "Product",
        subscription: "Subscription",
        month_year: str,
    ) -> ClaimEligibility:
        if product.is_created_by(user_id):
            return ClaimEligibility(False, "You cannot claim your own product")

        if not product.is_published:
            return ClaimEligibility(False, "Product is not published")

        purchase = await self.purchases.find_completed_purchase(user_id, product.id)
        if purchase is not None:
            return ClaimEligibility(False, "You already have access to this product")

        existing = await self.subscriptions.find_claim(
            subscription.id, month_year, product.product_type, product.id
        )
        state = await self.ledger.check_allowance(
            subscription.id, month_year, product.product_type
        )
        if existing is not None:
            return ClaimEligibility(True, "Already claimed", already_claimed=True, state=state)

        if not state.is_included:
            return ClaimEligibility(
                False,
                f"{product.product_type.value} is not included in your subscription plan",
                state=state,
            )
        if not state.is_unlimited and state.remaining == 0:
            return ClaimEligibility(
                False,
                f"Monthly limit reached for {product.product_type.value}",
                state=state,
            )
        return ClaimEligibility(True, state=state)

    async def can_claim_product(
        self, user_id: UUID, product: "Product"
    ) -> ClaimEligibility:
        """Check whether a user may claim a product this month."""
        subscription = await self.subscriptions.find_active_subscription(user_id)
        if subscription is None:
            return ClaimEligibility(False, "No active subscription")
        return await self._eligibility(
            user_id, product, subscription, current_month_year()
        )

    async def claim_product(
        self,
        user_id: UUID,
        entity_type: EntityType,
        entity_id: UUID,
        skip_confirmation: bool = False,
    ) -> ClaimResult:
        """Claim a product with the subscription allowance.

        The first call on a finite allowance only reports how many claims
        remain (needs_confirmation). Passing skip_confirmation consumes one.

        Raises:
            ProductNotFoundError: If the entity is not a product
            NoActiveSubscriptionError: If the user has no active subscription
            ClaimNotAllowedError: If the product cannot be claimed
            AllowanceExceededError: If the monthly allowance is used up
        """
        product = await self.catalog.get_product(entity_type, entity_id)
        if product is None:
            raise ProductNotFoundError

        subscription = await self._require_subscription(user_id)
        month_year = current_month_year()

        eligibility = await self._eligibility(user_id, product, subscription, month_year)
        if not eligibility.allowed:
            if eligibility.limit_reached:
                state = eligibility.state
                raise AllowanceExceededError(
                    eligibility.reason, used=state.used, limit=int(state.limit)
                )
            raise ClaimNotAllowedError(eligibility.reason)

        state = eligibility.state
        if (
            not eligibility.already_claimed
            and state is not None
            and not state.is_unlimited
            and not skip_confirmation
        ):
            return ClaimResult(
                success=False,
                needs_confirmation=True,
                remaining_claims=state.remaining,
                low_allowance_warning=self._is_low(state.remaining),
                message=f"This will use 1 of {state.remaining} remaining claims",
            )

        outcome = await self.ledger.claim(
            subscription.id, month_year, product.product_type, product.id, user_id
        )
        if isinstance(outcome, AllowanceExceeded):
            raise AllowanceExceededError(
                outcome.message, used=outcome.used, limit=int(outcome.limit)
            )

        remaining = outcome.state.remaining
        logger.info(
            "product_claimed",
            user_id=str(user_id),
            subscription_id=str(subscription.id),
            product_id=str(product.id),
            product_type=product.product_type.value,
            already_claimed=outcome.already_claimed,
            remaining=remaining,
        )
        return ClaimResult(
            success=True,
            already_claimed=outcome.already_claimed,
            claim=ClaimResponse.from_claim(outcome.claim),
            remaining_claims=remaining,
            low_allowance_warning=self._is_low(remaining),
            message="Already claimed" if outcome.already_claimed else "Product claimed",
        )

    def _is_low(self, remaining: int | str) -> bool:
        return remaining != UNLIMITED and int(remaining) <= self.low_allowance_threshold

    # ==========================================================================
    # Usage
    # ==========================================================================

    async def record_usage(
        self,
        user_id: UUID,
        product_type: EntityType,
        product_id: UUID,
        duration_minutes: int = 0,
    ) -> "SubscriptionClaim":
        """Add a session to the usage counters of this month's claim."""
        subscription = await self._require_subscription(user_id)
        claim = await self.subscriptions.find_claim(
            subscription.id, current_month_year(), product_type, product_id
        )
        if claim is None:
            raise ClaimNotAllowedError("Product is not claimed this month")

        return await self.ledger.record_usage(claim, duration_minutes)

    async def get_user_usage_summary(
        self, user_id: UUID, month_year: str | None = None
    ) -> UsageSummaryResponse | None:
        """Claims of a month grouped by product type, None without a subscription."""
        subscription = await self.subscriptions.find_active_subscription(user_id)
        if subscription is None:
            return None

        month_year = month_year or current_month_year()
        claims = await self.subscriptions.list_claims(subscription.id, month_year)

        by_type: dict[EntityType, ProductTypeUsage] = {}
        for claim in claims:
            usage = by_type.setdefault(
                claim.product_type,
                ProductTypeUsage(
                    claimed=0, total_sessions=0, total_usage_minutes=0, claims=[]
                ),
            )
            usage.claimed += 1
            usage.total_sessions += claim.total_sessions
            usage.total_usage_minutes += claim.total_usage_minutes
            usage.claims.append(ClaimResponse.from_claim(claim))

        return UsageSummaryResponse(
            subscription_id=subscription.id,
            month_year=month_year,
            total_claims=len(claims),
            by_product_type=by_type,
            allowances=await self._allowances_for(subscription, month_year),
        )

    # ==========================================================================
    # Admin
    # ==========================================================================

    async def adjust_allowance(
        self,
        subscription_id: UUID,
        product_type: EntityType,
        delta: int,
        reason: str,
        admin_id: UUID,
        month_year: str | None = None,
    ) -> AllowanceStateResponse:
        """Manually correct a ledger row (audited)."""
        subscription = await self.subscriptions.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError

        month_year = month_year or current_month_year()
        state = await self.ledger.adjust(
            subscription_id,
            product_type,
            delta,
            reason,
            admin_id=admin_id,
            month_year=month_year,
        )
        return AllowanceStateResponse(
            subscription_id=subscription_id,
            month_year=month_year,
            product_type=product_type,
            limit=state.limit,
            used=state.used,
            remaining=state.remaining,
        )

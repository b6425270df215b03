"""Allowance ledger: monthly claim accounting per subscription.

Every change to `used` goes through compare-and-set on the ledger row, so
the check-then-increment of a claim is atomic. Two concurrent claims for
the last remaining slot cannot both succeed: the loser re-reads the row,
sees no room, and gets AllowanceExceeded back.

A claim inserts its claim row (IF NOT EXISTS) before it reserves a slot.
Duplicate requests for the same product lose that insert and consume
nothing; a claim that then finds no slot left deletes its own row.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from src.access.errors import AllowanceContentionError
from src.access.models import UNLIMITED, AllowanceAmount, EntityType, current_month_year
from src.access.providers import AllowanceStore, SubscriptionStore
from src.core.logging import get_logger

from .models import AllowanceAdjustment, AllowanceEntry, SubscriptionClaim


logger = get_logger(__name__)


@dataclass(frozen=True)
class AllowanceState:
    """Snapshot of one ledger row."""

    limit: AllowanceAmount
    used: int
    remaining: AllowanceAmount

    @classmethod
    def from_entry(cls, entry: AllowanceEntry) -> "AllowanceState":
        return cls(limit=entry.limit, used=entry.used, remaining=entry.remaining)

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def is_included(self) -> bool:
        return self.limit != 0


@dataclass(frozen=True)
class ClaimOutcome:
    """Successful (or idempotent repeat) claim."""

    claim: SubscriptionClaim
    already_claimed: bool
    state: AllowanceState


@dataclass(frozen=True)
class AllowanceExceeded:
    """Claim rejected because no allowance is left (or none was granted)."""

    subscription_id: UUID
    month_year: str
    product_type: EntityType
    limit: AllowanceAmount
    used: int
    reason: Literal["limit_reached", "not_included"] = "limit_reached"

    @property
    def message(self) -> str:
        if self.reason == "not_included":
            return f"{self.product_type.value} is not included in your subscription plan"
        return f"Monthly limit reached for {self.product_type.value}"


class AllowanceLedger:
    """Check, claim, refund and adjust monthly allowances."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        allowances: AllowanceStore,
        max_retries: int = 10,
    ):
        self.subscriptions = subscriptions
        self.allowances = allowances
        self.max_retries = max_retries

    async def _plan_limit(
        self, subscription_id: UUID, product_type: EntityType
    ) -> AllowanceAmount:
        subscription = await self.subscriptions.get_subscription(subscription_id)
        if subscription is None:
            return 0
        plan = await self.subscriptions.get_plan(subscription.plan_id)
        if plan is None:
            return 0
        return plan.limit_for(product_type)

    async def _ensure_entry(
        self, subscription_id: UUID, month_year: str, product_type: EntityType
    ) -> AllowanceEntry:
        """Ledger row for the month, created from the plan limit if missing.

        The limit is fixed when the row is created; plan changes apply from
        the next billing month.
        """
        entry = await self.allowances.get_allowance_entry(
            subscription_id, month_year, product_type
        )
        if entry is not None:
            return entry

        limit = await self._plan_limit(subscription_id, product_type)
        return await self.allowances.create_allowance_entry(
            AllowanceEntry(
                subscription_id=subscription_id,
                month_year=month_year,
                product_type=product_type,
                limit=limit,
            )
        )

    async def _apply(
        self,
        entry: AllowanceEntry,
        compute: Callable[[AllowanceEntry], int | None],
    ) -> tuple[int, AllowanceEntry] | None:
        """Compare-and-set `used` to compute(entry), re-reading on conflict.

        Returns:
            (used before the swap, updated entry), or None when compute()
            refuses the change

        Raises:
            AllowanceContentionError: If every attempt lost a race
        """
        for _ in range(self.max_retries):
            new_used = compute(entry)
            if new_used is None:
                return None
            if new_used == entry.used:
                return entry.used, entry

            applied = await self.allowances.compare_and_set_used(
                entry.subscription_id,
                entry.month_year,
                entry.product_type,
                expected=entry.used,
                new=new_used,
            )
            if applied:
                used_before = entry.used
                entry.used = new_used
                return used_before, entry

            current = await self.allowances.get_allowance_entry(
                entry.subscription_id, entry.month_year, entry.product_type
            )
            if current is None:
                current = await self.allowances.create_allowance_entry(entry)
            entry = current

        logger.warning(
            "allowance_contention",
            subscription_id=str(entry.subscription_id),
            month_year=entry.month_year,
            product_type=entry.product_type.value,
            attempts=self.max_retries,
        )
        raise AllowanceContentionError


    # ==========================================================================
    # Public API
    # ==========================================================================

    async def check_allowance(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
    ) -> AllowanceState:
        """Current limit, used and remaining claims for a month."""
        entry = await self.allowances.get_allowance_entry(
            subscription_id, month_year, product_type
        )
        if entry is not None:
            return AllowanceState.from_entry(entry)

        limit = await self._plan_limit(subscription_id, product_type)
        return AllowanceState(limit=limit, used=0, remaining=limit)


    async def claim(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        product_id: UUID,
        user_id: UUID,
    ) -> ClaimOutcome | AllowanceExceeded:
        """Consume one allowance unit for a product.

        Claiming a product already claimed in the same month returns the
        existing claim and consumes nothing, also when the requests race.
        """
        existing = await self.subscriptions.find_claim(
            subscription_id, month_year, product_type, product_id
        )
        if existing is not None:
            return await self._already_claimed(existing)

        entry = await self._ensure_entry(subscription_id, month_year, product_type)
        if entry.limit == 0:
            return AllowanceExceeded(
                subscription_id=subscription_id,
                month_year=month_year,
                product_type=product_type,
                limit=0,
                used=entry.used,
                reason="not_included",
            )

        claim = SubscriptionClaim(
            subscription_id=subscription_id,
            user_id=user_id,
            month_year=month_year,
            product_type=product_type,
            product_id=product_id,
        )
        stored = await self.subscriptions.create_claim(claim)
        if stored.id != claim.id:
            return await self._already_claimed(stored)

        try:
            reserved = await self._apply(
                entry, lambda e: e.used + 1 if e.has_room() else None
            )
        except Exception:
            await self.subscriptions.delete_claim(claim)
            raise

        if reserved is None:
            await self.subscriptions.delete_claim(claim)
            state = await self.check_allowance(subscription_id, month_year, product_type)
            logger.info(
                "allowance_exceeded",
                subscription_id=str(subscription_id),
                month_year=month_year,
                product_type=product_type.value,
                used=state.used,
                limit=state.limit,
            )
            return AllowanceExceeded(
                subscription_id=subscription_id,
                month_year=month_year,
                product_type=product_type,
                limit=state.limit,
                used=state.used,
            )

        _, updated = reserved
        logger.info(
            "allowance_claimed",
            subscription_id=str(subscription_id),
            month_year=month_year,
            product_type=product_type.value,
            product_id=str(product_id),
            used=updated.used,
            limit=updated.limit,
        )
        return ClaimOutcome(
            claim=stored, already_claimed=False, state=AllowanceState.from_entry(updated)
        )

    async def _already_claimed(self, claim: SubscriptionClaim) -> ClaimOutcome:
        state = await self.check_allowance(
            claim.subscription_id, claim.month_year, claim.product_type
        )
        return ClaimOutcome(claim=claim, already_claimed=True, state=state)

    async def record_usage(
        self, claim: SubscriptionClaim, duration_minutes: int = 0
    ) -> SubscriptionClaim:
        """Count one session (and its minutes) against a claim."""
        claim.record_session(duration_minutes)
        await self.subscriptions.update_claim_usage(claim)
        return claim

    async def refund(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
    ) -> AllowanceState:
        """Give one unit back (never below zero)."""
        entry = await self._ensure_entry(subscription_id, month_year, product_type)
        applied = await self._apply(entry, lambda e: max(0, e.used - 1))
        return AllowanceState.from_entry(applied[1] if applied else entry)

    async def adjust(
        self,
        subscription_id: UUID,
        product_type: EntityType,
        delta: int,
        reason: str,
        admin_id: UUID | None = None,
        month_year: str | None = None,
    ) -> AllowanceState:
        """Manually correct `used` by delta and record an audit entry.

        Defaults to the current billing month. `used` is clamped to
        [0, limit]; unlimited rows have no upper bound.
        """
        month_year = month_year or current_month_year()
        entry = await self._ensure_entry(subscription_id, month_year, product_type)

        used_before, updated = await self._apply(
            entry, lambda e: _clamp(e, e.used + delta)
        )

        await self.allowances.record_adjustment(
            AllowanceAdjustment(
                subscription_id=subscription_id,
                month_year=month_year,
                product_type=product_type,
                delta=delta,
                used_before=used_before,
                used_after=updated.used,
                reason=reason,
                admin_id=admin_id,
            )
        )
        logger.info(
            "allowance_adjusted",
            subscription_id=str(subscription_id),
            month_year=month_year,
            product_type=product_type.value,
            delta=delta,
            used_before=used_before,
            used_after=updated.used,
            reason=reason,
            admin_id=str(admin_id) if admin_id else None,
        )
        return AllowanceState.from_entry(updated)


def _clamp(entry: AllowanceEntry, used: int) -> int:
    if entry.is_unlimited:
        return max(0, used)
    return min(max(0, used), int(entry.limit))

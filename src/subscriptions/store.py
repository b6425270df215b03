# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Cassandra storage for subscriptions, claims and the allowance ledger.

Ledger `used` counters are only ever written through lightweight
transactions (IF NOT EXISTS / IF used = ?), so concurrent claims against the
same month and product type serialize at the row.
"""

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.access.models import EntityType
from src.core.logging import get_logger

from .models import (
    AllowanceAdjustment,
    AllowanceEntry,
    Subscription,
    SubscriptionClaim,
    SubscriptionPlan,
    limit_to_db,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class CassandraSubscriptionStore:
    """Subscription, claim and ledger persistence."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        ks = self.keyspace

        # Plans and subscriptions
        self._get_plan = self.session.prepare(
            f"SELECT * FROM {ks}.subscription_plans WHERE plan_id = ?"
        )
        self._insert_plan = self.session.prepare(f"""
            INSERT INTO {ks}.subscription_plans
            (plan_id, name, benefits, is_active, created_at)
            VALUES (?, ?, ?, ?, ?)
        """)
        self._get_user_subscriptions = self.session.prepare(
            f"SELECT * FROM {ks}.subscriptions_by_user WHERE user_id = ?"
        )
        self._get_subscription = self.session.prepare(
            f"SELECT * FROM {ks}.subscriptions_by_id WHERE subscription_id = ?"
        )
        subscription_columns = (
            "subscription_id, user_id, plan_id, status, start_date, end_date, created_at"
        )
        self._insert_subscription_by_user = self.session.prepare(f"""
            INSERT INTO {ks}.subscriptions_by_user ({subscription_columns})
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._insert_subscription_by_id = self.session.prepare(f"""
            INSERT INTO {ks}.subscriptions_by_id ({subscription_columns})
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)

        # Claims
        self._get_claim = self.session.prepare(f"""
            SELECT * FROM {ks}.subscription_claims
            WHERE subscription_id = ? AND month_year = ?
            AND product_type = ? AND product_id = ?
        """)
        self._delete_claim = self.session.prepare(f"""
            DELETE FROM {ks}.subscription_claims
            WHERE subscription_id = ? AND month_year = ?
            AND product_type = ? AND product_id = ?
            IF claim_id = ?
        """)
        self._list_claims = self.session.prepare(f"""
            SELECT * FROM {ks}.subscription_claims
            WHERE subscription_id = ? AND month_year = ?
        """)
        self._insert_claim = self.session.prepare(f"""
            INSERT INTO {ks}.subscription_claims
            (subscription_id, month_year, product_type, product_id, claim_id,
             user_id, claimed_at, total_sessions, total_usage_minutes)
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0)
            IF NOT EXISTS
        """)
        self._update_claim_usage = self.session.prepare(f"""
            UPDATE {ks}.subscription_claims
            SET total_sessions = ?, total_usage_minutes = ?,
                first_accessed = ?, last_accessed = ?
            WHERE subscription_id = ? AND month_year = ?
            AND product_type = ? AND product_id = ?
        """)

        # Ledger
        self._get_entry = self.session.prepare(f"""
            SELECT * FROM {ks}.allowance_ledger
            WHERE subscription_id = ? AND month_year = ? AND product_type = ?
        """)
        self._insert_entry = self.session.prepare(f"""
            INSERT INTO {ks}.allowance_ledger
            (subscription_id, month_year, product_type, allowance_limit, used, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)
        self._cas_used = self.session.prepare(f"""
            UPDATE {ks}.allowance_ledger
            SET used = ?, updated_at = ?
            WHERE subscription_id = ? AND month_year = ? AND product_type = ?
            IF used = ?
        """)
        self._insert_adjustment = self.session.prepare(f"""
            INSERT INTO {ks}.allowance_adjustments
            (subscription_id, adjustment_id, month_year, product_type, delta,
             used_before, used_after, reason, admin_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

    # ==========================================================================
    # Plans and subscriptions
    # ==========================================================================

    async def get_plan(self, plan_id: UUID) -> SubscriptionPlan | None:
        """Get a plan with its decoded benefits."""
        result = await self.session.aexecute(self._get_plan, [plan_id])
        row = result.one()
        if not row:
            return None
        try:
            benefits = json.loads(row.benefits or "{}")
        except json.JSONDecodeError:
            logger.warning("plan_benefits_malformed", plan_id=str(plan_id))
            benefits = {}
        return SubscriptionPlan.from_row(row, benefits)

    async def save_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        """Insert or replace a plan."""
        await self.session.aexecute(
            self._insert_plan,
            [plan.id, plan.name, json.dumps(plan.benefits), plan.is_active, plan.created_at],
        )
        return plan

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or replace a subscription in both lookup tables."""
        params = [
            subscription.id,
            subscription.user_id,
            subscription.plan_id,
            subscription.status.value,
            subscription.start_date,
            subscription.end_date,
            subscription.created_at,
        ]
        await self.session.aexecute(self._insert_subscription_by_user, params)
        await self.session.aexecute(self._insert_subscription_by_id, params)
        return subscription

    async def find_active_subscription(self, user_id: UUID) -> Subscription | None:
        """The user's active subscription (latest started wins)."""
        rows = await self.session.aexecute(self._get_user_subscriptions, [user_id])
        now = datetime.now(UTC)
        active = [
            sub for sub in (Subscription.from_row(row) for row in rows) if sub.is_active(now)
        ]
        if not active:
            return None
        return max(active, key=lambda sub: sub.start_date)

    async def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        """Get a subscription by id."""
        result = await self.session.aexecute(self._get_subscription, [subscription_id])
        row = result.one()
        return Subscription.from_row(row) if row else None

    # ==========================================================================
    # Claims
    # ==========================================================================

    async def find_claim(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        product_id: UUID,
    ) -> SubscriptionClaim | None:
        """Claim on a product in a billing month."""
        result = await self.session.aexecute(
            self._get_claim,
            [subscription_id, month_year, EntityType(product_type).value, product_id],
        )
        row = result.one()
        return SubscriptionClaim.from_row(row) if row else None

    async def create_claim(self, claim: SubscriptionClaim) -> SubscriptionClaim:
        """Insert a claim unless the product is already claimed this month."""
        result = await self.session.aexecute(
            self._insert_claim,
            [
                claim.subscription_id,
                claim.month_year,
                claim.product_type.value,
                claim.product_id,
                claim.id,
                claim.user_id,
                claim.claimed_at,
            ],
        )
        if result.was_applied:
            return claim

        existing = await self.find_claim(
            claim.subscription_id, claim.month_year, claim.product_type, claim.product_id
        )
        return existing or claim

    async def delete_claim(self, claim: SubscriptionClaim) -> None:
        """Withdraw a claim that could not reserve an allowance slot."""
        result = await self.session.aexecute(
            self._delete_claim,
            [
                claim.subscription_id,
                claim.month_year,
                claim.product_type.value,
                claim.product_id,
                claim.id,
            ],
        )
        if not result.was_applied:
            logger.warning(
                "claim_delete_skipped",
                subscription_id=str(claim.subscription_id),
                product_id=str(claim.product_id),
                claim_id=str(claim.id),
            )

    async def list_claims(
        self, subscription_id: UUID, month_year: str
    ) -> list[SubscriptionClaim]:
        """All claims of a subscription in a billing month."""
        rows = await self.session.aexecute(
            self._list_claims, [subscription_id, month_year]
        )
        return [SubscriptionClaim.from_row(row) for row in rows]

    async def update_claim_usage(self, claim: SubscriptionClaim) -> None:
        """Persist usage counters of a claim."""
        await self.session.aexecute(
            self._update_claim_usage,
            [
                claim.total_sessions,
                claim.total_usage_minutes,
                claim.first_accessed,
                claim.last_accessed,
                claim.subscription_id,
                claim.month_year,
                claim.product_type.value,
                claim.product_id,
            ],
        )

    # ==========================================================================
    # Ledger
    # ==========================================================================

    async def get_allowance_entry(
        self, subscription_id: UUID, month_year: str, product_type: EntityType
    ) -> AllowanceEntry | None:
        """Ledger row for a month and product type."""
        result = await self.session.aexecute(
            self._get_entry,
            [subscription_id, month_year, EntityType(product_type).value],
        )
        row = result.one()
        return AllowanceEntry.from_row(row) if row else None

    async def create_allowance_entry(self, entry: AllowanceEntry) -> AllowanceEntry:
        """Insert a ledger row unless one exists; returns the stored row."""
        result = await self.session.aexecute(
            self._insert_entry,
            [
                entry.subscription_id,
                entry.month_year,
                entry.product_type.value,
                limit_to_db(entry.limit),
                entry.used,
                entry.updated_at,
            ],
        )
        if result.was_applied:
            return entry

        existing = await self.get_allowance_entry(
            entry.subscription_id, entry.month_year, entry.product_type
        )
        return existing or entry

    async def compare_and_set_used(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        expected: int,
        new: int,
    ) -> bool:
        """Conditionally update `used` (lightweight transaction)."""
        result = await self.session.aexecute(
            self._cas_used,
            [
                new,
                datetime.now(UTC),
                subscription_id,
                month_year,
                EntityType(product_type).value,
                expected,
            ],
        )
        return bool(result.was_applied)

    async def record_adjustment(self, adjustment: AllowanceAdjustment) -> None:
        """Write an audit row for a manual ledger correction."""
        await self.session.aexecute(
            self._insert_adjustment,
            [
                adjustment.subscription_id,
                adjustment.id,
                adjustment.month_year,
                adjustment.product_type.value,
                adjustment.delta,
                adjustment.used_before,
                adjustment.used_after,
                adjustment.reason,
                adjustment.admin_id,
                adjustment.created_at,
            ],
        )

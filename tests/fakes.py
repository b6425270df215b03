"""In-memory implementations of the entitlement fact providers.

Reads return copies so callers cannot mutate stored state behind the
store's back. Every coroutine yields to the event loop once, which lets
asyncio.gather interleave concurrent claims the way a real store would.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from src.access.models import EntityType
from src.catalog.models import Product
from src.purchases.models import Purchase
from src.subscriptions.models import (
    AllowanceAdjustment,
    AllowanceEntry,
    Subscription,
    SubscriptionClaim,
    SubscriptionPlan,
)


class FakeCatalog:
    """Products keyed by (type, entity_id)."""

    def __init__(self, *products: Product):
        self.products: dict[tuple[EntityType, UUID], Product] = {}
        for product in products:
            self.add(product)

    def add(self, product: Product) -> Product:
        self.products[(product.product_type, product.entity_id)] = product
        return product

    async def get_product(self, entity_type: EntityType, entity_id: UUID) -> Product | None:
        await asyncio.sleep(0)
        return self.products.get((EntityType(entity_type), entity_id))

    async def get_product_by_id(self, product_id: UUID) -> Product | None:
        await asyncio.sleep(0)
        return next((p for p in self.products.values() if p.id == product_id), None)


class FakePurchaseStore:
    """Purchases in a list."""

    def __init__(self, *purchases: Purchase):
        self.purchases: list[Purchase] = list(purchases)

    async def find_completed_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> Purchase | None:
        await asyncio.sleep(0)
        now = datetime.now(UTC)
        active = [
            p
            for p in self.purchases
            if p.buyer_user_id == user_id and p.product_id == product_id and p.is_active(now)
        ]
        if not active:
            return None
        lifetime = [p for p in active if p.is_lifetime]
        if lifetime:
            return lifetime[0]
        return max(active, key=lambda p: p.access_expires_at)

    async def find_latest_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> Purchase | None:
        await asyncio.sleep(0)
        completed = [
            p
            for p in self.purchases
            if p.buyer_user_id == user_id and p.product_id == product_id and p.is_completed
        ]
        return max(completed, key=lambda p: p.created_at) if completed else None

    async def create_purchase(self, purchase: Purchase) -> Purchase:
        await asyncio.sleep(0)
        self.purchases.append(purchase)
        return purchase


class FakeSubscriptionStore:
    """Plans, subscriptions, claims and the allowance ledger."""

    def __init__(self):
        self.plans: dict[UUID, SubscriptionPlan] = {}
        self.subscriptions: dict[UUID, Subscription] = {}
        self.claims: dict[tuple[UUID, str, EntityType, UUID], SubscriptionClaim] = {}
        self.ledger: dict[tuple[UUID, str, EntityType], AllowanceEntry] = {}
        self.adjustments: list[AllowanceAdjustment] = []
        self.cas_attempts = 0

    # Setup helpers

    def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        self.plans[plan.id] = plan
        return plan

    def add_subscription(self, subscription: Subscription) -> Subscription:
        self.subscriptions[subscription.id] = subscription
        return subscription

    def set_used(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        limit: Any,
        used: int,
    ) -> None:
        self.ledger[(subscription_id, month_year, product_type)] = AllowanceEntry(
            subscription_id=subscription_id,
            month_year=month_year,
            product_type=product_type,
            limit=limit,
            used=used,
        )

    # SubscriptionStore

    async def find_active_subscription(self, user_id: UUID) -> Subscription | None:
        await asyncio.sleep(0)
        active = [
            s for s in self.subscriptions.values() if s.user_id == user_id and s.is_active()
        ]
        return max(active, key=lambda s: s.start_date) if active else None

    async def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        await asyncio.sleep(0)
        return self.subscriptions.get(subscription_id)

    async def get_plan(self, plan_id: UUID) -> SubscriptionPlan | None:
        await asyncio.sleep(0)
        return self.plans.get(plan_id)

    async def find_claim(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        product_id: UUID,
    ) -> SubscriptionClaim | None:
        await asyncio.sleep(0)
        claim = self.claims.get(
            (subscription_id, month_year, EntityType(product_type), product_id)
        )
        return replace(claim) if claim else None

    async def create_claim(self, claim: SubscriptionClaim) -> SubscriptionClaim:
        await asyncio.sleep(0)
        key = (claim.subscription_id, claim.month_year, claim.product_type, claim.product_id)
        stored = self.claims.setdefault(key, claim)
        return replace(stored)

    async def delete_claim(self, claim: SubscriptionClaim) -> None:
        await asyncio.sleep(0)
        key = (claim.subscription_id, claim.month_year, claim.product_type, claim.product_id)
        stored = self.claims.get(key)
        if stored is not None and stored.id == claim.id:
            del self.claims[key]

    async def list_claims(
        self, subscription_id: UUID, month_year: str
    ) -> list[SubscriptionClaim]:
        await asyncio.sleep(0)
        return [
            replace(c)
            for (sub_id, month, _, _), c in self.claims.items()
            if sub_id == subscription_id and month == month_year
        ]

    async def update_claim_usage(self, claim: SubscriptionClaim) -> None:
        await asyncio.sleep(0)
        key = (claim.subscription_id, claim.month_year, claim.product_type, claim.product_id)
        self.claims[key] = replace(claim)

    # AllowanceStore

    async def get_allowance_entry(
        self, subscription_id: UUID, month_year: str, product_type: EntityType
    ) -> AllowanceEntry | None:
        await asyncio.sleep(0)
        entry = self.ledger.get((subscription_id, month_year, EntityType(product_type)))
        return replace(entry) if entry else None

    async def create_allowance_entry(self, entry: AllowanceEntry) -> AllowanceEntry:
        await asyncio.sleep(0)
        key = (entry.subscription_id, entry.month_year, entry.product_type)
        stored = self.ledger.setdefault(key, replace(entry))
        return replace(stored)

    async def compare_and_set_used(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        expected: int,
        new: int,
    ) -> bool:
        await asyncio.sleep(0)
        self.cas_attempts += 1
        entry = self.ledger.get((subscription_id, month_year, EntityType(product_type)))
        if entry is None or entry.used != expected:
            return False
        entry.used = new
        return True

    async def record_adjustment(self, adjustment: AllowanceAdjustment) -> None:
        await asyncio.sleep(0)
        self.adjustments.append(adjustment)


class FakeTeacherLinks:
    """Student to teacher mapping."""

    def __init__(self, links: dict[UUID, UUID] | None = None):
        self.links = dict(links or {})
        self.lookups = 0

    async def find_teacher_for_student(self, student_id: UUID) -> UUID | None:
        await asyncio.sleep(0)
        self.lookups += 1
        return self.links.get(student_id)


class FakeSettings:
    """Settings provider backed by a dict; can be told to fail."""

    def __init__(self, values: dict[str, Any] | None = None, error: Exception | None = None):
        self.values = dict(values or {})
        self.error = error

    async def get(self, key: str) -> Any:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.values.get(key)


class FailingCatalog(FakeCatalog):
    """Catalog whose lookups fail like an unreachable cluster."""

    async def get_product(self, entity_type: EntityType, entity_id: UUID) -> Product | None:
        msg = "catalog unavailable"
        raise ConnectionError(msg)


class FailingPurchaseStore(FakePurchaseStore):
    """Purchase store whose lookups fail."""

    async def find_completed_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> Purchase | None:
        msg = "purchases unavailable"
        raise TimeoutError(msg)

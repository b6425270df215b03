"""Fact provider interfaces consumed by the access core.

The resolver, ledger and student gate depend only on these protocols.
Cassandra-backed services implement them in production, in-memory fakes in
tests.
"""

from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from src.access.models import EntityType


if TYPE_CHECKING:
    from src.catalog.models import Product
    from src.purchases.models import Purchase
    from src.subscriptions.models import (
        AllowanceAdjustment,
        AllowanceEntry,
        Subscription,
        SubscriptionClaim,
        SubscriptionPlan,
    )


class ProductCatalog(Protocol):
    """Product lookup by the entity it wraps."""

    async def get_product(
        self, entity_type: EntityType, entity_id: UUID
    ) -> "Product | None": ...

    async def get_product_by_id(self, product_id: UUID) -> "Product | None": ...


class PurchaseStore(Protocol):
    """Purchase facts."""

    async def find_completed_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> "Purchase | None":
        """Completed purchase that still grants access."""
        ...

    async def find_latest_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> "Purchase | None":
        """Most recent completed purchase, expired or not."""
        ...

    async def create_purchase(self, purchase: "Purchase") -> "Purchase": ...


class SubscriptionStore(Protocol):
    """Subscription and claim facts."""

    async def find_active_subscription(
        self, user_id: UUID
    ) -> "Subscription | None": ...

    async def get_subscription(self, subscription_id: UUID) -> "Subscription | None": ...

    async def get_plan(self, plan_id: UUID) -> "SubscriptionPlan | None": ...

    async def find_claim(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        product_id: UUID,
    ) -> "SubscriptionClaim | None": ...

    async def create_claim(self, claim: "SubscriptionClaim") -> "SubscriptionClaim":
        """Insert a claim unless one exists for the same product and month.

        Returns:
            The stored claim. A different id than the one passed in means
            another request claimed the product first.
        """
        ...

    async def delete_claim(self, claim: "SubscriptionClaim") -> None:
        """Remove a claim row, only while it still belongs to this claim id."""
        ...

    async def list_claims(
        self, subscription_id: UUID, month_year: str
    ) -> "list[SubscriptionClaim]": ...

    async def update_claim_usage(self, claim: "SubscriptionClaim") -> None: ...


class AllowanceStore(Protocol):
    """Ledger rows with conditional updates."""

    async def get_allowance_entry(
        self, subscription_id: UUID, month_year: str, product_type: EntityType
    ) -> "AllowanceEntry | None": ...

    async def create_allowance_entry(self, entry: "AllowanceEntry") -> "AllowanceEntry":
        """Insert a ledger row unless it exists; returns the stored row."""
        ...

    async def compare_and_set_used(
        self,
        subscription_id: UUID,
        month_year: str,
        product_type: EntityType,
        expected: int,
        new: int,
    ) -> bool:
        """Set `used` to `new` only if it still equals `expected`."""
        ...

    async def record_adjustment(self, adjustment: "AllowanceAdjustment") -> None: ...


class TeacherLinkStore(Protocol):
    """Student to teacher links."""

    async def find_teacher_for_student(self, student_id: UUID) -> UUID | None: ...


class SettingsProvider(Protocol):
    """System settings lookup."""

    async def get(self, key: str) -> Any: ...

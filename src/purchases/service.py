# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Purchase service layer.

Business logic for:
- Looking up completed purchases for access checks
- Completing and refunding purchases (bundles atomically with their items)
- Admin grant/revoke of access outside the normal checkout
- Listings and per-entity access stats
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from cassandra.query import BatchStatement, BatchType

from src.access.errors import (
    AlreadyHasAccessError,
    NoActiveAccessError,
    ProductNotFoundError,
    PurchaseStateError,
)
from src.access.models import EntityType
from src.core.logging import get_logger

from .models import (
    PaymentStatus,
    Purchase,
    create_admin_grant_purchase,
    create_bundle_child_purchase,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.catalog.models import Product
    from src.catalog.service import ProductCatalogService


logger = get_logger(__name__)

_COMPLETABLE_STATUSES = {PaymentStatus.CART, PaymentStatus.PENDING}


class PurchaseService:
    """Service for purchase records."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        catalog: "ProductCatalogService",
    ):
        """Initialize with Cassandra session and the product catalog."""
        self.session = session
        self.keyspace = keyspace
        self.catalog = catalog
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        columns = (
            "buyer_user_id, product_id, purchase_id, product_type, entity_id, "
            "payment_status, access_expires_at, bundle_parent_purchase_id, "
            "payment_amount, payment_method, granted_by, created_at, updated_at"
        )
        placeholders = ", ".join("?" * 13)

        self._insert_by_buyer = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.purchases_by_buyer ({columns})
            VALUES ({placeholders})
        """)

        self._insert_by_product = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.purchases_by_product ({columns})
            VALUES ({placeholders})
        """)

        self._get_user_product_purchases = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.purchases_by_buyer
            WHERE buyer_user_id = ? AND product_id = ?
        """)

        self._get_user_purchases = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.purchases_by_buyer
            WHERE buyer_user_id = ?
        """)

        self._get_product_purchases = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.purchases_by_product
            WHERE product_id = ?
        """)

        self._update_status_by_buyer = self.session.prepare(f"""
            UPDATE {self.keyspace}.purchases_by_buyer
            SET payment_status = ?, access_expires_at = ?, updated_at = ?
            WHERE buyer_user_id = ? AND product_id = ? AND purchase_id = ?
        """)

        self._update_status_by_product = self.session.prepare(f"""
            UPDATE {self.keyspace}.purchases_by_product
            SET payment_status = ?, access_expires_at = ?, updated_at = ?
            WHERE product_id = ? AND buyer_user_id = ? AND purchase_id = ?
        """)

    # ==========================================================================
    # Batch helpers
    # ==========================================================================

    def _insert_params(self, purchase: Purchase) -> list:
        return [
            purchase.buyer_user_id,
            purchase.product_id,
            purchase.id,
            purchase.product_type.value,
            purchase.entity_id,
            purchase.payment_status.value,
            purchase.access_expires_at,
            purchase.bundle_parent_purchase_id,
            purchase.payment_amount,
            purchase.payment_method.value,
            purchase.granted_by,
            purchase.created_at,
            purchase.updated_at,
        ]

    def _add_insert(self, batch: BatchStatement, purchase: Purchase) -> None:
        params = self._insert_params(purchase)
        batch.add(self._insert_by_buyer, params)
        batch.add(self._insert_by_product, params)

    def _add_status_update(self, batch: BatchStatement, purchase: Purchase) -> None:
        status_value = purchase.payment_status.value
        batch.add(
            self._update_status_by_buyer,
            [
                status_value,
                purchase.access_expires_at,
                purchase.updated_at,
                purchase.buyer_user_id,
                purchase.product_id,
                purchase.id,
            ],
        )
        batch.add(
            self._update_status_by_product,
            [
                status_value,
                purchase.access_expires_at,
                purchase.updated_at,
                purchase.product_id,
                purchase.buyer_user_id,
                purchase.id,
            ],
        )

    # ==========================================================================
    # Lookups (purchase store contract)
    # ==========================================================================

    async def find_purchases(self, user_id: UUID, product_id: UUID) -> list[Purchase]:
        """All purchases of a product by a user, newest first."""
        rows = await self.session.aexecute(
            self._get_user_product_purchases, [user_id, product_id]
        )
        purchases = [Purchase.from_row(row) for row in rows]
        return sorted(purchases, key=lambda p: p.created_at, reverse=True)

    async def find_latest_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> Purchase | None:
        """Most recent completed purchase, whether or not it has expired."""
        for purchase in await self.find_purchases(user_id, product_id):
            if purchase.is_completed:
                return purchase
        return None

    async def find_completed_purchase(
        self, user_id: UUID, product_id: UUID
    ) -> Purchase | None:
        """Completed purchase that still grants access, if any.

        A lifetime purchase wins over a dated one; otherwise the one that
        expires last.
        """
        now = datetime.now(UTC)
        active = [
            p for p in await self.find_purchases(user_id, product_id) if p.is_active(now)
        ]
        if not active:
            return None
        return max(
            active,
            key=lambda p: (p.is_lifetime, p.access_expires_at or now),
        )

    async def get_purchase(
        self, user_id: UUID, product_id: UUID, purchase_id: UUID
    ) -> Purchase | None:
        """Get one purchase by its full key."""
        for purchase in await self.find_purchases(user_id, product_id):
            if purchase.id == purchase_id:
                return purchase
        return None

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def _bundle_children(self, purchase: Purchase) -> list[Purchase]:
        """Child purchases owed for a bundle purchase (empty otherwise)."""
        if purchase.product_type != EntityType.BUNDLE:
            return []
        bundle = await self.catalog.get_product_by_id(purchase.product_id)
        if bundle is None:
            raise ProductNotFoundError
        items = await self.catalog.get_bundle_items(bundle)
        return [create_bundle_child_purchase(purchase, item) for item in items]

    async def create_purchase(self, purchase: Purchase) -> Purchase:
        """Persist a new purchase in both lookup tables atomically."""
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        self._add_insert(batch, purchase)
        await self.session.aexecute(batch)

        logger.info(
            "purchase_created",
            purchase_id=str(purchase.id),
            buyer_user_id=str(purchase.buyer_user_id),
            product_id=str(purchase.product_id),
            payment_status=purchase.payment_status.value,
        )
        return purchase

    async def complete_purchase(self, purchase: Purchase) -> list[Purchase]:
        """Mark a purchase completed.

        For a bundle, one child purchase per bundle item is written in the
        same logged batch as the parent status change, so either the buyer
        gets the whole bundle or nothing changes.

        Returns:
            The created child purchases (empty for non-bundles)

        Raises:
            PurchaseStateError: If the purchase is failed or refunded
        """
        if purchase.is_completed:
            return []
        if purchase.payment_status not in _COMPLETABLE_STATUSES:
            msg = f"Cannot complete a {purchase.payment_status.value} purchase"
            raise PurchaseStateError(msg)

        children = await self._bundle_children(purchase)

        purchase.payment_status = PaymentStatus.COMPLETED
        purchase.updated_at = datetime.now(UTC)

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        self._add_status_update(batch, purchase)
        for child in children:
            self._add_insert(batch, child)
        await self.session.aexecute(batch)

        logger.info(
            "purchase_completed",
            purchase_id=str(purchase.id),
            product_type=purchase.product_type.value,
            bundle_items=len(children),
        )
        return children

    async def refund_purchase(self, purchase: Purchase) -> list[Purchase]:
        """Mark a completed purchase refunded, with its bundle children.

        Returns:
            The refunded child purchases

        Raises:
            PurchaseStateError: If the purchase is not completed
        """
        if not purchase.is_completed:
            msg = f"Cannot refund a {purchase.payment_status.value} purchase"
            raise PurchaseStateError(msg)

        now = datetime.now(UTC)
        children: list[Purchase] = []
        if purchase.product_type == EntityType.BUNDLE:
            rows = await self.session.aexecute(
                self._get_user_purchases, [purchase.buyer_user_id]
            )
            children = [
                child
                for child in (Purchase.from_row(row) for row in rows)
                if child.bundle_parent_purchase_id == purchase.id
                and child.is_completed
            ]

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        for target in (purchase, *children):
            target.payment_status = PaymentStatus.REFUNDED
            target.updated_at = now
            self._add_status_update(batch, target)
        await self.session.aexecute(batch)

        logger.info(
            "purchase_refunded",
            purchase_id=str(purchase.id),
            bundle_items=len(children),
        )
        return children

    # ==========================================================================
    # Admin grant / revoke
    # ==========================================================================

    async def _require_product(
        self, entity_type: EntityType, entity_id: UUID
    ) -> "Product":
        product = await self.catalog.get_product(entity_type, entity_id)
        if product is None:
            raise ProductNotFoundError
        return product

    async def grant_access(
        self,
        user_id: UUID,
        entity_type: EntityType,
        entity_id: UUID,
        granted_by: UUID,
        access_days: int | None = None,
        is_lifetime: bool = False,
        price: Decimal = Decimal("0"),
    ) -> Purchase:
        """Grant access by creating a completed admin purchase.

        Raises:
            ProductNotFoundError: If the entity has no product
            AlreadyHasAccessError: If the user already has active access
        """
        product = await self._require_product(entity_type, entity_id)

        if await self.find_completed_purchase(user_id, product.id):
            raise AlreadyHasAccessError

        purchase = create_admin_grant_purchase(
            user_id=user_id,
            product=product,
            granted_by=granted_by,
            access_days=access_days,
            is_lifetime=is_lifetime,
            price=price,
        )
        children = await self._bundle_children(purchase)

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        for target in (purchase, *children):
            self._add_insert(batch, target)
        await self.session.aexecute(batch)

        logger.info(
            "access_granted",
            user_id=str(user_id),
            product_id=str(product.id),
            granted_by=str(granted_by),
            expires_at=purchase.access_expires_at.isoformat()
            if purchase.access_expires_at
            else None,
            bundle_items=len(children),
        )
        return purchase

    async def revoke_access(
        self,
        user_id: UUID,
        entity_type: EntityType,
        entity_id: UUID,
        revoked_by: UUID,
    ) -> int:
        """Revoke access by refunding every active purchase of the product.

        Returns:
            Number of purchases revoked

        Raises:
            ProductNotFoundError: If the entity has no product
            NoActiveAccessError: If nothing grants the user access
        """
        product = await self._require_product(entity_type, entity_id)

        now = datetime.now(UTC)
        active = [
            p for p in await self.find_purchases(user_id, product.id) if p.is_active(now)
        ]
        if not active:
            raise NoActiveAccessError

        for purchase in active:
            await self.refund_purchase(purchase)

        logger.info(
            "access_revoked",
            user_id=str(user_id),
            product_id=str(product.id),
            revoked_by=str(revoked_by),
            purchases=len(active),
        )
        return len(active)

    # ==========================================================================
    # Listings and stats
    # ==========================================================================

    async def get_user_purchases(
        self,
        user_id: UUID,
        entity_type: EntityType | None = None,
        active_only: bool = False,
    ) -> list[Purchase]:
        """List a user's purchases, newest first."""
        rows = await self.session.aexecute(self._get_user_purchases, [user_id])
        now = datetime.now(UTC)

        purchases = []
        for row in rows:
            purchase = Purchase.from_row(row)
            if entity_type and purchase.product_type != entity_type:
                continue
            if active_only and not purchase.is_active(now):
                continue
            purchases.append(purchase)

        return sorted(purchases, key=lambda p: p.created_at, reverse=True)

    async def _product_purchases(self, product_id: UUID) -> list[Purchase]:
        rows = await self.session.aexecute(self._get_product_purchases, [product_id])
        return [Purchase.from_row(row) for row in rows]

    async def get_entity_users(
        self, entity_type: EntityType, entity_id: UUID
    ) -> list[Purchase]:
        """Active purchases of an entity, one per user (the latest)."""
        product = await self._require_product(entity_type, entity_id)
        now = datetime.now(UTC)

        by_user: dict[UUID, Purchase] = {}
        for purchase in await self._product_purchases(product.id):
            if not purchase.is_active(now):
                continue
            current = by_user.get(purchase.buyer_user_id)
            if current is None or purchase.created_at > current.created_at:
                by_user[purchase.buyer_user_id] = purchase

        return sorted(by_user.values(), key=lambda p: p.created_at, reverse=True)

    async def get_entity_access_stats(
        self, entity_type: EntityType, entity_id: UUID
    ) -> dict:
        """Purchase and revenue totals for an entity."""
        product = await self._require_product(entity_type, entity_id)
        now = datetime.now(UTC)

        completed = [p for p in await self._product_purchases(product.id) if p.is_completed]
        active = [p for p in completed if p.is_active(now)]

        return {
            "product_id": product.id,
            "total_purchases": len(completed),
            "active_access": len(active),
            "lifetime_access": sum(1 for p in active if p.is_lifetime),
            "total_revenue": sum((p.payment_amount for p in completed), Decimal("0")),
        }

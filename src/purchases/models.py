"""Purchase models and Cassandra schema.

A purchase grants access to one product. Purchases of a bundle get one
child purchase per bundle item when the bundle purchase completes, linked
back through bundle_parent_purchase_id.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from src.access.models import EntityType, ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row

    from src.catalog.models import Product


class PaymentStatus(str, Enum):
    """Lifecycle of a purchase."""

    CART = "cart"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """How the purchase was paid for."""

    PAYPLUS = "payplus"  # Payment gateway checkout
    FREE = "free"  # Free product, no charge
    ADMIN_GRANT = "admin_grant"  # Granted manually by an admin
    BUNDLE = "bundle"  # Child of a bundle purchase


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

PURCHASES_BY_BUYER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.purchases_by_buyer (
    buyer_user_id UUID,
    product_id UUID,
    purchase_id UUID,
    product_type TEXT,
    entity_id UUID,
    payment_status TEXT,
    access_expires_at TIMESTAMP,
    bundle_parent_purchase_id UUID,
    payment_amount DECIMAL,
    payment_method TEXT,
    granted_by UUID,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((buyer_user_id), product_id, purchase_id)
) WITH CLUSTERING ORDER BY (product_id ASC, purchase_id DESC)
"""

PURCHASES_BY_PRODUCT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.purchases_by_product (
    product_id UUID,
    buyer_user_id UUID,
    purchase_id UUID,
    product_type TEXT,
    entity_id UUID,
    payment_status TEXT,
    access_expires_at TIMESTAMP,
    bundle_parent_purchase_id UUID,
    payment_amount DECIMAL,
    payment_method TEXT,
    granted_by UUID,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((product_id), buyer_user_id, purchase_id)
)
"""

PURCHASES_TABLES_CQL = [
    PURCHASES_BY_BUYER_TABLE_CQL,
    PURCHASES_BY_PRODUCT_TABLE_CQL,
]


# ==============================================================================
# Entity
# ==============================================================================


@dataclass
class Purchase:
    """A user's purchase of a product."""

    buyer_user_id: UUID
    product_id: UUID
    product_type: EntityType
    entity_id: UUID
    payment_status: PaymentStatus = PaymentStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    access_expires_at: datetime | None = None
    bundle_parent_purchase_id: UUID | None = None
    payment_amount: Decimal = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.PAYPLUS
    granted_by: UUID | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "Purchase":
        """Create instance from Cassandra row."""
        return cls(
            id=row.purchase_id,
            buyer_user_id=row.buyer_user_id,
            product_id=row.product_id,
            product_type=EntityType(row.product_type),
            entity_id=row.entity_id,
            payment_status=PaymentStatus(row.payment_status),
            access_expires_at=ensure_utc_aware(row.access_expires_at),
            bundle_parent_purchase_id=row.bundle_parent_purchase_id,
            payment_amount=row.payment_amount or Decimal("0"),
            payment_method=PaymentMethod(row.payment_method),
            granted_by=row.granted_by,
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
            updated_at=ensure_utc_aware(row.updated_at) or datetime.now(UTC),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "buyer_user_id": self.buyer_user_id,
            "product_id": self.product_id,
            "product_type": self.product_type.value,
            "entity_id": self.entity_id,
            "payment_status": self.payment_status.value,
            "access_expires_at": self.access_expires_at.isoformat()
            if self.access_expires_at
            else None,
            "bundle_parent_purchase_id": self.bundle_parent_purchase_id,
            "payment_amount": str(self.payment_amount),
            "payment_method": self.payment_method.value,
            "granted_by": self.granted_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @property
    def is_completed(self) -> bool:
        """Payment went through."""
        return self.payment_status == PaymentStatus.COMPLETED

    @property
    def is_lifetime(self) -> bool:
        """Access never expires."""
        return self.access_expires_at is None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Access window has closed."""
        if self.access_expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.access_expires_at

    def is_active(self, now: datetime | None = None) -> bool:
        """Check if purchase grants access right now."""
        return self.is_completed and not self.is_expired(now)


# ==============================================================================
# Factory Functions
# ==============================================================================


def access_expiry_for(
    access_days: int | None, start: datetime | None = None
) -> datetime | None:
    """Expiry for a number of access days; None means lifetime."""
    if access_days is None:
        return None
    return (start or datetime.now(UTC)) + timedelta(days=access_days)


def create_admin_grant_purchase(
    user_id: UUID,
    product: "Product",
    granted_by: UUID,
    access_days: int | None = None,
    is_lifetime: bool = False,
    price: Decimal = Decimal("0"),
) -> Purchase:
    """Create a completed purchase granted by an admin.

    Without explicit access days, the product's own access duration applies.
    """
    days = None if is_lifetime else (access_days or product.access_days)
    return Purchase(
        buyer_user_id=user_id,
        product_id=product.id,
        product_type=product.product_type,
        entity_id=product.entity_id,
        payment_status=PaymentStatus.COMPLETED,
        access_expires_at=access_expiry_for(days),
        payment_amount=price,
        payment_method=PaymentMethod.ADMIN_GRANT,
        granted_by=granted_by,
    )


def create_bundle_child_purchase(parent: Purchase, item: "Product") -> Purchase:
    """Create the completed child purchase for one bundle item.

    Children inherit the bundle's access window, not the item's own.
    """
    return Purchase(
        buyer_user_id=parent.buyer_user_id,
        product_id=item.id,
        product_type=item.product_type,
        entity_id=item.entity_id,
        payment_status=PaymentStatus.COMPLETED,
        access_expires_at=parent.access_expires_at,
        bundle_parent_purchase_id=parent.id,
        payment_amount=Decimal("0"),
        payment_method=PaymentMethod.BUNDLE,
    )

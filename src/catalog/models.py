"""Product catalog models and Cassandra schema.

A product is the sellable wrapper around a piece of content (file, game,
workshop, course, tool, lesson plan or bundle). Products are looked up by
(product_type, entity_id) on every access check and by id for bundles.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from src.access.models import EntityType, ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

PRODUCTS_BY_ENTITY_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.products_by_entity (
    product_type TEXT,
    entity_id UUID,
    product_id UUID,
    creator_user_id UUID,
    title TEXT,
    price DECIMAL,
    access_days INT,
    is_published BOOLEAN,
    bundle_item_ids LIST<UUID>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((product_type, entity_id))
)
"""

PRODUCTS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.products_by_id (
    product_id UUID,
    product_type TEXT,
    entity_id UUID,
    creator_user_id UUID,
    title TEXT,
    price DECIMAL,
    access_days INT,
    is_published BOOLEAN,
    bundle_item_ids LIST<UUID>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY (product_id)
)
"""

CATALOG_TABLES_CQL = [
    PRODUCTS_BY_ENTITY_TABLE_CQL,
    PRODUCTS_BY_ID_TABLE_CQL,
]


# ==============================================================================
# Entity
# ==============================================================================


@dataclass
class Product:
    """Catalog entry for a piece of content."""

    product_type: EntityType
    entity_id: UUID
    id: UUID = field(default_factory=uuid4)
    creator_user_id: UUID | None = None
    title: str = ""
    price: Decimal = Decimal("0")
    access_days: int | None = None
    is_published: bool = True
    bundle_item_ids: list[UUID] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "Product":
        """Create instance from Cassandra row."""
        return cls(
            id=row.product_id,
            product_type=EntityType(row.product_type),
            entity_id=row.entity_id,
            creator_user_id=row.creator_user_id,
            title=row.title or "",
            price=row.price if row.price is not None else Decimal("0"),
            access_days=row.access_days,
            is_published=bool(row.is_published),
            bundle_item_ids=list(row.bundle_item_ids or []),
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
            updated_at=ensure_utc_aware(row.updated_at) or datetime.now(UTC),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "product_type": self.product_type.value,
            "entity_id": self.entity_id,
            "creator_user_id": self.creator_user_id,
            "title": self.title,
            "price": str(self.price),
            "access_days": self.access_days,
            "is_lifetime": self.is_lifetime,
            "is_published": self.is_published,
            "bundle_item_ids": self.bundle_item_ids,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @property
    def is_orphaned(self) -> bool:
        """Product without an owning creator."""
        return self.creator_user_id is None

    @property
    def is_lifetime(self) -> bool:
        """Purchases of this product never expire."""
        return self.access_days is None

    @property
    def is_bundle(self) -> bool:
        """Product groups other products."""
        return self.product_type == EntityType.BUNDLE

    @property
    def is_free(self) -> bool:
        """Product costs nothing."""
        return self.price <= 0

    def is_created_by(self, user_id: UUID | None) -> bool:
        """Check ownership. Orphaned products are owned by no one."""
        return (
            user_id is not None
            and self.creator_user_id is not None
            and self.creator_user_id == user_id
        )

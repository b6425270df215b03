# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Product catalog lookups backed by Cassandra."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.access.models import EntityType
from src.core.logging import get_logger

from .models import Product


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class ProductCatalogService:
    """Reads and writes catalog products."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        columns = (
            "product_id, product_type, entity_id, creator_user_id, title, price, "
            "access_days, is_published, bundle_item_ids, created_at, updated_at"
        )

        self._get_by_entity = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.products_by_entity
            WHERE product_type = ? AND entity_id = ?
        """)

        self._get_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.products_by_id
            WHERE product_id = ?
        """)

        self._insert_by_entity = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.products_by_entity ({columns})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_by_id = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.products_by_id ({columns})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

    async def get_product(
        self, entity_type: EntityType | str, entity_id: UUID
    ) -> Product | None:
        """Get the product wrapping an entity.

        Returns:
            Product, or None when the entity is not sold (system assets)
        """
        result = await self.session.aexecute(
            self._get_by_entity, [EntityType(entity_type).value, entity_id]
        )
        row = result.one()
        return Product.from_row(row) if row else None

    async def get_product_by_id(self, product_id: UUID) -> Product | None:
        """Get a product by its own id."""
        result = await self.session.aexecute(self._get_by_id, [product_id])
        row = result.one()
        return Product.from_row(row) if row else None

    async def get_bundle_items(self, bundle: Product) -> list[Product]:
        """Resolve the products contained in a bundle.

        Missing items are skipped and logged; a bundle keeps selling even
        when one of its items was removed from the catalog.
        """
        items: list[Product] = []
        for item_id in bundle.bundle_item_ids:
            item = await self.get_product_by_id(item_id)
            if item is None:
                logger.warning(
                    "bundle_item_missing", bundle_id=str(bundle.id), item_id=str(item_id)
                )
                continue
            items.append(item)
        return items

    async def save_product(self, product: Product) -> Product:
        """Insert or replace a product in both lookup tables."""
        product.updated_at = datetime.now(UTC)
        params = [
            product.id,
            product.product_type.value,
            product.entity_id,
            product.creator_user_id,
            product.title,
            product.price,
            product.access_days,
            product.is_published,
            product.bundle_item_ids,
            product.created_at,
            product.updated_at,
        ]
        await self.session.aexecute(self._insert_by_entity, params)
        await self.session.aexecute(self._insert_by_id, params)

        logger.info(
            "product_saved",
            product_id=str(product.id),
            product_type=product.product_type.value,
        )
        return product

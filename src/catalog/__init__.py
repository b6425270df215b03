"""Product catalog module."""

from .models import CATALOG_TABLES_CQL, Product


__all__ = ["CATALOG_TABLES_CQL", "Product"]

"""Purchases module.

Completed, unexpired purchases grant access to a product. Bundle purchases
fan out into one child purchase per item.
"""

from .models import PURCHASES_TABLES_CQL, PaymentMethod, PaymentStatus, Purchase


__all__ = ["PURCHASES_TABLES_CQL", "PaymentMethod", "PaymentStatus", "Purchase"]

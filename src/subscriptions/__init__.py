"""Subscriptions module.

Plans with monthly benefits, subscriptions, product claims and the
allowance ledger that counts claims per billing month.
"""

from .models import (
    SUBSCRIPTIONS_TABLES_CQL,
    AllowanceEntry,
    Subscription,
    SubscriptionClaim,
    SubscriptionPlan,
    SubscriptionStatus,
)


__all__ = [
    "SUBSCRIPTIONS_TABLES_CQL",
    "AllowanceEntry",
    "Subscription",
    "SubscriptionClaim",
    "SubscriptionPlan",
    "SubscriptionStatus",
]

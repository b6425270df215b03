"""Subscription, claim and allowance ledger models with Cassandra schema.

Plans grant monthly benefits per product type:
- True: unlimited claims
- positive int: monthly claim limit
- False / 0: product type not included

Claims and ledger rows are bucketed by calendar month (YYYY-MM). A new
month starts a fresh count; nothing rolls over.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from src.access.models import UNLIMITED, AllowanceAmount, EntityType, ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row


# Stored in allowance_ledger.allowance_limit for unlimited benefits
UNLIMITED_LIMIT_VALUE = -1


class SubscriptionStatus(str, Enum):
    """Lifecycle of a subscription."""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

SUBSCRIPTION_PLANS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.subscription_plans (
    plan_id UUID,
    name TEXT,
    benefits TEXT,
    is_active BOOLEAN,
    created_at TIMESTAMP,
    PRIMARY KEY (plan_id)
)
"""

SUBSCRIPTIONS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.subscriptions_by_user (
    user_id UUID,
    subscription_id UUID,
    plan_id UUID,
    status TEXT,
    start_date TIMESTAMP,
    end_date TIMESTAMP,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id), subscription_id)
)
"""

SUBSCRIPTIONS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.subscriptions_by_id (
    subscription_id UUID,
    user_id UUID,
    plan_id UUID,
    status TEXT,
    start_date TIMESTAMP,
    end_date TIMESTAMP,
    created_at TIMESTAMP,
    PRIMARY KEY (subscription_id)
)
"""

SUBSCRIPTION_CLAIMS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.subscription_claims (
    subscription_id UUID,
    month_year TEXT,
    product_type TEXT,
    product_id UUID,
    claim_id UUID,
    user_id UUID,
    claimed_at TIMESTAMP,
    total_sessions INT,
    total_usage_minutes INT,
    first_accessed TIMESTAMP,
    last_accessed TIMESTAMP,
    PRIMARY KEY ((subscription_id, month_year), product_type, product_id)
)
"""

ALLOWANCE_LEDGER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.allowance_ledger (
    subscription_id UUID,
    month_year TEXT,
    product_type TEXT,
    allowance_limit INT,
    used INT,
    updated_at TIMESTAMP,
    PRIMARY KEY ((subscription_id, month_year), product_type)
)
"""

ALLOWANCE_ADJUSTMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.allowance_adjustments (
    subscription_id UUID,
    adjustment_id UUID,
    month_year TEXT,
    product_type TEXT,
    delta INT,
    used_before INT,
    used_after INT,
    reason TEXT,
    admin_id UUID,
    created_at TIMESTAMP,
    PRIMARY KEY ((subscription_id), created_at, adjustment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, adjustment_id ASC)
"""

SUBSCRIPTIONS_TABLES_CQL = [
    SUBSCRIPTION_PLANS_TABLE_CQL,
    SUBSCRIPTIONS_BY_USER_TABLE_CQL,
    SUBSCRIPTIONS_BY_ID_TABLE_CQL,
    SUBSCRIPTION_CLAIMS_TABLE_CQL,
    ALLOWANCE_LEDGER_TABLE_CQL,
    ALLOWANCE_ADJUSTMENTS_TABLE_CQL,
]


# ==============================================================================
# Helpers
# ==============================================================================


def benefit_limit(benefit: Any) -> AllowanceAmount:
    """Monthly limit for a plan benefit value.

    True means unlimited, a positive int is the limit, anything else
    (False, 0, missing, malformed) means not included.
    """
    if benefit is True:
        return UNLIMITED
    if isinstance(benefit, int) and not isinstance(benefit, bool) and benefit > 0:
        return benefit
    return 0


def limit_to_db(limit: AllowanceAmount) -> int:
    """Encode a limit for the allowance_limit column."""
    return UNLIMITED_LIMIT_VALUE if limit == UNLIMITED else int(limit)


def limit_from_db(value: int | None) -> AllowanceAmount:
    """Decode the allowance_limit column."""
    if value is None or value < 0:
        return UNLIMITED
    return value


# ==============================================================================
# Entities
# ==============================================================================


@dataclass
class SubscriptionPlan:
    """A purchasable plan and its monthly benefits."""

    name: str
    benefits: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row", benefits: dict[str, Any]) -> "SubscriptionPlan":
        """Create instance from Cassandra row with decoded benefits."""
        return cls(
            id=row.plan_id,
            name=row.name,
            benefits=benefits,
            is_active=bool(row.is_active),
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
        )

    def limit_for(self, product_type: EntityType | str) -> AllowanceAmount:
        """Monthly claim limit for a product type."""
        return benefit_limit(self.benefits.get(EntityType(product_type).value))

    def includes(self, product_type: EntityType | str) -> bool:
        """Check if the plan grants any claims for a product type."""
        return self.limit_for(product_type) != 0


@dataclass
class Subscription:
    """A user's subscription to a plan."""

    user_id: UUID
    plan_id: UUID
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    id: UUID = field(default_factory=uuid4)
    start_date: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_date: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "Subscription":
        """Create instance from Cassandra row."""
        return cls(
            id=row.subscription_id,
            user_id=row.user_id,
            plan_id=row.plan_id,
            status=SubscriptionStatus(row.status),
            start_date=ensure_utc_aware(row.start_date) or datetime.now(UTC),
            end_date=ensure_utc_aware(row.end_date),
            created_at=ensure_utc_aware(row.created_at) or datetime.now(UTC),
        )

    def is_active(self, now: datetime | None = None) -> bool:
        """Active status and not past its end date."""
        if self.status != SubscriptionStatus.ACTIVE:
            return False
        return not (self.end_date and (now or datetime.now(UTC)) >= self.end_date)


@dataclass
class SubscriptionClaim:
    """A product claimed against a subscription's monthly allowance."""

    subscription_id: UUID
    user_id: UUID
    month_year: str
    product_type: EntityType
    product_id: UUID
    id: UUID = field(default_factory=uuid4)
    claimed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    total_sessions: int = 0
    total_usage_minutes: int = 0
    first_accessed: datetime | None = None
    last_accessed: datetime | None = None

    @classmethod
    def from_row(cls, row: "Row") -> "SubscriptionClaim":
        """Create instance from Cassandra row."""
        return cls(
            id=row.claim_id,
            subscription_id=row.subscription_id,
            user_id=row.user_id,
            month_year=row.month_year,
            product_type=EntityType(row.product_type),
            product_id=row.product_id,
            claimed_at=ensure_utc_aware(row.claimed_at) or datetime.now(UTC),
            total_sessions=row.total_sessions or 0,
            total_usage_minutes=row.total_usage_minutes or 0,
            first_accessed=ensure_utc_aware(row.first_accessed),
            last_accessed=ensure_utc_aware(row.last_accessed),
        )

    def record_session(self, duration_minutes: int = 0) -> None:
        now = datetime.now(UTC)
        self.total_sessions += 1
        self.total_usage_minutes += max(0, duration_minutes)
        self.first_accessed = self.first_accessed or now
        self.last_accessed = now

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "user_id": self.user_id,
            "month_year": self.month_year,
            "product_type": self.product_type.value,
            "product_id": self.product_id,
            "claimed_at": self.claimed_at.isoformat(),
            "total_sessions": self.total_sessions,
            "total_usage_minutes": self.total_usage_minutes,
            "first_accessed": self.first_accessed.isoformat()
            if self.first_accessed
            else None,
            "last_accessed": self.last_accessed.isoformat()
            if self.last_accessed
            else None,
        }


@dataclass
class AllowanceEntry:
    """Ledger row: claims used against a limit in one month."""

    subscription_id: UUID
    month_year: str
    product_type: EntityType
    limit: AllowanceAmount
    used: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: "Row") -> "AllowanceEntry":
        """Create instance from Cassandra row."""
        return cls(
            subscription_id=row.subscription_id,
            month_year=row.month_year,
            product_type=EntityType(row.product_type),
            limit=limit_from_db(row.allowance_limit),
            used=row.used or 0,
            updated_at=ensure_utc_aware(row.updated_at) or datetime.now(UTC),
        )

    @property
    def is_unlimited(self) -> bool:
        """No cap on claims."""
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> AllowanceAmount:
        """Claims left this month."""
        if self.limit == UNLIMITED:
            return UNLIMITED
        return max(0, int(self.limit) - self.used)

    def has_room(self) -> bool:
        """At least one more claim fits."""
        return self.is_unlimited or self.used < int(self.limit)


@dataclass
class AllowanceAdjustment:
    """Audit record for a manual ledger correction."""

    subscription_id: UUID
    month_year: str
    product_type: EntityType
    delta: int
    used_before: int
    used_after: int
    reason: str
    admin_id: UUID | None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

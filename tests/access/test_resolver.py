"""Tests for the access resolver.

Covers:
- Precedence (admin, ownership, purchase, claim, student via teacher)
- Expired vs never purchased denials
- Non-product entities, orphaned and unpublished products
- Store failures surfacing as AccessEvaluationError
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from src.access.admin import AdminAction, AdminOverridePolicy
from src.access.errors import AccessEvaluationError
from src.access.models import (
    UNLIMITED,
    AccessType,
    EntityRef,
    EntityType,
    RequestContext,
    Subject,
    current_month_year,
)
from src.access.resolver import AccessResolver
from src.auth.permissions import UserRole
from src.auth.security import create_anonymous_admin_token
from src.catalog.models import Product
from src.purchases.models import PaymentStatus, Purchase
from src.subscriptions.ledger import AllowanceLedger
from src.subscriptions.models import Subscription, SubscriptionPlan
from tests.fakes import (
    FailingCatalog,
    FailingPurchaseStore,
    FakeCatalog,
    FakePurchaseStore,
    FakeSubscriptionStore,
    FakeTeacherLinks,
)


def make_purchase(
    user_id, product: Product, expires_at: datetime | None = None, **kwargs
) -> Purchase:
    """Completed purchase of a product."""
    return Purchase(
        buyer_user_id=user_id,
        product_id=product.id,
        product_type=product.product_type,
        entity_id=product.entity_id,
        payment_status=kwargs.pop("payment_status", PaymentStatus.COMPLETED),
        access_expires_at=expires_at,
        **kwargs,
    )


def build_resolver(
    catalog=None,
    purchases=None,
    subscriptions=None,
    links=None,
    policy=None,
    claim_download_allowed=False,
) -> AccessResolver:
    subscriptions = subscriptions or FakeSubscriptionStore()
    return AccessResolver(
        catalog=catalog or FakeCatalog(),
        purchases=purchases or FakePurchaseStore(),
        subscriptions=subscriptions,
        teacher_links=links or FakeTeacherLinks(),
        ledger=AllowanceLedger(subscriptions=subscriptions, allowances=subscriptions),
        admin_policy=policy or AdminOverridePolicy(),
        claim_download_allowed=claim_download_allowed,
    )


@pytest.fixture
def creator_id():
    return uuid4()


@pytest.fixture
def product(creator_id) -> Product:
    """Published workshop owned by creator_id."""
    return Product(
        product_type=EntityType.WORKSHOP,
        entity_id=uuid4(),
        creator_user_id=creator_id,
        title="Fractions workshop",
    )


@pytest.fixture
def entity(product) -> EntityRef:
    return EntityRef(product.product_type, product.entity_id)


class TestOwnershipAndPurchase:
    """Creator and purchase channels."""

    @pytest.mark.asyncio
    async def test_ownership_wins_over_purchase(self, product, entity, creator_id):
        """Creator who also bought the product gets creator access."""
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(creator_id, product)),
        )

        decision = await resolver.resolve_access(
            Subject(id=creator_id, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is True
        assert decision.access_type == AccessType.CREATOR
        assert decision.can_download is True
        assert decision.remaining_allowance == UNLIMITED

    @pytest.mark.asyncio
    async def test_active_purchase_grants_access(self, product, entity):
        """Completed, unexpired purchase grants full access with its expiry."""
        buyer = uuid4()
        expires = datetime.now(UTC) + timedelta(days=30)
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(buyer, product, expires)),
        )

        decision = await resolver.resolve_access(
            Subject(id=buyer, role=UserRole.TEACHER), entity
        )

        assert decision.access_type == AccessType.PURCHASE
        assert decision.can_download is True
        assert decision.expires_at == expires

    @pytest.mark.asyncio
    async def test_expired_purchase_reason(self, product, entity):
        """Expired purchase is denied with an "expired" reason."""
        buyer = uuid4()
        expired = datetime.now(UTC) - timedelta(days=1)
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(buyer, product, expired)),
        )

        decision = await resolver.resolve_access(
            Subject(id=buyer, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False
        assert decision.access_type == AccessType.NONE
        assert decision.reason.startswith("Purchase expired at")
        assert decision.remaining_allowance == 0

    @pytest.mark.asyncio
    async def test_never_purchased_reason(self, product, entity):
        """No purchase at all gives a distinct reason."""
        resolver = build_resolver(catalog=FakeCatalog(product))

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False
        assert decision.reason == "Never purchased"

    @pytest.mark.asyncio
    async def test_pending_purchase_does_not_grant(self, product, entity):
        """Only completed purchases count."""
        buyer = uuid4()
        pending = make_purchase(buyer, product, payment_status=PaymentStatus.PENDING)
        resolver = build_resolver(
            catalog=FakeCatalog(product), purchases=FakePurchaseStore(pending)
        )

        decision = await resolver.resolve_access(
            Subject(id=buyer, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False
        assert decision.reason == "Never purchased"

    @pytest.mark.asyncio
    async def test_guest_is_denied(self, product, entity):
        resolver = build_resolver(catalog=FakeCatalog(product))

        decision = await resolver.resolve_access(Subject.guest(), entity)

        assert decision.has_access is False
        assert decision.reason == "Authentication required"


class TestUnpublished:
    """Drafts are visible to their creator and admins only."""

    @pytest.fixture
    def draft(self, creator_id) -> Product:
        return Product(
            product_type=EntityType.GAME,
            entity_id=uuid4(),
            creator_user_id=creator_id,
            is_published=False,
        )

    @pytest.fixture
    def draft_entity(self, draft) -> EntityRef:
        return EntityRef(draft.product_type, draft.entity_id)

    @pytest.mark.asyncio
    async def test_creator_sees_draft(self, draft, draft_entity, creator_id):
        resolver = build_resolver(catalog=FakeCatalog(draft))

        decision = await resolver.resolve_access(
            Subject(id=creator_id, role=UserRole.TEACHER), draft_entity
        )

        assert decision.access_type == AccessType.CREATOR

    @pytest.mark.asyncio
    async def test_admin_sees_draft(self, draft, draft_entity):
        resolver = build_resolver(catalog=FakeCatalog(draft))

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.ADMIN), draft_entity
        )

        assert decision.has_access is True
        assert decision.is_admin_override is True

    @pytest.mark.asyncio
    async def test_purchase_of_draft_is_denied(self, draft, draft_entity):
        buyer = uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(draft),
            purchases=FakePurchaseStore(make_purchase(buyer, draft)),
        )

        decision = await resolver.resolve_access(
            Subject(id=buyer, role=UserRole.TEACHER), draft_entity
        )

        assert decision.has_access is False
        assert decision.reason == "Product is not published"

    @pytest.mark.asyncio
    async def test_claim_of_draft_is_denied(self, draft, draft_entity):
        teacher = uuid4()
        store = FakeSubscriptionStore()
        plan = store.add_plan(SubscriptionPlan(name="Pro", benefits={"game": True}))
        subscription = store.add_subscription(Subscription(user_id=teacher, plan_id=plan.id))
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id, current_month_year(), EntityType.GAME, draft.id, teacher
        )
        resolver = build_resolver(catalog=FakeCatalog(draft), subscriptions=store)

        decision = await resolver.resolve_access(
            Subject(id=teacher, role=UserRole.TEACHER), draft_entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_student_of_creator_denied_draft(self, draft, draft_entity, creator_id):
        student = uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(draft),
            links=FakeTeacherLinks({student: creator_id}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), draft_entity
        )

        assert decision.has_access is False
        assert decision.reason == "Product is not published"


class TestAdminOverride:
    """Admin bypass, orphaned products and non-product entities."""

    @pytest.fixture
    def orphaned(self) -> Product:
        return Product(product_type=EntityType.FILE, entity_id=uuid4())

    @pytest.mark.asyncio
    async def test_admin_accesses_orphaned_product(self, orphaned):
        resolver = build_resolver(catalog=FakeCatalog(orphaned))

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.ADMIN),
            EntityRef(orphaned.product_type, orphaned.entity_id),
        )

        assert decision.has_access is True
        assert decision.access_type == AccessType.CREATOR
        assert decision.is_admin_override is True
        assert decision.entity_not_product is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [UserRole.TEACHER, UserRole.STUDENT, UserRole.GUEST])
    async def test_non_admin_denied_orphaned_product(self, orphaned, role):
        resolver = build_resolver(catalog=FakeCatalog(orphaned))

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=role),
            EntityRef(orphaned.product_type, orphaned.entity_id),
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_non_product_entity_for_admin(self):
        """Admins still get full access to system assets."""
        resolver = build_resolver()

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.ADMIN),
            EntityRef(EntityType.GAME, uuid4()),
        )

        assert decision.has_access is True
        assert decision.entity_not_product is True

    @pytest.mark.asyncio
    async def test_non_product_entity_for_user(self):
        """NotFound is reported as entity_not_product, not as a purchase denial."""
        resolver = build_resolver()

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.TEACHER),
            EntityRef(EntityType.GAME, uuid4()),
        )

        assert decision.has_access is False
        assert decision.entity_not_product is True
        assert decision.reason == "Entity is not a product"

    @pytest.mark.asyncio
    async def test_sysadmin_bypass(self, product, entity):
        resolver = build_resolver(catalog=FakeCatalog(product))

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.SYSADMIN), entity
        )

        assert decision.has_access is True
        assert decision.is_admin_override is True

    @pytest.mark.asyncio
    async def test_sysadmin_forbidden_entity_access(self, product, entity):
        """A forbidden action sends the sysadmin through the normal checks."""
        policy = AdminOverridePolicy(forbidden_actions=[AdminAction.ENTITY_ACCESS])
        resolver = build_resolver(catalog=FakeCatalog(product), policy=policy)

        decision = await resolver.resolve_access(
            Subject(id=uuid4(), role=UserRole.SYSADMIN), entity
        )

        assert decision.has_access is False
        assert decision.reason == "Never purchased"

    @pytest.mark.asyncio
    async def test_anonymous_admin_token(self, product, entity):
        token = create_anonymous_admin_token("teacher_portal")
        resolver = build_resolver(catalog=FakeCatalog(product))

        decision = await resolver.resolve_access(
            Subject.guest(), entity, RequestContext(anonymous_admin_token=token)
        )

        assert decision.has_access is True
        assert decision.is_admin_override is True

    @pytest.mark.asyncio
    async def test_invalid_anonymous_admin_token(self, product, entity):
        resolver = build_resolver(catalog=FakeCatalog(product))

        decision = await resolver.resolve_access(
            Subject.guest(), entity, RequestContext(anonymous_admin_token="garbage")
        )

        assert decision.has_access is False


class TestSubscriptionClaim:
    """Teacher access through a monthly claim."""

    @pytest.fixture
    def store(self) -> FakeSubscriptionStore:
        return FakeSubscriptionStore()

    @pytest.fixture
    def teacher_id(self):
        return uuid4()

    @pytest.fixture
    def subscription(self, store, teacher_id) -> Subscription:
        plan = store.add_plan(
            SubscriptionPlan(name="Pro", benefits={"workshop": 50, "game": True})
        )
        return store.add_subscription(Subscription(user_id=teacher_id, plan_id=plan.id))

    @pytest.mark.asyncio
    async def test_claim_counts_against_allowance(
        self, store, subscription, teacher_id, product, entity
    ):
        """limit 50 with 49 used: the claim takes the last slot."""
        month = current_month_year()
        store.set_used(subscription.id, month, EntityType.WORKSHOP, 50, 49)
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id, month, EntityType.WORKSHOP, product.id, teacher_id
        )
        resolver = build_resolver(catalog=FakeCatalog(product), subscriptions=store)

        decision = await resolver.resolve_access(
            Subject(id=teacher_id, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is True
        assert decision.access_type == AccessType.SUBSCRIPTION_CLAIM
        assert decision.can_download is False
        assert decision.can_preview is True
        assert decision.can_play is True
        assert decision.remaining_allowance == 0

    @pytest.mark.asyncio
    async def test_claim_download_flag(
        self, store, subscription, teacher_id, product, entity
    ):
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id,
            current_month_year(),
            EntityType.WORKSHOP,
            product.id,
            teacher_id,
        )
        resolver = build_resolver(
            catalog=FakeCatalog(product), subscriptions=store, claim_download_allowed=True
        )

        decision = await resolver.resolve_access(
            Subject(id=teacher_id, role=UserRole.TEACHER), entity
        )

        assert decision.can_download is True
        assert decision.remaining_allowance == 49

    @pytest.mark.asyncio
    async def test_unclaimed_product_is_denied(
        self, store, subscription, teacher_id, product, entity
    ):
        """An active subscription alone does not grant access."""
        resolver = build_resolver(catalog=FakeCatalog(product), subscriptions=store)

        decision = await resolver.resolve_access(
            Subject(id=teacher_id, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_claim_ignored_when_benefit_removed(
        self, store, subscription, teacher_id, product, entity
    ):
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id,
            current_month_year(),
            EntityType.WORKSHOP,
            product.id,
            teacher_id,
        )
        store.plans[subscription.plan_id].benefits["workshop"] = False
        resolver = build_resolver(catalog=FakeCatalog(product), subscriptions=store)

        decision = await resolver.resolve_access(
            Subject(id=teacher_id, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_last_month_claim_does_not_count(
        self, store, subscription, teacher_id, product, entity
    ):
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id, "2000-01", EntityType.WORKSHOP, product.id, teacher_id
        )
        resolver = build_resolver(catalog=FakeCatalog(product), subscriptions=store)

        decision = await resolver.resolve_access(
            Subject(id=teacher_id, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False


class TestStudentViaTeacher:
    """Delegated access for linked students."""

    @pytest.mark.asyncio
    async def test_student_gets_teacher_purchase_without_download(self, product, entity):
        student, teacher = uuid4(), uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(teacher, product)),
            links=FakeTeacherLinks({student: teacher}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.has_access is True
        assert decision.access_type == AccessType.STUDENT_VIA_TEACHER
        assert decision.can_download is False
        assert decision.can_play is True
        assert decision.can_preview is True

    @pytest.mark.asyncio
    async def test_student_of_creator_never_downloads(self, product, entity, creator_id):
        """Even full creator access of the teacher does not pass download on."""
        student = uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            links=FakeTeacherLinks({student: creator_id}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.access_type == AccessType.STUDENT_VIA_TEACHER
        assert decision.can_download is False

    @pytest.mark.asyncio
    async def test_persisted_link_wins_over_token(self, product, entity):
        """A student moved to a new teacher stops delegating through the old one."""
        student, old_teacher, new_teacher = uuid4(), uuid4(), uuid4()
        links = FakeTeacherLinks({student: new_teacher})
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(old_teacher, product)),
            links=links,
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT, teacher_link_id=old_teacher), entity
        )

        assert decision.has_access is False
        assert links.lookups == 1

    @pytest.mark.asyncio
    async def test_deactivated_link_ignores_token(self, product, entity):
        student, teacher = uuid4(), uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(teacher, product)),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT, teacher_link_id=teacher), entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_student_session_counts_on_teacher_claim(self, product, entity):
        student, teacher = uuid4(), uuid4()
        store = FakeSubscriptionStore()
        plan = store.add_plan(SubscriptionPlan(name="Pro", benefits={"workshop": 5}))
        subscription = store.add_subscription(Subscription(user_id=teacher, plan_id=plan.id))
        month = current_month_year()
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(subscription.id, month, EntityType.WORKSHOP, product.id, teacher)
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            subscriptions=store,
            links=FakeTeacherLinks({student: teacher}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.access_type == AccessType.STUDENT_VIA_TEACHER
        claim = await store.find_claim(
            subscription.id, month, EntityType.WORKSHOP, product.id
        )
        assert claim.total_sessions == 1
        assert claim.last_accessed is not None

    @pytest.mark.asyncio
    async def test_usage_record_failure_keeps_access(self, product, entity):
        student, teacher = uuid4(), uuid4()
        store = FakeSubscriptionStore()
        plan = store.add_plan(SubscriptionPlan(name="Pro", benefits={"workshop": 5}))
        subscription = store.add_subscription(Subscription(user_id=teacher, plan_id=plan.id))
        ledger = AllowanceLedger(subscriptions=store, allowances=store)
        await ledger.claim(
            subscription.id, current_month_year(), EntityType.WORKSHOP, product.id, teacher
        )

        async def broken_update(claim):
            msg = "write timeout"
            raise TimeoutError(msg)

        store.update_claim_usage = broken_update
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            subscriptions=store,
            links=FakeTeacherLinks({student: teacher}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.has_access is True
        assert decision.access_type == AccessType.STUDENT_VIA_TEACHER

    @pytest.mark.asyncio
    async def test_purchase_delegation_records_no_usage(self, product, entity):
        student, teacher = uuid4(), uuid4()
        store = FakeSubscriptionStore()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(teacher, product)),
            subscriptions=store,
            links=FakeTeacherLinks({student: teacher}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.has_access is True
        assert store.claims == {}

    @pytest.mark.asyncio
    async def test_single_hop_only(self, product, entity, creator_id):
        """A student linked to someone who is linked onward gets nothing."""
        student, middle = uuid4(), uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            links=FakeTeacherLinks({student: middle, middle: creator_id}),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_teachers_do_not_delegate(self, product, entity):
        teacher, other = uuid4(), uuid4()
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(other, product)),
            links=FakeTeacherLinks({teacher: other}),
        )

        decision = await resolver.resolve_access(
            Subject(id=teacher, role=UserRole.TEACHER), entity
        )

        assert decision.has_access is False

    @pytest.mark.asyncio
    async def test_unlinked_student_keeps_denial_reason(self, product, entity):
        student = uuid4()
        expired = datetime.now(UTC) - timedelta(hours=1)
        resolver = build_resolver(
            catalog=FakeCatalog(product),
            purchases=FakePurchaseStore(make_purchase(student, product, expired)),
        )

        decision = await resolver.resolve_access(
            Subject(id=student, role=UserRole.STUDENT), entity
        )

        assert decision.has_access is False
        assert decision.reason.startswith("Purchase expired at")


class TestFailures:
    """Store errors are failures, not denials."""

    @pytest.mark.asyncio
    async def test_catalog_failure(self, entity):
        resolver = build_resolver(catalog=FailingCatalog())

        with pytest.raises(AccessEvaluationError) as exc_info:
            await resolver.resolve_access(Subject(id=uuid4(), role=UserRole.ADMIN), entity)

        assert exc_info.value.code == "access_evaluation_failed"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_purchase_store_failure(self, product, entity):
        resolver = build_resolver(
            catalog=FakeCatalog(product), purchases=FailingPurchaseStore()
        )

        with pytest.raises(AccessEvaluationError):
            await resolver.resolve_access(
                Subject(id=uuid4(), role=UserRole.TEACHER), entity
            )

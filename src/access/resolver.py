"""Access resolver.

Decides whether a subject may use an entity, and through which channel.
Precedence, first match wins:

1. Admin bypass (admin, sysadmin, anonymous admin token)
2. Ownership (subject created the product)
3. Purchase (completed and not expired)
4. Subscription claim (teachers, current billing month)
5. Student via teacher (one hop; the teacher's steps 2-4, never download)
6. None

Only admins and the creator get past an unpublished product.

Store failures propagate as AccessEvaluationError; they are never turned
into a denial.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.access.admin import AdminAction, AdminOverridePolicy
from src.access.errors import AccessControlError, AccessEvaluationError
from src.access.models import (
    UNLIMITED,
    AccessType,
    EntityRef,
    RequestContext,
    Subject,
    current_month_year,
)
from src.access.providers import (
    ProductCatalog,
    PurchaseStore,
    SubscriptionStore,
    TeacherLinkStore,
)
from src.access.schemas import AccessDecision
from src.auth.permissions import UserRole
from src.core.logging import get_logger


if TYPE_CHECKING:
    from src.catalog.models import Product
    from src.subscriptions.ledger import AllowanceLedger


logger = get_logger(__name__)

REASON_NOT_PRODUCT = "Entity is not a product"
REASON_NEVER_PURCHASED = "Never purchased"
REASON_ANONYMOUS = "Authentication required"
REASON_NOT_PUBLISHED = "Product is not published"


class AccessResolver:
    """Resolves access decisions from entitlement facts."""

    def __init__(
        self,
        catalog: ProductCatalog,
        purchases: PurchaseStore,
        subscriptions: SubscriptionStore,
        teacher_links: TeacherLinkStore,
        ledger: "AllowanceLedger",
        admin_policy: AdminOverridePolicy,
        claim_download_allowed: bool = False,
    ):
        """Initialize with fact providers.

        Args:
            catalog: Product lookup
            purchases: Purchase facts
            subscriptions: Subscription and claim facts
            teacher_links: Student to teacher links
            ledger: Allowance ledger (remaining quota for claim access)
            admin_policy: Admin override rules
            claim_download_allowed: Whether claim-based access may download
        """
        self.catalog = catalog
        self.purchases = purchases
        self.subscriptions = subscriptions
        self.teacher_links = teacher_links
        self.ledger = ledger
        self.admin_policy = admin_policy
        self.claim_download_allowed = claim_download_allowed

    async def resolve_access(
        self,
        subject: Subject,
        entity: EntityRef,
        request_context: RequestContext | None = None,
    ) -> AccessDecision:
        """Compute the access decision for a subject and entity.

        Raises:
            AccessEvaluationError: If a fact store fails
        """
        try:
            decision = await self._resolve(subject, entity, request_context)
        except AccessControlError:
            raise
        except Exception as e:
            logger.exception(
                "access_evaluation_failed",
                subject_id=str(subject.id) if subject.id else None,
                entity_type=entity.entity_type.value,
                entity_id=str(entity.entity_id),
                error_type=type(e).__name__,
            )
            raise AccessEvaluationError from e

        logger.info(
            "access_resolved",
            subject_id=str(subject.id) if subject.id else None,
            role=subject.role.value,
            entity_type=entity.entity_type.value,
            entity_id=str(entity.entity_id),
            has_access=decision.has_access,
            access_type=decision.access_type.value,
            reason=decision.reason,
            entity_not_product=decision.entity_not_product,
        )
        return decision

    async def _resolve(
        self,
        subject: Subject,
        entity: EntityRef,
        request_context: RequestContext | None,
    ) -> AccessDecision:
        product = await self.catalog.get_product(entity.entity_type, entity.entity_id)
        is_admin = self.admin_policy.have_admin_access(
            subject.role, AdminAction.ENTITY_ACCESS, request_context
        )

        if product is None:
            if is_admin:
                return AccessDecision.full_access(
                    AccessType.CREATOR,
                    reason="Admin access",
                    is_admin_override=True,
                    entity_not_product=True,
                )
            return AccessDecision.denied(REASON_NOT_PRODUCT, entity_not_product=True)

        if is_admin:
            return AccessDecision.full_access(
                AccessType.CREATOR, reason="Admin access", is_admin_override=True
            )

        if subject.id is None:
            return AccessDecision.denied(REASON_ANONYMOUS)

        decision, denial_reason = await self._resolve_entitlements(subject, product)
        if decision is not None:
            return decision

        if subject.role == UserRole.STUDENT and product.is_published:
            delegated = await self._resolve_via_teacher(subject, product)
            if delegated is not None:
                return delegated

        return AccessDecision.denied(denial_reason)

    async def _resolve_entitlements(
        self, subject: Subject, product: "Product"
    ) -> tuple[AccessDecision | None, str]:
        """Ownership, purchase and subscription claim checks.

        Returns:
            (decision, denial_reason). decision is None when nothing matched;
            denial_reason then tells "expired" apart from "never purchased".
        """
        if product.is_created_by(subject.id):
            return AccessDecision.full_access(
                AccessType.CREATOR, reason="User is the creator"
            ), ""

        if not product.is_published:
            return None, REASON_NOT_PUBLISHED

        purchase = await self.purchases.find_completed_purchase(subject.id, product.id)
        if purchase is not None:
            return AccessDecision.full_access(
                AccessType.PURCHASE,
                reason="Active purchase",
                expires_at=purchase.access_expires_at,
            ), ""

        denial_reason = REASON_NEVER_PURCHASED
        latest = await self.purchases.find_latest_purchase(subject.id, product.id)
        if latest is not None and latest.access_expires_at is not None:
            denial_reason = f"Purchase expired at {latest.access_expires_at.isoformat()}"

        if subject.role == UserRole.TEACHER:
            claimed = await self._resolve_subscription_claim(subject, product)
            if claimed is not None:
                return claimed, ""

        return None, denial_reason

    async def _resolve_subscription_claim(
        self, subject: Subject, product: "Product"
    ) -> AccessDecision | None:
        subscription = await self.subscriptions.find_active_subscription(subject.id)
        if subscription is None:
            return None

        month_year = current_month_year()
        claim = await self.subscriptions.find_claim(
            subscription.id, month_year, product.product_type, product.id
        )
        if claim is None:
            return None

        # A plan change can drop the product type mid-month
        plan = await self.subscriptions.get_plan(subscription.plan_id)
        if plan is None or not plan.includes(product.product_type):
            logger.info(
                "claim_benefit_removed",
                subscription_id=str(subscription.id),
                product_type=product.product_type.value,
            )
            return None

        state = await self.ledger.check_allowance(
            subscription.id, month_year, product.product_type
        )
        return AccessDecision(
            has_access=True,
            access_type=AccessType.SUBSCRIPTION_CLAIM,
            can_download=self.claim_download_allowed,
            can_preview=True,
            can_play=True,
            remaining_allowance=UNLIMITED if state.is_unlimited else state.remaining,
            reason=f"Claimed with subscription ({month_year})",
        )

    async def _resolve_via_teacher(
        self, student: Subject, product: "Product"
    ) -> AccessDecision | None:
        """Delegate to the linked teacher, exactly one hop deep.

        The persisted link decides; a teacher_id carried in the token is
        only compared against it.
        """
        teacher_id = await self.teacher_links.find_teacher_for_student(student.id)
        if student.teacher_link_id is not None and student.teacher_link_id != teacher_id:
            logger.info(
                "teacher_link_stale",
                student_id=str(student.id),
                token_teacher_id=str(student.teacher_link_id),
                teacher_id=str(teacher_id) if teacher_id else None,
            )
        if teacher_id is None or teacher_id == student.id:
            return None

        teacher = Subject(id=teacher_id, role=UserRole.TEACHER)
        teacher_decision, _ = await self._resolve_entitlements(teacher, product)
        if teacher_decision is None:
            return None

        expires_at = teacher_decision.expires_at
        if expires_at is not None and expires_at <= datetime.now(UTC):
            return None

        if teacher_decision.access_type == AccessType.SUBSCRIPTION_CLAIM:
            await self._record_student_usage(student, teacher, product)

        return AccessDecision(
            has_access=True,
            access_type=AccessType.STUDENT_VIA_TEACHER,
            can_download=False,
            can_preview=True,
            can_play=True,
            remaining_allowance=teacher_decision.remaining_allowance,
            expires_at=expires_at,
            reason=f"Access through teacher ({teacher_decision.access_type.value})",
        )

    async def _record_student_usage(
        self, student: Subject, teacher: Subject, product: "Product"
    ) -> None:
        """Count the student's session on the teacher's claim; never fatal."""
        try:
            subscription = await self.subscriptions.find_active_subscription(teacher.id)
            if subscription is None:
                return
            claim = await self.subscriptions.find_claim(
                subscription.id, current_month_year(), product.product_type, product.id
            )
            if claim is not None:
                await self.ledger.record_usage(claim)
        except Exception as e:
            logger.warning(
                "student_usage_record_failed",
                student_id=str(student.id),
                teacher_id=str(teacher.id),
                product_id=str(product.id),
                error=str(e),
            )

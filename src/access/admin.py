"""Admin override layer.

Admins (and holders of a valid anonymous admin token) bypass ownership and
purchase checks, including on orphaned products. Sysadmins get the same
bypass except for the actions listed in a configurable forbidden set.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from jose import JWTError
from pydantic import ValidationError

from src.access.models import RequestContext
from src.auth.permissions import UserRole, parse_role
from src.auth.schemas import AdminTokenClaims
from src.auth.security import decode_anonymous_admin_token
from src.config.settings import Settings
from src.core.context import bind_admin_portal
from src.core.logging import get_logger


logger = get_logger(__name__)


class AdminAction(str, Enum):
    """Administrative actions that can be individually denied to sysadmins."""

    ACCESS_GRANT = "access_grant"
    ALLOWANCE_ADJUST = "allowance_adjust"
    BUNDLE_OTHERS_PRODUCTS = "bundle_others_products"
    CURRICULUM_ACCESS = "curriculum_access"
    ENTITY_ACCESS = "entity_access"
    ENTITY_OWNERSHIP_BYPASS = "entity_ownership_bypass"
    ENTITY_STATS_ACCESS = "entity_stats_access"
    ENTITY_USERS_ACCESS = "entity_users_access"
    PURCHASE_ACCESS = "purchase_access"
    SETTINGS_UPDATE = "settings_update"
    STUDENT_PORTAL_ACCESS = "student_portal_access"
    UPLOAD_PERMISSION = "upload_permission"


class AdminOverridePolicy:
    """Decides whether a role (or anonymous admin token) gets admin powers."""

    def __init__(
        self,
        forbidden_actions: Iterable[str] = (),
        audiences: Iterable[str] = ("teacher_portal", "student_portal"),
    ):
        """Initialize the policy.

        Args:
            forbidden_actions: Actions a sysadmin may not perform
            audiences: Portal identifiers accepted for anonymous admin tokens
        """
        self.forbidden_actions = frozenset(
            a.value if isinstance(a, AdminAction) else a for a in forbidden_actions
        )
        self.audiences = frozenset(audiences)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdminOverridePolicy":
        """Build the policy from application settings."""
        return cls(
            forbidden_actions=settings.sysadmin_forbidden_actions,
            audiences=settings.admin_token_audiences,
        )

    def is_anonymous_admin(self, request_context: RequestContext | None) -> bool:
        """Validate the anonymous admin token carried by a request.

        Signature, expiry, token type and portal audience must all check out.
        Every failure yields False; nothing is raised.
        """
        token = request_context.anonymous_admin_token if request_context else None
        if not token:
            return False

        try:
            claims = AdminTokenClaims.model_validate(decode_anonymous_admin_token(token))
        except (JWTError, ValidationError, ValueError, TypeError) as e:
            logger.info("anonymous_admin_token_rejected", error_type=type(e).__name__)
            return False

        if claims.aud not in self.audiences:
            logger.info("anonymous_admin_token_rejected", error_type="audience")
            return False

        exp = claims.exp if claims.exp.tzinfo else claims.exp.replace(tzinfo=UTC)
        if exp <= datetime.now(UTC):
            logger.info("anonymous_admin_token_rejected", error_type="expired")
            return False

        bind_admin_portal(claims.aud)
        return True

    def have_admin_access(
        self,
        role: UserRole | str | None,
        action: AdminAction | str,
        request_context: RequestContext | None = None,
    ) -> bool:
        """Check if a caller may perform an administrative action."""
        parsed = parse_role(role)

        if parsed == UserRole.ADMIN:
            return True

        action_name = action.value if isinstance(action, AdminAction) else action
        if parsed == UserRole.SYSADMIN and action_name not in self.forbidden_actions:
            return True

        return self.is_anonymous_admin(request_context)

"""Student portal access gate.

Decides whether a visitor may enter the student portal at all, based on the
`students_access` setting:

- all: anyone
- invite_only: invitation code, lobby code, or authentication
- authed_only: authentication

Admins, sysadmins (unless forbidden) and teachers always pass. When the
settings cannot be read the gate fails open to mode "all"; this is the only
place in the access core that degrades instead of failing.
"""

from typing import Any

from src.access.admin import AdminAction, AdminOverridePolicy
from src.access.providers import SettingsProvider
from src.auth.permissions import UserRole
from src.core.logging import get_logger
from src.system_settings.models import DEFAULT_SETTINGS, SettingKey, StudentsAccessMode

from .schemas import AccessRequirementsResponse, GateContext, GateRequirements, GateResult


logger = get_logger(__name__)


def parse_access_mode(value: Any) -> StudentsAccessMode:
    """Access mode for a raw setting value; unknown values mean "all"."""
    if value is None:
        return StudentsAccessMode.ALL
    try:
        return StudentsAccessMode(value)
    except ValueError:
        logger.warning("student_gate_unknown_mode", access_mode=str(value))
        return StudentsAccessMode.ALL


def requirements_for(
    mode: StudentsAccessMode, parent_consent_required: bool = False
) -> GateRequirements:
    """What each mode asks of a visitor."""
    return GateRequirements(
        authentication_required=mode == StudentsAccessMode.AUTHED_ONLY,
        invitation_code_required=mode == StudentsAccessMode.INVITE_ONLY,
        parent_consent_required=parent_consent_required,
    )


class StudentAccessGate:
    """Portal entry check driven by system settings."""

    def __init__(
        self,
        settings_provider: SettingsProvider,
        admin_policy: AdminOverridePolicy | None = None,
    ):
        self.settings_provider = settings_provider
        self.admin_policy = admin_policy or AdminOverridePolicy()

    async def _setting(self, key: SettingKey) -> Any:
        value = await self.settings_provider.get(key.value)
        return DEFAULT_SETTINGS[key] if value is None else value

    def _is_privileged(self, role: UserRole) -> bool:
        return role == UserRole.TEACHER or self.admin_policy.have_admin_access(
            role, AdminAction.STUDENT_PORTAL_ACCESS
        )

    def _check(self, mode: StudentsAccessMode, context: GateContext) -> tuple[bool, str]:
        if self._is_privileged(context.role):
            return True, f"Role {context.role.value} always has portal access"

        if mode == StudentsAccessMode.INVITE_ONLY:
            if context.has_invitation_code or context.has_lobby_code:
                return True, "Valid invitation or lobby code"
            if context.is_authenticated:
                return True, "Authenticated"
            return False, "Invitation code, lobby code or login required"

        if mode == StudentsAccessMode.AUTHED_ONLY:
            if context.is_authenticated:
                return True, "Authenticated"
            return False, "Login required"

        return True, "Portal open to everyone"

    async def validate_access(
        self,
        access_mode: str | None = None,
        context: GateContext | None = None,
    ) -> GateResult:
        """Check portal entry for a visitor.

        Args:
            access_mode: Override for the configured mode
            context: Visitor's authentication, role and codes
        """
        context = context or GateContext()
        try:
            raw_mode = access_mode or await self._setting(SettingKey.STUDENTS_ACCESS)
            parent_consent = bool(await self._setting(SettingKey.PARENT_CONSENT_REQUIRED))
            student_onboarding = bool(
                await self._setting(SettingKey.STUDENT_ONBOARDING_ENABLED)
            )
            teacher_onboarding = bool(
                await self._setting(SettingKey.TEACHER_ONBOARDING_ENABLED)
            )
        except Exception as e:
            logger.warning(
                "student_gate_settings_unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            return GateResult(
                access_allowed=True,
                access_mode=StudentsAccessMode.ALL.value,
                reason="Settings unavailable, allowing access",
            )

        mode = parse_access_mode(raw_mode)
        allowed, reason = self._check(mode, context)

        logger.info(
            "student_gate_checked",
            access_mode=mode.value,
            access_allowed=allowed,
            role=context.role.value,
            is_authenticated=context.is_authenticated,
        )
        return GateResult(
            access_allowed=allowed,
            access_mode=mode.value,
            requirements=requirements_for(mode, parent_consent),
            student_onboarding_enabled=student_onboarding,
            teacher_onboarding_enabled=teacher_onboarding,
            reason=reason,
        )

    async def get_access_requirements(self) -> AccessRequirementsResponse:
        """Current mode and requirements, without checking a visitor."""
        try:
            mode = parse_access_mode(await self._setting(SettingKey.STUDENTS_ACCESS))
            parent_consent = bool(await self._setting(SettingKey.PARENT_CONSENT_REQUIRED))
            student_onboarding = bool(
                await self._setting(SettingKey.STUDENT_ONBOARDING_ENABLED)
            )
            teacher_onboarding = bool(
                await self._setting(SettingKey.TEACHER_ONBOARDING_ENABLED)
            )
        except Exception as e:
            logger.warning(
                "student_gate_settings_unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            return AccessRequirementsResponse(
                access_mode=StudentsAccessMode.ALL.value,
                requirements=GateRequirements(),
            )

        return AccessRequirementsResponse(
            access_mode=mode.value,
            requirements=requirements_for(mode, parent_consent),
            student_onboarding_enabled=student_onboarding,
            teacher_onboarding_enabled=teacher_onboarding,
        )

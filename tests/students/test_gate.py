"""Tests for the student portal access gate."""

import pytest

from src.access.admin import AdminOverridePolicy
from src.auth.permissions import UserRole
from src.students.gate import StudentAccessGate, parse_access_mode, requirements_for
from src.students.schemas import GateContext
from src.system_settings.models import StudentsAccessMode
from tests.fakes import FakeSettings


def gate_for(mode: str | None = None, **values) -> StudentAccessGate:
    settings = dict(values)
    if mode is not None:
        settings["students_access"] = mode
    return StudentAccessGate(settings_provider=FakeSettings(settings))


GUEST = GateContext()
AUTHED_STUDENT = GateContext(is_authenticated=True, role=UserRole.STUDENT)
WITH_INVITATION = GateContext(has_invitation_code=True)
WITH_LOBBY = GateContext(has_lobby_code=True)


class TestParseAccessMode:
    def test_known_modes(self) -> None:
        assert parse_access_mode("invite_only") == StudentsAccessMode.INVITE_ONLY
        assert parse_access_mode("authed_only") == StudentsAccessMode.AUTHED_ONLY

    @pytest.mark.parametrize("value", [None, "", "closed", 42])
    def test_unknown_means_all(self, value) -> None:
        assert parse_access_mode(value) == StudentsAccessMode.ALL

    def test_requirements(self) -> None:
        requirements = requirements_for(StudentsAccessMode.AUTHED_ONLY, True)
        assert requirements.authentication_required is True
        assert requirements.invitation_code_required is False
        assert requirements.parent_consent_required is True


class TestValidateAccess:
    """Mode by mode."""

    @pytest.mark.asyncio
    async def test_all_mode_lets_guests_in(self) -> None:
        result = await gate_for("all").validate_access(context=GUEST)

        assert result.access_allowed is True
        assert result.access_mode == "all"

    @pytest.mark.asyncio
    async def test_default_mode_is_all(self) -> None:
        result = await gate_for().validate_access(context=GUEST)

        assert result.access_allowed is True
        assert result.access_mode == "all"
        assert result.teacher_onboarding_enabled is True
        assert result.student_onboarding_enabled is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("context", "allowed"),
        [
            (GUEST, False),
            (WITH_INVITATION, True),
            (WITH_LOBBY, True),
            (AUTHED_STUDENT, True),
        ],
    )
    async def test_invite_only(self, context: GateContext, allowed: bool) -> None:
        result = await gate_for("invite_only").validate_access(context=context)

        assert result.access_allowed is allowed
        assert result.requirements.invitation_code_required is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("context", "allowed"),
        [
            (GUEST, False),
            (WITH_INVITATION, False),
            (WITH_LOBBY, False),
            (AUTHED_STUDENT, True),
        ],
    )
    async def test_authed_only(self, context: GateContext, allowed: bool) -> None:
        result = await gate_for("authed_only").validate_access(context=context)

        assert result.access_allowed is allowed
        assert result.requirements.authentication_required is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.SYSADMIN, UserRole.TEACHER])
    async def test_privileged_roles_always_pass(self, role: UserRole) -> None:
        result = await gate_for("authed_only").validate_access(
            context=GateContext(role=role)
        )

        assert result.access_allowed is True

    @pytest.mark.asyncio
    async def test_forbidden_sysadmin_is_treated_as_visitor(self) -> None:
        gate = StudentAccessGate(
            settings_provider=FakeSettings({"students_access": "authed_only"}),
            admin_policy=AdminOverridePolicy(forbidden_actions=["student_portal_access"]),
        )

        result = await gate.validate_access(context=GateContext(role=UserRole.SYSADMIN))

        assert result.access_allowed is False

    @pytest.mark.asyncio
    async def test_explicit_mode_overrides_setting(self) -> None:
        result = await gate_for("all").validate_access(
            access_mode="authed_only", context=GUEST
        )

        assert result.access_allowed is False
        assert result.access_mode == "authed_only"

    @pytest.mark.asyncio
    async def test_unknown_mode_falls_back_to_all(self) -> None:
        result = await gate_for("closed_beta").validate_access(context=GUEST)

        assert result.access_allowed is True
        assert result.access_mode == "all"

    @pytest.mark.asyncio
    async def test_onboarding_flags(self) -> None:
        gate = gate_for(
            "all",
            student_onboarding_enabled=True,
            teacher_onboarding_enabled=False,
            parent_consent_required=True,
        )

        result = await gate.validate_access(context=GUEST)

        assert result.student_onboarding_enabled is True
        assert result.teacher_onboarding_enabled is False
        assert result.requirements.parent_consent_required is True


class TestFailOpen:
    """Settings failures never lock students out."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [ConnectionError("cassandra down"), TimeoutError(), RuntimeError()]
    )
    async def test_validate_access_fails_open(self, error: Exception) -> None:
        gate = StudentAccessGate(settings_provider=FakeSettings(error=error))

        result = await gate.validate_access(context=GUEST)

        assert result.access_allowed is True
        assert result.access_mode == "all"

    @pytest.mark.asyncio
    async def test_requirements_fail_open(self) -> None:
        gate = StudentAccessGate(settings_provider=FakeSettings(error=ConnectionError()))

        response = await gate.get_access_requirements()

        assert response.access_mode == "all"
        assert response.requirements.authentication_required is False


class TestAccessRequirements:
    @pytest.mark.asyncio
    async def test_invite_only_requirements(self) -> None:
        response = await gate_for("invite_only").get_access_requirements()

        assert response.access_mode == "invite_only"
        assert response.requirements.invitation_code_required is True

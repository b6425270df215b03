"""Tests for auth schemas and the token user dependency."""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from jose import JWTError
from pydantic import ValidationError

from src.auth.dependencies import _user_from_token, get_token_from_header
from src.auth.permissions import UserRole
from src.auth.schemas import (
    AdminTokenClaims,
    AnonymousAdminTokenRequest,
    UserResponse,
)
from src.auth.security import create_access_token


class TestUserResponse:
    def test_minimal_user(self) -> None:
        user = UserResponse(id=uuid4(), role=UserRole.TEACHER)
        assert user.email is None
        assert user.teacher_id is None

    def test_invalid_role(self) -> None:
        with pytest.raises(ValidationError):
            UserResponse(id=uuid4(), role="superuser")


class TestAdminTokenClaims:
    def test_valid_claims(self) -> None:
        claims = AdminTokenClaims.model_validate(
            {
                "type": "anonymous_admin",
                "aud": "teacher_portal",
                "exp": datetime(2026, 10, 16, tzinfo=UTC),
                "jti": "ignored",
            }
        )
        assert claims.aud == "teacher_portal"

    def test_wrong_type(self) -> None:
        with pytest.raises(ValidationError):
            AdminTokenClaims.model_validate(
                {"type": "access", "aud": "teacher_portal", "exp": datetime.now(UTC)}
            )

    @pytest.mark.parametrize("missing", ["type", "aud", "exp"])
    def test_every_claim_required(self, missing: str) -> None:
        data = {"type": "anonymous_admin", "aud": "teacher_portal", "exp": datetime.now(UTC)}
        del data[missing]
        with pytest.raises(ValidationError):
            AdminTokenClaims.model_validate(data)


class TestAnonymousAdminTokenRequest:
    def test_defaults(self) -> None:
        request = AnonymousAdminTokenRequest(audience="student_portal")
        assert request.expires_minutes is None

    @pytest.mark.parametrize("minutes", [0, 24 * 60 + 1])
    def test_expiry_bounds(self, minutes: int) -> None:
        with pytest.raises(ValidationError):
            AnonymousAdminTokenRequest(audience="student_portal", expires_minutes=minutes)


class TestUserFromToken:
    def test_user_from_token(self) -> None:
        user_id, teacher_id = uuid4(), uuid4()
        token = create_access_token(
            {"sub": str(user_id), "role": "student", "teacher_id": str(teacher_id)}
        )

        user = _user_from_token(token)

        assert user.id == user_id
        assert user.role == UserRole.STUDENT
        assert user.teacher_id == teacher_id

    def test_unknown_role_is_guest(self) -> None:
        token = create_access_token({"sub": str(uuid4()), "role": "moderator"})

        assert _user_from_token(token).role == UserRole.GUEST

    @pytest.mark.parametrize(
        "payload", [{"role": "teacher"}, {"sub": "not-a-uuid", "role": "teacher"}]
    )
    def test_malformed_payload(self, payload: dict) -> None:
        with pytest.raises(JWTError, match="Malformed token payload"):
            _user_from_token(create_access_token(payload))


class TestTokenFromHeader:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
        ],
    )
    def test_parsing(self, header: str, expected: str | None) -> None:
        class FakeRequest:
            headers = {"Authorization": header}

        assert get_token_from_header(FakeRequest()) == expected

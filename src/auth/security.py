"""JWT helpers.

Two token kinds are signed with the same key:
- access tokens ("type": "access") identify a logged-in user
- anonymous admin tokens ("type": "anonymous_admin") let staff preview a
  portal without a user account, scoped to one portal audience
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from src.config.settings import get_settings


ANONYMOUS_ADMIN_TOKEN_TYPE = "anonymous_admin"


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        data: Payload data (typically {"sub": user_id, "role": role})
        expires_delta: Token lifetime (default from settings)

    Returns:
        Encoded JWT string
    """
    settings = get_settings()

    now = datetime.now(UTC)
    to_encode = data.copy()
    to_encode.update(
        {
            "exp": now
            + (
                expires_delta
                or timedelta(minutes=settings.auth_access_token_expire_minutes)
            ),
            "iat": now,
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT access token.

    Raises:
        JWTError: If the token is invalid, expired or not an access token
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
    )

    if payload.get("type") != "access":
        msg = "Invalid token type"
        raise JWTError(msg)

    return payload


def create_anonymous_admin_token(
    audience: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create an anonymous admin token for one portal.

    Args:
        audience: Portal identifier (e.g. "teacher_portal")
        expires_delta: Token lifetime (default from settings)

    Raises:
        ValueError: If the audience is not a recognized portal
    """
    settings = get_settings()

    if audience not in settings.admin_token_audiences:
        msg = f"Unknown portal audience: {audience}"
        raise ValueError(msg)

    now = datetime.now(UTC)
    payload = {
        "type": ANONYMOUS_ADMIN_TOKEN_TYPE,
        "aud": audience,
        "iat": now,
        "exp": now
        + (
            expires_delta
            or timedelta(minutes=settings.anonymous_admin_token_expire_minutes)
        ),
        "jti": str(uuid4()),
    }

    return jwt.encode(
        payload,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_anonymous_admin_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry of an anonymous admin token.

    Raises:
        JWTError: If any check fails
    """
    settings = get_settings()

    # jose checks `aud` against one value, so audience membership is checked
    # by the caller against the full allow-list.
    return jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
        options={"verify_aud": False, "require_exp": True},
    )

"""Invitation code generation."""

import secrets
import string


# Alphabet for codes - excludes ambiguous characters (0, O, I, 1)
INVITATION_CODE_ALPHABET = string.ascii_uppercase.replace("O", "").replace(
    "I", ""
) + string.digits.replace("0", "").replace("1", "")
# Result: ABCDEFGHJKLMNPQRSTUVWXYZ23456789 (32 characters)

INVITATION_CODE_LENGTH = 8


def generate_invitation_code(length: int = INVITATION_CODE_LENGTH) -> str:
    """Generate a human-readable, URL-safe invitation code (e.g. "K7QM2XRA")."""
    return "".join(secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(length))


def normalize_invitation_code(code: str) -> str:
    """Canonical form of a code typed by a user."""
    return code.strip().upper()

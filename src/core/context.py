"""Request-scoped logging context.

Each request binds a request ID (and an optional upstream correlation ID).
Authentication then binds the subject, and an accepted anonymous admin
token binds the portal it was issued for. The logging processor merges
whatever is bound into every event, so access decisions logged deep inside
the resolver can be traced back to the caller.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


_request_id: ContextVar[str] = ContextVar("request_id", default="")
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_subject_id: ContextVar[str | None] = ContextVar("subject_id", default=None)
_subject_role: ContextVar[str | None] = ContextVar("subject_role", default=None)
_admin_portal: ContextVar[str | None] = ContextVar("admin_portal", default=None)


def bind_request(request_id: str | None = None, correlation_id: str | None = None) -> str:
    """Bind the request identifiers, generating a request ID when missing.

    Returns:
        The bound request ID
    """
    rid = request_id or str(uuid4())
    _request_id.set(rid)
    _correlation_id.set(correlation_id)
    return rid


def get_request_id() -> str:
    return _request_id.get()


def bind_subject(subject_id: str | UUID | None, role: str | None) -> None:
    """Bind the authenticated caller."""
    _subject_id.set(str(subject_id) if subject_id is not None else None)
    _subject_role.set(role)


def bind_admin_portal(audience: str) -> None:
    """Mark the request as running under an anonymous admin token."""
    _admin_portal.set(audience)


def get_context() -> dict[str, Any]:
    """Bound values, skipping the empty ones."""
    values = {
        "request_id": _request_id.get(),
        "correlation_id": _correlation_id.get(),
        "subject_id": _subject_id.get(),
        "subject_role": _subject_role.get(),
        "admin_portal": _admin_portal.get(),
    }
    return {key: value for key, value in values.items() if value}


def clear_context() -> None:
    """Reset everything at the end of a request."""
    _request_id.set("")
    _correlation_id.set(None)
    _subject_id.set(None)
    _subject_role.set(None)
    _admin_portal.set(None)

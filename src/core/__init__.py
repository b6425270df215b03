"""Logging, request context and connection management shared by all modules."""

from src.core.context import bind_request, bind_subject, clear_context, get_request_id
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContextMiddleware",
    "bind_request",
    "bind_subject",
    "clear_context",
    "configure_structlog",
    "get_logger",
    "get_request_id",
]

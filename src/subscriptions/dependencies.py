"""Dependency injection for the subscriptions module."""

from typing import Annotated

from fastapi import Depends

from .service import ClaimService


# Module-level reference to be overridden by main.py
_claim_service_getter = None


def set_claim_service_getter(getter):
    """Set the claim service getter function.

    Called by main.py during app initialization.
    """
    global _claim_service_getter  # noqa: PLW0603 - Required for DI pattern
    _claim_service_getter = getter


def get_claim_service() -> ClaimService:
    """Get ClaimService instance."""
    if _claim_service_getter is None:
        raise RuntimeError(
            "ClaimService not configured - call set_claim_service_getter first"
        )
    return _claim_service_getter()


ClaimServiceDep = Annotated[ClaimService, Depends(get_claim_service)]

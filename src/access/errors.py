"""Domain exceptions for access control and entitlements.

Every error carries a machine-readable code. Routers convert them with
handle_access_error() so clients get {"code", "message"} details.
"""

from fastapi import HTTPException, status


class AccessControlError(Exception):
    """Base access-control error."""

    def __init__(self, message: str, code: str = "access_error"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Serialize for HTTP error details and logs."""
        return {"code": self.code, "message": self.message}


class AccessEvaluationError(AccessControlError):
    """A fact store failed while an access decision was being computed.

    Never converted into a denial: the caller sees a failure, not "no access".
    """

    def __init__(self, message: str = "Access could not be evaluated"):
        super().__init__(message, "access_evaluation_failed")


class ProductNotFoundError(AccessControlError):
    """No catalog product for the requested entity."""

    def __init__(self, message: str = "Product not found"):
        super().__init__(message, "product_not_found")


class AlreadyHasAccessError(AccessControlError):
    """User already holds an active purchase of the product."""

    def __init__(self, message: str = "User already has access to this product"):
        super().__init__(message, "already_has_access")


class NoActiveAccessError(AccessControlError):
    """Nothing to revoke."""

    def __init__(self, message: str = "User has no active access to this product"):
        super().__init__(message, "no_active_access")


class PurchaseStateError(AccessControlError):
    """Purchase cannot move to the requested payment status."""

    def __init__(self, message: str):
        super().__init__(message, "invalid_purchase_state")


class NoActiveSubscriptionError(AccessControlError):
    """Claims require an active subscription."""

    def __init__(self, message: str = "No active subscription"):
        super().__init__(message, "no_active_subscription")


class ClaimNotAllowedError(AccessControlError):
    """Product cannot be claimed (own product, already purchased, not in plan)."""

    def __init__(self, message: str):
        super().__init__(message, "claim_not_allowed")


class AllowanceExceededError(AccessControlError):
    """Monthly allowance for the product type is used up."""

    def __init__(self, message: str, used: int = 0, limit: int = 0):
        super().__init__(message, "allowance_exceeded")
        self.used = used
        self.limit = limit


class AllowanceContentionError(AccessControlError):
    """Allowance row kept changing under concurrent claims; retry later."""

    def __init__(self, message: str = "Allowance is busy, try again"):
        super().__init__(message, "allowance_busy")


class SubscriptionNotFoundError(AccessControlError):
    """Unknown subscription id."""

    def __init__(self, message: str = "Subscription not found"):
        super().__init__(message, "subscription_not_found")


class InvalidInvitationCodeError(AccessControlError):
    """Invitation code does not exist or was deactivated."""

    def __init__(self, message: str = "Invalid invitation code"):
        super().__init__(message, "invalid_invitation_code")


class SettingNotFoundError(AccessControlError):
    """Unknown system setting."""

    def __init__(self, message: str = "Setting not found"):
        super().__init__(message, "setting_not_found")


_STATUS_MAP = {
    "access_evaluation_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
    "product_not_found": status.HTTP_404_NOT_FOUND,
    "already_has_access": status.HTTP_409_CONFLICT,
    "no_active_access": status.HTTP_404_NOT_FOUND,
    "invalid_purchase_state": status.HTTP_409_CONFLICT,
    "no_active_subscription": status.HTTP_403_FORBIDDEN,
    "claim_not_allowed": status.HTTP_400_BAD_REQUEST,
    "allowance_exceeded": status.HTTP_409_CONFLICT,
    "allowance_busy": status.HTTP_503_SERVICE_UNAVAILABLE,
    "subscription_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_invitation_code": status.HTTP_404_NOT_FOUND,
    "setting_not_found": status.HTTP_404_NOT_FOUND,
}


def handle_access_error(error: AccessControlError) -> HTTPException:
    """Convert an AccessControlError to an HTTPException."""
    detail: dict[str, str | int] = error.to_dict()
    if isinstance(error, AllowanceExceededError):
        detail.update(used=error.used, limit=error.limit)

    return HTTPException(
        status_code=_STATUS_MAP.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=detail,
    )

"""
Entitlement error taxonomy.

Every failure the core surfaces carries a kind (the class), a machine reason
code and enough context for the caller to decide the next action.
"""

from typing import Optional

from .config import ERROR_CODES


class EntitlementError(Exception):
    """Base class for structured errors raised by the entitlement core."""

    status_code = 500
    kind = "InternalError"
    reason = "INTERNAL_ERROR"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None, **context):
        if reason:
            self.reason = reason
        self.message = message or ERROR_CODES.get(self.reason, self.reason)
        self.context = context
        super().__init__(self.message)

    def to_dict(self):
        """Convert to API response format."""
        return {
            "error": self.kind,
            "reason": self.reason,
            "message": self.message,
            **self.context
        }


# ==================== KINDS ====================

class ValidationError(EntitlementError):
    status_code = 400
    kind = "ValidationError"
    reason = "INVALID_INPUT"


class AuthenticationError(EntitlementError):
    status_code = 401
    kind = "AuthenticationError"
    reason = "INVALID_CREDENTIALS"


class ForbiddenError(EntitlementError):
    status_code = 403
    kind = "ForbiddenError"
    reason = "FORBIDDEN"


class NotFoundError(EntitlementError):
    status_code = 404
    kind = "NotFoundError"
    reason = "NOT_FOUND"


class ConflictError(EntitlementError):
    status_code = 409
    kind = "ConflictError"
    reason = "CONFLICT"


class StateError(EntitlementError):
    status_code = 400
    kind = "StateError"
    reason = "INVALID_STATE"


class DependencyUnavailable(EntitlementError):
    status_code = 503
    kind = "DependencyUnavailable"
    reason = "DEPENDENCY_UNAVAILABLE"


class InternalError(EntitlementError):
    pass


# ==================== NOT FOUND ====================

class AccountNotFound(NotFoundError):
    reason = "ACCOUNT_NOT_FOUND"


class AssetNotFound(NotFoundError):
    reason = "ASSET_NOT_FOUND"


class PurchaseNotFound(NotFoundError):
    reason = "PURCHASE_NOT_FOUND"


# ==================== CONFLICTS ====================

class AccountExists(ConflictError):
    reason = "ACCOUNT_EXISTS"


class SelfPurchase(ConflictError):
    reason = "SELF_PURCHASE"


class LicenseCodeCollision(ConflictError):
    reason = "LICENSE_CODE_COLLISION"


# ==================== OTC STATE ====================

class NoActiveCode(StateError):
    reason = "NO_ACTIVE_CODE"


class PurposeMismatch(StateError):
    reason = "PURPOSE_MISMATCH"


class CodeExpired(StateError):
    reason = "CODE_EXPIRED"


class InvalidCode(StateError):
    reason = "INVALID_CODE"


class AlreadyVerified(StateError):
    reason = "ALREADY_VERIFIED"


# ==================== CHECKOUT STATE ====================

class PaymentNotConfirmed(StateError):
    reason = "PAYMENT_NOT_CONFIRMED"


# ==================== DEPENDENCIES ====================

class DeliveryUnavailable(DependencyUnavailable):
    reason = "DELIVERY_UNAVAILABLE"


class GatewayNotConfigured(DependencyUnavailable):
    reason = "GATEWAY_NOT_CONFIGURED"


class GatewayUnavailable(DependencyUnavailable):
    reason = "GATEWAY_UNAVAILABLE"

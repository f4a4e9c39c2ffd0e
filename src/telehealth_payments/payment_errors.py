"""
Payment error taxonomy

Every error carries the HTTP status the gateway should see and whether a
retry of the same delivery can succeed.
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """Base class for payment processing errors"""

    status_code: int = 500
    code: str = "PAYMENT_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedNotification(PaymentError):
    """Payload is missing required fields or has unparseable values"""
    status_code = 422
    code = "MALFORMED_NOTIFICATION"


class UnknownUser(PaymentError):
    status_code = 404
    code = "UNKNOWN_USER"

    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found", {"user_id": user_id})
        self.user_id = user_id


class UnknownPlan(PaymentError):
    status_code = 422
    code = "UNKNOWN_PLAN"

    def __init__(self, plan_id, reference: Optional[str] = None):
        super().__init__(
            f"No plan terms could be resolved for plan {plan_id}",
            {"plan_id": plan_id, "reference": reference},
        )
        self.plan_id = plan_id


class AmountAnomaly(PaymentError):
    """
    Received amount is outside the accepted band for the plan.

    The webhook path records this as a flag on the ledger row; it is only
    raised by callers that ask for strict reconciliation.
    """
    status_code = 422
    code = "AMOUNT_ANOMALY"

    def __init__(self, reason: str, received=None, expected=None, lower_bound=None):
        super().__init__(
            f"Amount rejected: {reason}",
            {
                "reason": reason,
                "received": str(received) if received is not None else None,
                "expected": str(expected) if expected is not None else None,
                "lower_bound": str(lower_bound) if lower_bound is not None else None,
            },
        )
        self.reason = reason


class DuplicateDelivery(PaymentError):
    """Reference already finalized; reported as an outcome, not raised on the webhook path"""
    status_code = 200
    code = "DUPLICATE_DELIVERY"


class StorageConflict(PaymentError):
    """Concurrent writer won a uniqueness race"""
    status_code = 409
    code = "STORAGE_CONFLICT"
    retryable = True


class TransientInfrastructureFailure(PaymentError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    retryable = True


class InvalidSignature(PaymentError):
    status_code = 401
    code = "INVALID_SIGNATURE"


class GatewayError(PaymentError):
    """Payment gateway API call failed"""
    status_code = 502
    code = "GATEWAY_ERROR"
    retryable = True

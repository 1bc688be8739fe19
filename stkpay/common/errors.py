"""Error taxonomy for the payment lifecycle.

Errors are raised by the core and translated to HTTP responses only in the
API layer. `details` carries upstream gateway bodies for diagnostics.
"""

from typing import Any


class PaymentError(Exception):
    """Base class for all payment lifecycle errors."""

    def __init__(self, message: str, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.details}


class ValidationError(PaymentError):
    """Caller input was rejected before anything was attempted."""


class AuthError(PaymentError):
    """Access token exchange with the gateway failed."""


class GatewayError(PaymentError):
    """Push request submission to the gateway failed."""


class TransactionNotFoundError(PaymentError):
    """No transaction is stored under the given checkout request id."""

    def __init__(self, checkout_request_id: str) -> None:
        super().__init__("Transaction not found", {"checkoutRequestId": checkout_request_id})
        self.checkout_request_id = checkout_request_id


class DuplicateKeyError(PaymentError):
    """A transaction already exists for a gateway-assigned id."""

    def __init__(self, checkout_request_id: str) -> None:
        super().__init__(
            f"transaction {checkout_request_id} already exists",
            {"checkoutRequestId": checkout_request_id},
        )
        self.checkout_request_id = checkout_request_id


class MalformedCallbackError(PaymentError):
    """Callback body is not a JSON object at all."""

"""Domain errors raised by the payment request lifecycle."""

from __future__ import annotations


class PaylinkError(Exception):
    """Base class for all paylink engine errors."""


class PaymentRequestNotFoundError(PaylinkError):
    """Raised when a payment request id does not exist."""

    def __init__(self, payment_request_id: str):
        self.payment_request_id = payment_request_id
        super().__init__(f"Payment request {payment_request_id} not found")


class InvalidTransitionError(PaylinkError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CannotCancelPaidRequestError(InvalidTransitionError):
    """Raised when cancelling a request whose payment was already received.

    Money has moved; a refund is the only way back.
    """

    def __init__(self, payment_request_id: str, from_status: str):
        self.payment_request_id = payment_request_id
        super().__init__(
            from_status,
            "cancelled",
            reason=f"payment already received for {payment_request_id}; issue a refund instead",
        )


class NoWalletError(PaylinkError):
    """Raised when the owning user has no receiving wallet configured."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} has no receiving wallet configured")


class SendFailureError(PaylinkError):
    """Raised when an outgoing transfer could not be executed."""

    def __init__(self, outgoing_payment_id: str, reason: str):
        self.outgoing_payment_id = outgoing_payment_id
        self.reason = reason
        super().__init__(f"Outgoing payment {outgoing_payment_id} failed: {reason}")

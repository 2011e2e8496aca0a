"""Payment request state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from paylink_engine.errors import InvalidTransitionError


class PaymentRequestStatus(str, Enum):
    """Payment request status values."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAYMENT_RECEIVED = "payment_received"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TransactionKind(str, Enum):
    """What the payer is asked to do."""

    ASK_PAYMENT = "ask_payment"
    ASK_AND_REFUND = "ask_and_refund"
    SUBSCRIPTION = "subscription"

    @property
    def refundable(self) -> bool:
        return self is TransactionKind.ASK_AND_REFUND


class ScheduleKind(str, Enum):
    """When the payment link goes live."""

    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


class OutgoingPaymentStatus(str, Enum):
    """Outgoing payment status values."""

    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRequestStateMachine:
    """State machine for payment request status transitions.

    Allowed transitions:
    - draft → scheduled | processing
    - scheduled → processing (activation)
    - processing → payment_received (settlement)
    - payment_received → refunded
    - any non-terminal → failed
    - any non-terminal except payment_received → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentRequestStatus.DRAFT: [
            PaymentRequestStatus.SCHEDULED,
            PaymentRequestStatus.PROCESSING,
            PaymentRequestStatus.CANCELLED,
            PaymentRequestStatus.FAILED,
        ],
        PaymentRequestStatus.SCHEDULED: [
            PaymentRequestStatus.PROCESSING,
            PaymentRequestStatus.CANCELLED,
            PaymentRequestStatus.FAILED,
        ],
        PaymentRequestStatus.PROCESSING: [
            PaymentRequestStatus.PAYMENT_RECEIVED,
            PaymentRequestStatus.CANCELLED,
            PaymentRequestStatus.FAILED,
        ],
        PaymentRequestStatus.PAYMENT_RECEIVED: [
            PaymentRequestStatus.REFUNDED,
            PaymentRequestStatus.FAILED,
        ],
        PaymentRequestStatus.REFUNDED: [],  # Terminal
        PaymentRequestStatus.CANCELLED: [],  # Terminal
        PaymentRequestStatus.FAILED: [],  # Terminal
    }

    # A live payment link exists only in these statuses
    AWAITING_PAYMENT = {PaymentRequestStatus.PROCESSING}

    # Statuses that still wait for activation
    PENDING_ACTIVATION = {PaymentRequestStatus.DRAFT, PaymentRequestStatus.SCHEDULED}

    # Money has been received at some point
    SETTLED = {PaymentRequestStatus.PAYMENT_RECEIVED, PaymentRequestStatus.REFUNDED}

    TERMINAL = {
        PaymentRequestStatus.REFUNDED,
        PaymentRequestStatus.CANCELLED,
        PaymentRequestStatus.FAILED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def sources_for(cls, to_status: str) -> list[str]:
        """Statuses from which ``to_status`` may be entered.

        Used as the guard of conditional status updates.
        """
        return [
            s.value
            for s, targets in cls.VALID_TRANSITIONS.items()
            if to_status in targets
        ]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_awaiting_payment(cls, status: str) -> bool:
        return status in cls.AWAITING_PAYMENT

    @classmethod
    def is_settled(cls, status: str) -> bool:
        return status in cls.SETTLED

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


class OutgoingPaymentStateMachine:
    """One-directional outgoing payment lifecycle."""

    VALID_TRANSITIONS: dict[str, list[str]] = {
        OutgoingPaymentStatus.SCHEDULED: [
            OutgoingPaymentStatus.PROCESSING,
            OutgoingPaymentStatus.FAILED,
        ],
        OutgoingPaymentStatus.PROCESSING: [
            OutgoingPaymentStatus.COMPLETED,
            OutgoingPaymentStatus.FAILED,
        ],
        OutgoingPaymentStatus.COMPLETED: [],
        OutgoingPaymentStatus.FAILED: [],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

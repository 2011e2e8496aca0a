"""Domain event types for the payment request lifecycle.

Events are immutable records of a committed state change. They are
emitted after the unit of work commits, so a handler failure can never
roll a transition back. Notifications and workspace mirroring hang off
these events.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from paylink_engine.models.base import utcnow


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT_REQUEST = "payment_request"
    OUTGOING_PAYMENT = "outgoing_payment"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: str
    timestamp: datetime
    user_id: str
    actor_type: str  # 'user', 'system', 'scheduler', 'payer'
    source_service: str

    @classmethod
    def create(
        cls,
        user_id: str,
        actor_type: str = "system",
        source_service: str = "paylink",
        timestamp: datetime | None = None,
    ) -> EventMetadata:
        return cls(
            event_id=str(uuid4()),
            timestamp=timestamp or utcnow(),
            user_id=user_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Payment Request Events
# =============================================================================


@dataclass(frozen=True)
class PaymentRequestEvent(DomainEvent):
    payment_request_id: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT_REQUEST


@dataclass(frozen=True)
class PaymentRequestCreated(PaymentRequestEvent):
    """A payment request was stored, live or waiting for its schedule."""

    status: str
    amount: Decimal
    currency: str
    network: str
    transaction_kind: str
    schedule_kind: str
    scheduled_for: datetime | None
    recipient_email: str | None
    recipient_name: str | None
    description: str | None
    ai_prompt: str | None
    payment_link: str


@dataclass(frozen=True)
class PaymentRequestActivated(PaymentRequestEvent):
    """The payment link went live and can accept proofs."""

    amount: Decimal
    currency: str
    network: str
    transaction_kind: str
    recipient_email: str | None
    recipient_name: str | None
    description: str | None
    payment_link: str


@dataclass(frozen=True)
class PaymentReceived(PaymentRequestEvent):
    """A payment proof was accepted and recorded."""

    amount: Decimal
    currency: str
    network: str
    description: str | None
    proof_ref: str
    payer_address: str | None
    paid_at: datetime
    refund_due_at: datetime | None


@dataclass(frozen=True)
class PaymentRequestCancelled(PaymentRequestEvent):
    """The owner cancelled a request before payment."""

    from_status: str


@dataclass(frozen=True)
class PaymentRequestRefunded(PaymentRequestEvent):
    """A refundable payment was returned to the payer."""

    refund_tx_hash: str | None
    refunded_at: datetime


@dataclass(frozen=True)
class PaymentRequestFailed(PaymentRequestEvent):
    """A request was moved to failed by an operator."""

    from_status: str
    reason: str


# =============================================================================
# Outgoing Payment Events
# =============================================================================


@dataclass(frozen=True)
class OutgoingPaymentEvent(DomainEvent):
    outgoing_payment_id: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.OUTGOING_PAYMENT


@dataclass(frozen=True)
class OutgoingPaymentCompleted(OutgoingPaymentEvent):
    amount: Decimal
    currency: str
    recipient_address: str
    tx_hash: str | None
    related_request_id: str | None


@dataclass(frozen=True)
class OutgoingPaymentFailed(OutgoingPaymentEvent):
    reason: str
    related_request_id: str | None


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.__name__: cls
    for cls in (
        PaymentRequestCreated,
        PaymentRequestActivated,
        PaymentReceived,
        PaymentRequestCancelled,
        PaymentRequestRefunded,
        PaymentRequestFailed,
        OutgoingPaymentCompleted,
        OutgoingPaymentFailed,
    )
}

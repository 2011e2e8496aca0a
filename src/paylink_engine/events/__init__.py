"""Domain events and the emitter that delivers them."""

from paylink_engine.events.emitter import AsyncEventEmitter, HandlerRegistration
from paylink_engine.events.types import (
    EVENT_TYPES,
    DomainEvent,
    EventCategory,
    EventMetadata,
    OutgoingPaymentCompleted,
    OutgoingPaymentEvent,
    OutgoingPaymentFailed,
    PaymentReceived,
    PaymentRequestActivated,
    PaymentRequestCancelled,
    PaymentRequestCreated,
    PaymentRequestEvent,
    PaymentRequestFailed,
    PaymentRequestRefunded,
)

__all__ = [
    "AsyncEventEmitter",
    "DomainEvent",
    "EVENT_TYPES",
    "EventCategory",
    "EventMetadata",
    "HandlerRegistration",
    "OutgoingPaymentCompleted",
    "OutgoingPaymentEvent",
    "OutgoingPaymentFailed",
    "PaymentReceived",
    "PaymentRequestActivated",
    "PaymentRequestCancelled",
    "PaymentRequestCreated",
    "PaymentRequestEvent",
    "PaymentRequestFailed",
    "PaymentRequestRefunded",
]

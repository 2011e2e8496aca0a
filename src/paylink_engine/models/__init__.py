"""SQLAlchemy ORM models."""

from paylink_engine.models.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow
from paylink_engine.models.payments import LedgerEntry, OutgoingPayment, PaymentRequest
from paylink_engine.models.users import AppUser

__all__ = [
    "AppUser",
    "Base",
    "LedgerEntry",
    "OutgoingPayment",
    "PaymentRequest",
    "TimestampMixin",
    "UTCDateTime",
    "new_id",
    "utcnow",
]

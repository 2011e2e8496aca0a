"""Refund policy for completed payment requests."""

from __future__ import annotations

from datetime import datetime, timedelta

from paylink_engine.services.state_machine import TransactionKind

REFUND_DELAY = timedelta(days=30)


def compute_refund_due_time(
    paid_at: datetime, transaction_kind: TransactionKind | str
) -> datetime | None:
    """Return when a paid request must be refunded, or None if never.

    Only ``ask_and_refund`` requests carry a refund obligation; it falls
    due 30 days after the payment was received.
    """
    if TransactionKind(transaction_kind).refundable:
        return paid_at + REFUND_DELAY
    return None

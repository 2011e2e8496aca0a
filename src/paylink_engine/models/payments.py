"""Payment request, outgoing payment and ledger models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from paylink_engine.models.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow

AMOUNT = Numeric(28, 9)


class PaymentRequest(Base, TimestampMixin):
    """Money a user expects to receive through a public payment link.

    The primary key doubles as the link token and never changes. Rows are
    never deleted; terminal statuses are kept for audit.
    """

    __tablename__ = "payment_request"

    payment_request_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=new_id
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("app_user.user_id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False, default="USDC")
    network: Mapped[str] = mapped_column(String(64), nullable=False, default="sei-testnet")
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    recipient_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_kind: Mapped[str] = mapped_column(
        String(32), nullable=False, default="ask_payment"
    )
    schedule_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="immediate")
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    payment_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    proof_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    payer_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    refund_due_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    refund_tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_request_amount_ck"),
        CheckConstraint(
            "status IN ('draft', 'scheduled', 'processing', 'payment_received', "
            "'refunded', 'cancelled', 'failed')",
            name="payment_request_status_ck",
        ),
        CheckConstraint(
            "transaction_kind IN ('ask_payment', 'ask_and_refund', 'subscription')",
            name="payment_request_kind_ck",
        ),
        CheckConstraint(
            "schedule_kind IN ('immediate', 'scheduled')",
            name="payment_request_schedule_ck",
        ),
        CheckConstraint(
            "refund_due_at IS NULL OR transaction_kind = 'ask_and_refund'",
            name="payment_request_refund_kind_ck",
        ),
        Index("ix_payment_request_status_scheduled_for", "status", "scheduled_for"),
        Index("ix_payment_request_user_status", "user_id", "status"),
    )


class OutgoingPayment(Base, TimestampMixin):
    """A scheduled unilateral send from a user's wallet, including refunds."""

    __tablename__ = "outgoing_payment"

    outgoing_payment_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=new_id
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("app_user.user_id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False, default="SEI")
    network: Mapped[str] = mapped_column(String(64), nullable=False, default="sei-testnet")
    recipient_address: Mapped[str] = mapped_column(String(128), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set only for refunds; one refund per payment request.
    related_request_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("payment_request.payment_request_id"),
        nullable=True,
        unique=True,
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="outgoing_payment_amount_ck"),
        CheckConstraint(
            "status IN ('scheduled', 'processing', 'completed', 'failed')",
            name="outgoing_payment_status_ck",
        ),
        Index("ix_outgoing_payment_status_scheduled_for", "status", "scheduled_for"),
    )


class LedgerEntry(Base, TimestampMixin):
    """Append-only record of a settled money movement."""

    __tablename__ = "ledger_entry"

    ledger_entry_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("app_user.user_id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    network: Mapped[str] = mapped_column(String(64), nullable=False)
    from_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tx_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_request_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("payment_request.payment_request_id"), nullable=True
    )
    outgoing_payment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("outgoing_payment.outgoing_payment_id"), nullable=True
    )
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ledger_entry_amount_ck"),
        CheckConstraint(
            "direction IN ('incoming', 'outgoing', 'refund')",
            name="ledger_entry_direction_ck",
        ),
        Index("ix_ledger_entry_user_created", "user_id", "created_at"),
    )

"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from paylink_engine.services.state_machine import ScheduleKind, TransactionKind


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None


# ============================================================================
# Payment request schemas
# ============================================================================


class PaymentRequestCreate(BaseModel):
    """Schema for creating a payment request."""

    amount: Decimal = Field(gt=0)
    currency: str = "USDC"
    network: str = "sei-testnet"
    recipient_email: str | None = None
    recipient_name: str | None = None
    description: str | None = None
    ai_prompt: str | None = None
    transaction_kind: TransactionKind = TransactionKind.ASK_PAYMENT
    schedule_kind: ScheduleKind = ScheduleKind.IMMEDIATE
    scheduled_for: datetime | None = None


class PaymentRequestResponse(BaseModel):
    """Schema for payment request response."""

    model_config = ConfigDict(from_attributes=True)

    payment_request_id: str
    user_id: str
    amount: Decimal
    currency: str
    network: str
    recipient_email: str | None = None
    recipient_name: str | None = None
    description: str | None = None
    transaction_kind: str
    schedule_kind: str
    scheduled_for: datetime | None = None
    status: str
    payment_link: str | None = None
    proof_ref: str | None = None
    payer_address: str | None = None
    paid_at: datetime | None = None
    refund_due_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_tx_hash: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class PaymentRequestListResponse(BaseModel):
    items: list[PaymentRequestResponse]
    total: int


class StatusStats(BaseModel):
    count: int
    total_amount: Decimal


class PaymentRequestStatsResponse(BaseModel):
    by_status: dict[str, StatusStats]
    total: int


# ============================================================================
# Outgoing payment schemas
# ============================================================================


class OutgoingPaymentCreate(BaseModel):
    """Schema for scheduling a one-off send."""

    amount: Decimal = Field(gt=0)
    recipient_address: str = Field(min_length=1)
    currency: str = "SEI"
    network: str = "sei-testnet"
    recipient_name: str | None = None
    from_name: str | None = None
    description: str | None = None
    scheduled_for: datetime | None = None


class OutgoingPaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    outgoing_payment_id: str
    user_id: str
    amount: Decimal
    currency: str
    network: str
    recipient_address: str
    recipient_name: str | None = None
    description: str | None = None
    scheduled_for: datetime
    status: str
    tx_hash: str | None = None
    executed_at: datetime | None = None
    failure_reason: str | None = None
    related_request_id: str | None = None
    created_at: datetime


class OutgoingPaymentListResponse(BaseModel):
    items: list[OutgoingPaymentResponse]
    total: int


# ============================================================================
# Ledger schemas
# ============================================================================


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ledger_entry_id: str
    direction: str
    amount: Decimal
    currency: str
    network: str
    from_address: str | None = None
    to_address: str | None = None
    tx_ref: str | None = None
    description: str | None = None
    payment_request_id: str | None = None
    outgoing_payment_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class LedgerListResponse(BaseModel):
    items: list[LedgerEntryResponse]
    totals: dict[str, Decimal]


# ============================================================================
# Payment link schemas
# ============================================================================


class PaymentSettledResponse(BaseModel):
    """Body returned when a payment link accepted a proof."""

    success: bool = True
    payment_id: str
    status: str
    proof_ref: str
    payer: str | None = None
    network: str | None = None
    optimistic: bool = False
    duplicate: bool = False


class SchedulerStatsResponse(BaseModel):
    scheduled_payments: int
    scheduled_requests: int
    refunds_due: int
    is_running: bool
    active_jobs: list[str]

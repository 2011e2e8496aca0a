"""Lifecycle services."""

from paylink_engine.services.ledger_service import LedgerDirection, LedgerService, PostResult
from paylink_engine.services.lifecycle_hooks import LifecycleHooks
from paylink_engine.services.outgoing_payments import ExecutionResult, OutgoingPaymentService
from paylink_engine.services.payment_requests import (
    PaymentRequestService,
    PaymentRequestSpec,
    SettlementResult,
)
from paylink_engine.services.refund_policy import REFUND_DELAY, compute_refund_due_time
from paylink_engine.services.route_registry import RouteRecord, RouteRegistry
from paylink_engine.services.scheduler import CycleResult, SchedulingService
from paylink_engine.services.state_machine import (
    OutgoingPaymentStateMachine,
    OutgoingPaymentStatus,
    PaymentRequestStateMachine,
    PaymentRequestStatus,
    ScheduleKind,
    TransactionKind,
)
from paylink_engine.services.verification_gateway import (
    GatewayOutcome,
    NotFound,
    NoWallet,
    PaymentRequired,
    Rejected,
    Settled,
    TimedOut,
    VerificationGateway,
)

__all__ = [
    "CycleResult",
    "ExecutionResult",
    "GatewayOutcome",
    "LedgerDirection",
    "LedgerService",
    "LifecycleHooks",
    "NoWallet",
    "NotFound",
    "OutgoingPaymentService",
    "OutgoingPaymentStateMachine",
    "OutgoingPaymentStatus",
    "PaymentRequestService",
    "PaymentRequestSpec",
    "PaymentRequestStateMachine",
    "PaymentRequestStatus",
    "PaymentRequired",
    "PostResult",
    "REFUND_DELAY",
    "Rejected",
    "RouteRecord",
    "RouteRegistry",
    "ScheduleKind",
    "SchedulingService",
    "Settled",
    "SettlementResult",
    "TimedOut",
    "TransactionKind",
    "VerificationGateway",
    "compute_refund_due_time",
]

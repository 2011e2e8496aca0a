"""Property-based tests for lifecycle invariants.

Random sequences of status changes are pushed through the state machine
to check that money, once received, can only end refunded or failed,
and that terminal statuses never change.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import given, settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, precondition, rule

from paylink_engine.providers.base import to_atomic_units
from paylink_engine.services.refund_policy import compute_refund_due_time
from paylink_engine.services.state_machine import (
    PaymentRequestStateMachine,
    PaymentRequestStatus,
    TransactionKind,
)

STATUSES = [s.value for s in PaymentRequestStatus]


class PaymentRequestLifecycle(RuleBasedStateMachine):
    """Applies only the transitions the state machine allows."""

    def __init__(self) -> None:
        super().__init__()
        self.status = PaymentRequestStatus.DRAFT.value
        self.history = [self.status]
        self.paid = False

    @rule(target_status=st.sampled_from(STATUSES))
    def attempt(self, target_status: str) -> None:
        if not PaymentRequestStateMachine.can_transition(self.status, target_status):
            return
        assert self.status in PaymentRequestStateMachine.sources_for(target_status)
        self.status = target_status
        self.history.append(target_status)
        if target_status == PaymentRequestStatus.PAYMENT_RECEIVED:
            self.paid = True

    @precondition(lambda self: PaymentRequestStateMachine.is_terminal(self.status))
    @rule(target_status=st.sampled_from(STATUSES))
    def terminal_is_final(self, target_status: str) -> None:
        assert not PaymentRequestStateMachine.can_transition(self.status, target_status)

    @invariant()
    def paid_requests_never_cancel(self) -> None:
        if self.paid:
            assert self.status != PaymentRequestStatus.CANCELLED

    @invariant()
    def refund_follows_payment(self) -> None:
        if self.status == PaymentRequestStatus.REFUNDED:
            assert self.paid

    @invariant()
    def paid_at_most_once(self) -> None:
        assert self.history.count(PaymentRequestStatus.PAYMENT_RECEIVED.value) <= 1


TestPaymentRequestLifecycle = PaymentRequestLifecycle.TestCase


class TestPolicyProperties:
    @given(
        amount=st.decimals(min_value=Decimal("0.000001"), max_value=Decimal("1000000"), places=6),
        currency=st.sampled_from(["USDC", "USDT", "SEI", "ETH"]),
    )
    @settings(max_examples=200)
    def test_atomic_units_are_whole_and_positive(self, amount, currency):
        units = to_atomic_units(amount, currency)
        assert units.isdigit()
        assert int(units) > 0

    @given(
        paid_at=st.datetimes(
            min_value=datetime(2020, 1, 1), max_value=datetime(2040, 1, 1), timezones=st.just(timezone.utc)
        ),
        kind=st.sampled_from(list(TransactionKind)),
    )
    def test_refund_due_only_for_refundable(self, paid_at, kind):
        due = compute_refund_due_time(paid_at, kind)
        if kind is TransactionKind.ASK_AND_REFUND:
            assert due - paid_at == timedelta(days=30)
        else:
            assert due is None

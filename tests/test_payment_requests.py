"""Tests for the payment request lifecycle service."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from paylink_engine.errors import (
    CannotCancelPaidRequestError,
    InvalidTransitionError,
    NoWalletError,
    PaymentRequestNotFoundError,
)
from paylink_engine.events import PaymentRequestActivated, PaymentRequestCreated
from paylink_engine.services import LedgerService, PaymentRequestSpec
from paylink_engine.services.refund_policy import REFUND_DELAY
from paylink_engine.services.state_machine import ScheduleKind, TransactionKind
from tests.conftest import BASE_URL, NO_WALLET_OWNER_ID, OWNER_ID, PAYER_ADDRESS, START


def spec(**overrides) -> PaymentRequestSpec:
    values = dict(
        user_id=OWNER_ID,
        amount=Decimal("5"),
        currency="USDC",
        recipient_email="payer@example.com",
        recipient_name="Payer",
        description="Consulting",
    )
    values.update(overrides)
    return PaymentRequestSpec(**values)


class TestPaymentRequestSpec:
    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            spec(amount=Decimal("0"))

    def test_scheduled_needs_time(self):
        with pytest.raises(ValueError):
            spec(schedule_kind=ScheduleKind.SCHEDULED)

    def test_strings_are_coerced(self):
        s = spec(amount="2.50", transaction_kind="ask_and_refund")
        assert s.amount == Decimal("2.50")
        assert s.transaction_kind is TransactionKind.ASK_AND_REFUND

    def test_naive_time_is_utc(self):
        s = spec(schedule_kind="scheduled", scheduled_for=START.replace(tzinfo=None))
        assert s.scheduled_for == START


class TestCreate:
    """Creating requests."""

    async def test_immediate_request_goes_live(self, paylink, notifier, mirror):
        """An immediate request is processing, routed and emailed at once."""
        request = await paylink.payment_requests.create(spec())

        assert request.status == "processing"
        assert request.payment_link == f"{BASE_URL}/pay/{request.payment_request_id}"
        assert paylink.registry.lookup(request.payment_request_id) is not None

        assert [m["kind"] for m in notifier.sent] == ["payment_request"]
        assert notifier.sent[0]["recipient"] == "payer@example.com"
        assert notifier.sent[0]["link"] == request.payment_link

        record = mirror.records[request.payment_request_id]
        assert record["status"] == "processing"
        assert record["payment_link"] == request.payment_link

    async def test_future_scheduled_request_waits(self, paylink, notifier, mirror):
        """Scenario: scheduled for tomorrow, not routable until activated."""
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(days=1))
        )

        assert request.status == "scheduled"
        assert paylink.registry.lookup(request.payment_request_id) is None
        assert notifier.sent == []
        assert mirror.records[request.payment_request_id]["status"] == "scheduled"

    async def test_past_scheduled_request_goes_live(self, paylink):
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START - timedelta(minutes=5))
        )
        assert request.status == "processing"
        assert request.payment_request_id in paylink.registry

    async def test_owner_without_wallet_is_rejected(self, paylink):
        with pytest.raises(NoWalletError):
            await paylink.payment_requests.create(spec(user_id=NO_WALLET_OWNER_ID))
        assert await paylink.payment_requests.list_for_user(NO_WALLET_OWNER_ID) == []

    async def test_no_recipient_email_sends_nothing(self, paylink, notifier):
        await paylink.payment_requests.create(spec(recipient_email=None))
        assert notifier.sent == []

    async def test_events_emitted_in_order(self, paylink):
        seen = []

        async def record(event):
            seen.append(type(event))

        paylink.emitter.on_all(record)
        await paylink.payment_requests.create(spec())

        assert seen == [PaymentRequestCreated, PaymentRequestActivated]


class TestActivate:
    async def test_activate_scheduled(self, paylink, clock, notifier):
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(hours=1))
        )
        clock.advance(hours=2)

        activated = await paylink.payment_requests.activate(request.payment_request_id)

        assert activated.status == "processing"
        assert request.payment_request_id in paylink.registry
        assert len(notifier.sent) == 1

    async def test_activate_twice_is_noop(self, paylink, notifier):
        request = await paylink.payment_requests.create(spec())
        again = await paylink.payment_requests.activate(request.payment_request_id)

        assert again.status == "processing"
        assert len(notifier.sent) == 1

    async def test_activate_cancelled_raises(self, paylink):
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(hours=1))
        )
        await paylink.payment_requests.cancel(request.payment_request_id)

        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.activate(request.payment_request_id)

    async def test_cancel_during_activation_leaves_no_route(self, paylink, clock, notifier):
        service = paylink.payment_requests
        request = await service.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(hours=1))
        )
        clock.advance(hours=2)
        wallets = service.wallets

        class CancellingWallets:
            """Cancels the request after activation commits, before the route is published."""

            async def resolve_receiving_address(self, user_id):
                await service.cancel(request.payment_request_id)
                return await wallets.resolve_receiving_address(user_id)

        service.wallets = CancellingWallets()

        result = await service.activate(request.payment_request_id)

        assert result.status == "cancelled"
        assert request.payment_request_id not in paylink.registry
        assert notifier.sent == []
        outcome = await paylink.gateway.handle_inbound_proof(request.payment_request_id, "proof")
        assert outcome.status_code == 404


class TestMarkPaid:
    """Recording settlements."""

    async def test_mark_paid_records_payment(self, paylink, session_factory, notifier, mirror):
        request = await paylink.payment_requests.create(spec())

        result = await paylink.payment_requests.mark_paid(
            request.payment_request_id, "0xhash", PAYER_ADDRESS
        )

        assert result.was_duplicate is False
        assert result.request.status == "payment_received"
        assert result.request.proof_ref == "0xhash"
        assert result.request.payer_address == PAYER_ADDRESS
        assert result.request.paid_at == START
        assert result.request.refund_due_at is None
        assert request.payment_request_id not in paylink.registry

        async with session_factory() as session:
            entries = await LedgerService(session).entries_for_request(request.payment_request_id)
        assert len(entries) == 1
        assert entries[0].direction == "incoming"
        assert entries[0].amount == Decimal("5")
        assert entries[0].tx_ref == "0xhash"

        received = [m for m in notifier.sent if m["kind"] == "payment_received"]
        assert len(received) == 1
        assert received[0]["recipient"] == "owner@example.com"
        assert mirror.records[request.payment_request_id]["proof_ref"] == "0xhash"

    async def test_ask_and_refund_sets_refund_due(self, paylink):
        request = await paylink.payment_requests.create(spec(transaction_kind="ask_and_refund"))
        result = await paylink.payment_requests.mark_paid(request.payment_request_id, "0xhash")

        assert result.request.refund_due_at == START + REFUND_DELAY

    async def test_second_settlement_is_duplicate(self, paylink, session_factory, notifier):
        """Paying twice yields one status change, one ledger line and one email."""
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.mark_paid(request.payment_request_id, "0xfirst")

        again = await paylink.payment_requests.mark_paid(request.payment_request_id, "0xsecond")

        assert again.was_duplicate is True
        assert again.request.proof_ref == "0xfirst"
        async with session_factory() as session:
            entries = await LedgerService(session).entries_for_request(request.payment_request_id)
        assert len(entries) == 1
        assert len([m for m in notifier.sent if m["kind"] == "payment_received"]) == 1

    async def test_unknown_request(self, paylink):
        with pytest.raises(PaymentRequestNotFoundError):
            await paylink.payment_requests.mark_paid("does-not-exist", "0xhash")

    async def test_scheduled_request_cannot_be_paid(self, paylink):
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(days=1))
        )
        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.mark_paid(request.payment_request_id, "0xhash")

    async def test_cancelled_request_cannot_be_paid(self, paylink):
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.cancel(request.payment_request_id)

        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.mark_paid(request.payment_request_id, "0xhash")

    async def test_concurrent_settlements_record_once(self, paylink, session_factory, notifier):
        request = await paylink.payment_requests.create(spec())

        results = await asyncio.gather(
            *(
                paylink.payment_requests.mark_paid(
                    request.payment_request_id, f"0xproof{i}", PAYER_ADDRESS
                )
                for i in range(5)
            )
        )

        assert sorted(r.was_duplicate for r in results) == [False, True, True, True, True]
        (winner,) = [r for r in results if not r.was_duplicate]
        assert {r.request.proof_ref for r in results} == {winner.request.proof_ref}
        async with session_factory() as session:
            entries = await LedgerService(session).entries_for_request(request.payment_request_id)
        assert len(entries) == 1
        assert len([m for m in notifier.sent if m["kind"] == "payment_received"]) == 1

    async def test_concurrent_pay_and_cancel_has_one_winner(self, paylink, session_factory):
        request = await paylink.payment_requests.create(spec())
        request_id = request.payment_request_id

        paid, cancelled = await asyncio.gather(
            paylink.payment_requests.mark_paid(request_id, "0xhash", PAYER_ADDRESS),
            paylink.payment_requests.cancel(request_id),
            return_exceptions=True,
        )

        final = await paylink.payment_requests.get(request_id)
        async with session_factory() as session:
            entries = await LedgerService(session).entries_for_request(request_id)
        if isinstance(paid, Exception):
            assert isinstance(paid, InvalidTransitionError)
            assert cancelled.status == "cancelled"
            assert final.status == "cancelled"
            assert entries == []
        else:
            assert isinstance(cancelled, CannotCancelPaidRequestError)
            assert paid.was_duplicate is False
            assert final.status == "payment_received"
            assert len(entries) == 1
        assert request_id not in paylink.registry


class TestCancel:
    async def test_cancel_processing(self, paylink, mirror):
        request = await paylink.payment_requests.create(spec())
        cancelled = await paylink.payment_requests.cancel(request.payment_request_id)

        assert cancelled.status == "cancelled"
        assert request.payment_request_id not in paylink.registry
        assert mirror.records[request.payment_request_id]["status"] == "cancelled"

    async def test_cancel_is_idempotent(self, paylink):
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.cancel(request.payment_request_id)
        again = await paylink.payment_requests.cancel(request.payment_request_id)
        assert again.status == "cancelled"

    async def test_cancel_paid_request_rejected(self, paylink):
        """Scenario: a paid request needs a refund, not a cancel."""
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.mark_paid(request.payment_request_id, "0xhash")

        with pytest.raises(CannotCancelPaidRequestError):
            await paylink.payment_requests.cancel(request.payment_request_id)

        current = await paylink.payment_requests.get(request.payment_request_id)
        assert current.status == "payment_received"

    async def test_cancel_failed_request_rejected(self, paylink):
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.mark_failed(request.payment_request_id, "operator")

        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.cancel(request.payment_request_id)


class TestMarkFailedAndRefunded:
    async def test_mark_failed(self, paylink, mirror):
        request = await paylink.payment_requests.create(spec())
        failed = await paylink.payment_requests.mark_failed(request.payment_request_id, "fraud")

        assert failed.status == "failed"
        assert failed.failure_reason == "fraud"
        assert request.payment_request_id not in paylink.registry
        assert mirror.records[request.payment_request_id]["status"] == "failed"

    async def test_mark_failed_idempotent(self, paylink):
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.mark_failed(request.payment_request_id, "first")
        again = await paylink.payment_requests.mark_failed(request.payment_request_id, "second")
        assert again.failure_reason == "first"

    async def test_mark_failed_terminal_raises(self, paylink):
        request = await paylink.payment_requests.create(spec())
        await paylink.payment_requests.cancel(request.payment_request_id)
        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.mark_failed(request.payment_request_id, "late")

    async def test_mark_refunded_requires_payment(self, paylink):
        request = await paylink.payment_requests.create(spec(transaction_kind="ask_and_refund"))
        with pytest.raises(InvalidTransitionError):
            await paylink.payment_requests.mark_refunded(request.payment_request_id, "0xrefund")

    async def test_mark_refunded_idempotent(self, paylink):
        request = await paylink.payment_requests.create(spec(transaction_kind="ask_and_refund"))
        await paylink.payment_requests.mark_paid(request.payment_request_id, "0xhash")

        first = await paylink.payment_requests.mark_refunded(request.payment_request_id, "0xr1")
        second = await paylink.payment_requests.mark_refunded(request.payment_request_id, "0xr2")

        assert first.status == second.status == "refunded"
        assert second.refund_tx_hash == "0xr1"


class TestQueries:
    async def test_list_and_stats(self, paylink):
        a = await paylink.payment_requests.create(spec(amount=Decimal("5")))
        await paylink.payment_requests.create(spec(amount=Decimal("7")))
        await paylink.payment_requests.mark_paid(a.payment_request_id, "0xhash")

        processing = await paylink.payment_requests.list_for_user(OWNER_ID, status="processing")
        assert len(processing) == 1

        stats = await paylink.payment_requests.get_stats(OWNER_ID)
        assert stats["processing"]["count"] == 1
        assert stats["processing"]["total_amount"] == Decimal("7")
        assert stats["payment_received"]["count"] == 1

    async def test_list_due_for_activation(self, paylink, clock):
        request = await paylink.payment_requests.create(
            spec(schedule_kind="scheduled", scheduled_for=START + timedelta(hours=1))
        )
        assert await paylink.payment_requests.list_due_for_activation(clock()) == []

        due = await paylink.payment_requests.list_due_for_activation(clock.advance(hours=1))
        assert [r.payment_request_id for r in due] == [request.payment_request_id]

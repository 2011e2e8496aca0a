"""Tests for the event emitter and lifecycle side effects."""

import asyncio
import json
from dataclasses import replace
from decimal import Decimal

import pytest

from paylink_engine.engine import PaylinkEngine
from paylink_engine.events import (
    AsyncEventEmitter,
    EventCategory,
    EventMetadata,
    OutgoingPaymentCompleted,
    PaymentRequestCancelled,
)
from paylink_engine.services import PaymentRequestSpec
from tests.conftest import OWNER_ID, FailingNotifier, RecordingMirror


def cancelled_event(request_id: str = "req-1") -> PaymentRequestCancelled:
    return PaymentRequestCancelled(
        metadata=EventMetadata.create(OWNER_ID, "user"),
        payment_request_id=request_id,
        from_status="processing",
    )


def completed_event() -> OutgoingPaymentCompleted:
    return OutgoingPaymentCompleted(
        metadata=EventMetadata.create(OWNER_ID, "scheduler"),
        outgoing_payment_id="out-1",
        amount=Decimal("1.5"),
        currency="SEI",
        recipient_address="0xA",
        tx_hash="0xtx",
        related_request_id=None,
    )


class TestDomainEvents:
    def test_event_type_and_category(self):
        event = cancelled_event()
        assert event.event_type == "PaymentRequestCancelled"
        assert event.category == EventCategory.PAYMENT_REQUEST
        assert completed_event().category == EventCategory.OUTGOING_PAYMENT

    def test_to_json(self):
        data = json.loads(completed_event().to_json())
        assert data["amount"] == "1.5"
        assert data["metadata"]["actor_type"] == "scheduler"


class TestAsyncEventEmitter:
    """Dispatch, filtering and isolation."""

    async def test_handlers_by_type_and_category(self):
        emitter = AsyncEventEmitter()
        by_type, by_category, everything = [], [], []

        async def on_type(event):
            by_type.append(event)

        async def on_category(event):
            by_category.append(event)

        async def on_all(event):
            everything.append(event)

        emitter.on(PaymentRequestCancelled, on_type)
        emitter.on_category(EventCategory.OUTGOING_PAYMENT, on_category)
        emitter.on_all(on_all)

        await emitter.emit(cancelled_event())
        await emitter.emit(completed_event())

        assert len(by_type) == 1
        assert len(by_category) == 1
        assert len(everything) == 2

    async def test_failing_handler_is_isolated(self):
        emitter = AsyncEventEmitter()
        delivered = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            delivered.append(event)

        emitter.on_all(broken)
        emitter.on_all(healthy)

        errors = await emitter.emit(cancelled_event())

        assert len(delivered) == 1
        assert [str(e) for e in errors] == ["boom"]

    async def test_off_removes_handler(self):
        emitter = AsyncEventEmitter()
        delivered = []

        async def handler(event):
            delivered.append(event)

        emitter.on_all(handler)
        emitter.off(handler)
        await emitter.emit(cancelled_event())

        assert delivered == []

    async def test_background_mode_returns_immediately(self):
        emitter = AsyncEventEmitter(background=True)
        release = asyncio.Event()
        delivered = []

        async def slow(event):
            await release.wait()
            delivered.append(event.payment_request_id)

        emitter.on_all(slow)
        errors = await emitter.emit(cancelled_event())

        assert errors == []
        assert delivered == []
        assert emitter.pending == 1

        release.set()
        await emitter.drain(timeout=1)
        assert delivered == ["req-1"]
        assert emitter.pending == 0

    async def test_background_mode_keeps_order(self):
        emitter = AsyncEventEmitter(background=True)
        delivered = []

        async def handler(event):
            # First event is slowest; order must still hold.
            await asyncio.sleep(0.05 if event.payment_request_id == "a" else 0)
            delivered.append(event.payment_request_id)

        emitter.on_all(handler)
        for request_id in ("a", "b", "c"):
            await emitter.emit(cancelled_event(request_id))
        await emitter.drain(timeout=1)

        assert delivered == ["a", "b", "c"]


@pytest.fixture
def fragile_engine(engine_config, session_factory, owners, verifier, executor, clock):
    """Engine whose notifier and mirror both fail."""
    return PaylinkEngine(
        engine_config,
        session_factory,
        verifier=verifier,
        transfer_executor=executor,
        notifier=FailingNotifier(),
        mirror=RecordingMirror(fail=True),
        clock=clock,
    )


class TestLifecycleHooks:
    """Scenario: email and mirror failures never undo a state change."""

    async def test_side_effect_failures_do_not_block_lifecycle(self, fragile_engine):
        request = await fragile_engine.payment_requests.create(
            PaymentRequestSpec(
                user_id=OWNER_ID, amount=Decimal("5"), recipient_email="payer@example.com"
            )
        )
        assert request.status == "processing"

        outcome = await fragile_engine.gateway.handle_inbound_proof(
            request.payment_request_id, "proof"
        )

        assert outcome.status_code == 200
        current = await fragile_engine.payment_requests.get(request.payment_request_id)
        assert current.status == "payment_received"
        # The mirror was still attempted for every change.
        statuses = [fields.get("status") for _, _, fields in fragile_engine.mirror.calls]
        assert statuses == ["processing", "processing", "payment_received"]

    async def test_email_failure_does_not_stop_mirror(
        self, engine_config, session_factory, owners, verifier, executor, clock
    ):
        mirror = RecordingMirror()
        engine = PaylinkEngine(
            engine_config,
            session_factory,
            verifier=verifier,
            transfer_executor=executor,
            notifier=FailingNotifier(),
            mirror=mirror,
            clock=clock,
        )
        request = await engine.payment_requests.create(
            PaymentRequestSpec(
                user_id=OWNER_ID, amount=Decimal("5"), recipient_email="payer@example.com"
            )
        )

        assert mirror.records[request.payment_request_id]["status"] == "processing"

    async def test_mirror_upserts_one_record(self, paylink, mirror):
        """Every lifecycle change lands on the same record, keyed by id."""
        request = await paylink.payment_requests.create(
            PaymentRequestSpec(
                user_id=OWNER_ID,
                amount=Decimal("5"),
                description="Design work",
                ai_prompt="invoice for design work",
            )
        )
        await paylink.payment_requests.cancel(request.payment_request_id)

        assert list(mirror.records) == [request.payment_request_id]
        record = mirror.records[request.payment_request_id]
        assert record["status"] == "cancelled"
        assert record["description"] == "Design work"
        assert record["ai_prompt"] == "invoice for design work"
        assert record["amount"] == Decimal("5")

    async def test_background_events_run_after_drain(
        self, engine_config, session_factory, owners, verifier, executor, notifier, mirror, clock
    ):
        engine = PaylinkEngine(
            replace(engine_config, background_events=True),
            session_factory,
            verifier=verifier,
            transfer_executor=executor,
            notifier=notifier,
            mirror=mirror,
            clock=clock,
        )
        request = await engine.payment_requests.create(
            PaymentRequestSpec(
                user_id=OWNER_ID, amount=Decimal("5"), recipient_email="payer@example.com"
            )
        )
        await engine.shutdown()

        assert [m["kind"] for m in notifier.sent] == ["payment_request"]
        assert mirror.records[request.payment_request_id]["status"] == "processing"

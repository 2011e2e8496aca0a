"""Periodic work: activations, outgoing sends and refunds.

Three independent cycles, each safe to run concurrently with itself and
with the others because every item is claimed through a conditional
status update. A failing item never stops the rest of its batch.

| cycle      | picks up                                        | default interval |
|------------|-------------------------------------------------|------------------|
| activation | scheduled requests whose time has come          | 300 s            |
| outgoing   | scheduled outgoing payments that are due        | 60 s             |
| refund     | paid ask_and_refund requests past refund_due_at | 3600 s           |
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.models import OutgoingPayment, PaymentRequest, utcnow
from paylink_engine.services.outgoing_payments import OutgoingPaymentService
from paylink_engine.services.payment_requests import PaymentRequestService
from paylink_engine.services.state_machine import (
    OutgoingPaymentStatus,
    PaymentRequestStatus,
    TransactionKind,
)

logger = logging.getLogger(__name__)

ACTIVATION = "activation"
OUTGOING = "outgoing"
REFUND = "refund"
CYCLES = (ACTIVATION, OUTGOING, REFUND)


@dataclass
class CycleResult:
    """Counts for one scheduler run."""

    cycle: str
    found: int = 0
    processed: int = 0
    failed: int = 0
    # Claimed by a worker but not finished; stays visible until resolved.
    in_flight: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors


class SchedulingService:
    """Runs the activation, outgoing and refund cycles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        payment_requests: PaymentRequestService,
        outgoing_payments: OutgoingPaymentService,
        *,
        activation_interval_seconds: float = 300,
        outgoing_interval_seconds: float = 60,
        refund_interval_seconds: float = 3600,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.payment_requests = payment_requests
        self.outgoing_payments = outgoing_payments
        self.intervals = {
            ACTIVATION: activation_interval_seconds,
            OUTGOING: outgoing_interval_seconds,
            REFUND: refund_interval_seconds,
        }
        self.batch_size = batch_size
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_activation_cycle(self, now: datetime | None = None) -> CycleResult:
        """Activate scheduled requests whose ``scheduled_for`` has passed."""
        now = now or self._clock()
        result = CycleResult(cycle=ACTIVATION)
        due = await self.payment_requests.list_due_for_activation(now, self.batch_size)
        result.found = len(due)

        for request in due:
            try:
                await self.payment_requests.activate(request.payment_request_id)
                result.processed += 1
            except Exception as e:
                logger.exception("Activation of %s failed", request.payment_request_id)
                result.failed += 1
                result.errors.append({"id": request.payment_request_id, "message": str(e)})

        self._log(result)
        return result

    async def run_outgoing_cycle(self, now: datetime | None = None) -> CycleResult:
        """Execute due outgoing payments, refunds included."""
        now = now or self._clock()
        result = CycleResult(cycle=OUTGOING)
        due = await self.outgoing_payments.list_due(now, self.batch_size)
        result.found = len(due)

        for payment in due:
            try:
                execution = await self.outgoing_payments.execute(payment.outgoing_payment_id)
            except Exception as e:
                logger.exception("Outgoing payment %s errored", payment.outgoing_payment_id)
                result.failed += 1
                result.errors.append({"id": payment.outgoing_payment_id, "message": str(e)})
                continue

            if not execution.executed:
                continue
            if execution.success:
                result.processed += 1
            else:
                result.failed += 1
                result.errors.append(
                    {"id": payment.outgoing_payment_id, "message": execution.error}
                )

        self._log(result)
        return result

    async def run_refund_cycle(self, now: datetime | None = None) -> CycleResult:
        """Return due ``ask_and_refund`` payments to their payers."""
        now = now or self._clock()
        result = CycleResult(cycle=REFUND)
        due = await self.payment_requests.list_due_for_refund(now, self.batch_size)
        result.found = len(due)

        for request in due:
            request_id = request.payment_request_id
            try:
                outcome = await self._refund(request)
            except Exception as e:
                logger.exception("Refund of %s errored", request_id)
                result.failed += 1
                result.errors.append({"id": request_id, "message": str(e)})
                continue

            if outcome == OutgoingPaymentStatus.COMPLETED:
                result.processed += 1
            elif outcome == OutgoingPaymentStatus.PROCESSING:
                result.in_flight += 1
            else:
                result.failed += 1
                result.errors.append({"id": request_id, "message": "refund failed"})

        self._log(result)
        return result

    async def _refund(self, request: PaymentRequest) -> str:
        """Send the refund for one request. Returns the refund payment status."""
        refund, _ = await self.outgoing_payments.create_refund(request)

        if refund.status == OutgoingPaymentStatus.SCHEDULED:
            execution = await self.outgoing_payments.execute(refund.outgoing_payment_id)
            if execution.executed:
                return execution.status
            refund = await self.outgoing_payments.get(refund.outgoing_payment_id)

        if refund.status == OutgoingPaymentStatus.COMPLETED:
            # Sent earlier but the request was never marked refunded.
            await self.payment_requests.mark_refunded(request.payment_request_id, refund.tx_hash)
        elif refund.status == OutgoingPaymentStatus.PROCESSING:
            logger.warning(
                "Refund %s for %s is still processing",
                refund.outgoing_payment_id,
                request.payment_request_id,
            )
        return refund.status

    async def run_cycle(self, cycle: str, now: datetime | None = None) -> CycleResult:
        runners: dict[str, Callable[[datetime | None], Awaitable[CycleResult]]] = {
            ACTIVATION: self.run_activation_cycle,
            OUTGOING: self.run_outgoing_cycle,
            REFUND: self.run_refund_cycle,
        }
        if cycle not in runners:
            raise ValueError(f"Unknown cycle '{cycle}', expected one of {', '.join(CYCLES)}")
        return await runners[cycle](now)

    def _log(self, result: CycleResult) -> None:
        logger.info(
            "%s cycle: found=%d processed=%d failed=%d in_flight=%d",
            result.cycle,
            result.found,
            result.processed,
            result.failed,
            result.in_flight,
        )

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Start one background task per cycle. Must run inside an event loop."""
        if self._tasks:
            logger.warning("Scheduling service already running")
            return
        for cycle in CYCLES:
            self._tasks[cycle] = asyncio.create_task(self._loop(cycle), name=f"scheduler-{cycle}")
        logger.info("Scheduling service started (%s)", ", ".join(CYCLES))

    async def stop(self) -> None:
        if not self._tasks:
            return
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduling service stopped")

    async def _loop(self, cycle: str) -> None:
        interval = self.intervals[cycle]
        while True:
            try:
                await self.run_cycle(cycle)
            except Exception:
                logger.exception("%s cycle run failed", cycle)
            await asyncio.sleep(interval)

    async def get_stats(self, now: datetime | None = None) -> dict[str, Any]:
        """Pending work and loop state."""
        now = now or self._clock()
        async with self._session_factory() as session:
            scheduled_payments = await session.scalar(
                select(func.count(OutgoingPayment.outgoing_payment_id)).where(
                    OutgoingPayment.status == OutgoingPaymentStatus.SCHEDULED.value
                )
            )
            scheduled_requests = await session.scalar(
                select(func.count(PaymentRequest.payment_request_id)).where(
                    PaymentRequest.status == PaymentRequestStatus.SCHEDULED.value
                )
            )
            refunds_due = await session.scalar(
                select(func.count(PaymentRequest.payment_request_id)).where(
                    PaymentRequest.status == PaymentRequestStatus.PAYMENT_RECEIVED.value,
                    PaymentRequest.transaction_kind == TransactionKind.ASK_AND_REFUND.value,
                    PaymentRequest.refund_due_at <= now,
                )
            )
        return {
            "scheduled_payments": scheduled_payments or 0,
            "scheduled_requests": scheduled_requests or 0,
            "refunds_due": refunds_due or 0,
            "is_running": self.is_running,
            "active_jobs": sorted(self._tasks),
        }

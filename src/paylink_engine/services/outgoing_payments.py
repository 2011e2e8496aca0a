"""Outgoing payment service.

Outgoing payments are one-off sends from a user's wallet, scheduled for
a point in time. Refunds of ``ask_and_refund`` requests are outgoing
payments linked to their request through ``related_request_id``, which
is unique, so a request can never be refunded twice.

Lifecycle: scheduled -> processing -> completed | failed. There is no
automatic retry; a failed send keeps its failure reason for an operator.
A failed refund also moves its payment request to failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.errors import SendFailureError
from paylink_engine.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    OutgoingPaymentCompleted,
    OutgoingPaymentFailed,
)
from paylink_engine.models import OutgoingPayment, PaymentRequest, utcnow
from paylink_engine.providers.base import TransferExecutor, TransferResult
from paylink_engine.services.ledger_service import LedgerDirection, LedgerService
from paylink_engine.services.payment_requests import PaymentRequestService
from paylink_engine.services.state_machine import OutgoingPaymentStatus

logger = logging.getLogger(__name__)

NO_PAYER_ADDRESS = "no payer address recorded for refund"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of executing one outgoing payment.

    ``executed=False`` means another worker already claimed the payment
    and this call did nothing.
    """

    outgoing_payment_id: str
    executed: bool
    status: str
    tx_hash: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == OutgoingPaymentStatus.COMPLETED


class OutgoingPaymentService:
    """Schedules and executes sends through the TransferExecutor."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: TransferExecutor,
        payment_requests: PaymentRequestService,
        *,
        emitter: AsyncEventEmitter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.executor = executor
        self.payment_requests = payment_requests
        self.emitter = emitter
        self._clock = clock

    async def schedule_payment(
        self,
        *,
        user_id: str,
        amount: Decimal,
        recipient_address: str,
        scheduled_for: datetime | None = None,
        currency: str = "SEI",
        network: str = "sei-testnet",
        recipient_name: str | None = None,
        from_name: str | None = None,
        description: str | None = None,
    ) -> OutgoingPayment:
        """Schedule a one-off send. Without ``scheduled_for`` it is due now."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("amount must be positive")
        if not recipient_address:
            raise ValueError("recipient_address is required")

        now = self._clock()
        payment = OutgoingPayment(
            user_id=user_id,
            amount=amount,
            currency=currency,
            network=network,
            recipient_address=recipient_address,
            recipient_name=recipient_name,
            from_name=from_name,
            description=description,
            scheduled_for=scheduled_for or now,
            status=OutgoingPaymentStatus.SCHEDULED.value,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(payment)
            await session.commit()

        logger.info(
            "Scheduled outgoing payment %s: %s %s to %s at %s",
            payment.outgoing_payment_id,
            amount,
            currency,
            recipient_address,
            payment.scheduled_for.isoformat(),
        )
        return payment

    async def create_refund(self, request: PaymentRequest) -> tuple[OutgoingPayment, bool]:
        """Create the refund payment for a paid request, once.

        Returns the refund payment and whether it was created by this call.
        A request with no recorded payer address gets a refund payment that
        is already failed and the request itself is failed, so it is
        reported once and never retried.
        """
        existing = await self.get_refund_for(request.payment_request_id)
        if existing is not None:
            return existing, False

        now = self._clock()
        payer = request.payer_address
        refund = OutgoingPayment(
            user_id=request.user_id,
            amount=request.amount,
            currency=request.currency,
            network=request.network,
            recipient_address=payer or "",
            recipient_name=request.recipient_name,
            description=f"Refund for payment request {request.payment_request_id}",
            scheduled_for=now,
            status=(
                OutgoingPaymentStatus.SCHEDULED.value
                if payer
                else OutgoingPaymentStatus.FAILED.value
            ),
            failure_reason=None if payer else NO_PAYER_ADDRESS,
            related_request_id=request.payment_request_id,
            created_at=now,
        )
        async with self._session_factory() as session:
            session.add(refund)
            try:
                await session.commit()
            except IntegrityError:
                # Another worker created it first.
                await session.rollback()
                existing = await self.get_refund_for(request.payment_request_id)
                if existing is None:
                    raise
                return existing, False

        if not payer:
            logger.error(
                "Cannot refund %s: %s", request.payment_request_id, NO_PAYER_ADDRESS
            )
            await self._emit(
                OutgoingPaymentFailed(
                    metadata=EventMetadata.create(request.user_id, "scheduler", timestamp=now),
                    outgoing_payment_id=refund.outgoing_payment_id,
                    reason=NO_PAYER_ADDRESS,
                    related_request_id=request.payment_request_id,
                )
            )
            await self.payment_requests.mark_failed(
                request.payment_request_id, f"refund failed: {NO_PAYER_ADDRESS}"
            )
        return refund, True

    async def execute(self, outgoing_payment_id: str) -> ExecutionResult:
        """Claim a scheduled payment and send it.

        The claim is a conditional update from ``scheduled`` to
        ``processing``; when it loses, the payment is left alone.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(OutgoingPayment)
                .where(
                    OutgoingPayment.outgoing_payment_id == outgoing_payment_id,
                    OutgoingPayment.status == OutgoingPaymentStatus.SCHEDULED.value,
                )
                .values(status=OutgoingPaymentStatus.PROCESSING.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            payment = await session.get(OutgoingPayment, outgoing_payment_id)

        if payment is None:
            raise LookupError(f"Outgoing payment {outgoing_payment_id} not found")
        if result.rowcount != 1:
            return ExecutionResult(
                outgoing_payment_id=outgoing_payment_id,
                executed=False,
                status=payment.status,
                tx_hash=payment.tx_hash,
            )

        try:
            transfer = await self._send(payment)
        except SendFailureError as e:
            return await self._fail(payment, e.reason)
        return await self._complete(payment, transfer)

    async def _send(self, payment: OutgoingPayment) -> TransferResult:
        try:
            transfer = await self.executor.send(
                user_id=payment.user_id,
                to_address=payment.recipient_address,
                amount=payment.amount,
                currency=payment.currency,
                network=payment.network,
            )
        except Exception as e:
            raise SendFailureError(payment.outgoing_payment_id, str(e) or type(e).__name__) from e
        if not transfer.success:
            raise SendFailureError(payment.outgoing_payment_id, transfer.error or "send failed")
        return transfer

    async def _complete(self, payment: OutgoingPayment, transfer: TransferResult) -> ExecutionResult:
        now = self._clock()
        direction = (
            LedgerDirection.REFUND if payment.related_request_id else LedgerDirection.OUTGOING
        )
        async with self._session_factory() as session:
            await session.execute(
                update(OutgoingPayment)
                .where(OutgoingPayment.outgoing_payment_id == payment.outgoing_payment_id)
                .values(
                    status=OutgoingPaymentStatus.COMPLETED.value,
                    tx_hash=transfer.tx_hash,
                    executed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await LedgerService(session).post_entry(
                user_id=payment.user_id,
                idempotency_key=f"{direction.value}:{payment.outgoing_payment_id}",
                direction=direction,
                amount=payment.amount,
                currency=payment.currency,
                network=payment.network,
                to_address=payment.recipient_address,
                tx_ref=transfer.tx_hash,
                description=payment.description,
                payment_request_id=payment.related_request_id,
                outgoing_payment_id=payment.outgoing_payment_id,
                completed_at=now,
            )
            await session.commit()

        logger.info(
            "Outgoing payment %s completed: %s %s to %s (tx=%s)",
            payment.outgoing_payment_id,
            payment.amount,
            payment.currency,
            payment.recipient_address,
            transfer.tx_hash,
        )
        await self._emit(
            OutgoingPaymentCompleted(
                metadata=EventMetadata.create(payment.user_id, "scheduler", timestamp=now),
                outgoing_payment_id=payment.outgoing_payment_id,
                amount=payment.amount,
                currency=payment.currency,
                recipient_address=payment.recipient_address,
                tx_hash=transfer.tx_hash,
                related_request_id=payment.related_request_id,
            )
        )

        if payment.related_request_id:
            await self.payment_requests.mark_refunded(payment.related_request_id, transfer.tx_hash)

        return ExecutionResult(
            outgoing_payment_id=payment.outgoing_payment_id,
            executed=True,
            status=OutgoingPaymentStatus.COMPLETED.value,
            tx_hash=transfer.tx_hash,
        )

    async def _fail(self, payment: OutgoingPayment, reason: str) -> ExecutionResult:
        now = self._clock()
        async with self._session_factory() as session:
            await session.execute(
                update(OutgoingPayment)
                .where(OutgoingPayment.outgoing_payment_id == payment.outgoing_payment_id)
                .values(
                    status=OutgoingPaymentStatus.FAILED.value,
                    failure_reason=reason,
                    executed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.error("Outgoing payment %s failed: %s", payment.outgoing_payment_id, reason)
        await self._emit(
            OutgoingPaymentFailed(
                metadata=EventMetadata.create(payment.user_id, "scheduler", timestamp=now),
                outgoing_payment_id=payment.outgoing_payment_id,
                reason=reason,
                related_request_id=payment.related_request_id,
            )
        )
        if payment.related_request_id:
            await self.payment_requests.mark_failed(
                payment.related_request_id, f"refund failed: {reason}"
            )
        return ExecutionResult(
            outgoing_payment_id=payment.outgoing_payment_id,
            executed=True,
            status=OutgoingPaymentStatus.FAILED.value,
            error=reason,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, outgoing_payment_id: str) -> OutgoingPayment | None:
        async with self._session_factory() as session:
            return await session.get(OutgoingPayment, outgoing_payment_id)

    async def get_refund_for(self, payment_request_id: str) -> OutgoingPayment | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OutgoingPayment).where(
                    OutgoingPayment.related_request_id == payment_request_id
                )
            )
            return result.scalar_one_or_none()

    async def list_due(self, now: datetime, limit: int = 100) -> list[OutgoingPayment]:
        stmt = (
            select(OutgoingPayment)
            .where(
                OutgoingPayment.status == OutgoingPaymentStatus.SCHEDULED.value,
                OutgoingPayment.scheduled_for <= now,
            )
            .order_by(OutgoingPayment.scheduled_for)
            .limit(limit)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: OutgoingPaymentStatus | str | None = None,
        limit: int = 100,
    ) -> list[OutgoingPayment]:
        stmt = select(OutgoingPayment).where(OutgoingPayment.user_id == user_id)
        if status is not None:
            stmt = stmt.where(OutgoingPayment.status == OutgoingPaymentStatus(status).value)
        stmt = stmt.order_by(OutgoingPayment.scheduled_for.desc()).limit(limit)
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)

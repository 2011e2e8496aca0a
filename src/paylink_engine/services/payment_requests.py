"""Payment request lifecycle service.

Every operation is one unit of work. Status changes are persisted with a
conditional update guarded on the allowed source statuses, so concurrent
writers for the same request id are serialized by the database: exactly
one wins, the loser re-reads the row and reports what actually happened.

Side effects (route registry, domain events) run only after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.errors import (
    CannotCancelPaidRequestError,
    InvalidTransitionError,
    NoWalletError,
    PaymentRequestNotFoundError,
)
from paylink_engine.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    PaymentReceived,
    PaymentRequestActivated,
    PaymentRequestCancelled,
    PaymentRequestCreated,
    PaymentRequestFailed,
    PaymentRequestRefunded,
)
from paylink_engine.models import OutgoingPayment, PaymentRequest, new_id, utcnow
from paylink_engine.providers.base import WalletDirectory
from paylink_engine.services.ledger_service import LedgerDirection, LedgerService
from paylink_engine.services.refund_policy import compute_refund_due_time
from paylink_engine.services.route_registry import RouteRecord, RouteRegistry
from paylink_engine.services.state_machine import (
    OutgoingPaymentStatus,
    PaymentRequestStateMachine,
    PaymentRequestStatus,
    ScheduleKind,
    TransactionKind,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentRequestSpec:
    """Input for creating a payment request."""

    user_id: str
    amount: Decimal
    currency: str = "USDC"
    network: str = "sei-testnet"
    recipient_email: str | None = None
    recipient_name: str | None = None
    description: str | None = None
    ai_prompt: str | None = None
    transaction_kind: TransactionKind = TransactionKind.ASK_PAYMENT
    schedule_kind: ScheduleKind = ScheduleKind.IMMEDIATE
    scheduled_for: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", Decimal(str(self.amount)))
        object.__setattr__(self, "transaction_kind", TransactionKind(self.transaction_kind))
        object.__setattr__(self, "schedule_kind", ScheduleKind(self.schedule_kind))
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if self.schedule_kind == ScheduleKind.SCHEDULED and self.scheduled_for is None:
            raise ValueError("scheduled requests need scheduled_for")
        if self.scheduled_for is not None and self.scheduled_for.tzinfo is None:
            object.__setattr__(
                self, "scheduled_for", self.scheduled_for.replace(tzinfo=timezone.utc)
            )


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of recording a payment.

    ``was_duplicate=True`` means the request had already been paid; nothing
    was written and no events were emitted.
    """

    request: PaymentRequest
    was_duplicate: bool
    ledger_entry_id: str | None = None


class PaymentRequestService:
    """Owns every status change of a payment request."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: RouteRegistry,
        wallets: WalletDirectory,
        *,
        base_url: str,
        emitter: AsyncEventEmitter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.registry = registry
        self.wallets = wallets
        self.base_url = base_url.rstrip("/")
        self.emitter = emitter
        self._clock = clock

    def link_for(self, payment_request_id: str) -> str:
        return f"{self.base_url}/pay/{payment_request_id}"

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create(self, spec: PaymentRequestSpec) -> PaymentRequest:
        """Create a payment request.

        Immediate requests, and scheduled ones whose time has already
        passed, go live at once. Future scheduled requests wait for the
        activation cycle.

        Raises:
            NoWalletError: The owner has no receiving address.
        """
        pay_to = await self.wallets.resolve_receiving_address(spec.user_id)
        if not pay_to:
            raise NoWalletError(spec.user_id)

        now = self._clock()
        live = not (
            spec.schedule_kind == ScheduleKind.SCHEDULED
            and spec.scheduled_for is not None
            and spec.scheduled_for > now
        )
        payment_request_id = new_id()

        request = PaymentRequest(
            payment_request_id=payment_request_id,
            user_id=spec.user_id,
            amount=spec.amount,
            currency=spec.currency,
            network=spec.network,
            recipient_email=spec.recipient_email,
            recipient_name=spec.recipient_name,
            description=spec.description,
            ai_prompt=spec.ai_prompt,
            transaction_kind=spec.transaction_kind.value,
            schedule_kind=spec.schedule_kind.value,
            scheduled_for=spec.scheduled_for,
            status=(
                PaymentRequestStatus.PROCESSING.value
                if live
                else PaymentRequestStatus.SCHEDULED.value
            ),
            payment_link=self.link_for(payment_request_id),
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(request)
            await session.commit()

        logger.info(
            "Created payment request %s for user %s (%s %s, status=%s)",
            payment_request_id,
            spec.user_id,
            spec.amount,
            spec.currency,
            request.status,
        )

        if live:
            self.registry.register(payment_request_id, RouteRecord.from_request(request, pay_to))

        await self._emit(
            PaymentRequestCreated(
                metadata=self._meta(request, "user"),
                payment_request_id=payment_request_id,
                status=request.status,
                amount=request.amount,
                currency=request.currency,
                network=request.network,
                transaction_kind=request.transaction_kind,
                schedule_kind=request.schedule_kind,
                scheduled_for=request.scheduled_for,
                recipient_email=request.recipient_email,
                recipient_name=request.recipient_name,
                description=request.description,
                ai_prompt=request.ai_prompt,
                payment_link=request.payment_link,
            )
        )
        if live:
            await self._emit(self._activated_event(request, "user"))
        return request

    async def activate(self, payment_request_id: str) -> PaymentRequest:
        """Move a scheduled request to processing and publish its route.

        Activating an already-processing request changes nothing.
        """
        now = self._clock()
        async with self._session_factory() as session:
            request = await self._load(session, payment_request_id)
            if request.status == PaymentRequestStatus.PROCESSING:
                won = False
            else:
                won = await self._transition(
                    session, payment_request_id, PaymentRequestStatus.PROCESSING, now
                )
                if not won:
                    request = await self._reload(session, payment_request_id)
                    if request.status != PaymentRequestStatus.PROCESSING:
                        raise InvalidTransitionError(
                            request.status, PaymentRequestStatus.PROCESSING.value
                        )
            await session.commit()
            if won:
                request = await self._reload(session, payment_request_id)

        pay_to = await self.wallets.resolve_receiving_address(request.user_id)
        if not await self._publish_route(request, pay_to):
            logger.info("Payment request %s ended while being activated", payment_request_id)
            return await self.get(payment_request_id)

        if won:
            logger.info("Activated payment request %s", payment_request_id)
            await self._emit(self._activated_event(request, "scheduler"))
        return request

    async def mark_paid(
        self,
        payment_request_id: str,
        proof_ref: str,
        payer_address: str | None = None,
    ) -> SettlementResult:
        """Record a verified payment.

        Args:
            payment_request_id: The paid request
            proof_ref: Settlement transaction hash or synthesized proof reference
            payer_address: Address the funds came from, when known

        Returns:
            SettlementResult; ``was_duplicate`` is set when the request was
            already paid.

        Raises:
            PaymentRequestNotFoundError: Unknown id.
            InvalidTransitionError: The request is not accepting payments
                (scheduled, cancelled or failed before payment).
        """
        now = self._clock()
        async with self._session_factory() as session:
            request = await self._load(session, payment_request_id)
            refund_due_at = compute_refund_due_time(now, request.transaction_kind)

            won = await self._transition(
                session,
                payment_request_id,
                PaymentRequestStatus.PAYMENT_RECEIVED,
                now,
                proof_ref=proof_ref,
                payer_address=payer_address,
                paid_at=now,
                refund_due_at=refund_due_at,
            )
            if not won:
                await session.rollback()
                current = await self._reload(session, payment_request_id)
                if current.paid_at is not None:
                    self.registry.deregister(payment_request_id)
                    logger.info(
                        "Duplicate settlement for %s ignored (status=%s)",
                        payment_request_id,
                        current.status,
                    )
                    return SettlementResult(request=current, was_duplicate=True)
                raise InvalidTransitionError(
                    current.status,
                    PaymentRequestStatus.PAYMENT_RECEIVED.value,
                    reason="payment request is not accepting payments",
                )

            post = await LedgerService(session).post_entry(
                user_id=request.user_id,
                idempotency_key=f"incoming:{payment_request_id}",
                direction=LedgerDirection.INCOMING,
                amount=request.amount,
                currency=request.currency,
                network=request.network,
                from_address=payer_address,
                tx_ref=proof_ref,
                description=request.description,
                payment_request_id=payment_request_id,
                completed_at=now,
            )
            await session.commit()
            request = await self._reload(session, payment_request_id)

        self.registry.deregister(payment_request_id)
        logger.info(
            "Payment received for %s: %s %s (proof=%s)",
            payment_request_id,
            request.amount,
            request.currency,
            proof_ref,
        )

        await self._emit(
            PaymentReceived(
                metadata=self._meta(request, "payer"),
                payment_request_id=payment_request_id,
                amount=request.amount,
                currency=request.currency,
                network=request.network,
                description=request.description,
                proof_ref=proof_ref,
                payer_address=payer_address,
                paid_at=now,
                refund_due_at=refund_due_at,
            )
        )
        return SettlementResult(request=request, was_duplicate=False, ledger_entry_id=post.entry_id)

    async def cancel(self, payment_request_id: str) -> PaymentRequest:
        """Cancel a request that has not been paid.

        Raises:
            CannotCancelPaidRequestError: Payment was already received.
            InvalidTransitionError: The request already ended otherwise.
        """
        now = self._clock()
        async with self._session_factory() as session:
            request = await self._load(session, payment_request_id)
            from_status = request.status
            if from_status == PaymentRequestStatus.CANCELLED:
                return request
            self._check_cancellable(request)

            won = await self._transition(
                session, payment_request_id, PaymentRequestStatus.CANCELLED, now
            )
            if not won:
                await session.rollback()
                current = await self._reload(session, payment_request_id)
                if current.status == PaymentRequestStatus.CANCELLED:
                    return current
                self._check_cancellable(current)
                raise InvalidTransitionError(current.status, PaymentRequestStatus.CANCELLED.value)
            await session.commit()
            request = await self._reload(session, payment_request_id)

        self.registry.deregister(payment_request_id)
        logger.info("Cancelled payment request %s (was %s)", payment_request_id, from_status)
        await self._emit(
            PaymentRequestCancelled(
                metadata=self._meta(request, "user"),
                payment_request_id=payment_request_id,
                from_status=from_status,
            )
        )
        return request

    async def mark_refunded(self, payment_request_id: str, tx_hash: str | None) -> PaymentRequest:
        """Record that a refundable payment went back to the payer.

        Repeating the call for an already-refunded request changes nothing.
        """
        now = self._clock()
        async with self._session_factory() as session:
            request = await self._load(session, payment_request_id)
            if request.status == PaymentRequestStatus.REFUNDED:
                return request

            won = await self._transition(
                session,
                payment_request_id,
                PaymentRequestStatus.REFUNDED,
                now,
                refunded_at=now,
                refund_tx_hash=tx_hash,
            )
            if not won:
                await session.rollback()
                current = await self._reload(session, payment_request_id)
                if current.status == PaymentRequestStatus.REFUNDED:
                    return current
                raise InvalidTransitionError(current.status, PaymentRequestStatus.REFUNDED.value)
            await session.commit()
            request = await self._reload(session, payment_request_id)

        logger.info("Payment request %s refunded (tx=%s)", payment_request_id, tx_hash)
        await self._emit(
            PaymentRequestRefunded(
                metadata=self._meta(request, "scheduler"),
                payment_request_id=payment_request_id,
                refund_tx_hash=tx_hash,
                refunded_at=now,
            )
        )
        return request

    async def mark_failed(self, payment_request_id: str, reason: str) -> PaymentRequest:
        """Move a non-terminal request to failed. Operator action."""
        now = self._clock()
        async with self._session_factory() as session:
            request = await self._load(session, payment_request_id)
            from_status = request.status
            if from_status == PaymentRequestStatus.FAILED:
                return request

            won = await self._transition(
                session,
                payment_request_id,
                PaymentRequestStatus.FAILED,
                now,
                failure_reason=reason,
            )
            if not won:
                await session.rollback()
                current = await self._reload(session, payment_request_id)
                raise InvalidTransitionError(
                    current.status, PaymentRequestStatus.FAILED.value, reason=reason
                )
            await session.commit()
            request = await self._reload(session, payment_request_id)

        self.registry.deregister(payment_request_id)
        logger.warning("Payment request %s failed: %s", payment_request_id, reason)
        await self._emit(
            PaymentRequestFailed(
                metadata=self._meta(request, "user"),
                payment_request_id=payment_request_id,
                from_status=from_status,
                reason=reason,
            )
        )
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, payment_request_id: str) -> PaymentRequest:
        async with self._session_factory() as session:
            return await self._load(session, payment_request_id)

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: PaymentRequestStatus | str | None = None,
        limit: int = 100,
    ) -> list[PaymentRequest]:
        stmt = select(PaymentRequest).where(PaymentRequest.user_id == user_id)
        if status is not None:
            stmt = stmt.where(PaymentRequest.status == PaymentRequestStatus(status).value)
        stmt = stmt.order_by(PaymentRequest.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_due_for_activation(self, now: datetime, limit: int = 100) -> list[PaymentRequest]:
        stmt = (
            select(PaymentRequest)
            .where(
                PaymentRequest.status == PaymentRequestStatus.SCHEDULED.value,
                PaymentRequest.scheduled_for <= now,
            )
            .order_by(PaymentRequest.scheduled_for)
            .limit(limit)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_due_for_refund(self, now: datetime, limit: int = 100) -> list[PaymentRequest]:
        """Paid refundable requests whose refund is due.

        Requests whose refund already failed are left for an operator.
        """
        failed_refund = (
            select(OutgoingPayment.outgoing_payment_id)
            .where(
                OutgoingPayment.related_request_id == PaymentRequest.payment_request_id,
                OutgoingPayment.status == OutgoingPaymentStatus.FAILED.value,
            )
            .exists()
        )
        stmt = (
            select(PaymentRequest)
            .where(
                PaymentRequest.status == PaymentRequestStatus.PAYMENT_RECEIVED.value,
                PaymentRequest.transaction_kind == TransactionKind.ASK_AND_REFUND.value,
                PaymentRequest.refund_due_at <= now,
                ~failed_refund,
            )
            .order_by(PaymentRequest.refund_due_at)
            .limit(limit)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_stats(self, user_id: str | None = None) -> dict[str, dict[str, Any]]:
        """Count and total amount of requests per status."""
        stmt = select(
            PaymentRequest.status,
            func.count(PaymentRequest.payment_request_id),
            func.sum(PaymentRequest.amount),
        ).group_by(PaymentRequest.status)
        if user_id is not None:
            stmt = stmt.where(PaymentRequest.user_id == user_id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return {
            status: {"count": count, "total_amount": Decimal(total or 0)}
            for status, count, total in rows
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, payment_request_id: str) -> PaymentRequest:
        request = await session.get(PaymentRequest, payment_request_id)
        if request is None:
            raise PaymentRequestNotFoundError(payment_request_id)
        return request

    async def _reload(self, session: AsyncSession, payment_request_id: str) -> PaymentRequest:
        request = await session.get(PaymentRequest, payment_request_id, populate_existing=True)
        if request is None:
            raise PaymentRequestNotFoundError(payment_request_id)
        return request

    async def _transition(
        self,
        session: AsyncSession,
        payment_request_id: str,
        to_status: PaymentRequestStatus,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Conditionally move a request into ``to_status``.

        Returns False when the row was not in an allowed source status.
        """
        sources = PaymentRequestStateMachine.sources_for(to_status)
        result = await session.execute(
            update(PaymentRequest)
            .where(
                PaymentRequest.payment_request_id == payment_request_id,
                PaymentRequest.status.in_(sources),
            )
            .values(status=to_status.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _publish_route(self, request: PaymentRequest, pay_to: str | None) -> bool:
        """Register the route, then withdraw it if the request stopped
        awaiting payment in the meantime. Returns whether the route stays.
        """
        payment_request_id = request.payment_request_id
        self.registry.register(payment_request_id, RouteRecord.from_request(request, pay_to))
        async with self._session_factory() as session:
            status = await session.scalar(
                select(PaymentRequest.status).where(
                    PaymentRequest.payment_request_id == payment_request_id
                )
            )
        if status is not None and PaymentRequestStateMachine.is_awaiting_payment(status):
            return True
        self.registry.deregister(payment_request_id)
        return False

    def _check_cancellable(self, request: PaymentRequest) -> None:
        if request.paid_at is not None or PaymentRequestStateMachine.is_settled(request.status):
            raise CannotCancelPaidRequestError(request.payment_request_id, request.status)
        PaymentRequestStateMachine.validate_transition(
            request.status, PaymentRequestStatus.CANCELLED.value
        )

    def _meta(self, request: PaymentRequest, actor_type: str) -> EventMetadata:
        return EventMetadata.create(
            user_id=request.user_id,
            actor_type=actor_type,
            timestamp=self._clock(),
        )

    def _activated_event(self, request: PaymentRequest, actor_type: str) -> PaymentRequestActivated:
        return PaymentRequestActivated(
            metadata=self._meta(request, actor_type),
            payment_request_id=request.payment_request_id,
            amount=request.amount,
            currency=request.currency,
            network=request.network,
            transaction_kind=request.transaction_kind,
            recipient_email=request.recipient_email,
            recipient_name=request.recipient_name,
            description=request.description,
            payment_link=request.payment_link or self.link_for(request.payment_request_id),
        )

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)

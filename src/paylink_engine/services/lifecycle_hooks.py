"""Side effects attached to lifecycle events.

Each effect is its own handler so an email failure never stops the
workspace mirror and the other way round. Handlers only run after the
state change committed; the emitter logs and swallows their failures.
"""

from __future__ import annotations

import logging
from typing import Any

from paylink_engine.events import (
    AsyncEventEmitter,
    PaymentReceived,
    PaymentRequestActivated,
    PaymentRequestCancelled,
    PaymentRequestCreated,
    PaymentRequestEvent,
    PaymentRequestFailed,
    PaymentRequestRefunded,
)
from paylink_engine.providers.base import Notifier, WorkspaceMirror
from paylink_engine.providers.users import UserDirectory
from paylink_engine.services.state_machine import PaymentRequestStatus, TransactionKind

logger = logging.getLogger(__name__)


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


class LifecycleHooks:
    """Wires the notifier and the workspace mirror to domain events."""

    def __init__(
        self,
        users: UserDirectory,
        notifier: Notifier | None = None,
        mirror: WorkspaceMirror | None = None,
    ):
        self.users = users
        self.notifier = notifier
        self.mirror = mirror

    def register(self, emitter: AsyncEventEmitter) -> None:
        if self.notifier is not None:
            emitter.on(PaymentRequestActivated, self.email_payment_request)
            emitter.on(PaymentReceived, self.email_payment_received)
        if self.mirror is not None:
            emitter.on(PaymentRequestCreated, self.mirror_created)
            emitter.on(PaymentRequestActivated, self.mirror_activated)
            emitter.on(PaymentReceived, self.mirror_payment_received)
            emitter.on(
                [PaymentRequestCancelled, PaymentRequestRefunded, PaymentRequestFailed],
                self.mirror_status,
            )

    # Email

    async def email_payment_request(self, event: PaymentRequestActivated) -> None:
        if not event.recipient_email:
            logger.debug("No recipient email for %s", event.payment_request_id)
            return
        await self.notifier.send_payment_request_email(
            recipient=event.recipient_email,
            amount=event.amount,
            currency=event.currency,
            description=event.description,
            link=event.payment_link,
            refundable=TransactionKind(event.transaction_kind).refundable,
            recipient_name=event.recipient_name,
        )

    async def email_payment_received(self, event: PaymentReceived) -> None:
        owner = await self.users.get_user(event.metadata.user_id)
        if owner is None or not owner.email:
            return
        await self.notifier.send_payment_received_email(
            recipient=owner.email,
            amount=event.amount,
            currency=event.currency,
            description=event.description,
            payment_id=event.payment_request_id,
            proof_ref=event.proof_ref,
        )

    # Workspace mirror

    async def mirror_created(self, event: PaymentRequestCreated) -> None:
        await self._upsert(
            event,
            {
                "status": event.status,
                "amount": event.amount,
                "currency": event.currency,
                "network": event.network,
                "recipient_email": event.recipient_email,
                "recipient_name": event.recipient_name,
                "description": event.description,
                "ai_prompt": event.ai_prompt,
                "transaction_kind": event.transaction_kind,
                "schedule_kind": event.schedule_kind,
                "scheduled_for": _iso(event.scheduled_for),
                "payment_link": event.payment_link,
            },
        )

    async def mirror_activated(self, event: PaymentRequestActivated) -> None:
        await self._upsert(
            event,
            {
                "status": PaymentRequestStatus.PROCESSING.value,
                "payment_link": event.payment_link,
            },
        )

    async def mirror_payment_received(self, event: PaymentReceived) -> None:
        await self._upsert(
            event,
            {
                "status": PaymentRequestStatus.PAYMENT_RECEIVED.value,
                "proof_ref": event.proof_ref,
                "refund_due_at": _iso(event.refund_due_at),
            },
        )

    async def mirror_status(self, event: PaymentRequestEvent) -> None:
        status = {
            PaymentRequestCancelled: PaymentRequestStatus.CANCELLED,
            PaymentRequestRefunded: PaymentRequestStatus.REFUNDED,
            PaymentRequestFailed: PaymentRequestStatus.FAILED,
        }[type(event)]
        await self._upsert(event, {"status": status.value})

    async def _upsert(self, event: PaymentRequestEvent, fields: dict[str, Any]) -> None:
        await self.mirror.upsert_record(event.metadata.user_id, event.payment_request_id, fields)

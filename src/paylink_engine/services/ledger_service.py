"""Ledger Service - append-only record of settled money movements.

Entries are posted inside the caller's unit of work, so a ledger line
commits together with the status change that produced it. Idempotency
is enforced by the unique ``idempotency_key``; corrections are new
entries, never updates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paylink_engine.models import LedgerEntry


class LedgerDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    REFUND = "refund"


@dataclass(frozen=True)
class PostResult:
    """Result of a ledger posting.

    Check ``is_new`` before triggering anything downstream. ``is_new=False``
    means the key was already posted and the existing entry was returned.
    """

    entry_id: str
    is_new: bool
    direction: str

    @property
    def was_duplicate(self) -> bool:
        return not self.is_new


class LedgerService:
    """Append-only ledger posting service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def post_entry(
        self,
        *,
        user_id: str,
        idempotency_key: str,
        direction: LedgerDirection | str,
        amount: Decimal,
        currency: str,
        network: str,
        from_address: str | None = None,
        to_address: str | None = None,
        tx_ref: str | None = None,
        description: str | None = None,
        payment_request_id: str | None = None,
        outgoing_payment_id: str | None = None,
        completed_at: datetime | None = None,
    ) -> PostResult:
        """Append a ledger entry unless ``idempotency_key`` was already posted."""
        if amount <= 0:
            raise ValueError("Amount must be positive")
        direction = LedgerDirection(direction)

        existing = (
            await self.db.execute(
                select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
            )
        ).scalar_one_or_none()
        if existing is not None:
            return PostResult(
                entry_id=existing.ledger_entry_id,
                is_new=False,
                direction=existing.direction,
            )

        entry = LedgerEntry(
            user_id=user_id,
            direction=direction.value,
            amount=amount,
            currency=currency,
            network=network,
            from_address=from_address,
            to_address=to_address,
            tx_ref=tx_ref,
            description=description,
            payment_request_id=payment_request_id,
            outgoing_payment_id=outgoing_payment_id,
            idempotency_key=idempotency_key,
            completed_at=completed_at,
        )
        self.db.add(entry)
        await self.db.flush()
        return PostResult(entry_id=entry.ledger_entry_id, is_new=True, direction=direction.value)

    async def list_entries(
        self,
        user_id: str,
        *,
        direction: LedgerDirection | str | None = None,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if direction is not None:
            stmt = stmt.where(LedgerEntry.direction == LedgerDirection(direction).value)
        stmt = stmt.order_by(LedgerEntry.created_at.desc()).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def entries_for_request(self, payment_request_id: str) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.payment_request_id == payment_request_id)
            .order_by(LedgerEntry.created_at)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def totals(self, user_id: str) -> dict[str, Decimal]:
        """Sum of amounts per direction for a user."""
        stmt = (
            select(LedgerEntry.direction, func.sum(LedgerEntry.amount))
            .where(LedgerEntry.user_id == user_id)
            .group_by(LedgerEntry.direction)
        )
        rows = (await self.db.execute(stmt)).all()
        return {direction: Decimal(total or 0) for direction, total in rows}

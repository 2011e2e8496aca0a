"""In-memory payment route registry.

Maps a public payment id to what the inbound proof handler needs to build
verification requirements, without a database round trip. The registry is
a derived cache: durability lives in payment_request rows and the whole
map can be rebuilt from storage at startup.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.models import AppUser, PaymentRequest
from paylink_engine.services.state_machine import PaymentRequestStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteRecord:
    """Routing information for one live payment link."""

    payment_id: str
    user_id: str
    pay_to: str | None
    amount: Decimal
    currency: str
    network: str
    description: str | None
    transaction_kind: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_request(cls, request: PaymentRequest, pay_to: str | None) -> RouteRecord:
        return cls(
            payment_id=request.payment_request_id,
            user_id=request.user_id,
            pay_to=pay_to,
            amount=Decimal(request.amount),
            currency=request.currency,
            network=request.network,
            description=request.description,
            transaction_kind=request.transaction_kind,
            created_at=request.created_at,
        )


class RouteRegistry:
    """Concurrent map of payment id → RouteRecord.

    Every mutation is a single insert or remove under a lock, so concurrent
    workers never observe a half-applied update.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory
        self._routes: dict[str, RouteRecord] = {}
        self._lock = threading.Lock()

    def register(self, payment_id: str, route: RouteRecord) -> None:
        """Insert or overwrite the route for a payment id."""
        with self._lock:
            self._routes[payment_id] = route
        logger.debug("Route registered for %s", payment_id)

    def lookup(self, payment_id: str) -> RouteRecord | None:
        """Return the route, or None when the link is unknown or expired."""
        with self._lock:
            return self._routes.get(payment_id)

    def deregister(self, payment_id: str) -> None:
        """Remove the route. Unknown ids are ignored."""
        with self._lock:
            removed = self._routes.pop(payment_id, None)
        if removed is not None:
            logger.debug("Route removed for %s", payment_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)

    def __contains__(self, payment_id: object) -> bool:
        with self._lock:
            return payment_id in self._routes

    def payment_ids(self) -> list[str]:
        with self._lock:
            return list(self._routes)

    async def resolve(self, payment_id: str) -> RouteRecord | None:
        """Look up a route, reading through to storage on a miss.

        Another process (the CLI's activation cycle, for one) may have
        moved a request to processing; its route is loaded and registered
        here. Without a session factory this is a plain lookup.
        """
        route = self.lookup(payment_id)
        if route is not None or self._session_factory is None:
            return route

        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRequest, AppUser.wallet_address)
                .outerjoin(AppUser, AppUser.user_id == PaymentRequest.user_id)
                .where(
                    PaymentRequest.payment_request_id == payment_id,
                    PaymentRequest.status.in_(self._awaiting_statuses()),
                )
            )
            row = result.first()
        if row is None:
            return None

        request, wallet_address = row
        route = RouteRecord.from_request(request, wallet_address)
        with self._lock:
            route = self._routes.setdefault(payment_id, route)
        logger.info("Route for %s loaded from storage", payment_id)
        return route

    @staticmethod
    def _awaiting_statuses() -> list[str]:
        return [str(s.value) for s in PaymentRequestStateMachine.AWAITING_PAYMENT]

    async def rebuild_from_storage(self) -> int:
        """Reload every awaiting-payment request into the registry.

        Called once at process start. Anything held in memory before is
        discarded. Returns the number of active routes.
        """
        if self._session_factory is None:
            raise RuntimeError("RouteRegistry has no session factory to rebuild from")

        awaiting = self._awaiting_statuses()
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentRequest, AppUser.wallet_address)
                .outerjoin(AppUser, AppUser.user_id == PaymentRequest.user_id)
                .where(PaymentRequest.status.in_(awaiting))
            )
            rows = result.all()

        routes = {
            request.payment_request_id: RouteRecord.from_request(request, wallet_address)
            for request, wallet_address in rows
        }
        with self._lock:
            self._routes = routes

        logger.info("Loaded %d active payment routes from storage", len(routes))
        return len(routes)

"""API route modules."""

from paylink_engine.api.routes.health import router as health_router
from paylink_engine.api.routes.ledger import router as ledger_router
from paylink_engine.api.routes.outgoing_payments import router as outgoing_payments_router
from paylink_engine.api.routes.pay import router as pay_router
from paylink_engine.api.routes.payment_requests import router as payment_requests_router
from paylink_engine.api.routes.scheduler import router as scheduler_router

__all__ = [
    "health_router",
    "ledger_router",
    "outgoing_payments_router",
    "pay_router",
    "payment_requests_router",
    "scheduler_router",
]

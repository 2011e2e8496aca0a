"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paylink_engine.api.routes import (
    health_router,
    ledger_router,
    outgoing_payments_router,
    pay_router,
    payment_requests_router,
    scheduler_router,
)
from paylink_engine.config import get_settings
from paylink_engine.database import create_tables, init_db
from paylink_engine.engine import PaylinkEngine
from paylink_engine.errors import (
    CannotCancelPaidRequestError,
    InvalidTransitionError,
    NoWalletError,
    PaymentRequestNotFoundError,
    SendFailureError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    engine: PaylinkEngine | None = getattr(app.state, "engine", None)
    if engine is None:
        db_engine, session_factory = init_db()
        await create_tables(db_engine)
        engine = PaylinkEngine.from_settings(get_settings(), session_factory)
        app.state.engine = engine
    await engine.startup()
    yield
    await engine.shutdown()


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def create_app(engine: PaylinkEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass an engine to serve a pre-built one (tests); otherwise it is built
    from settings at startup.
    """
    app = FastAPI(
        title="Paylink Engine API",
        description="Payment request lifecycle with x402 payment links",
        version="0.1.0",
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-PAYMENT-RESPONSE"],
    )

    # Exception handlers
    @app.exception_handler(PaymentRequestNotFoundError)
    async def not_found_handler(request: Request, exc: PaymentRequestNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "NOT_FOUND")

    @app.exception_handler(CannotCancelPaidRequestError)
    async def paid_handler(request: Request, exc: CannotCancelPaidRequestError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "ALREADY_PAID")

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "INVALID_TRANSITION")

    @app.exception_handler(NoWalletError)
    async def no_wallet_handler(request: Request, exc: NoWalletError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "NO_WALLET")

    @app.exception_handler(SendFailureError)
    async def send_failure_handler(request: Request, exc: SendFailureError) -> JSONResponse:
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc), "SEND_FAILED")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(pay_router)
    app.include_router(payment_requests_router, prefix="/api/v1")
    app.include_router(outgoing_payments_router, prefix="/api/v1")
    app.include_router(ledger_router, prefix="/api/v1")
    app.include_router(scheduler_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()

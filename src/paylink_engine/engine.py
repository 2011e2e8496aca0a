"""Engine facade - one place where the lifecycle engine is wired together.

Usage:
    engine = PaylinkEngine.from_settings(settings, session_factory)
    await engine.startup()

    request = await engine.payment_requests.create(spec)
    outcome = await engine.gateway.handle_inbound_proof(request_id, proof)

    await engine.shutdown()

Everything is constructor-injected: tests build the engine with stub
collaborators and a fixed clock, production builds it from Settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylink_engine.config import Settings
from paylink_engine.events import AsyncEventEmitter
from paylink_engine.models import utcnow
from paylink_engine.providers import (
    FacilitatorVerifier,
    LoggingNotifier,
    NotionWorkspaceMirror,
    Notifier,
    PaymentVerifier,
    SmtpNotifier,
    TransferExecutor,
    UnconfiguredTransferExecutor,
    UserDirectory,
    WalletDirectory,
    WorkspaceMirror,
)
from paylink_engine.services.lifecycle_hooks import LifecycleHooks
from paylink_engine.services.outgoing_payments import OutgoingPaymentService
from paylink_engine.services.payment_requests import PaymentRequestService
from paylink_engine.services.route_registry import RouteRegistry
from paylink_engine.services.scheduler import SchedulingService
from paylink_engine.services.verification_gateway import VerificationGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine configuration.

    Attributes:
        base_url: Public base URL; links are ``<base_url>/pay/<id>``.
        verification_timeout_seconds: Upper bound on verify + settle. Default 5.
        optimistic_settle_on_timeout: If True, a proof whose verification
            timed out is accepted. Default True.
        max_payment_timeout_seconds: ``maxTimeoutSeconds`` advertised to payers.
        scheduler_enabled: If True, ``startup`` starts the background cycles.
        background_events: If True, lifecycle handlers run as background
            tasks and never delay the caller.
        assets: Currency code -> token contract address for requirements.
    """

    base_url: str
    verification_timeout_seconds: float = 5.0
    optimistic_settle_on_timeout: bool = True
    max_payment_timeout_seconds: int = 300
    scheduler_enabled: bool = True
    activation_interval_seconds: float = 300
    outgoing_interval_seconds: float = 60
    refund_interval_seconds: float = 3600
    background_events: bool = True
    assets: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.base_url:
            raise ValueError("base_url is required")
        if self.verification_timeout_seconds <= 0:
            raise ValueError("verification_timeout_seconds must be positive")
        if self.max_payment_timeout_seconds < 1:
            raise ValueError("max_payment_timeout_seconds must be at least 1")
        for name in (
            "activation_interval_seconds",
            "outgoing_interval_seconds",
            "refund_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        return cls(
            base_url=settings.base_url,
            verification_timeout_seconds=settings.verification_timeout_seconds,
            optimistic_settle_on_timeout=settings.optimistic_settle_on_timeout,
            max_payment_timeout_seconds=settings.max_payment_timeout_seconds,
            scheduler_enabled=settings.scheduler_enabled,
            activation_interval_seconds=settings.activation_interval_seconds,
            outgoing_interval_seconds=settings.outgoing_interval_seconds,
            refund_interval_seconds=settings.refund_interval_seconds,
        )


class PaylinkEngine:
    """Owns the registry, services, gateway and scheduler."""

    def __init__(
        self,
        config: EngineConfig,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        verifier: PaymentVerifier,
        transfer_executor: TransferExecutor,
        notifier: Notifier | None = None,
        mirror: WorkspaceMirror | None = None,
        wallets: WalletDirectory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.session_factory = session_factory
        self.verifier = verifier
        self.transfer_executor = transfer_executor
        self.notifier = notifier
        self.mirror = mirror

        self.users = UserDirectory(session_factory)
        self.wallets = wallets or self.users
        self.registry = RouteRegistry(session_factory)
        self.emitter = AsyncEventEmitter(background=config.background_events)

        self.payment_requests = PaymentRequestService(
            session_factory,
            self.registry,
            self.wallets,
            base_url=config.base_url,
            emitter=self.emitter,
            clock=clock,
        )
        self.outgoing_payments = OutgoingPaymentService(
            session_factory,
            transfer_executor,
            self.payment_requests,
            emitter=self.emitter,
            clock=clock,
        )
        self.gateway = VerificationGateway(
            self.registry,
            self.wallets,
            verifier,
            self.payment_requests,
            base_url=config.base_url,
            timeout_seconds=config.verification_timeout_seconds,
            optimistic_settle_on_timeout=config.optimistic_settle_on_timeout,
            max_payment_timeout_seconds=config.max_payment_timeout_seconds,
            assets=config.assets,
        )
        self.scheduler = SchedulingService(
            session_factory,
            self.payment_requests,
            self.outgoing_payments,
            activation_interval_seconds=config.activation_interval_seconds,
            outgoing_interval_seconds=config.outgoing_interval_seconds,
            refund_interval_seconds=config.refund_interval_seconds,
            clock=clock,
        )
        self.hooks = LifecycleHooks(self.users, notifier=notifier, mirror=mirror)
        self.hooks.register(self.emitter)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        transfer_executor: TransferExecutor | None = None,
    ) -> PaylinkEngine:
        """Build the engine with the production collaborators.

        Without a ``transfer_executor`` every outgoing send and refund fails
        with "no transfer executor configured".
        """
        users = UserDirectory(session_factory)
        if settings.smtp_host:
            notifier: Notifier = SmtpNotifier(
                settings.smtp_host,
                settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                from_email=settings.smtp_from_email,
            )
        else:
            logger.warning("SMTP_HOST not set; emails will only be logged")
            notifier = LoggingNotifier()

        return cls(
            EngineConfig.from_settings(settings),
            session_factory,
            verifier=FacilitatorVerifier(settings.facilitator_url),
            transfer_executor=transfer_executor or UnconfiguredTransferExecutor(),
            notifier=notifier,
            mirror=NotionWorkspaceMirror(
                users,
                api_url=settings.notion_api_url,
                notion_version=settings.notion_version,
            ),
            wallets=users,
        )

    async def startup(self) -> None:
        """Rebuild live routes from storage and start the scheduler."""
        count = await self.registry.rebuild_from_storage()
        logger.info("Engine started with %d live payment links", count)
        if self.config.scheduler_enabled:
            self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.emitter.drain(timeout=10)
        for client in (self.verifier, self.mirror):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("Engine stopped")

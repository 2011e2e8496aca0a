"""Inbound payment proof handling for public payment links.

The gateway turns a proof presented at ``/pay/{id}`` into exactly one
outcome value. Outcomes are values, not exceptions, so the HTTP layer
maps each one to a response without guessing.

Verification runs under a timeout. When the verifier is too slow and a
proof was presented, the ``optimistic_settle_on_timeout`` policy decides
whether the payment is recorded anyway (the proof reference is then
synthesized from the proof itself) or the payer gets a timeout.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Union

from paylink_engine.errors import InvalidTransitionError, PaymentRequestNotFoundError
from paylink_engine.models import PaymentRequest
from paylink_engine.providers.base import (
    PaymentVerifier,
    SettleResult,
    VerificationRequirements,
    WalletDirectory,
)
from paylink_engine.services.payment_requests import PaymentRequestService
from paylink_engine.services.route_registry import RouteRecord, RouteRegistry

logger = logging.getLogger(__name__)


def synthesize_proof_ref(proof: str) -> str:
    """Stable reference for a proof that has no settlement hash."""
    return f"x402_{hashlib.sha256(proof.encode()).hexdigest()[:32]}"


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class NotFound:
    payment_id: str
    status_code: int = field(default=404, init=False)


@dataclass(frozen=True)
class PaymentRequired:
    """No proof presented; the payer must pay against ``requirements``."""

    payment_id: str
    requirements: VerificationRequirements
    status_code: int = field(default=402, init=False)


@dataclass(frozen=True)
class Rejected:
    """The proof did not verify or settle. The link stays live."""

    payment_id: str
    reason: str
    requirements: VerificationRequirements | None = None
    status_code: int = field(default=402, init=False)


@dataclass(frozen=True)
class NoWallet:
    """The owner has no receiving address. Not retried automatically."""

    payment_id: str
    user_id: str
    status_code: int = field(default=400, init=False)


@dataclass(frozen=True)
class TimedOut:
    payment_id: str
    timeout_seconds: float
    status_code: int = field(default=504, init=False)


@dataclass(frozen=True)
class Settled:
    """The payment is recorded.

    ``optimistic`` marks a payment accepted after a verification timeout.
    ``duplicate`` marks a proof for a request that was already paid.
    """

    payment_id: str
    request: PaymentRequest
    proof_ref: str
    payer_address: str | None = None
    network: str | None = None
    optimistic: bool = False
    duplicate: bool = False
    status_code: int = field(default=200, init=False)


GatewayOutcome = Union[NotFound, PaymentRequired, Rejected, NoWallet, TimedOut, Settled]


class VerificationGateway:
    """Verifies inbound proofs and records the resulting payment."""

    def __init__(
        self,
        registry: RouteRegistry,
        wallets: WalletDirectory,
        verifier: PaymentVerifier,
        payment_requests: PaymentRequestService,
        *,
        base_url: str,
        timeout_seconds: float = 5.0,
        optimistic_settle_on_timeout: bool = True,
        max_payment_timeout_seconds: int = 300,
        assets: dict[str, str] | None = None,
    ):
        self.registry = registry
        self.wallets = wallets
        self.verifier = verifier
        self.payment_requests = payment_requests
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.optimistic_settle_on_timeout = optimistic_settle_on_timeout
        self.max_payment_timeout_seconds = max_payment_timeout_seconds
        # currency -> token contract address
        self.assets = {k.upper(): v for k, v in (assets or {}).items()}

    def resource_url(self, payment_id: str) -> str:
        return f"{self.base_url}/pay/{payment_id}"

    def build_requirements(self, route: RouteRecord, pay_to: str) -> VerificationRequirements:
        return VerificationRequirements(
            payment_id=route.payment_id,
            amount=route.amount,
            currency=route.currency,
            network=route.network,
            pay_to=pay_to,
            resource=self.resource_url(route.payment_id),
            description=route.description or f"Payment request {route.payment_id}",
            max_timeout_seconds=self.max_payment_timeout_seconds,
            asset=self.assets.get(route.currency.upper(), ""),
        )

    async def handle_inbound_proof(self, payment_id: str, proof: str | None) -> GatewayOutcome:
        """Handle a request to a payment link.

        Args:
            payment_id: The public id from the link
            proof: The ``X-PAYMENT`` header value, if any

        Returns:
            One of NotFound, PaymentRequired, Rejected, NoWallet, TimedOut
            or Settled.
        """
        route = await self.registry.resolve(payment_id)
        if route is None:
            return NotFound(payment_id)

        pay_to = await self.wallets.resolve_receiving_address(route.user_id)
        if not pay_to:
            logger.error(
                "Payment link %s cannot accept payments: user %s has no wallet",
                payment_id,
                route.user_id,
            )
            return NoWallet(payment_id, route.user_id)

        requirements = self.build_requirements(route, pay_to)
        if not proof:
            return PaymentRequired(payment_id, requirements)

        try:
            result = await asyncio.wait_for(
                self._verify_and_settle(proof, requirements),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, TimeoutError):
            if not self.optimistic_settle_on_timeout:
                logger.warning(
                    "Verification of %s timed out after %ss", payment_id, self.timeout_seconds
                )
                return TimedOut(payment_id, self.timeout_seconds)
            logger.warning(
                "Verification of %s timed out after %ss; accepting proof optimistically",
                payment_id,
                self.timeout_seconds,
            )
            return await self._record(payment_id, proof, None, optimistic=True)
        except Exception as e:
            logger.warning("Verifier error for %s: %s", payment_id, e)
            return Rejected(payment_id, f"verifier_error: {e}", requirements)

        if isinstance(result, str):
            logger.info("Payment proof for %s rejected: %s", payment_id, result)
            return Rejected(payment_id, result, requirements)
        return await self._record(payment_id, proof, result)

    async def _verify_and_settle(
        self, proof: str, requirements: VerificationRequirements
    ) -> SettleResult | str:
        """Verify then settle. Returns the rejection reason on failure."""
        verified = await self.verifier.verify(proof, requirements)
        if not verified.valid:
            return verified.reason or "invalid_payment"

        settled = await self.verifier.settle(proof, requirements)
        if not settled.success:
            return settled.reason or "settlement_failed"
        if settled.payer_address is None and verified.payer:
            settled = SettleResult(
                success=True,
                settlement_ref=settled.settlement_ref,
                payer_address=verified.payer,
                network=settled.network,
                reason=settled.reason,
                raw=settled.raw,
            )
        return settled

    async def _record(
        self,
        payment_id: str,
        proof: str,
        settlement: SettleResult | None,
        *,
        optimistic: bool = False,
    ) -> GatewayOutcome:
        proof_ref = (settlement and settlement.settlement_ref) or synthesize_proof_ref(proof)
        payer = settlement.payer_address if settlement else None

        try:
            result = await self.payment_requests.mark_paid(payment_id, proof_ref, payer)
        except PaymentRequestNotFoundError:
            self.registry.deregister(payment_id)
            return NotFound(payment_id)
        except InvalidTransitionError as e:
            # Lost a race with cancel or fail.
            logger.error("Payment for %s could not be recorded: %s", payment_id, e)
            self.registry.deregister(payment_id)
            return Rejected(payment_id, "payment request is no longer accepting payments")

        request = result.request
        return Settled(
            payment_id=payment_id,
            request=request,
            proof_ref=request.proof_ref or proof_ref,
            payer_address=request.payer_address,
            network=(settlement.network if settlement else None) or request.network,
            optimistic=optimistic,
            duplicate=result.was_duplicate,
        )

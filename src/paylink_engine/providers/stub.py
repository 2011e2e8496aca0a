"""Stub collaborators for local development and testing.

Replace with the x402 facilitator client and a real wallet signer for
production.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from decimal import Decimal
from typing import Any

from paylink_engine.providers.base import (
    SettleResult,
    TransferResult,
    VerificationRequirements,
    VerifyResult,
)


class StubVerifier:
    """Stub payment verifier.

    Every proof is accepted unless it was marked invalid with
    ``simulate_rejection``. ``delay_seconds`` makes each call sleep first,
    which is how slow facilitators are simulated.
    """

    def __init__(
        self,
        *,
        payer_address: str = "0xStubPayer000000000000000000000000000000",
        delay_seconds: float = 0.0,
        fail_with: Exception | None = None,
    ):
        self.payer_address = payer_address
        self.delay_seconds = delay_seconds
        self.fail_with = fail_with
        self._rejections: dict[str, str] = {}
        self.verify_calls: list[tuple[str, VerificationRequirements]] = []
        self.settle_calls: list[tuple[str, VerificationRequirements]] = []

    def simulate_rejection(self, proof: str, reason: str = "invalid_signature") -> None:
        """Make verification of ``proof`` fail with ``reason``."""
        self._rejections[proof] = reason

    async def _pause(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with

    async def verify(self, proof: str, requirements: VerificationRequirements) -> VerifyResult:
        self.verify_calls.append((proof, requirements))
        await self._pause()
        if proof in self._rejections:
            return VerifyResult(valid=False, reason=self._rejections[proof])
        return VerifyResult(valid=True, payer=self.payer_address)

    async def settle(self, proof: str, requirements: VerificationRequirements) -> SettleResult:
        self.settle_calls.append((proof, requirements))
        await self._pause()
        if proof in self._rejections:
            return SettleResult(success=False, reason=self._rejections[proof])
        digest = hashlib.sha256(proof.encode()).hexdigest()
        return SettleResult(
            success=True,
            settlement_ref=f"0x{digest}",
            payer_address=self.payer_address,
            network=requirements.network,
        )


class StubTransferExecutor:
    """Stub send primitive.

    Returns a fake transaction hash for every send. Addresses registered
    with ``simulate_failure`` fail instead.
    """

    def __init__(self) -> None:
        self._failures: dict[str, str] = {}
        self.sent: list[dict[str, Any]] = []

    def simulate_failure(self, to_address: str, error: str = "insufficient funds") -> None:
        self._failures[to_address] = error

    async def send(
        self,
        *,
        user_id: str,
        to_address: str,
        amount: Decimal,
        currency: str,
        network: str,
    ) -> TransferResult:
        if to_address in self._failures:
            return TransferResult(success=False, error=self._failures[to_address])

        tx_hash = f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}"
        self.sent.append(
            {
                "user_id": user_id,
                "to_address": to_address,
                "amount": amount,
                "currency": currency,
                "network": network,
                "tx_hash": tx_hash,
            }
        )
        return TransferResult(success=True, tx_hash=tx_hash)

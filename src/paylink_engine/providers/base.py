"""Protocols and value types for the engine's external collaborators.

The lifecycle engine talks to the outside world only through these
protocols:

- PaymentVerifier: checks and settles an x402 payment proof
- WalletDirectory: resolves a user's receiving address
- TransferExecutor: sends funds out of a user's wallet
- Notifier: emails payers and owners
- WorkspaceMirror: keeps an external workspace record per request
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol, runtime_checkable

X402_VERSION = 1

# Token decimals used to express amounts in atomic units.
TOKEN_DECIMALS: dict[str, int] = {
    "USDC": 6,
    "USDT": 6,
}
DEFAULT_TOKEN_DECIMALS = 18


def to_atomic_units(amount: Decimal, currency: str) -> str:
    """Express a decimal amount in the token's smallest unit."""
    decimals = TOKEN_DECIMALS.get(currency.upper(), DEFAULT_TOKEN_DECIMALS)
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).quantize(
        Decimal(1), rounding=ROUND_DOWN
    )
    return str(int(scaled))


@dataclass(frozen=True)
class VerificationRequirements:
    """What a payer must satisfy for one payment link."""

    payment_id: str
    amount: Decimal
    currency: str
    network: str
    pay_to: str
    resource: str
    description: str = ""
    max_timeout_seconds: int = 300
    asset: str = ""
    scheme: str = "exact"
    mime_type: str = "text/html"

    @property
    def max_amount_required(self) -> str:
        return to_atomic_units(self.amount, self.currency)

    def to_x402(self) -> dict[str, Any]:
        """Render as an x402 ``paymentRequirements`` object."""
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": {
                "paymentId": self.payment_id,
                "currency": self.currency,
                "amount": str(self.amount),
            },
        }


@dataclass(frozen=True)
class VerifyResult:
    """Result of verifying a payment proof."""

    valid: bool
    reason: str | None = None
    payer: str | None = None


@dataclass(frozen=True)
class SettleResult:
    """Result of settling a payment proof on its network."""

    success: bool
    settlement_ref: str | None = None
    payer_address: str | None = None
    network: str | None = None
    reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferResult:
    """Result of sending funds out of a user's wallet."""

    success: bool
    tx_hash: str | None = None
    error: str | None = None


@runtime_checkable
class PaymentVerifier(Protocol):
    """Validates and settles cryptographic payment proofs.

    Implementations may be slow or flaky. Callers bound them with a
    timeout and treat exceptions as rejections.
    """

    async def verify(self, proof: str, requirements: VerificationRequirements) -> VerifyResult:
        ...

    async def settle(self, proof: str, requirements: VerificationRequirements) -> SettleResult:
        ...


@runtime_checkable
class WalletDirectory(Protocol):
    """Resolves where a user receives funds."""

    async def resolve_receiving_address(self, user_id: str) -> str | None:
        ...


@runtime_checkable
class TransferExecutor(Protocol):
    """Send primitive used by outgoing payments and refunds."""

    async def send(
        self,
        *,
        user_id: str,
        to_address: str,
        amount: Decimal,
        currency: str,
        network: str,
    ) -> TransferResult:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Best-effort email notifications."""

    async def send_payment_request_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        link: str,
        refundable: bool,
        recipient_name: str | None = None,
    ) -> None:
        ...

    async def send_payment_received_email(
        self,
        *,
        recipient: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        payment_id: str,
        proof_ref: str | None,
    ) -> None:
        ...


@runtime_checkable
class WorkspaceMirror(Protocol):
    """External record sync keyed by the public request id.

    ``upsert_record`` finds an existing record for the request id and
    updates it, or creates one.
    """

    async def upsert_record(
        self, user_id: str, request_id: str, fields: dict[str, Any]
    ) -> None:
        ...

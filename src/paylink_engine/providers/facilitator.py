"""x402 facilitator client.

Payment proofs arrive as the base64-encoded JSON ``X-PAYMENT`` header.
The facilitator exposes ``POST /verify`` and ``POST /settle``; both take
the decoded payment payload together with the payment requirements.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

import httpx

from paylink_engine.providers.base import (
    X402_VERSION,
    SettleResult,
    VerificationRequirements,
    VerifyResult,
)

logger = logging.getLogger(__name__)


class InvalidPaymentHeader(ValueError):
    """The X-PAYMENT header is not base64-encoded JSON."""


def decode_payment_header(header: str) -> dict[str, Any]:
    """Decode an ``X-PAYMENT`` header into the payment payload."""
    try:
        raw = base64.b64decode(header, validate=True)
        payload = json.loads(raw)
    except (binascii.Error, ValueError) as e:
        raise InvalidPaymentHeader(str(e)) from e
    if not isinstance(payload, dict):
        raise InvalidPaymentHeader("payment payload must be a JSON object")
    return payload


def encode_payment_header(payload: dict[str, Any]) -> str:
    """Encode a payment payload the way payer clients send it."""
    return base64.b64encode(json.dumps(payload).encode()).decode()


def encode_payment_response(result: SettleResult) -> str:
    """Build the ``X-PAYMENT-RESPONSE`` header for a settled payment."""
    body = {
        "success": result.success,
        "transaction": result.settlement_ref or "",
        "network": result.network or "",
        "payer": result.payer_address,
    }
    return base64.b64encode(json.dumps(body).encode()).decode()


class FacilitatorVerifier:
    """PaymentVerifier backed by an x402 facilitator over HTTP.

    Non-2xx responses become failed results. Timeouts are raised as
    ``TimeoutError`` so the caller can apply its timeout policy; other
    transport errors propagate unchanged.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _body(self, proof: str, requirements: VerificationRequirements) -> dict[str, Any]:
        return {
            "x402Version": X402_VERSION,
            "paymentPayload": decode_payment_header(proof),
            "paymentRequirements": requirements.to_x402(),
        }

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(f"{self.base_url}{path}", json=body)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"facilitator {path} timed out") from e

    async def verify(self, proof: str, requirements: VerificationRequirements) -> VerifyResult:
        try:
            body = self._body(proof, requirements)
        except InvalidPaymentHeader as e:
            return VerifyResult(valid=False, reason=f"invalid_payment_header: {e}")

        response = await self._post("/verify", body)
        if response.status_code >= 300:
            logger.warning(
                "Facilitator verify returned %s for %s",
                response.status_code,
                requirements.payment_id,
            )
            return VerifyResult(valid=False, reason=f"facilitator_http_{response.status_code}")

        data = response.json()
        return VerifyResult(
            valid=bool(data.get("isValid")),
            reason=data.get("invalidReason"),
            payer=data.get("payer"),
        )

    async def settle(self, proof: str, requirements: VerificationRequirements) -> SettleResult:
        try:
            body = self._body(proof, requirements)
        except InvalidPaymentHeader as e:
            return SettleResult(success=False, reason=f"invalid_payment_header: {e}")

        response = await self._post("/settle", body)
        if response.status_code >= 300:
            logger.warning(
                "Facilitator settle returned %s for %s",
                response.status_code,
                requirements.payment_id,
            )
            return SettleResult(success=False, reason=f"facilitator_http_{response.status_code}")

        data = response.json()
        return SettleResult(
            success=bool(data.get("success")),
            settlement_ref=data.get("transaction") or None,
            payer_address=data.get("payer"),
            network=data.get("network"),
            reason=data.get("errorReason"),
            raw=data,
        )

"""Public payment link endpoint (x402).

A payer first requests the link without proof and receives
``402 Payment Required`` with the requirements. The payer then repeats
the request with an ``X-PAYMENT`` header carrying the signed payment.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Header, Path, status
from fastapi.responses import JSONResponse

from paylink_engine.api.dependencies import Engine
from paylink_engine.api.schemas import PaymentSettledResponse
from paylink_engine.providers.base import X402_VERSION, SettleResult
from paylink_engine.providers.facilitator import encode_payment_response
from paylink_engine.services.verification_gateway import (
    GatewayOutcome,
    NotFound,
    NoWallet,
    PaymentRequired,
    Rejected,
    Settled,
    TimedOut,
)

router = APIRouter(tags=["pay"])


def _x402_body(error: str, accepts: list[dict[str, Any]]) -> dict[str, Any]:
    return {"x402Version": X402_VERSION, "error": error, "accepts": accepts}


def outcome_response(outcome: GatewayOutcome) -> JSONResponse:
    """Map a gateway outcome to its HTTP response."""
    if isinstance(outcome, NotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": "Payment link not found or expired", "code": "NOT_FOUND"},
        )
    if isinstance(outcome, PaymentRequired):
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=_x402_body("X-PAYMENT header is required", [outcome.requirements.to_x402()]),
        )
    if isinstance(outcome, Rejected):
        accepts = [outcome.requirements.to_x402()] if outcome.requirements else []
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=_x402_body(outcome.reason, accepts),
        )
    if isinstance(outcome, NoWallet):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Payment link owner has no receiving wallet configured",
                "code": "NO_WALLET",
            },
        )
    if isinstance(outcome, TimedOut):
        return JSONResponse(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            content={"detail": "Payment verification timed out", "code": "VERIFICATION_TIMEOUT"},
        )
    if isinstance(outcome, Settled):
        body = PaymentSettledResponse(
            payment_id=outcome.payment_id,
            status=outcome.request.status,
            proof_ref=outcome.proof_ref,
            payer=outcome.payer_address,
            network=outcome.network,
            optimistic=outcome.optimistic,
            duplicate=outcome.duplicate,
        )
        header = encode_payment_response(
            SettleResult(
                success=True,
                settlement_ref=outcome.proof_ref,
                payer_address=outcome.payer_address,
                network=outcome.network,
            )
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=body.model_dump(mode="json"),
            headers={"X-PAYMENT-RESPONSE": header},
        )
    raise TypeError(f"Unhandled gateway outcome {outcome!r}")


@router.api_route("/pay/{payment_id}", methods=["GET", "POST"])
async def pay(
    engine: Engine,
    payment_id: Annotated[str, Path()],
    x_payment: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Present a payment proof for a payment link."""
    outcome = await engine.gateway.handle_inbound_proof(payment_id, x_payment)
    return outcome_response(outcome)

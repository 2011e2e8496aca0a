"""Payment request API endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Query, status

from paylink_engine.api.dependencies import Engine, UserId
from paylink_engine.api.schemas import (
    ErrorResponse,
    PaymentRequestCreate,
    PaymentRequestListResponse,
    PaymentRequestResponse,
    PaymentRequestStatsResponse,
    StatusStats,
)
from paylink_engine.engine import PaylinkEngine
from paylink_engine.models import PaymentRequest
from paylink_engine.services.payment_requests import PaymentRequestSpec
from paylink_engine.services.state_machine import PaymentRequestStatus

router = APIRouter(prefix="/payment-requests", tags=["payment-requests"])


async def _owned(engine: PaylinkEngine, user_id: str, payment_request_id: str) -> PaymentRequest:
    request = await engine.payment_requests.get(payment_request_id)
    if request.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Payment request {payment_request_id} not found",
        )
    return request


@router.post(
    "",
    response_model=PaymentRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_payment_request(
    engine: Engine,
    user_id: UserId,
    payload: PaymentRequestCreate,
) -> PaymentRequestResponse:
    """Create a payment request; immediate ones go live at once."""
    try:
        spec = PaymentRequestSpec(user_id=user_id, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    request = await engine.payment_requests.create(spec)
    return PaymentRequestResponse.model_validate(request)


@router.get("", response_model=PaymentRequestListResponse)
async def list_payment_requests(
    engine: Engine,
    user_id: UserId,
    status_filter: Annotated[PaymentRequestStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> PaymentRequestListResponse:
    requests = await engine.payment_requests.list_for_user(
        user_id, status=status_filter, limit=limit
    )
    return PaymentRequestListResponse(
        items=[PaymentRequestResponse.model_validate(r) for r in requests],
        total=len(requests),
    )


@router.get("/stats", response_model=PaymentRequestStatsResponse)
async def payment_request_stats(
    engine: Engine,
    user_id: UserId,
) -> PaymentRequestStatsResponse:
    """Count and total amount per status for the caller."""
    stats = await engine.payment_requests.get_stats(user_id)
    return PaymentRequestStatsResponse(
        by_status={k: StatusStats(**v) for k, v in stats.items()},
        total=sum(v["count"] for v in stats.values()),
    )


@router.get(
    "/{payment_request_id}",
    response_model=PaymentRequestResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payment_request(
    engine: Engine,
    user_id: UserId,
    payment_request_id: Annotated[str, Path()],
) -> PaymentRequestResponse:
    request = await _owned(engine, user_id, payment_request_id)
    return PaymentRequestResponse.model_validate(request)


@router.post(
    "/{payment_request_id}/cancel",
    response_model=PaymentRequestResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_payment_request(
    engine: Engine,
    user_id: UserId,
    payment_request_id: Annotated[str, Path()],
) -> PaymentRequestResponse:
    """Cancel an unpaid request. Paid requests answer 409."""
    await _owned(engine, user_id, payment_request_id)
    request = await engine.payment_requests.cancel(payment_request_id)
    return PaymentRequestResponse.model_validate(request)

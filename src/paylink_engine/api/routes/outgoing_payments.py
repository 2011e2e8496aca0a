"""Outgoing payment API endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from paylink_engine.api.dependencies import Engine, UserId
from paylink_engine.api.schemas import (
    ErrorResponse,
    OutgoingPaymentCreate,
    OutgoingPaymentListResponse,
    OutgoingPaymentResponse,
)
from paylink_engine.services.state_machine import OutgoingPaymentStatus

router = APIRouter(prefix="/outgoing-payments", tags=["outgoing-payments"])


@router.post(
    "",
    response_model=OutgoingPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def schedule_outgoing_payment(
    engine: Engine,
    user_id: UserId,
    payload: OutgoingPaymentCreate,
) -> OutgoingPaymentResponse:
    """Schedule a one-off send; it runs on the next outgoing cycle once due."""
    try:
        payment = await engine.outgoing_payments.schedule_payment(
            user_id=user_id, **payload.model_dump()
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return OutgoingPaymentResponse.model_validate(payment)


@router.get("", response_model=OutgoingPaymentListResponse)
async def list_outgoing_payments(
    engine: Engine,
    user_id: UserId,
    status_filter: Annotated[OutgoingPaymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> OutgoingPaymentListResponse:
    payments = await engine.outgoing_payments.list_for_user(
        user_id, status=status_filter, limit=limit
    )
    return OutgoingPaymentListResponse(
        items=[OutgoingPaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )

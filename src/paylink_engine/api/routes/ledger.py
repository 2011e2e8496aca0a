"""Ledger API endpoints (read only)."""

from typing import Annotated

from fastapi import APIRouter, Query

from paylink_engine.api.dependencies import DbSession, UserId
from paylink_engine.api.schemas import LedgerEntryResponse, LedgerListResponse
from paylink_engine.services.ledger_service import LedgerDirection, LedgerService

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("", response_model=LedgerListResponse)
async def list_ledger_entries(
    db: DbSession,
    user_id: UserId,
    direction: Annotated[LedgerDirection | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> LedgerListResponse:
    """The caller's settled money movements, newest first."""
    ledger = LedgerService(db)
    entries = await ledger.list_entries(user_id, direction=direction, limit=limit)
    return LedgerListResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        totals=await ledger.totals(user_id),
    )

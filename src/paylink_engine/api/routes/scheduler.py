"""Scheduler status endpoint."""

from fastapi import APIRouter

from paylink_engine.api.dependencies import Engine
from paylink_engine.api.schemas import SchedulerStatsResponse

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/stats", response_model=SchedulerStatsResponse)
async def scheduler_stats(engine: Engine) -> SchedulerStatsResponse:
    return SchedulerStatsResponse(**await engine.scheduler.get_stats())

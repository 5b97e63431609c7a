"""Round processing endpoint, called by the round results producer."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.dependencies import get_db, get_redis_dep
from pulp_economy.players.dependencies import require_internal_token
from pulp_economy.settlement.schemas import ProcessRoundRequest, ProcessRoundResponse
from pulp_economy.settlement.service import process_round_gamification

router = APIRouter(prefix="/api/v1/pulp", tags=["Settlement"])


@router.post(
    "/rounds/{round_id}/process",
    response_model=ProcessRoundResponse,
    dependencies=[Depends(require_internal_token)],
)
async def process_round(
    round_id: int,
    body: ProcessRoundRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Award round PULPs and settle the window named in round_meta."""
    summary = await process_round_gamification(
        db,
        round_id=round_id,
        event_id=body.event_id,
        event_type=body.event_type,
        round_meta=body.round_meta,
        redis=redis,
    )
    return ProcessRoundResponse(**summary)

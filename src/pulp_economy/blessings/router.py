"""Blessing endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.blessings.schemas import (
    BlessingListResponse,
    BlessingResponse,
    PlaceBlessingRequest,
    PlaceBlessingResponse,
)
from pulp_economy.blessings.service import get_blessings_for_player, place_blessing
from pulp_economy.db.models import Player
from pulp_economy.dependencies import get_db
from pulp_economy.ledger.service import get_balance
from pulp_economy.players.dependencies import get_current_player
from pulp_economy.settlement.service import award_weekly_interaction_bonus

router = APIRouter(prefix="/api/v1/pulp", tags=["Blessings"])


@router.post("/blessings", response_model=PlaceBlessingResponse, status_code=201)
async def create_blessing(
    body: PlaceBlessingRequest,
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Predict the round's top three. The wager is debited immediately."""
    player_id = player.id
    blessing = await place_blessing(
        db,
        player_id=player_id,
        window_id=body.window_id,
        predictions=body.predictions.model_dump(),
        wager=body.wager_amount,
        event_id=body.event_id,
    )
    response = BlessingResponse.model_validate(blessing)
    bonus = await award_weekly_interaction_bonus(db, player_id)
    return PlaceBlessingResponse(
        blessing=response,
        new_balance=await get_balance(db, player_id),
        weekly_bonus_awarded=bonus,
    )


@router.get("/blessings", response_model=BlessingListResponse)
async def list_blessings(
    window_id: int | None = Query(None),
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """The caller's blessings, newest first."""
    blessings = await get_blessings_for_player(db, player.id, window_id)
    return BlessingListResponse(blessings=[BlessingResponse.model_validate(b) for b in blessings])

"""Advantage shop endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.advantages.schemas import (
    CatalogEntryResponse,
    CatalogResponse,
    PlayerAdvantageResponse,
    PlayerAdvantagesResponse,
    PurchaseAdvantageRequest,
    PurchaseAdvantageResponse,
    UseAdvantageRequest,
)
from pulp_economy.advantages.service import (
    get_catalog,
    get_catalog_entry,
    get_player_advantages,
    purchase_advantage,
    use_advantage,
)
from pulp_economy.db.models import Player, PlayerAdvantage
from pulp_economy.dependencies import get_db
from pulp_economy.ledger.service import get_balance
from pulp_economy.players.dependencies import get_current_player
from pulp_economy.settlement.service import award_weekly_interaction_bonus

router = APIRouter(prefix="/api/v1/pulp", tags=["Advantages"])


async def _to_response(db: AsyncSession, instance: PlayerAdvantage) -> PlayerAdvantageResponse:
    entry = await get_catalog_entry(db, instance.advantage_key)
    return PlayerAdvantageResponse(
        id=instance.id,
        advantage_key=instance.advantage_key,
        status=instance.status,
        name=entry.name,
        description=entry.description,
        pulp_cost=entry.pulp_cost,
        purchased_at=instance.purchased_at,
        expires_at=instance.expires_at,
        used_at=instance.used_at,
        round_id=instance.round_id,
        usage_metadata=instance.usage_metadata,
    )


@router.get("/advantages/catalog", response_model=CatalogResponse)
async def advantage_catalog(db: AsyncSession = Depends(get_db)):
    """Everything the shop sells, cheapest first."""
    entries = await get_catalog(db)
    return CatalogResponse(advantages=[CatalogEntryResponse.model_validate(e) for e in entries])


@router.post("/advantages/purchase", response_model=PurchaseAdvantageResponse, status_code=201)
async def buy_advantage(
    body: PurchaseAdvantageRequest,
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Buy an advantage. One active instance per key."""
    player_id = player.id
    instance = await purchase_advantage(db, player_id, body.advantage_key)
    response = await _to_response(db, instance)
    bonus = await award_weekly_interaction_bonus(db, player_id)
    return PurchaseAdvantageResponse(
        advantage=response,
        new_balance=await get_balance(db, player_id),
        weekly_bonus_awarded=bonus,
    )


@router.post("/advantages/use", response_model=PlayerAdvantageResponse)
async def spend_advantage(
    body: UseAdvantageRequest,
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Use an active advantage during a round."""
    player_id = player.id
    instance = await use_advantage(db, player_id, body.advantage_key, body.round_id, body.metadata)
    return await _to_response(db, instance)


@router.get("/advantages", response_model=PlayerAdvantagesResponse)
async def my_advantages(
    status: Literal["active", "expired", "used", "all"] = Query("active"),
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """The caller's advantages by status."""
    advantages = await get_player_advantages(db, player.id, status)
    return PlayerAdvantagesResponse(advantages=[PlayerAdvantageResponse(**a) for a in advantages])

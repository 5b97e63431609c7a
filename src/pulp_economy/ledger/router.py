"""Balance, transaction history and stats endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.db.models import Player
from pulp_economy.dependencies import get_db
from pulp_economy.ledger.schemas import (
    BalanceResponse,
    PlayerStatsResponse,
    TransactionEntry,
    TransactionHistoryResponse,
)
from pulp_economy.ledger.service import get_balance, get_player_stats, get_transaction_history
from pulp_economy.players.dependencies import get_current_player

router = APIRouter(prefix="/api/v1/pulp", tags=["Ledger"])


@router.get("/balance", response_model=BalanceResponse)
async def balance(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """The caller's current PULP balance."""
    return BalanceResponse(player_id=player.id, balance=await get_balance(db, player.id))


@router.get("/transactions", response_model=TransactionHistoryResponse)
async def transactions(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Transaction history, newest first. Page size is capped."""
    limit = min(limit, get_settings().history_max_page_size)
    entries, total = await get_transaction_history(db, player.id, limit, offset)
    return TransactionHistoryResponse(
        transactions=[
            TransactionEntry(
                id=t.id,
                amount=t.amount,
                transaction_type=t.transaction_type,
                description=t.description,
                metadata=t.tx_metadata or {},
                created_at=t.created_at,
            )
            for t in entries
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=PlayerStatsResponse)
async def stats(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Earned, spent and per-type totals for the caller."""
    return PlayerStatsResponse(**await get_player_stats(db, player.id))

"""PULPy window endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.db.models import Player
from pulp_economy.dependencies import get_db, get_redis_dep
from pulp_economy.players.dependencies import get_current_player
from pulp_economy.windows.schemas import WindowResponse
from pulp_economy.windows.service import (
    get_active_window,
    lock_expired_windows,
    open_window,
    serialize_window,
)

router = APIRouter(prefix="/api/v1/pulp", tags=["Windows"])


@router.post("/windows", response_model=WindowResponse, status_code=201)
async def open_pulpy_window(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Open the single PULPy window. 400 with seconds_remaining if one is open."""
    window = await open_window(db, player.id, redis)
    return WindowResponse(**serialize_window(window))


@router.get("/windows/active", response_model=WindowResponse | None)
async def active_window(
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """The current open or locked window, or null. Polled, no identity needed."""
    await lock_expired_windows(db, redis)
    window = await get_active_window(db)
    if window is None:
        return None
    return WindowResponse(**window)

"""FastAPI identity dependencies.

Authentication happens upstream; the gateway forwards the authenticated
player id in the X-Player-Id header.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.database import get_session
from pulp_economy.db.models import Player
from pulp_economy.players.service import get_player_by_id


async def get_current_player(
    x_player_id: str | None = Header(default=None),
    db: AsyncSession = Depends(get_session),
) -> Player:
    """Resolve the calling player. Raises 401/403 on failure."""
    if not x_player_id:
        raise HTTPException(status_code=401, detail="Missing player identity")
    try:
        player_id = int(x_player_id)
    except ValueError as e:
        raise HTTPException(status_code=401, detail="Invalid player identity") from e

    player = await get_player_by_id(db, player_id)
    if player is None:
        raise HTTPException(status_code=401, detail="Player not found")
    if not player.is_active:
        raise HTTPException(status_code=403, detail="Player is deactivated")
    return player


async def require_internal_token(
    x_internal_token: str | None = Header(default=None),
) -> None:
    """Guard for endpoints called by the round results producer."""
    expected = get_settings().internal_api_token
    if expected and x_internal_token != expected:
        raise HTTPException(status_code=403, detail="Invalid internal token")

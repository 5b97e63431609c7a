"""Player account lookups."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.db.models import Player
from pulp_economy.timeutils import utcnow


async def get_player_by_id(db: AsyncSession, player_id: int) -> Player | None:
    """Get an active or inactive player by id."""
    result = await db.execute(
        select(Player)
        .where(Player.id == player_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_player(db: AsyncSession, player_name: str) -> Player:
    """Insert a player with a zero balance. Balance only ever moves through the ledger."""
    player = Player(player_name=player_name.strip(), balance=0, created_at=utcnow())
    db.add(player)
    await db.flush()
    return player

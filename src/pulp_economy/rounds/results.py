"""Read-only access to round results and the participant registry.

Ranks, stroke totals and points are produced upstream by the scoring
pipeline; nothing in this module computes them.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.db.models import Event, EventPlayer, Player, PlayerRound, Round


@dataclass(frozen=True)
class SeasonStanding:
    player_id: int
    player_name: str
    total_points: int
    position: int


async def get_round(db: AsyncSession, round_id: int) -> Round | None:
    result = await db.execute(select(Round).where(Round.id == round_id))
    return result.scalar_one_or_none()


async def get_round_results(db: AsyncSession, round_id: int) -> list[PlayerRound]:
    """All per-player results for a round, best rank first."""
    result = await db.execute(
        select(PlayerRound)
        .where(PlayerRound.round_id == round_id)
        .order_by(PlayerRound.rank.asc(), PlayerRound.id.asc())
    )
    return list(result.scalars().all())


async def get_top_finishers(db: AsyncSession, round_id: int) -> list[str]:
    """The first three finishers by rank. Shorter when fewer are ranked.

    A shared rank keeps the row order the scoring pipeline stored, so a tie
    for 3rd still yields exactly three names.
    """
    result = await db.execute(
        select(PlayerRound.player_name)
        .where(PlayerRound.round_id == round_id, PlayerRound.rank.in_((1, 2, 3)))
        .order_by(PlayerRound.rank.asc(), PlayerRound.id.asc())
        .limit(3)
    )
    return [row[0] for row in result.all()]


async def get_active_season_event(db: AsyncSession) -> Event | None:
    """The newest active event of type 'season'."""
    result = await db.execute(
        select(Event)
        .where(Event.event_type == "season", Event.is_active == True)  # noqa: E712
        .order_by(Event.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_season_standings(db: AsyncSession, event_id: int) -> list[SeasonStanding]:
    """Cumulative season leaderboard by summed final_total, highest first.

    Positions use competition ranking: tied totals share a position and the
    next position skips accordingly (1, 2, 2, 4).
    """
    total = func.coalesce(func.sum(PlayerRound.final_total), 0).label("total_points")
    result = await db.execute(
        select(PlayerRound.player_id, func.max(PlayerRound.player_name), total)
        .where(PlayerRound.event_id == event_id)
        .group_by(PlayerRound.player_id)
        .order_by(total.desc(), PlayerRound.player_id.asc())
    )
    rows = result.all()

    standings: list[SeasonStanding] = []
    previous_total: int | None = None
    position = 0
    for index, (player_id, player_name, points) in enumerate(rows, start=1):
        points = int(points)
        if points != previous_total:
            position = index
            previous_total = points
        standings.append(SeasonStanding(
            player_id=player_id,
            player_name=player_name,
            total_points=points,
            position=position,
        ))
    return standings


async def get_registered_names(db: AsyncSession, event_id: int) -> set[str]:
    """Lower-cased names of the players registered for an event."""
    result = await db.execute(
        select(Player.player_name)
        .join(EventPlayer, EventPlayer.player_id == Player.id)
        .where(EventPlayer.event_id == event_id)
    )
    return {row[0].strip().lower() for row in result.all()}

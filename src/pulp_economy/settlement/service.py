"""Round settlement: participation and performance PULPs, then window settlement.

Round credits are committed before any window work starts, and a window
settlement failure never fails round processing. Credits are recorded once
per round through the round_processing table.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import Settings, get_settings
from pulp_economy.database import atomic
from pulp_economy.db.models import Player, PlayerRound, RoundProcessing
from pulp_economy.errors import EconomyError, NotFoundError, StorageError
from pulp_economy.ledger import service as ledger
from pulp_economy.rounds.results import get_round, get_round_results, get_season_standings
from pulp_economy.settlement.matcher import ExplicitWindowMatcher, WindowMatcher
from pulp_economy.timeutils import get_week_iso, rank_suffix, utcnow
from pulp_economy.windows.service import lock_expired_windows, settle_window

logger = logging.getLogger(__name__)


def compute_streak(
    last_round_date: date | None,
    current_streak: int,
    round_date: date,
    settings: Settings,
) -> tuple[int, bool]:
    """Advance the participation streak. Returns (new_streak, bonus_earned).

    Rounds more than streak_max_gap_days apart restart the streak at 1.
    Reaching streak_length earns the bonus and resets the counter to 0.
    """
    if last_round_date is None:
        return 1, False
    if (round_date - last_round_date).days > settings.streak_max_gap_days:
        return 1, False
    new_streak = (current_streak or 0) + 1
    if new_streak >= settings.streak_length:
        return 0, True
    return new_streak, False


def count_higher_ranked_beaten(
    player_id: int,
    round_rank: int,
    results: Sequence[PlayerRound],
    positions: dict[int, int],
) -> int:
    """Opponents above this player in the season standings who finished below them today."""
    own_position = positions.get(player_id)
    if own_position is None:
        return 0
    count = 0
    for opponent in results:
        if opponent.player_id == player_id:
            continue
        opponent_position = positions.get(opponent.player_id)
        if opponent_position is None:
            continue
        if opponent_position < own_position and opponent.rank > round_rank:
            count += 1
    return count


async def _award_player(
    db: AsyncSession,
    pr: PlayerRound,
    results: Sequence[PlayerRound],
    positions: dict[int, int],
    round_date: date,
    round_id: int,
    event_id: int,
    event_type: str,
    settings: Settings,
) -> dict[str, Any]:
    meta = {"round_id": round_id, "event_id": event_id}
    breakdown: dict[str, int] = {}

    await ledger.credit(
        db, pr.player_id, settings.participation_reward, ledger.TX_ROUND_PARTICIPATION,
        f"Played round on {round_date.isoformat()}", meta,
    )
    breakdown["participation"] = settings.participation_reward

    player_row = await db.execute(
        select(Player.last_round_date, Player.participation_streak).where(Player.id == pr.player_id)
    )
    last_round_date, current_streak = player_row.one()
    new_streak, streak_earned = compute_streak(last_round_date, current_streak, round_date, settings)
    if streak_earned:
        await ledger.credit(
            db, pr.player_id, settings.streak_bonus, ledger.TX_STREAK_BONUS,
            f"{settings.streak_length}-round participation streak bonus",
            {**meta, "streak": settings.streak_length},
        )
        breakdown["streak"] = settings.streak_bonus

    if event_type == "season":
        beaten = count_higher_ranked_beaten(pr.player_id, pr.rank, results, positions)
        if beaten > 0:
            bonus = beaten * settings.beat_higher_ranked_bonus
            await ledger.credit(
                db, pr.player_id, bonus, ledger.TX_BEAT_HIGHER_RANKED,
                f"Beat {beaten} higher-ranked player(s)",
                {**meta, "count": beaten},
            )
            breakdown["beat_higher_ranked"] = bonus

    if pr.rank >= 4:
        drs = (pr.rank - 3) * settings.drs_multiplier
        await ledger.credit(
            db, pr.player_id, drs, ledger.TX_DRS_BONUS,
            f"DRS bonus for {pr.rank}{rank_suffix(pr.rank)} place",
            {**meta, "rank": pr.rank},
        )
        breakdown["drs"] = drs

    await db.execute(
        update(Player)
        .where(Player.id == pr.player_id)
        .values(
            participation_streak=new_streak,
            last_round_date=round_date,
            total_rounds_this_season=Player.total_rounds_this_season + 1,
        )
        .execution_options(synchronize_session=False)
    )

    return {
        "player_id": pr.player_id,
        "player_name": pr.player_name,
        "rank": pr.rank,
        "pulps_earned": sum(breakdown.values()),
        "breakdown": breakdown,
        "participation_streak": new_streak,
    }


async def _is_processed(db: AsyncSession, round_id: int) -> bool:
    result = await db.execute(
        select(RoundProcessing.round_id).where(RoundProcessing.round_id == round_id)
    )
    return result.first() is not None


async def process_round_gamification(
    db: AsyncSession,
    round_id: int,
    event_id: int,
    event_type: str,
    round_meta: dict[str, Any] | None = None,
    matcher: WindowMatcher | None = None,
    redis: object = None,
) -> dict[str, Any]:
    """Award round PULPs to every player, then settle the matched window.

    Re-running for a processed round skips the credits but still attempts
    window settlement, so a failed settlement can be retried.
    """
    settings = get_settings()
    if matcher is None:
        matcher = ExplicitWindowMatcher()
    round_meta = round_meta or {}

    round_ = await get_round(db, round_id)
    if round_ is None:
        raise NotFoundError(f"Round {round_id} not found")
    results = await get_round_results(db, round_id)

    summary: dict[str, Any] = {
        "round_id": round_id,
        "event_id": event_id,
        "event_type": event_type,
        "already_processed": False,
        "players_processed": 0,
        "total_pulps_awarded": 0,
        "player_summaries": [],
        "settlement": None,
        "settlement_error": None,
    }

    if await _is_processed(db, round_id):
        logger.info("Round %d already processed, skipping participation credits", round_id)
        summary["already_processed"] = True
    else:
        positions: dict[int, int] = {}
        if event_type == "season":
            positions = {s.player_id: s.position for s in await get_season_standings(db, event_id)}

        player_summaries: list[dict[str, Any]] = []
        try:
            async with atomic(db, f"Failed to award PULPs for round {round_id}"):
                for pr in results:
                    player_summaries.append(await _award_player(
                        db, pr, results, positions, round_.round_date,
                        round_id, event_id, event_type, settings,
                    ))
                db.add(RoundProcessing(
                    round_id=round_id,
                    event_id=event_id,
                    event_type=event_type,
                    players_processed=len(player_summaries),
                    pulps_awarded=sum(p["pulps_earned"] for p in player_summaries),
                    processed_at=utcnow(),
                ))
                await db.flush()
        except StorageError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            logger.info("Round %d was processed concurrently, skipping credits", round_id)
            summary["already_processed"] = True
            player_summaries = []

        summary["players_processed"] = len(player_summaries)
        summary["total_pulps_awarded"] = sum(p["pulps_earned"] for p in player_summaries)
        summary["player_summaries"] = player_summaries
        logger.info(
            "Round %d: awarded %d PULPs to %d players",
            round_id, summary["total_pulps_awarded"], summary["players_processed"],
        )

    try:
        await lock_expired_windows(db, redis)
        window = await matcher.match(db, round_meta)
        if window is None:
            logger.info("Round %d: no locked window matched", round_id)
        else:
            summary["settlement"] = await settle_window(db, window.id, round_id, redis)
    except Exception as exc:
        await db.rollback()
        logger.exception("Window settlement failed for round %d", round_id)
        summary["settlement_error"] = (
            exc.message if isinstance(exc, EconomyError) else "Window settlement failed"
        )

    return summary


async def award_weekly_interaction_bonus(db: AsyncSession, player_id: int) -> bool:
    """Credit the weekly interaction bonus on a player's first wagering action of the ISO week.

    Never raises: a failure here must not block the action that triggered it.
    """
    settings = get_settings()
    week = get_week_iso(utcnow())
    try:
        async with atomic(db, "Failed to award weekly interaction bonus"):
            claimed = await db.execute(
                update(Player)
                .where(
                    Player.id == player_id,
                    or_(Player.last_interaction_week.is_(None), Player.last_interaction_week != week),
                )
                .values(last_interaction_week=week)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                return False
            await ledger.credit(
                db, player_id, settings.weekly_interaction_bonus, ledger.TX_WEEKLY_INTERACTION,
                f"First action of {week}",
                {"week": week},
            )
    except Exception:
        logger.warning("Weekly interaction bonus failed for player %d", player_id, exc_info=True)
        return False
    logger.info("Weekly interaction bonus for player %d (%s)", player_id, week)
    return True

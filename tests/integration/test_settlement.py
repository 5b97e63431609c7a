"""Integration tests for round processing and window settlement."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.blessings.service import get_blessings_for_player, place_blessing
from pulp_economy.challenges.service import get_challenge, issue_challenge, respond_to_challenge
from pulp_economy.db.models import Player, PulpTransaction
from pulp_economy.errors import BusinessLogicError, NotFoundError
from pulp_economy.settlement.service import award_weekly_interaction_bonus, process_round_gamification
from pulp_economy.windows.service import get_window

ROUND_DATE = date(2026, 3, 14)


@pytest_asyncio.fixture
async def league(factory):
    """Five players; season standings A > B > C > D > E."""
    names = ["Ava", "Ben", "Cal", "Dee", "Eli"]
    ids = {name: await factory.player(name, balance=100) for name in names}
    event_id = await factory.event(ids.values())
    await factory.standings(event_id, {ids["Ava"]: 40, ids["Ben"]: 30, ids["Cal"]: 20, ids["Dee"]: 10, ids["Eli"]: 5})
    return {"ids": ids, "event_id": event_id}


async def _upset_round(factory, league) -> int:
    """The season order turned upside down: Eli wins, Ava finishes last."""
    ids = league["ids"]
    return await factory.round(
        league["event_id"],
        [
            (ids["Eli"], 1, 48),
            (ids["Dee"], 2, 50),
            (ids["Cal"], 3, 52),
            (ids["Ben"], 4, 55),
            (ids["Ava"], 5, 60),
        ],
        round_date=ROUND_DATE,
    )


class _FailingMatcher:
    async def match(self, db, round_meta):
        raise BusinessLogicError("matcher exploded")


@pytest.mark.asyncio
class TestRoundRewards:

    async def test_season_round_awards(self, db_session: AsyncSession, factory, league):
        """Participation for all, upset bonus per higher-ranked player beaten, DRS from 4th down."""
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(db_session, round_id, league["event_id"], "season")

        earned = {p["player_name"]: p["pulps_earned"] for p in summary["player_summaries"]}
        assert earned == {"Eli": 30, "Dee": 25, "Cal": 20, "Ben": 17, "Ava": 14}
        assert summary["players_processed"] == 5
        assert summary["total_pulps_awarded"] == 106
        assert summary["already_processed"] is False

        breakdown = {p["player_name"]: p["breakdown"] for p in summary["player_summaries"]}
        assert breakdown["Eli"] == {"participation": 10, "beat_higher_ranked": 20}
        assert breakdown["Ava"] == {"participation": 10, "drs": 4}
        assert await factory.balance(league["ids"]["Eli"]) == 130

    async def test_tournament_round_has_no_upset_bonus(self, db_session: AsyncSession, factory, league):
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(db_session, round_id, league["event_id"], "tournament")

        earned = {p["player_name"]: p["pulps_earned"] for p in summary["player_summaries"]}
        assert earned == {"Eli": 10, "Dee": 10, "Cal": 10, "Ben": 12, "Ava": 14}

    async def test_round_processed_once(self, db_session: AsyncSession, factory, league):
        round_id = await _upset_round(factory, league)
        await process_round_gamification(db_session, round_id, league["event_id"], "season")

        again = await process_round_gamification(db_session, round_id, league["event_id"], "season")

        assert again["already_processed"] is True
        assert again["players_processed"] == 0
        assert await factory.balance(league["ids"]["Eli"]) == 130
        participation_rows = (await db_session.execute(
            select(func.count()).select_from(PulpTransaction)
            .where(PulpTransaction.transaction_type == "round_participation")
        )).scalar_one()
        assert participation_rows == 5

    async def test_streak_bonus_on_fourth_round(self, db_session: AsyncSession, factory, league):
        eli = league["ids"]["Eli"]
        await db_session.execute(
            update(Player)
            .where(Player.id == eli)
            .values(participation_streak=3, last_round_date=ROUND_DATE - timedelta(days=7))
        )
        await db_session.commit()
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(db_session, round_id, league["event_id"], "season")

        eli_summary = next(p for p in summary["player_summaries"] if p["player_id"] == eli)
        assert eli_summary["breakdown"]["streak"] == 20
        assert eli_summary["participation_streak"] == 0

    async def test_streak_restarts_after_long_gap(self, db_session: AsyncSession, factory, league):
        eli = league["ids"]["Eli"]
        await db_session.execute(
            update(Player)
            .where(Player.id == eli)
            .values(participation_streak=3, last_round_date=ROUND_DATE - timedelta(days=10))
        )
        await db_session.commit()
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(db_session, round_id, league["event_id"], "season")

        eli_summary = next(p for p in summary["player_summaries"] if p["player_id"] == eli)
        assert "streak" not in eli_summary["breakdown"]
        assert eli_summary["participation_streak"] == 1
        row = (await db_session.execute(
            select(Player.last_round_date, Player.total_rounds_this_season).where(Player.id == eli)
        )).one()
        assert row == (ROUND_DATE, 1)

    async def test_unknown_round(self, db_session: AsyncSession, league):
        with pytest.raises(NotFoundError):
            await process_round_gamification(db_session, 9999, league["event_id"], "season")


@pytest.mark.asyncio
class TestWindowSettlement:

    async def _locked_window_with_wagers(self, db_session: AsyncSession, factory, league) -> dict:
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])
        blessing = await place_blessing(
            db_session, ids["Ava"], window_id,
            {"first": "Eli", "second": "Dee", "third": "Cal"}, 20, league["event_id"],
        )
        blessing_id = blessing.id
        challenge = await issue_challenge(db_session, ids["Eli"], ids["Ava"], window_id, 20)
        challenge_id = challenge.id
        await respond_to_challenge(db_session, challenge_id, ids["Ava"], accept=True)
        await factory.close_window(window_id)
        return {"window_id": window_id, "blessing_id": blessing_id, "challenge_id": challenge_id}

    async def test_round_settles_named_window(self, db_session: AsyncSession, factory, league):
        wagers = await self._locked_window_with_wagers(db_session, factory, league)
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(
            db_session, round_id, league["event_id"], "season",
            round_meta={"window_id": wagers["window_id"]},
        )

        assert summary["settlement_error"] is None
        assert summary["settlement"]["settled"] is True
        window = await get_window(db_session, wagers["window_id"])
        assert window.status == "settled"
        assert window.settled_by_round_id == round_id

        blessing = (await get_blessings_for_player(db_session, league["ids"]["Ava"]))[0]
        assert blessing.status == "won_perfect"
        challenge = await get_challenge(db_session, wagers["challenge_id"])
        assert challenge.winner_id == league["ids"]["Eli"]

        # Ava: 100 - 20 blessing - 20 challenge + 40 perfect blessing + 14 round rewards
        assert await factory.balance(league["ids"]["Ava"]) == 114
        # Eli: 100 - 20 challenge + 40 pot + 30 round rewards
        assert await factory.balance(league["ids"]["Eli"]) == 150

    async def test_no_window_named(self, db_session: AsyncSession, factory, league):
        wagers = await self._locked_window_with_wagers(db_session, factory, league)
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(db_session, round_id, league["event_id"], "season")

        assert summary["settlement"] is None
        assert (await get_window(db_session, wagers["window_id"])).status == "locked"

    async def test_settlement_failure_keeps_round_credits(self, db_session: AsyncSession, factory, league):
        round_id = await _upset_round(factory, league)

        summary = await process_round_gamification(
            db_session, round_id, league["event_id"], "season",
            round_meta={"window_id": 1},
            matcher=_FailingMatcher(),
        )

        assert summary["settlement_error"] == "matcher exploded"
        assert summary["total_pulps_awarded"] == 106
        assert await factory.balance(league["ids"]["Eli"]) == 130

    async def test_short_round_leaves_window_locked(self, db_session: AsyncSession, factory, league):
        wagers = await self._locked_window_with_wagers(db_session, factory, league)
        ids = league["ids"]
        round_id = await factory.round(
            league["event_id"], [(ids["Eli"], 1, 48), (ids["Ava"], 2, 50)], round_date=ROUND_DATE,
        )

        summary = await process_round_gamification(
            db_session, round_id, league["event_id"], "season",
            round_meta={"window_id": wagers["window_id"]},
        )

        assert summary["settlement"]["settled"] is False
        assert summary["settlement"]["blessings"]["pending_reason"] is not None
        assert (await get_window(db_session, wagers["window_id"])).status == "locked"
        blessing = (await get_blessings_for_player(db_session, ids["Ava"]))[0]
        assert blessing.status == "pending"
        # The challenge still resolved against the round
        assert (await get_challenge(db_session, wagers["challenge_id"])).status == "resolved"

    async def test_reprocessing_retries_settlement(self, db_session: AsyncSession, factory, league):
        wagers = await self._locked_window_with_wagers(db_session, factory, league)
        round_id = await _upset_round(factory, league)
        await process_round_gamification(db_session, round_id, league["event_id"], "season")

        again = await process_round_gamification(
            db_session, round_id, league["event_id"], "season",
            round_meta={"window_id": wagers["window_id"]},
        )

        assert again["already_processed"] is True
        assert again["settlement"]["settled"] is True


@pytest.mark.asyncio
class TestWeeklyInteractionBonus:

    async def test_once_per_iso_week(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Ava", balance=10)

        assert await award_weekly_interaction_bonus(db_session, player_id) is True
        assert await award_weekly_interaction_bonus(db_session, player_id) is False
        assert await factory.balance(player_id) == 15

    async def test_new_week_awards_again(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Ava")
        await db_session.execute(
            update(Player).where(Player.id == player_id).values(last_interaction_week="2020-W01")
        )
        await db_session.commit()

        assert await award_weekly_interaction_bonus(db_session, player_id) is True
        assert await factory.balance(player_id) == 5

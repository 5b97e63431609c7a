"""HTTP tests for the PULP economy API."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.db.models import Player
from pulp_economy.windows.service import lock_expired_windows

API = "/api/v1/pulp"


def _as(player_id: int) -> dict[str, str]:
    return {"X-Player-Id": str(player_id)}


@pytest_asyncio.fixture
async def league(factory):
    """Four registered players, Ava leading the season, 200 PULPs each."""
    ids = {name: await factory.player(name, balance=200) for name in ("Ava", "Ben", "Cal", "Dee")}
    event_id = await factory.event(ids.values())
    await factory.standings(event_id, {ids["Ava"]: 30, ids["Ben"]: 20, ids["Cal"]: 10, ids["Dee"]: 5})
    return {"ids": ids, "event_id": event_id}


@pytest.mark.asyncio
class TestIdentity:

    async def test_missing_identity(self, client: AsyncClient):
        response = await client.get(f"{API}/balance")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing player identity"

    async def test_unknown_player(self, client: AsyncClient):
        response = await client.get(f"{API}/balance", headers=_as(9999))
        assert response.status_code == 401

    async def test_malformed_identity(self, client: AsyncClient):
        response = await client.get(f"{API}/balance", headers={"X-Player-Id": "ava"})
        assert response.status_code == 401

    async def test_deactivated_player(self, client: AsyncClient, db_session: AsyncSession, factory):
        player_id = await factory.player("Ava")
        await db_session.execute(update(Player).where(Player.id == player_id).values(is_active=False))
        await db_session.commit()

        response = await client.get(f"{API}/balance", headers=_as(player_id))
        assert response.status_code == 403


@pytest.mark.asyncio
class TestWindowEndpoints:

    async def test_open_and_poll_window(self, client: AsyncClient, league):
        ava = league["ids"]["Ava"]
        response = await client.get(f"{API}/windows/active")
        assert response.status_code == 200
        assert response.json() is None

        response = await client.post(f"{API}/windows", headers=_as(ava))
        assert response.status_code == 201
        window = response.json()
        assert window["status"] == "open"
        assert window["opened_by"] == ava
        assert 0 < window["seconds_remaining"] <= 300

        response = await client.get(f"{API}/windows/active")
        assert response.json()["id"] == window["id"]

    async def test_second_window_rejected(self, client: AsyncClient, league):
        await client.post(f"{API}/windows", headers=_as(league["ids"]["Ava"]))

        response = await client.post(f"{API}/windows", headers=_as(league["ids"]["Ben"]))
        assert response.status_code == 400
        body = response.json()
        assert "already open" in body["detail"]
        assert 0 < body["seconds_remaining"] <= 300


@pytest.mark.asyncio
class TestBlessingEndpoints:

    async def test_place_blessing(self, client: AsyncClient, factory, league):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])

        response = await client.post(f"{API}/blessings", headers=_as(ids["Dee"]), json={
            "window_id": window_id,
            "event_id": league["event_id"],
            "predictions": {"first": "Ava", "second": "Ben", "third": "Cal"},
            "wager_amount": 30,
        })

        assert response.status_code == 201
        data = response.json()
        assert data["blessing"]["status"] == "pending"
        assert data["weekly_bonus_awarded"] is True
        # 200 - 30 wager + 5 weekly interaction bonus
        assert data["new_balance"] == 175

        response = await client.get(f"{API}/blessings", headers=_as(ids["Dee"]))
        assert [b["id"] for b in response.json()["blessings"]] == [data["blessing"]["id"]]

    async def test_rule_violation_is_400(self, client: AsyncClient, factory, league):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])

        response = await client.post(f"{API}/blessings", headers=_as(ids["Dee"]), json={
            "window_id": window_id,
            "event_id": league["event_id"],
            "predictions": {"first": "Ava", "second": "Ben", "third": "Cal"},
            "wager_amount": 19,
        })

        assert response.status_code == 400
        assert response.json()["detail"] == "Minimum blessing wager is 20 PULPs"

    async def test_missing_prediction_names_field(self, client: AsyncClient, factory, league):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])

        response = await client.post(f"{API}/blessings", headers=_as(ids["Dee"]), json={
            "window_id": window_id,
            "event_id": league["event_id"],
            "predictions": {"first": "Ava", "second": "Ben"},
            "wager_amount": 30,
        })

        assert response.status_code == 400
        assert response.json()["field"] == "predictions.third"

    async def test_malformed_body_is_422(self, client: AsyncClient, league):
        response = await client.post(f"{API}/blessings", headers=_as(league["ids"]["Dee"]), json={
            "predictions": {},
        })
        assert response.status_code == 422


@pytest.mark.asyncio
class TestChallengeEndpoints:

    async def test_issue_and_accept(self, client: AsyncClient, factory, league):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])

        response = await client.post(f"{API}/challenges", headers=_as(ids["Dee"]), json={
            "challenged_id": ids["Ava"],
            "window_id": window_id,
            "wager_amount": 50,
        })
        assert response.status_code == 201
        challenge = response.json()["challenge"]
        assert challenge["status"] == "pending"

        response = await client.get(f"{API}/challenges/pending", headers=_as(ids["Ava"]))
        assert [c["id"] for c in response.json()["challenges"]] == [challenge["id"]]

        response = await client.post(f"{API}/challenges/respond", headers=_as(ids["Ava"]), json={
            "challenge_id": challenge["id"],
            "accept": True,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["challenge"]["status"] == "accepted"
        # 200 - 50 matched wager + 5 weekly interaction bonus
        assert data["new_balance"] == 155

        response = await client.get(f"{API}/challenges", headers=_as(ids["Dee"]))
        assert response.json()["challenges"][0]["status"] == "accepted"

    async def test_cannot_challenge_down(self, client: AsyncClient, factory, league):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])

        response = await client.post(f"{API}/challenges", headers=_as(ids["Ava"]), json={
            "challenged_id": ids["Dee"],
            "window_id": window_id,
            "wager_amount": 50,
        })
        assert response.status_code == 400

    async def test_unknown_challenge_is_404(self, client: AsyncClient, league):
        response = await client.post(f"{API}/challenges/respond", headers=_as(league["ids"]["Ava"]), json={
            "challenge_id": 9999,
            "accept": False,
        })
        assert response.status_code == 404


@pytest.mark.asyncio
class TestAdvantageEndpoints:

    async def test_catalog(self, client: AsyncClient):
        response = await client.get(f"{API}/advantages/catalog")
        assert response.status_code == 200
        assert len(response.json()["advantages"]) == 5

    async def test_purchase_and_list(self, client: AsyncClient, league):
        ben = league["ids"]["Ben"]
        response = await client.post(f"{API}/advantages/purchase", headers=_as(ben), json={
            "advantage_key": "bag_trump",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["advantage"]["name"] == "Bag Trump"
        assert data["new_balance"] == 105

        response = await client.post(f"{API}/advantages/purchase", headers=_as(ben), json={
            "advantage_key": "bag_trump",
        })
        assert response.status_code == 400

        response = await client.get(f"{API}/advantages", headers=_as(ben))
        assert [a["advantage_key"] for a in response.json()["advantages"]] == ["bag_trump"]

    async def test_unknown_status_filter_is_422(self, client: AsyncClient, league):
        response = await client.get(
            f"{API}/advantages", params={"status": "sold"}, headers=_as(league["ids"]["Ben"]),
        )
        assert response.status_code == 422


@pytest.mark.asyncio
class TestLedgerEndpoints:

    async def test_balance_history_stats(self, client: AsyncClient, league):
        cal = league["ids"]["Cal"]

        response = await client.get(f"{API}/balance", headers=_as(cal))
        assert response.json() == {"player_id": cal, "balance": 200}

        response = await client.get(f"{API}/transactions", headers=_as(cal), params={"limit": 500})
        data = response.json()
        assert data["total"] == 1
        assert data["limit"] == 100
        assert data["transactions"][0]["transaction_type"] == "admin_adjustment"

        response = await client.get(f"{API}/stats", headers=_as(cal))
        stats = response.json()
        assert stats["total_earned"] == 200
        assert stats["by_type"]["admin_adjustment"] == {"count": 1, "total": 200}


@pytest.mark.asyncio
class TestRoundProcessingEndpoint:

    async def test_process_round_settles_window(
        self, client: AsyncClient, db_session: AsyncSession, factory, league,
    ):
        ids = league["ids"]
        window_id = await factory.window(ids["Ava"])
        await factory.close_window(window_id)
        await lock_expired_windows(db_session)
        round_id = await factory.round(
            league["event_id"],
            [(ids["Ava"], 1, 50), (ids["Ben"], 2, 52), (ids["Cal"], 3, 54), (ids["Dee"], 4, 56)],
        )

        response = await client.post(f"{API}/rounds/{round_id}/process", json={
            "event_id": league["event_id"],
            "event_type": "season",
            "round_meta": {"window_id": window_id},
        })

        assert response.status_code == 200
        data = response.json()
        assert data["players_processed"] == 4
        assert data["settlement"]["settled"] is True
        assert data["settlement_error"] is None

    async def test_internal_token_enforced_when_configured(
        self, client: AsyncClient, factory, league, monkeypatch,
    ):
        monkeypatch.setattr(get_settings(), "internal_api_token", "s3cret")
        round_id = await factory.round(league["event_id"], [(league["ids"]["Ava"], 1, 50)])
        body = {"event_id": league["event_id"], "event_type": "season"}

        response = await client.post(f"{API}/rounds/{round_id}/process", json=body)
        assert response.status_code == 403

        response = await client.post(
            f"{API}/rounds/{round_id}/process", json=body, headers={"X-Internal-Token": "s3cret"},
        )
        assert response.status_code == 200

    async def test_unknown_round_is_404(self, client: AsyncClient, league):
        response = await client.post(f"{API}/rounds/9999/process", json={
            "event_id": league["event_id"],
            "event_type": "season",
        })
        assert response.status_code == 404

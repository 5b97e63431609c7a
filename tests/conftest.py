"""Shared test fixtures.

Every test gets its own SQLite database file built from the ORM metadata,
with the advantage catalog seeded the same way the API lifespan does it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterable, Sequence
from datetime import date, timedelta
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.advantages.seed import seed_advantage_catalog
from pulp_economy.database import close_db, get_engine, get_session, init_db
from pulp_economy.db.models import Base, Event, EventPlayer, Player, PlayerRound, PulpyWindow, Round
from pulp_economy.ledger import service as ledger
from pulp_economy.main import create_app
from pulp_economy.players.service import create_player
from pulp_economy.timeutils import utcnow
from pulp_economy.windows.service import open_window


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    """Fresh schema per test, torn down afterwards."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'pulp_test.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async for session in get_session():
        await seed_advantage_catalog(session)
        break
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async for session in get_session():
        yield session
        break


@pytest_asyncio.fixture
async def client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against a fresh app instance."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class EconomyFactory:
    """Builds players, events, rounds and windows for tests.

    Every helper commits and hands back plain ids, so tests never touch ORM
    instances that a later rollback could expire.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def player(self, name: str, balance: int = 0) -> int:
        player = await create_player(self.db, name)
        player_id = player.id
        if balance:
            await ledger.credit(self.db, player_id, balance, ledger.TX_ADMIN_ADJUSTMENT, "Test funding")
        await self.db.commit()
        return player_id

    async def event(
        self,
        player_ids: Iterable[int] = (),
        event_type: str = "season",
        name: str = "Test Season",
    ) -> int:
        event = Event(name=name, event_type=event_type, is_active=True)
        self.db.add(event)
        await self.db.flush()
        event_id = event.id
        for player_id in player_ids:
            self.db.add(EventPlayer(event_id=event_id, player_id=player_id))
        await self.db.commit()
        return event_id

    async def round(
        self,
        event_id: int,
        results: Sequence[tuple[int, ...]],
        round_date: date | None = None,
    ) -> int:
        """Store a round. Each result is (player_id, rank, total_strokes[, final_total])."""
        round_ = Round(event_id=event_id, round_date=round_date or date.today(), course_name="Test Course")
        self.db.add(round_)
        await self.db.flush()
        round_id = round_.id
        for player_id, rank, strokes, *points in results:
            name = (await self.db.execute(
                select(Player.player_name).where(Player.id == player_id)
            )).scalar_one()
            self.db.add(PlayerRound(
                round_id=round_id,
                event_id=event_id,
                player_id=player_id,
                player_name=name,
                rank=rank,
                total_strokes=strokes,
                final_total=points[0] if points else 0,
            ))
        await self.db.commit()
        return round_id

    async def standings(self, event_id: int, points: dict[int, int]) -> int:
        """Seed season standings through an older round carrying the given points."""
        ordered = sorted(points.items(), key=lambda item: -item[1])
        return await self.round(
            event_id,
            [(player_id, rank, 50, total) for rank, (player_id, total) in enumerate(ordered, start=1)],
            round_date=date.today() - timedelta(days=60),
        )

    async def window(self, opener_id: int) -> int:
        window = await open_window(self.db, opener_id)
        return window.id

    async def close_window(self, window_id: int) -> None:
        """Move the window deadline into the past so the next sweep locks it."""
        await self.db.execute(
            update(PulpyWindow)
            .where(PulpyWindow.id == window_id)
            .values(closes_at=utcnow() - timedelta(seconds=1))
        )
        await self.db.commit()

    async def age_window(self, window_id: int) -> None:
        """Move a locked window's expiry into the past."""
        await self.db.execute(
            update(PulpyWindow)
            .where(PulpyWindow.id == window_id)
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
        await self.db.commit()

    async def balance(self, player_id: int) -> int:
        return await ledger.get_balance(self.db, player_id)


@pytest_asyncio.fixture
async def factory(db_session: AsyncSession) -> EconomyFactory:
    return EconomyFactory(db_session)

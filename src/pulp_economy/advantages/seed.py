"""Advantage catalog seed data."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.db.models import AdvantageCatalogEntry

logger = logging.getLogger(__name__)

ADVANTAGE_SEED_DATA: list[dict] = [
    {
        "advantage_key": "mulligan",
        "name": "Mulligan",
        "description": "Take one extra mulligan during the round",
        "pulp_cost": 120,
        "expiration_hours": 24,
        "sort_order": 1,
    },
    {
        "advantage_key": "anti_mulligan",
        "name": "Anti-Mulligan",
        "description": "Force an opponent to re-shoot a throw",
        "pulp_cost": 200,
        "expiration_hours": 24,
        "sort_order": 2,
    },
    {
        "advantage_key": "cancel",
        "name": "Cancel",
        "description": "Cancel the last mulligan or anti-mulligan played against you",
        "pulp_cost": 200,
        "expiration_hours": 24,
        "sort_order": 3,
    },
    {
        "advantage_key": "bag_trump",
        "name": "Bag Trump",
        "description": "Overrule the bag-carry decision for a hole",
        "pulp_cost": 100,
        "expiration_hours": 24,
        "sort_order": 4,
    },
    {
        "advantage_key": "shotgun_buddy",
        "name": "Shotgun Buddy",
        "description": "Make someone shotgun a beer with you",
        "pulp_cost": 100,
        "expiration_hours": 24,
        "sort_order": 5,
    },
]


async def seed_advantage_catalog(db: AsyncSession) -> int:
    """Upsert every catalog entry. Returns number of entries seeded."""
    insert = sqlite_insert if db.bind.dialect.name == "sqlite" else pg_insert
    seeded = 0
    for entry in ADVANTAGE_SEED_DATA:
        stmt = insert(AdvantageCatalogEntry).values(**entry)
        stmt = stmt.on_conflict_do_update(
            index_elements=["advantage_key"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "pulp_cost": stmt.excluded.pulp_cost,
                "expiration_hours": stmt.excluded.expiration_hours,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d advantage catalog entries", seeded)
    return seeded

"""Advantage shop: catalog-driven perk purchases with per-key exclusivity.

Each purchased advantage is its own player_advantages row. At most one row
per (player, key) may be active, enforced by a partial unique index.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.database import atomic
from pulp_economy.db.models import AdvantageCatalogEntry, PlayerAdvantage, RoundAdvantageUsage
from pulp_economy.errors import BusinessLogicError, NotFoundError, StorageError, ValidationError
from pulp_economy.ledger import service as ledger
from pulp_economy.players.service import get_player_by_id
from pulp_economy.rounds.results import get_round
from pulp_economy.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

ADVANTAGE_ACTIVE = "active"
ADVANTAGE_USED = "used"
ADVANTAGE_EXPIRED = "expired"

STATUS_FILTERS = ("active", "expired", "used", "all")


async def get_catalog(db: AsyncSession) -> list[AdvantageCatalogEntry]:
    """All purchasable advantages, cheapest first."""
    result = await db.execute(
        select(AdvantageCatalogEntry).order_by(
            AdvantageCatalogEntry.pulp_cost.asc(),
            AdvantageCatalogEntry.sort_order.asc(),
        )
    )
    return list(result.scalars().all())


async def get_catalog_entry(db: AsyncSession, advantage_key: str) -> AdvantageCatalogEntry:
    result = await db.execute(
        select(AdvantageCatalogEntry).where(AdvantageCatalogEntry.advantage_key == advantage_key)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError(f'Advantage "{advantage_key}" not found in catalog')
    return entry


async def _get_active_instance(
    db: AsyncSession,
    player_id: int,
    advantage_key: str,
) -> PlayerAdvantage | None:
    result = await db.execute(
        select(PlayerAdvantage)
        .where(
            PlayerAdvantage.player_id == player_id,
            PlayerAdvantage.advantage_key == advantage_key,
            PlayerAdvantage.status == ADVANTAGE_ACTIVE,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _expire_instances(
    db: AsyncSession,
    player_id: int,
    now: datetime,
    advantage_key: str | None = None,
) -> list[str]:
    """Move time-elapsed active instances to expired inside the caller's transaction."""
    query = select(PlayerAdvantage.id, PlayerAdvantage.advantage_key).where(
        PlayerAdvantage.player_id == player_id,
        PlayerAdvantage.status == ADVANTAGE_ACTIVE,
        PlayerAdvantage.expires_at <= now,
    )
    if advantage_key is not None:
        query = query.where(PlayerAdvantage.advantage_key == advantage_key)
    rows = (await db.execute(query)).all()

    expired: list[str] = []
    for instance_id, key in rows:
        result = await db.execute(
            update(PlayerAdvantage)
            .where(PlayerAdvantage.id == instance_id, PlayerAdvantage.status == ADVANTAGE_ACTIVE)
            .values(status=ADVANTAGE_EXPIRED, expired_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        await ledger.record_zero(
            db, player_id, ledger.TX_ADVANTAGE_EXPIRED,
            f"{key} advantage expired unused",
            {"advantage_key": key, "advantage_id": instance_id},
        )
        expired.append(key)
    return expired


async def purchase_advantage(
    db: AsyncSession,
    player_id: int,
    advantage_key: str,
) -> PlayerAdvantage:
    """Buy one instance of a catalog advantage."""
    entry = await get_catalog_entry(db, advantage_key)
    entry_name = entry.name
    entry_cost = entry.pulp_cost
    now = utcnow()

    try:
        async with atomic(db, "Failed to purchase advantage"):
            await _expire_instances(db, player_id, now, advantage_key)

            existing = await _get_active_instance(db, player_id, advantage_key)
            if existing is not None:
                expires = as_utc(existing.expires_at)
                raise BusinessLogicError(
                    f"You already have an active {entry.name} (expires {expires:%Y-%m-%d %H:%M} UTC)"
                )

            await ledger.debit(
                db, player_id, entry.pulp_cost, ledger.TX_ADVANTAGE_PURCHASE,
                f"Purchased {entry.name}",
                {"advantage_key": advantage_key},
            )
            instance = PlayerAdvantage(
                player_id=player_id,
                advantage_key=advantage_key,
                status=ADVANTAGE_ACTIVE,
                purchased_at=now,
                expires_at=now + timedelta(hours=entry.expiration_hours),
            )
            db.add(instance)
            await db.flush()
    except StorageError as exc:
        if isinstance(exc.__cause__, IntegrityError):
            raise BusinessLogicError(f"You already have an active {entry_name}") from None
        raise

    logger.info(
        "Player %d purchased %s for %d PULPs (expires %s)",
        player_id, advantage_key, entry_cost, instance.expires_at.isoformat(),
    )
    return instance


async def use_advantage(
    db: AsyncSession,
    player_id: int,
    advantage_key: str,
    round_id: int,
    metadata: dict[str, Any] | None = None,
) -> PlayerAdvantage:
    """Spend an active advantage in a round and log it on the round."""
    player = await get_player_by_id(db, player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")
    if await get_round(db, round_id) is None:
        raise NotFoundError(f"Round {round_id} not found")

    metadata = metadata or {}
    now = utcnow()
    missing = f"No active {advantage_key} advantage found (may be used or expired)"

    async with atomic(db, "Failed to use advantage"):
        result = await db.execute(
            select(PlayerAdvantage.id).where(
                PlayerAdvantage.player_id == player_id,
                PlayerAdvantage.advantage_key == advantage_key,
                PlayerAdvantage.status == ADVANTAGE_ACTIVE,
                PlayerAdvantage.expires_at > now,
            )
        )
        instance_id = result.scalar_one_or_none()
        if instance_id is None:
            raise BusinessLogicError(missing)

        claimed = await db.execute(
            update(PlayerAdvantage)
            .where(PlayerAdvantage.id == instance_id, PlayerAdvantage.status == ADVANTAGE_ACTIVE)
            .values(status=ADVANTAGE_USED, used_at=now, round_id=round_id, usage_metadata=metadata)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise BusinessLogicError(missing)

        db.add(RoundAdvantageUsage(
            round_id=round_id,
            player_id=player_id,
            player_name=player.player_name,
            advantage_key=advantage_key,
            used_at=now,
            usage_metadata=metadata,
        ))

    logger.info("Player %d used %s in round %d", player_id, advantage_key, round_id)
    result = await db.execute(
        select(PlayerAdvantage)
        .where(PlayerAdvantage.id == instance_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def expire_advantages(db: AsyncSession, player_id: int) -> dict[str, Any]:
    """Expire a player's unused advantages whose time ran out. No refund."""
    async with atomic(db, "Failed to expire advantages"):
        expired = await _expire_instances(db, player_id, utcnow())
    if expired:
        logger.info("Expired %d advantages for player %d: %s", len(expired), player_id, expired)
    return {"player_id": player_id, "expired_count": len(expired), "expired": expired}


async def expire_all_advantages(db: AsyncSession) -> dict[str, Any]:
    """Run expire_advantages for every player holding elapsed instances."""
    result = await db.execute(
        select(PlayerAdvantage.player_id)
        .where(
            PlayerAdvantage.status == ADVANTAGE_ACTIVE,
            PlayerAdvantage.expires_at <= utcnow(),
        )
        .distinct()
    )
    player_ids = [row[0] for row in result.all()]

    players = 0
    expired_count = 0
    failed = 0
    for player_id in player_ids:
        try:
            outcome = await expire_advantages(db, player_id)
        except Exception:
            failed += 1
            logger.exception("Failed to expire advantages for player %d", player_id)
            continue
        players += 1
        expired_count += outcome["expired_count"]

    return {"players": players, "expired_count": expired_count, "failed": failed}


async def get_player_advantages(
    db: AsyncSession,
    player_id: int,
    status: str = "active",
) -> list[dict[str, Any]]:
    """A player's advantages filtered by status, enriched with catalog details."""
    if status not in STATUS_FILTERS:
        raise ValidationError(f"Unknown advantage status filter: {status}", field="status")

    now = utcnow()
    query = select(PlayerAdvantage).where(PlayerAdvantage.player_id == player_id)
    if status == "active":
        query = query.where(
            PlayerAdvantage.status == ADVANTAGE_ACTIVE,
            PlayerAdvantage.expires_at > now,
        )
    elif status == "expired":
        # Includes instances whose time ran out before the sweep reached them
        query = query.where(or_(
            PlayerAdvantage.status == ADVANTAGE_EXPIRED,
            and_(PlayerAdvantage.status == ADVANTAGE_ACTIVE, PlayerAdvantage.expires_at <= now),
        ))
    elif status == "used":
        query = query.where(PlayerAdvantage.status == ADVANTAGE_USED)

    result = await db.execute(
        query.order_by(PlayerAdvantage.purchased_at.desc(), PlayerAdvantage.id.desc())
        .execution_options(populate_existing=True)
    )
    instances = result.unique().scalars().all()

    return [
        {
            "id": adv.id,
            "advantage_key": adv.advantage_key,
            "status": adv.status,
            "name": adv.catalog_entry.name,
            "description": adv.catalog_entry.description,
            "pulp_cost": adv.catalog_entry.pulp_cost,
            "purchased_at": as_utc(adv.purchased_at),
            "expires_at": as_utc(adv.expires_at),
            "used_at": as_utc(adv.used_at),
            "round_id": adv.round_id,
            "usage_metadata": adv.usage_metadata,
        }
        for adv in instances
    ]


async def has_active_advantage(db: AsyncSession, player_id: int, advantage_key: str) -> bool:
    result = await db.execute(
        select(PlayerAdvantage.id).where(
            PlayerAdvantage.player_id == player_id,
            PlayerAdvantage.advantage_key == advantage_key,
            PlayerAdvantage.status == ADVANTAGE_ACTIVE,
            PlayerAdvantage.expires_at > utcnow(),
        )
    )
    return result.first() is not None

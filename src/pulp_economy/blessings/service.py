"""Blessing market: top-3 prediction wagers scoped to one PULPy window."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.database import atomic
from pulp_economy.db.models import Blessing
from pulp_economy.errors import BusinessLogicError, ValidationError
from pulp_economy.ledger import service as ledger
from pulp_economy.rounds.results import get_registered_names, get_top_finishers
from pulp_economy.timeutils import utcnow
from pulp_economy.windows.service import require_open_window

logger = logging.getLogger(__name__)

BLESSING_PENDING = "pending"
BLESSING_WON_PERFECT = "won_perfect"
BLESSING_WON_PARTIAL = "won_partial"
BLESSING_LOST = "lost"
BLESSING_REFUNDED = "refunded"

PREDICTION_SLOTS = ("first", "second", "third")


def _normalize(name: str) -> str:
    return name.strip().lower()


def calculate_blessing_result(
    prediction: Sequence[str],
    actual: Sequence[str],
    wager: int,
) -> tuple[str, int]:
    """Compare a 1st/2nd/3rd prediction with the actual top three.

    Returns (status, payout): exact order pays double, the same three
    names in another order pays the wager back, anything else pays 0.
    """
    predicted = [_normalize(n) for n in prediction]
    finishers = [_normalize(n) for n in actual]

    if predicted == finishers:
        return BLESSING_WON_PERFECT, wager * 2
    if len(set(finishers)) == 3 and set(predicted) == set(finishers):
        return BLESSING_WON_PARTIAL, wager
    return BLESSING_LOST, 0


async def place_blessing(
    db: AsyncSession,
    player_id: int,
    window_id: int,
    predictions: Mapping[str, str | None],
    wager: int,
    event_id: int,
) -> Blessing:
    """Place a blessing: debit the wager and record it pending, atomically.

    Every precondition is checked before the ledger is touched.
    """
    settings = get_settings()
    if wager < settings.min_wager:
        raise BusinessLogicError(f"Minimum blessing wager is {settings.min_wager} PULPs")

    names: list[str] = []
    for slot in PREDICTION_SLOTS:
        value = predictions.get(slot)
        if not value or not value.strip():
            raise ValidationError(f"Missing {slot} place prediction", field=f"predictions.{slot}")
        names.append(value.strip())
    if len({_normalize(n) for n in names}) != 3:
        raise BusinessLogicError("Predictions must name three different players")

    await require_open_window(db, window_id)

    existing = await db.execute(
        select(Blessing.id).where(Blessing.player_id == player_id, Blessing.window_id == window_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise BusinessLogicError("You already placed a blessing in this window")

    registered = await get_registered_names(db, event_id)
    for name in names:
        if _normalize(name) not in registered:
            raise BusinessLogicError(f"{name} is not registered for this event")

    first, second, third = names
    async with atomic(db, "Failed to place blessing"):
        await ledger.debit(
            db, player_id, wager, ledger.TX_BLESSING_LOSS,
            f"Blessing: {first}, {second}, {third}",
            {"window_id": window_id, "event_id": event_id},
        )
        blessing = Blessing(
            player_id=player_id,
            window_id=window_id,
            event_id=event_id,
            prediction_first=first,
            prediction_second=second,
            prediction_third=third,
            wager_amount=wager,
            status=BLESSING_PENDING,
            payout_amount=0,
            created_at=utcnow(),
        )
        db.add(blessing)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise BusinessLogicError("You already placed a blessing in this window") from exc

    logger.info(
        "Blessing %d placed by player %d in window %d (wager=%d)",
        blessing.id, player_id, window_id, wager,
    )
    return blessing


async def _blessing_ids(db: AsyncSession, window_id: int, status: str) -> list[int]:
    result = await db.execute(
        select(Blessing.id)
        .where(Blessing.window_id == window_id, Blessing.status == status)
        .order_by(Blessing.id.asc())
    )
    return [row[0] for row in result.all()]


async def _get_blessing(db: AsyncSession, blessing_id: int) -> Blessing:
    result = await db.execute(
        select(Blessing)
        .where(Blessing.id == blessing_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _claim(db: AsyncSession, blessing_id: int, **values: Any) -> bool:
    """Move a pending blessing to a terminal status. False if already moved."""
    result = await db.execute(
        update(Blessing)
        .where(Blessing.id == blessing_id, Blessing.status == BLESSING_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def resolve_blessings_for_window(
    db: AsyncSession,
    window_id: int,
    round_id: int,
) -> dict[str, Any]:
    """Settle every pending blessing of a window against the round's top three.

    Each blessing is its own transaction; a failing record is logged and
    skipped. Re-running only touches blessings still pending.
    """
    summary: dict[str, Any] = {
        "window_id": window_id,
        "round_id": round_id,
        "resolved": 0,
        "won_perfect": 0,
        "won_partial": 0,
        "lost": 0,
        "failed": 0,
        "total_paid_out": 0,
        "pending_reason": None,
    }

    actual = await get_top_finishers(db, round_id)
    if len(actual) < 3:
        summary["pending_reason"] = "Round has fewer than 3 ranked finishers"
        logger.warning(
            "Round %d has %d ranked finishers, blessings in window %d stay pending",
            round_id, len(actual), window_id,
        )
        return summary

    for blessing_id in await _blessing_ids(db, window_id, BLESSING_PENDING):
        try:
            blessing = await _get_blessing(db, blessing_id)
            prediction = (
                blessing.prediction_first,
                blessing.prediction_second,
                blessing.prediction_third,
            )
            status, payout = calculate_blessing_result(prediction, actual, blessing.wager_amount)

            claimed = await _claim(
                db, blessing_id,
                status=status,
                payout_amount=payout,
                round_id=round_id,
                resolved_at=utcnow(),
            )
            if not claimed:
                await db.rollback()
                continue

            if status == BLESSING_WON_PERFECT:
                await ledger.credit(
                    db, blessing.player_id, payout, ledger.TX_BLESSING_WIN_PERFECT,
                    "Perfect blessing! Exact top 3 order",
                    {"blessing_id": blessing_id, "round_id": round_id, "window_id": window_id},
                )
            elif status == BLESSING_WON_PARTIAL:
                await ledger.credit(
                    db, blessing.player_id, payout, ledger.TX_BLESSING_WIN_PARTIAL,
                    "Blessing: right top 3, wrong order",
                    {"blessing_id": blessing_id, "round_id": round_id, "window_id": window_id},
                )
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to resolve blessing %d", blessing_id)
            continue

        summary["resolved"] += 1
        summary[status] += 1
        summary["total_paid_out"] += payout

    logger.info(
        "Blessings resolved for window %d: %d perfect, %d partial, %d lost, %d failed",
        window_id, summary["won_perfect"], summary["won_partial"], summary["lost"], summary["failed"],
    )
    return summary


async def refund_blessings_for_window(db: AsyncSession, window_id: int) -> dict[str, Any]:
    """Give back the wager of every still-pending blessing. Idempotent."""
    summary: dict[str, Any] = {"window_id": window_id, "refunded": 0, "failed": 0, "total_refunded": 0}

    for blessing_id in await _blessing_ids(db, window_id, BLESSING_PENDING):
        try:
            blessing = await _get_blessing(db, blessing_id)
            claimed = await _claim(
                db, blessing_id,
                status=BLESSING_REFUNDED,
                payout_amount=blessing.wager_amount,
                resolved_at=utcnow(),
            )
            if not claimed:
                await db.rollback()
                continue
            await ledger.credit(
                db, blessing.player_id, blessing.wager_amount, ledger.TX_WINDOW_EXPIRED_REFUND,
                "Blessing refunded: window expired without a round",
                {"blessing_id": blessing_id, "window_id": window_id},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to refund blessing %d", blessing_id)
            continue

        summary["refunded"] += 1
        summary["total_refunded"] += blessing.wager_amount

    return summary


async def get_blessings_for_player(
    db: AsyncSession,
    player_id: int,
    window_id: int | None = None,
) -> list[Blessing]:
    """A player's blessings, newest first, optionally for one window."""
    query = select(Blessing).where(Blessing.player_id == player_id)
    if window_id is not None:
        query = query.where(Blessing.window_id == window_id)
    result = await db.execute(
        query.order_by(Blessing.created_at.desc(), Blessing.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())

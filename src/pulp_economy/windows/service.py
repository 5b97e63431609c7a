"""PULPy window lifecycle: open -> locked -> settled | expired.

Only one window may be open at a time, enforced by a partial unique index
on the open status. Transitions out of open and locked are produced by
idempotent sweeps; every transition is a compare-and-set on the current
status so redundant callers never double-apply.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.db.models import Challenge, PulpyWindow
from pulp_economy.errors import (
    BusinessLogicError,
    NotFoundError,
    StorageError,
    WindowAlreadyOpenError,
)
from pulp_economy.redis_client import publish_event
from pulp_economy.timeutils import as_utc, seconds_until, utcnow

logger = logging.getLogger(__name__)

WINDOW_OPEN = "open"
WINDOW_LOCKED = "locked"
WINDOW_SETTLED = "settled"
WINDOW_EXPIRED = "expired"

VALID_TRANSITIONS: dict[str, list[str]] = {
    WINDOW_OPEN: [WINDOW_LOCKED],
    WINDOW_LOCKED: [WINDOW_SETTLED, WINDOW_EXPIRED],
    WINDOW_SETTLED: [],
    WINDOW_EXPIRED: [],
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a window state transition. Raises ValueError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise ValueError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


async def _transition(
    db: AsyncSession,
    window_id: int,
    current_status: str,
    target_status: str,
    **values: Any,
) -> bool:
    """Compare-and-set the window status. Returns False if another caller got there first."""
    validate_transition(current_status, target_status)
    result = await db.execute(
        update(PulpyWindow)
        .where(PulpyWindow.id == window_id, PulpyWindow.status == current_status)
        .values(status=target_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def serialize_window(window: PulpyWindow, now: datetime | None = None) -> dict[str, Any]:
    """Window as a plain dict; seconds_remaining only while open."""
    if now is None:
        now = utcnow()
    seconds_remaining = None
    if window.status == WINDOW_OPEN:
        seconds_remaining = seconds_until(window.closes_at, now)
    return {
        "id": window.id,
        "opened_by": window.opened_by,
        "opened_at": as_utc(window.opened_at),
        "closes_at": as_utc(window.closes_at),
        "status": window.status,
        "locked_at": as_utc(window.locked_at),
        "expires_at": as_utc(window.expires_at),
        "settled_by_round_id": window.settled_by_round_id,
        "settled_at": as_utc(window.settled_at),
        "seconds_remaining": seconds_remaining,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_window(db: AsyncSession, window_id: int) -> PulpyWindow:
    """Get a window by ID."""
    result = await db.execute(
        select(PulpyWindow)
        .where(PulpyWindow.id == window_id)
        .execution_options(populate_existing=True)
    )
    window = result.scalar_one_or_none()
    if window is None:
        raise NotFoundError(f"PULPy window {window_id} not found")
    return window


async def get_open_window(db: AsyncSession) -> PulpyWindow | None:
    result = await db.execute(
        select(PulpyWindow)
        .where(PulpyWindow.status == WINDOW_OPEN)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_active_window(db: AsyncSession) -> dict[str, Any] | None:
    """The newest open or locked window, or None."""
    result = await db.execute(
        select(PulpyWindow)
        .where(PulpyWindow.status.in_((WINDOW_OPEN, WINDOW_LOCKED)))
        .order_by(PulpyWindow.opened_at.desc(), PulpyWindow.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    window = result.scalar_one_or_none()
    if window is None:
        return None
    return serialize_window(window)


async def require_open_window(db: AsyncSession, window_id: int) -> PulpyWindow:
    """Load a window that still accepts wagering actions."""
    window = await get_window(db, window_id)
    if window.status != WINDOW_OPEN:
        raise BusinessLogicError(f"PULPy window is {window.status}, wagering is closed")
    if seconds_until(window.closes_at) <= 0:
        raise BusinessLogicError("PULPy window has closed")
    return window


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------


async def open_window(
    db: AsyncSession,
    player_id: int,
    redis: object = None,
) -> PulpyWindow:
    """Open a new PULPy window.

    Runs the lock sweep first so a window whose deadline already passed never
    blocks a new one. Raises WindowAlreadyOpenError (no mutation) when a
    window is still open, including when a concurrent opener wins the race.
    """
    settings = get_settings()
    await lock_expired_windows(db, redis)

    now = utcnow()
    existing = await get_open_window(db)
    if existing is not None:
        raise WindowAlreadyOpenError(seconds_until(existing.closes_at, now))

    window = PulpyWindow(
        opened_by=player_id,
        opened_at=now,
        closes_at=now + timedelta(minutes=settings.window_duration_minutes),
        status=WINDOW_OPEN,
    )
    db.add(window)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        winner = await get_open_window(db)
        remaining = (
            seconds_until(winner.closes_at)
            if winner is not None
            else settings.window_duration_minutes * 60
        )
        raise WindowAlreadyOpenError(remaining) from None
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError("Failed to open PULPy window") from exc

    logger.info(
        "PULPy window %d opened by player %d (closes %s)",
        window.id, player_id, window.closes_at.isoformat(),
    )
    await publish_event(redis, "pubsub:window_opened", {
        "window_id": window.id,
        "opened_by": player_id,
        "closes_at": window.closes_at.isoformat(),
    })
    return window


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


async def lock_expired_windows(db: AsyncSession, redis: object = None) -> list[int]:
    """Lock every open window whose deadline passed and apply the close rules.

    Safe to call redundantly. Also re-applies the close rules to locked
    windows that still hold pending or waiting challenges from an earlier
    partial run. Returns the ids locked by this call.
    """
    from pulp_economy.challenges.service import apply_window_close_rules

    settings = get_settings()
    now = utcnow()

    result = await db.execute(
        select(PulpyWindow.id).where(
            PulpyWindow.status == WINDOW_OPEN,
            PulpyWindow.closes_at <= now,
        )
    )
    due_ids = [row[0] for row in result.all()]

    locked_ids: list[int] = []
    for window_id in due_ids:
        try:
            locked = await _transition(
                db, window_id, WINDOW_OPEN, WINDOW_LOCKED,
                locked_at=now,
                expires_at=now + timedelta(days=settings.window_expiry_days),
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to lock PULPy window %d", window_id)
            continue
        if locked:
            locked_ids.append(window_id)
            logger.info("PULPy window %d locked", window_id)

    # Windows already locked whose close rules did not finish
    leftover = await db.execute(
        select(Challenge.window_id)
        .join(PulpyWindow, PulpyWindow.id == Challenge.window_id)
        .where(
            PulpyWindow.status == WINDOW_LOCKED,
            Challenge.status.in_(("pending", "waiting")),
        )
        .distinct()
    )
    close_ids = sorted(set(locked_ids) | {row[0] for row in leftover.all()})

    for window_id in close_ids:
        await apply_window_close_rules(db, window_id)

    for window_id in locked_ids:
        await publish_event(redis, "pubsub:window_locked", {"window_id": window_id})

    return locked_ids


async def settle_window(
    db: AsyncSession,
    window_id: int,
    round_id: int,
    redis: object = None,
) -> dict[str, Any]:
    """Resolve a locked window's blessings and challenges against a round.

    The window is marked settled only once nothing is left unresolved; if a
    record failed, or the round cannot resolve blessings yet, the window
    stays locked so a retry or the expiry sweep can finish it.
    """
    from pulp_economy.blessings.service import resolve_blessings_for_window
    from pulp_economy.challenges.service import resolve_challenges_for_window

    window = await get_window(db, window_id)
    if window.status == WINDOW_SETTLED:
        logger.info("PULPy window %d already settled, skipping", window_id)
        return {
            "window_id": window_id,
            "round_id": window.settled_by_round_id,
            "settled": True,
            "already_settled": True,
        }
    if window.status != WINDOW_LOCKED:
        raise BusinessLogicError(f"PULPy window {window_id} is {window.status}, cannot settle")

    blessings = await resolve_blessings_for_window(db, window_id, round_id)
    challenges = await resolve_challenges_for_window(db, window_id, round_id)

    unresolved = (
        blessings["failed"]
        or blessings["pending_reason"] is not None
        or challenges["failed"]
    )
    settled = False
    if unresolved:
        logger.warning(
            "PULPy window %d left locked after round %d: blessings=%s challenges=%s",
            window_id, round_id, blessings, challenges,
        )
    else:
        try:
            settled = await _transition(
                db, window_id, WINDOW_LOCKED, WINDOW_SETTLED,
                settled_by_round_id=round_id,
                settled_at=utcnow(),
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StorageError(f"Failed to mark PULPy window {window_id} settled") from exc

    if settled:
        logger.info("PULPy window %d settled by round %d", window_id, round_id)
        await publish_event(redis, "pubsub:window_settled", {
            "window_id": window_id,
            "round_id": round_id,
        })

    return {
        "window_id": window_id,
        "round_id": round_id,
        "settled": settled,
        "already_settled": False,
        "blessings": blessings,
        "challenges": challenges,
    }


async def expire_stale_windows(db: AsyncSession) -> list[int]:
    """Refund and expire locked windows whose expiry passed without a round.

    Unanswered and waitlisted challenges get the window-close rules first.
    A failure on one window is logged and the sweep moves on; a window whose
    refunds did not all succeed stays locked for the next sweep.
    """
    from pulp_economy.blessings.service import refund_blessings_for_window
    from pulp_economy.challenges.service import apply_window_close_rules, refund_challenges_for_window

    now = utcnow()
    result = await db.execute(
        select(PulpyWindow.id).where(
            PulpyWindow.status == WINDOW_LOCKED,
            PulpyWindow.expires_at <= now,
        )
    )
    stale_ids = [row[0] for row in result.all()]

    expired_ids: list[int] = []
    for window_id in stale_ids:
        try:
            close_rules = await apply_window_close_rules(db, window_id)
            blessings = await refund_blessings_for_window(db, window_id)
            challenges = await refund_challenges_for_window(db, window_id)
            if close_rules["failed"] or blessings["failed"] or challenges["failed"]:
                logger.warning("PULPy window %d refunds incomplete, will retry", window_id)
                continue
            expired = await _transition(db, window_id, WINDOW_LOCKED, WINDOW_EXPIRED)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Failed to expire PULPy window %d", window_id)
            continue
        if expired:
            expired_ids.append(window_id)
            logger.info(
                "PULPy window %d expired: refunded %d blessings, %d challenges",
                window_id, blessings["refunded"], challenges["refunded"],
            )

    return expired_ids

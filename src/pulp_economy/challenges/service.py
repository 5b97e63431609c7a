"""Challenge arena: head-to-head stroke wagers inside a PULPy window.

A player may only challenge someone above them in the season standings.
Each challenged player has at most one pending challenge per window; later
challengers queue as waiting and are charged only once promoted.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.database import atomic
from pulp_economy.db.models import Challenge, Player
from pulp_economy.errors import (
    BusinessLogicError,
    InsufficientBalanceError,
    NotFoundError,
    StorageError,
)
from pulp_economy.ledger import service as ledger
from pulp_economy.players.service import get_player_by_id
from pulp_economy.rounds.results import (
    get_active_season_event,
    get_round_results,
    get_season_standings,
)
from pulp_economy.timeutils import utcnow
from pulp_economy.windows.service import require_open_window

logger = logging.getLogger(__name__)

CHALLENGE_PENDING = "pending"
CHALLENGE_WAITING = "waiting"
CHALLENGE_ACCEPTED = "accepted"
CHALLENGE_DECLINED = "declined"
CHALLENGE_EXPIRED_NO_RESPONSE = "expired_no_response"
CHALLENGE_CANCELLED_WAITLIST = "cancelled_waitlist"
CHALLENGE_RESOLVED = "resolved"
CHALLENGE_REFUNDED = "refunded"


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge:
    """Get a challenge by ID."""
    result = await db.execute(
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .execution_options(populate_existing=True)
    )
    challenge = result.scalar_one_or_none()
    if challenge is None:
        raise NotFoundError(f"Challenge {challenge_id} not found")
    return challenge


async def _cas_status(
    db: AsyncSession,
    challenge_id: int,
    expected: str,
    target: str,
    **values: Any,
) -> bool:
    result = await db.execute(
        update(Challenge)
        .where(Challenge.id == challenge_id, Challenge.status == expected)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _has_issued(db: AsyncSession, challenger_id: int, window_id: int) -> bool:
    result = await db.execute(
        select(Challenge.id).where(
            Challenge.challenger_id == challenger_id,
            Challenge.window_id == window_id,
            Challenge.status != CHALLENGE_CANCELLED_WAITLIST,
        )
    )
    return result.first() is not None


async def _has_pending_against(db: AsyncSession, challenged_id: int, window_id: int) -> bool:
    result = await db.execute(
        select(Challenge.id).where(
            Challenge.challenged_id == challenged_id,
            Challenge.window_id == window_id,
            Challenge.status == CHALLENGE_PENDING,
        )
    )
    return result.first() is not None


async def _check_reaching_up(db: AsyncSession, challenger_id: int, challenged_id: int) -> None:
    """Challenger must sit strictly below the challenged player in the season standings."""
    season = await get_active_season_event(db)
    if season is None:
        raise BusinessLogicError("Challenges need an active season")

    positions = {s.player_id: s.position for s in await get_season_standings(db, season.id)}
    challenged_position = positions.get(challenged_id)
    if challenged_position is None:
        raise BusinessLogicError("That player has no season standing yet")
    # Players without a standing rank below everyone who has one
    challenger_position = positions.get(challenger_id, len(positions) + 1)
    if challenger_position <= challenged_position:
        raise BusinessLogicError("You can only challenge players ranked above you in the season")


# ---------------------------------------------------------------------------
# Issue / respond
# ---------------------------------------------------------------------------


async def issue_challenge(
    db: AsyncSession,
    challenger_id: int,
    challenged_id: int,
    window_id: int,
    wager: int,
) -> Challenge:
    """Issue a challenge. Pending (wager debited) or waiting (no debit)."""
    settings = get_settings()
    if wager < settings.min_wager:
        raise BusinessLogicError(f"Minimum challenge wager is {settings.min_wager} PULPs")
    if challenger_id == challenged_id:
        raise BusinessLogicError("You cannot challenge yourself")

    challenged = await get_player_by_id(db, challenged_id)
    if challenged is None or not challenged.is_active:
        raise NotFoundError(f"Player {challenged_id} not found")
    challenged_name = challenged.player_name

    await require_open_window(db, window_id)

    if await _has_issued(db, challenger_id, window_id):
        raise BusinessLogicError("You already issued a challenge in this window")

    await _check_reaching_up(db, challenger_id, challenged_id)

    waitlisted = await _has_pending_against(db, challenged_id, window_id)
    try:
        challenge = await _insert_challenge(
            db, challenger_id, challenged_id, challenged_name, window_id, wager, waitlisted,
        )
    except StorageError as exc:
        if not isinstance(exc.__cause__, IntegrityError):
            raise
        if waitlisted or await _has_issued(db, challenger_id, window_id):
            raise BusinessLogicError("You already issued a challenge in this window") from None
        # Another challenge against the same player went pending first
        waitlisted = True
        try:
            challenge = await _insert_challenge(
                db, challenger_id, challenged_id, challenged_name, window_id, wager, waitlisted,
            )
        except StorageError as retry_exc:
            if not isinstance(retry_exc.__cause__, IntegrityError):
                raise
            raise BusinessLogicError("You already issued a challenge in this window") from None

    challenge_id = challenge.id
    status = CHALLENGE_WAITING if waitlisted else CHALLENGE_PENDING
    logger.info(
        "Challenge %d issued: player %d -> player %d in window %d (wager=%d, %s)",
        challenge_id, challenger_id, challenged_id, window_id, wager, status,
    )
    return challenge


async def _insert_challenge(
    db: AsyncSession,
    challenger_id: int,
    challenged_id: int,
    challenged_name: str,
    window_id: int,
    wager: int,
    waitlisted: bool,
) -> Challenge:
    """Insert a pending challenge with its debit, or a waiting one without."""
    async with atomic(db, "Failed to issue challenge"):
        if not waitlisted:
            await ledger.debit(
                db, challenger_id, wager, ledger.TX_CHALLENGE_LOSS,
                f"Challenged {challenged_name}",
                {"window_id": window_id, "challenged_id": challenged_id},
            )
        challenge = Challenge(
            challenger_id=challenger_id,
            challenged_id=challenged_id,
            window_id=window_id,
            wager_amount=wager,
            status=CHALLENGE_WAITING if waitlisted else CHALLENGE_PENDING,
            cowardice_tax_paid=0,
            issued_at=utcnow(),
        )
        db.add(challenge)
        await db.flush()
    return challenge


async def respond_to_challenge(
    db: AsyncSession,
    challenge_id: int,
    challenged_id: int,
    accept: bool,
) -> Challenge:
    """Accept (match the wager) or decline (pay the cowardice tax)."""
    challenge = await get_challenge(db, challenge_id)
    if challenge.challenged_id != challenged_id:
        raise BusinessLogicError("Only the challenged player can respond")
    if challenge.status != CHALLENGE_PENDING:
        raise BusinessLogicError(f"Challenge is {challenge.status}, cannot respond")

    await require_open_window(db, challenge.window_id)

    wager = challenge.wager_amount
    window_id = challenge.window_id
    challenger_id = challenge.challenger_id
    now = utcnow()

    async with atomic(db, "Failed to respond to challenge"):
        if accept:
            claimed = await _cas_status(
                db, challenge_id, CHALLENGE_PENDING, CHALLENGE_ACCEPTED, responded_at=now,
            )
            if not claimed:
                raise BusinessLogicError("Challenge was already answered")
            await ledger.debit(
                db, challenged_id, wager, ledger.TX_CHALLENGE_LOSS,
                "Accepted challenge",
                {"challenge_id": challenge_id, "window_id": window_id},
            )
        else:
            tax = wager * get_settings().cowardice_tax_percent // 100
            claimed = await _cas_status(
                db, challenge_id, CHALLENGE_PENDING, CHALLENGE_DECLINED,
                responded_at=now,
                cowardice_tax_paid=tax,
            )
            if not claimed:
                raise BusinessLogicError("Challenge was already answered")
            if tax > 0:
                await ledger.debit(
                    db, challenged_id, tax, ledger.TX_CHALLENGE_DECLINED_BURN,
                    "Cowardice tax: declined a challenge",
                    {"challenge_id": challenge_id, "window_id": window_id},
                )
            await ledger.credit(
                db, challenger_id, wager, ledger.TX_CHALLENGE_REFUND,
                "Challenge declined, wager returned",
                {"challenge_id": challenge_id, "window_id": window_id},
            )
            await db.execute(
                update(Player)
                .where(Player.id == challenged_id)
                .values(challenges_declined=Player.challenges_declined + 1)
                .execution_options(synchronize_session=False)
            )

    logger.info(
        "Challenge %d %s by player %d",
        challenge_id, "accepted" if accept else "declined", challenged_id,
    )

    await _promote_waitlist(db, challenged_id, window_id)
    return await get_challenge(db, challenge_id)


async def _promote_waitlist(db: AsyncSession, challenged_id: int, window_id: int) -> Challenge | None:
    """Promote the oldest waiting challenge against a player to pending.

    The promoted challenger is charged now; one who can no longer afford the
    wager is cancelled and the next in line is tried.
    """
    while True:
        result = await db.execute(
            select(Challenge.id, Challenge.challenger_id, Challenge.wager_amount)
            .where(
                Challenge.challenged_id == challenged_id,
                Challenge.window_id == window_id,
                Challenge.status == CHALLENGE_WAITING,
            )
            .order_by(Challenge.issued_at.asc(), Challenge.id.asc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        challenge_id, challenger_id, wager = row

        try:
            async with atomic(db, "Failed to promote waitlisted challenge"):
                if not await _cas_status(db, challenge_id, CHALLENGE_WAITING, CHALLENGE_PENDING):
                    continue
                await ledger.debit(
                    db, challenger_id, wager, ledger.TX_CHALLENGE_LOSS,
                    "Waitlisted challenge is now live",
                    {"challenge_id": challenge_id, "window_id": window_id},
                )
        except InsufficientBalanceError:
            async with atomic(db, "Failed to cancel waitlisted challenge"):
                await _cas_status(db, challenge_id, CHALLENGE_WAITING, CHALLENGE_CANCELLED_WAITLIST)
            logger.info("Waitlisted challenge %d cancelled: challenger cannot cover wager", challenge_id)
            continue
        except StorageError:
            logger.exception("Failed to promote waitlisted challenge %d", challenge_id)
            return None

        logger.info("Waitlisted challenge %d promoted to pending", challenge_id)
        return await get_challenge(db, challenge_id)


# ---------------------------------------------------------------------------
# Window close, settlement, expiry
# ---------------------------------------------------------------------------


async def _challenge_ids(db: AsyncSession, window_id: int, status: str) -> list[int]:
    result = await db.execute(
        select(Challenge.id)
        .where(Challenge.window_id == window_id, Challenge.status == status)
        .order_by(Challenge.id.asc())
    )
    return [row[0] for row in result.all()]


async def apply_window_close_rules(db: AsyncSession, window_id: int) -> dict[str, Any]:
    """Penalize unanswered challenges and drop the waitlist once a window locks.

    Pending: the silent challenged player is burned half the wager (skipped
    if they cannot cover it) and the challenger gets the other half back.
    Waiting: cancelled, nothing was ever charged.
    """
    summary: dict[str, Any] = {
        "window_id": window_id,
        "expired_no_response": 0,
        "cancelled_waitlist": 0,
        "failed": 0,
    }
    burn_percent = get_settings().no_response_burn_percent

    for challenge_id in await _challenge_ids(db, window_id, CHALLENGE_PENDING):
        try:
            challenge = await get_challenge(db, challenge_id)
            burn = challenge.wager_amount * burn_percent // 100
            refund = challenge.wager_amount - burn
            claimed = await _cas_status(
                db, challenge_id, CHALLENGE_PENDING, CHALLENGE_EXPIRED_NO_RESPONSE,
                cowardice_tax_paid=burn,
                resolved_at=utcnow(),
            )
            if not claimed:
                await db.rollback()
                continue

            if burn > 0:
                try:
                    await ledger.debit(
                        db, challenge.challenged_id, burn, ledger.TX_CHALLENGE_NO_RESPONSE_BURN,
                        "Ignored a challenge until the window closed",
                        {"challenge_id": challenge_id, "window_id": window_id},
                    )
                except InsufficientBalanceError:
                    logger.info(
                        "Player %d cannot cover no-response burn for challenge %d, skipping burn",
                        challenge.challenged_id, challenge_id,
                    )
                    await db.execute(
                        update(Challenge)
                        .where(Challenge.id == challenge_id)
                        .values(cowardice_tax_paid=0)
                        .execution_options(synchronize_session=False)
                    )
            if refund > 0:
                await ledger.credit(
                    db, challenge.challenger_id, refund, ledger.TX_CHALLENGE_REFUND,
                    "Challenge unanswered, half the wager returned",
                    {"challenge_id": challenge_id, "window_id": window_id},
                )
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to apply close rules to challenge %d", challenge_id)
            continue
        summary["expired_no_response"] += 1

    for challenge_id in await _challenge_ids(db, window_id, CHALLENGE_WAITING):
        try:
            cancelled = await _cas_status(
                db, challenge_id, CHALLENGE_WAITING, CHALLENGE_CANCELLED_WAITLIST,
                resolved_at=utcnow(),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to cancel waitlisted challenge %d", challenge_id)
            continue
        if cancelled:
            summary["cancelled_waitlist"] += 1

    if summary["expired_no_response"] or summary["cancelled_waitlist"] or summary["failed"]:
        logger.info("Close rules for window %d: %s", window_id, summary)
    return summary


async def resolve_challenges_for_window(
    db: AsyncSession,
    window_id: int,
    round_id: int,
) -> dict[str, Any]:
    """Settle every accepted challenge by comparing total strokes in the round.

    Lower strokes takes the pot of 2x wager. A tie hands each player their own
    wager back. If either player is missing from the round both wagers are
    refunded. Each record is its own transaction.
    """
    summary: dict[str, Any] = {
        "window_id": window_id,
        "round_id": round_id,
        "resolved": 0,
        "ties": 0,
        "absent_refunds": 0,
        "failed": 0,
        "total_paid_out": 0,
    }

    strokes = {pr.player_id: pr.total_strokes for pr in await get_round_results(db, round_id)}

    for challenge_id in await _challenge_ids(db, window_id, CHALLENGE_ACCEPTED):
        try:
            challenge = await get_challenge(db, challenge_id)
            wager = challenge.wager_amount
            challenger_strokes = strokes.get(challenge.challenger_id)
            challenged_strokes = strokes.get(challenge.challenged_id)
            meta = {"challenge_id": challenge_id, "round_id": round_id, "window_id": window_id}

            winner_id: int | None = None
            if challenger_strokes is not None and challenged_strokes is not None:
                if challenger_strokes < challenged_strokes:
                    winner_id = challenge.challenger_id
                elif challenged_strokes < challenger_strokes:
                    winner_id = challenge.challenged_id

            claimed = await _cas_status(
                db, challenge_id, CHALLENGE_ACCEPTED, CHALLENGE_RESOLVED,
                winner_id=winner_id,
                round_id=round_id,
                resolved_at=utcnow(),
            )
            if not claimed:
                await db.rollback()
                continue

            outcome = "win"
            paid = 0
            if challenger_strokes is None or challenged_strokes is None:
                outcome = "absent"
                for player_id in (challenge.challenger_id, challenge.challenged_id):
                    await ledger.credit(
                        db, player_id, wager, ledger.TX_CHALLENGE_REFUND,
                        "Challenge refunded: a player missed the round", meta,
                    )
                paid = wager * 2
            elif winner_id is None:
                outcome = "tie"
                for player_id in (challenge.challenger_id, challenge.challenged_id):
                    await ledger.credit(
                        db, player_id, wager, ledger.TX_ADMIN_ADJUSTMENT,
                        f"Challenge tied at {challenger_strokes} strokes, wager returned", meta,
                    )
                paid = wager * 2
            else:
                await ledger.credit(
                    db, winner_id, wager * 2, ledger.TX_CHALLENGE_WIN,
                    f"Won challenge ({min(challenger_strokes, challenged_strokes)} vs "
                    f"{max(challenger_strokes, challenged_strokes)} strokes)",
                    meta,
                )
                paid = wager * 2
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to resolve challenge %d", challenge_id)
            continue

        summary["resolved"] += 1
        summary["total_paid_out"] += paid
        if outcome == "tie":
            summary["ties"] += 1
        elif outcome == "absent":
            summary["absent_refunds"] += 1

    logger.info(
        "Challenges resolved for window %d: %d resolved, %d ties, %d absent, %d failed",
        window_id, summary["resolved"], summary["ties"], summary["absent_refunds"], summary["failed"],
    )
    return summary


async def refund_challenges_for_window(db: AsyncSession, window_id: int) -> dict[str, Any]:
    """Give both players their wager back on every accepted challenge. Idempotent."""
    summary: dict[str, Any] = {"window_id": window_id, "refunded": 0, "failed": 0, "total_refunded": 0}

    for challenge_id in await _challenge_ids(db, window_id, CHALLENGE_ACCEPTED):
        try:
            challenge = await get_challenge(db, challenge_id)
            claimed = await _cas_status(
                db, challenge_id, CHALLENGE_ACCEPTED, CHALLENGE_REFUNDED, resolved_at=utcnow(),
            )
            if not claimed:
                await db.rollback()
                continue
            for player_id in (challenge.challenger_id, challenge.challenged_id):
                await ledger.credit(
                    db, player_id, challenge.wager_amount, ledger.TX_WINDOW_EXPIRED_REFUND,
                    "Challenge refunded: window expired without a round",
                    {"challenge_id": challenge_id, "window_id": window_id},
                )
            await db.commit()
        except Exception:
            await db.rollback()
            summary["failed"] += 1
            logger.exception("Failed to refund challenge %d", challenge_id)
            continue

        summary["refunded"] += 1
        summary["total_refunded"] += challenge.wager_amount * 2

    return summary


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_pending_challenges_for_player(db: AsyncSession, player_id: int) -> list[Challenge]:
    """Challenges awaiting this player's answer, oldest first."""
    result = await db.execute(
        select(Challenge)
        .where(Challenge.challenged_id == player_id, Challenge.status == CHALLENGE_PENDING)
        .order_by(Challenge.issued_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_challenges_for_player(
    db: AsyncSession,
    player_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[Challenge]:
    """Challenges issued or received by a player, newest first."""
    result = await db.execute(
        select(Challenge)
        .where(or_(Challenge.challenger_id == player_id, Challenge.challenged_id == player_id))
        .order_by(Challenge.issued_at.desc(), Challenge.id.desc())
        .offset(offset)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_challenges_for_window(db: AsyncSession, window_id: int) -> list[Challenge]:
    result = await db.execute(
        select(Challenge)
        .where(Challenge.window_id == window_id)
        .order_by(Challenge.issued_at.asc(), Challenge.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())

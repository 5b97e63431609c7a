"""PULP ledger: the only path through which a player's balance changes.

Every mutation is one conditional UPDATE on the player's row plus one
append-only transaction row, issued in the caller's database transaction.
The ledger never commits; the calling operation owns the unit of work.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.db.models import Player, PulpTransaction
from pulp_economy.errors import InsufficientBalanceError, NotFoundError, ValidationError
from pulp_economy.timeutils import utcnow

logger = logging.getLogger(__name__)

# Earnings
TX_ROUND_PARTICIPATION = "round_participation"
TX_STREAK_BONUS = "streak_bonus"
TX_BEAT_HIGHER_RANKED = "beat_higher_ranked"
TX_DRS_BONUS = "drs_bonus"
TX_WEEKLY_INTERACTION = "weekly_interaction"

# Wagers and settlement
TX_BLESSING_LOSS = "blessing_loss"
TX_BLESSING_WIN_PERFECT = "blessing_win_perfect"
TX_BLESSING_WIN_PARTIAL = "blessing_win_partial"
TX_CHALLENGE_LOSS = "challenge_loss"
TX_CHALLENGE_WIN = "challenge_win"
TX_CHALLENGE_REFUND = "challenge_refund"
TX_CHALLENGE_DECLINED_BURN = "challenge_declined_burn"
TX_CHALLENGE_NO_RESPONSE_BURN = "challenge_no_response_burn"
TX_ADMIN_ADJUSTMENT = "admin_adjustment"
TX_WINDOW_EXPIRED_REFUND = "window_expired_refund"

# Shop
TX_ADVANTAGE_PURCHASE = "advantage_purchase"
TX_ADVANTAGE_EXPIRED = "advantage_expired"

TRANSACTION_TYPES = frozenset({
    TX_ROUND_PARTICIPATION,
    TX_STREAK_BONUS,
    TX_BEAT_HIGHER_RANKED,
    TX_DRS_BONUS,
    TX_WEEKLY_INTERACTION,
    TX_BLESSING_LOSS,
    TX_BLESSING_WIN_PERFECT,
    TX_BLESSING_WIN_PARTIAL,
    TX_CHALLENGE_LOSS,
    TX_CHALLENGE_WIN,
    TX_CHALLENGE_REFUND,
    TX_CHALLENGE_DECLINED_BURN,
    TX_CHALLENGE_NO_RESPONSE_BURN,
    TX_ADMIN_ADJUSTMENT,
    TX_WINDOW_EXPIRED_REFUND,
    TX_ADVANTAGE_PURCHASE,
    TX_ADVANTAGE_EXPIRED,
})

# Only transparency rows may carry a zero amount
ZERO_AMOUNT_TYPES = frozenset({TX_ADVANTAGE_EXPIRED})


def _check_type(transaction_type: str) -> None:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}", field="transaction_type")


async def _apply_delta(
    db: AsyncSession,
    player_id: int,
    delta: int,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any] | None,
) -> int:
    """Conditionally move the balance and append the matching transaction row.

    Returns the new balance.
    """
    result = await db.execute(
        update(Player)
        .where(Player.id == player_id, Player.balance + delta >= 0)
        .values(balance=Player.balance + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        balance = await _read_balance(db, player_id)
        if balance is None:
            raise NotFoundError(f"Player {player_id} not found")
        raise InsufficientBalanceError(player_id, -delta, balance)

    db.add(PulpTransaction(
        player_id=player_id,
        amount=delta,
        transaction_type=transaction_type,
        description=description,
        tx_metadata=metadata or {},
        created_at=utcnow(),
    ))
    await db.flush()

    new_balance = await _read_balance(db, player_id)
    logger.debug(
        "Ledger %s %+d for player %d (balance=%s)",
        transaction_type, delta, player_id, new_balance,
    )
    return new_balance or 0


async def _read_balance(db: AsyncSession, player_id: int) -> int | None:
    result = await db.execute(select(Player.balance).where(Player.id == player_id))
    return result.scalar_one_or_none()


async def credit(
    db: AsyncSession,
    player_id: int,
    amount: int,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Add PULPs to a player. Returns the new balance."""
    if amount <= 0:
        raise ValidationError("Credit amount must be positive", field="amount")
    _check_type(transaction_type)
    return await _apply_delta(db, player_id, amount, transaction_type, description, metadata)


async def debit(
    db: AsyncSession,
    player_id: int,
    amount: int,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Remove PULPs from a player. Returns the new balance.

    Raises InsufficientBalanceError without touching anything when the
    balance cannot cover the amount.
    """
    if amount <= 0:
        raise ValidationError("Debit amount must be positive", field="amount")
    _check_type(transaction_type)
    return await _apply_delta(db, player_id, -amount, transaction_type, description, metadata)


async def record_zero(
    db: AsyncSession,
    player_id: int,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append a zero-amount transparency row (no balance change)."""
    if transaction_type not in ZERO_AMOUNT_TYPES:
        raise ValidationError(
            f"Transaction type {transaction_type} cannot be zero-amount",
            field="transaction_type",
        )
    db.add(PulpTransaction(
        player_id=player_id,
        amount=0,
        transaction_type=transaction_type,
        description=description,
        tx_metadata=metadata or {},
        created_at=utcnow(),
    ))
    await db.flush()


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


async def get_balance(db: AsyncSession, player_id: int) -> int:
    """Current balance; NotFoundError for an unknown player."""
    balance = await _read_balance(db, player_id)
    if balance is None:
        raise NotFoundError(f"Player {player_id} not found")
    return balance


async def get_transaction_history(
    db: AsyncSession,
    player_id: int,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[PulpTransaction], int]:
    """Newest-first page of a player's transactions plus the total count."""
    settings = get_settings()
    if limit is None:
        limit = settings.history_default_page_size
    limit = max(1, min(limit, settings.history_max_page_size))
    offset = max(0, offset)

    total_result = await db.execute(
        select(func.count()).select_from(PulpTransaction).where(PulpTransaction.player_id == player_id)
    )
    total = total_result.scalar() or 0

    result = await db.execute(
        select(PulpTransaction)
        .where(PulpTransaction.player_id == player_id)
        .order_by(PulpTransaction.created_at.desc(), PulpTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_player_stats(db: AsyncSession, player_id: int) -> dict[str, Any]:
    """Aggregate earned/spent totals, overall and per transaction type."""
    balance = await get_balance(db, player_id)

    result = await db.execute(
        select(
            PulpTransaction.transaction_type,
            func.count(PulpTransaction.id),
            func.coalesce(func.sum(PulpTransaction.amount), 0),
        )
        .where(PulpTransaction.player_id == player_id)
        .group_by(PulpTransaction.transaction_type)
    )

    by_type: dict[str, dict[str, int]] = {}
    transaction_count = 0
    for tx_type, count, total in result.all():
        by_type[tx_type] = {"count": count, "total": int(total)}
        transaction_count += count

    # Earned/spent must look at individual rows, a type can hold both signs
    sign_result = await db.execute(
        select(
            func.coalesce(func.sum(PulpTransaction.amount).filter(PulpTransaction.amount > 0), 0),
            func.coalesce(func.sum(PulpTransaction.amount).filter(PulpTransaction.amount < 0), 0),
        ).where(PulpTransaction.player_id == player_id)
    )
    earned, spent = sign_result.one()
    total_earned = int(earned)
    total_spent = -int(spent)

    return {
        "player_id": player_id,
        "current_balance": balance,
        "total_earned": total_earned,
        "total_spent": total_spent,
        "net_gain": total_earned - total_spent,
        "transaction_count": transaction_count,
        "by_type": by_type,
    }


async def verify_balance(db: AsyncSession, player_id: int) -> dict[str, Any]:
    """Compare the stored balance with the sum of the player's transactions."""
    stored = await get_balance(db, player_id)
    result = await db.execute(
        select(func.coalesce(func.sum(PulpTransaction.amount), 0))
        .where(PulpTransaction.player_id == player_id)
    )
    computed = int(result.scalar() or 0)
    if stored != computed:
        logger.error(
            "Balance mismatch for player %d: stored=%d computed=%d",
            player_id, stored, computed,
        )
    return {
        "player_id": player_id,
        "stored_balance": stored,
        "computed_balance": computed,
        "is_valid": stored == computed,
        "difference": stored - computed,
    }

"""ORM models for the PULP economy.

The economy owns players' balances, the transaction log, windows, blessings,
challenges and advantages. Events, rounds and per-player round results are
written by the scoring pipeline and only read here.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pulp_economy.db.base import Base, BigIntPK, JSONType


def _partial(where: str) -> dict[str, Any]:
    """Dialect kwargs for a partial index (Postgres and SQLite share the syntax)."""
    return {"postgresql_where": text(where), "sqlite_where": text(where)}


# ---------------------------------------------------------------------------
# Players & ledger
# ---------------------------------------------------------------------------


class Player(Base):
    """Registered league player and PULP account holder."""

    __tablename__ = "players"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_players_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    challenges_declined: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_rounds_this_season: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    participation_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_round_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_interaction_week: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    advantages: Mapped[list[PlayerAdvantage]] = relationship("PlayerAdvantage", back_populates="player")


class PulpTransaction(Base):
    """Immutable, append-only PULP ledger row. Never updated or deleted."""

    __tablename__ = "pulp_transactions"
    __table_args__ = (
        Index("idx_pulp_transactions_player_created", "player_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    tx_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# PULPy windows
# ---------------------------------------------------------------------------


class PulpyWindow(Base):
    """Globally exclusive, time-boxed wagering window."""

    __tablename__ = "pulpy_windows"
    __table_args__ = (
        # At most one open window system-wide
        Index("uq_pulpy_windows_single_open", "status", unique=True, **_partial("status = 'open'")),
        Index("idx_pulpy_windows_status", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    opened_by: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closes_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", server_default="open")
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_by_round_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Blessings
# ---------------------------------------------------------------------------


class Blessing(Base):
    """Top-3 prediction wager scoped to one window."""

    __tablename__ = "blessings"
    __table_args__ = (
        UniqueConstraint("player_id", "window_id", name="uq_blessings_player_window"),
        CheckConstraint("wager_amount >= 20", name="ck_blessings_min_wager"),
        Index("idx_blessings_window_status", "window_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    window_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("pulpy_windows.id"), nullable=False)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prediction_first: Mapped[str] = mapped_column(String(64), nullable=False)
    prediction_second: Mapped[str] = mapped_column(String(64), nullable=False)
    prediction_third: Mapped[str] = mapped_column(String(64), nullable=False)
    wager_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    payout_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    round_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """Head-to-head stroke wager between a lower- and a higher-standing player."""

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint("wager_amount >= 20", name="ck_challenges_min_wager"),
        CheckConstraint("challenger_id <> challenged_id", name="ck_challenges_distinct_players"),
        # One issued, non-cancelled challenge per challenger per window
        Index(
            "uq_challenges_issuer_window",
            "challenger_id",
            "window_id",
            unique=True,
            **_partial("status <> 'cancelled_waitlist'"),
        ),
        # Only one pending challenge per challenged player per window; the rest wait
        Index(
            "uq_challenges_pending_target",
            "challenged_id",
            "window_id",
            unique=True,
            **_partial("status = 'pending'"),
        ),
        Index("idx_challenges_window_status", "window_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    challenger_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    challenged_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    window_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("pulpy_windows.id"), nullable=False)
    wager_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    cowardice_tax_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    winner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    round_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Advantages
# ---------------------------------------------------------------------------


class AdvantageCatalogEntry(Base):
    """Purchasable perk definition (reference data, seeded at startup)."""

    __tablename__ = "advantage_catalog"

    advantage_key: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pulp_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    expiration_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class PlayerAdvantage(Base):
    """One purchased advantage instance, one row per instance."""

    __tablename__ = "player_advantages"
    __table_args__ = (
        # At most one active (unused, unexpired) instance per player per key
        Index(
            "uq_player_advantages_active_key",
            "player_id",
            "advantage_key",
            unique=True,
            **_partial("status = 'active'"),
        ),
        Index("idx_player_advantages_status_expires", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    advantage_key: Mapped[str] = mapped_column(
        String(32), ForeignKey("advantage_catalog.advantage_key"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    round_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    usage_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    player: Mapped[Player] = relationship("Player", back_populates="advantages")
    catalog_entry: Mapped[AdvantageCatalogEntry] = relationship("AdvantageCatalogEntry", lazy="joined")


class RoundAdvantageUsage(Base):
    """Per-round log of advantages used during that round."""

    __tablename__ = "round_advantage_usages"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    round_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("rounds.id"), nullable=False, index=True)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    player_name: Mapped[str] = mapped_column(String(64), nullable=False)
    advantage_key: Mapped[str] = mapped_column(String(32), nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)


# ---------------------------------------------------------------------------
# Settlement bookkeeping
# ---------------------------------------------------------------------------


class RoundProcessing(Base):
    """Marks a round whose participation and performance PULPs were awarded."""

    __tablename__ = "round_processing"

    round_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("rounds.id"), primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    players_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pulps_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Scoring pipeline (read-only for the economy)
# ---------------------------------------------------------------------------


class Event(Base):
    """A season or tournament."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class EventPlayer(Base):
    """Participant registry: players registered for an event."""

    __tablename__ = "event_players"
    __table_args__ = (
        UniqueConstraint("event_id", "player_id", name="uq_event_players_event_player"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)

    player: Mapped[Player] = relationship("Player", lazy="joined")


class Round(Base):
    """A completed round as delivered by the results producer."""

    __tablename__ = "rounds"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=False)
    round_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    played_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    course_name: Mapped[str | None] = mapped_column(String(128), nullable=True)


class PlayerRound(Base):
    """One player's ranked result in a round."""

    __tablename__ = "player_rounds"
    __table_args__ = (
        UniqueConstraint("round_id", "player_id", name="uq_player_rounds_round_player"),
        Index("idx_player_rounds_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    round_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("rounds.id"), nullable=False)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("players.id"), nullable=False)
    player_name: Mapped[str] = mapped_column(String(64), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    total_strokes: Mapped[int] = mapped_column(Integer, nullable=False)
    final_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

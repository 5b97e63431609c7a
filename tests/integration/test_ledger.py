"""Integration tests for the PULP ledger."""

from __future__ import annotations

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.config import get_settings
from pulp_economy.database import atomic
from pulp_economy.db.models import Player, PulpTransaction
from pulp_economy.errors import InsufficientBalanceError, NotFoundError, StorageError, ValidationError
from pulp_economy.ledger import service as ledger


@pytest.mark.asyncio
class TestCreditDebit:
    """Every balance change is a conditional update plus one transaction row."""

    async def test_credit_returns_new_balance_and_logs(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice")
        async with atomic(db_session, "credit"):
            new_balance = await ledger.credit(
                db_session, player_id, 50, ledger.TX_ADMIN_ADJUSTMENT, "Opening grant",
            )
        assert new_balance == 50

        entries, total = await ledger.get_transaction_history(db_session, player_id)
        assert total == 1
        assert entries[0].amount == 50
        assert entries[0].transaction_type == "admin_adjustment"

    async def test_debit_logs_negative_amount(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=100)
        async with atomic(db_session, "debit"):
            new_balance = await ledger.debit(
                db_session, player_id, 30, ledger.TX_BLESSING_LOSS, "Blessing",
                {"window_id": 1},
            )
        assert new_balance == 70

        entries, _ = await ledger.get_transaction_history(db_session, player_id)
        assert entries[0].amount == -30
        assert entries[0].tx_metadata == {"window_id": 1}

    async def test_insufficient_balance_changes_nothing(self, db_session: AsyncSession, factory):
        """A debit beyond the balance is rejected and leaves no trace."""
        player_id = await factory.player("Alice", balance=30)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            async with atomic(db_session, "debit"):
                await ledger.debit(db_session, player_id, 50, ledger.TX_BLESSING_LOSS, "Blessing")

        assert exc_info.value.balance == 30
        assert exc_info.value.amount == 50
        assert await factory.balance(player_id) == 30
        _, total = await ledger.get_transaction_history(db_session, player_id)
        assert total == 1

    async def test_debit_to_exactly_zero_allowed(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=20)
        async with atomic(db_session, "debit"):
            assert await ledger.debit(db_session, player_id, 20, ledger.TX_BLESSING_LOSS, "All in") == 0

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amounts_rejected(self, db_session: AsyncSession, factory, amount):
        player_id = await factory.player("Alice", balance=10)
        with pytest.raises(ValidationError):
            await ledger.credit(db_session, player_id, amount, ledger.TX_ADMIN_ADJUSTMENT, "x")
        with pytest.raises(ValidationError):
            await ledger.debit(db_session, player_id, amount, ledger.TX_BLESSING_LOSS, "x")

    async def test_unknown_transaction_type_rejected(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice")
        with pytest.raises(ValidationError) as exc_info:
            await ledger.credit(db_session, player_id, 10, "free_money", "x")
        assert exc_info.value.field == "transaction_type"

    async def test_unknown_player(self, db_session: AsyncSession, factory):
        with pytest.raises(NotFoundError):
            await ledger.credit(db_session, 9999, 10, ledger.TX_ADMIN_ADJUSTMENT, "x")
        await db_session.rollback()
        with pytest.raises(NotFoundError):
            await ledger.get_balance(db_session, 9999)

    async def test_zero_amount_only_for_transparency_rows(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=10)
        with pytest.raises(ValidationError):
            await ledger.record_zero(db_session, player_id, ledger.TX_ADMIN_ADJUSTMENT, "x")

        async with atomic(db_session, "zero"):
            await ledger.record_zero(
                db_session, player_id, ledger.TX_ADVANTAGE_EXPIRED, "Mulligan expired unused",
            )
        assert await factory.balance(player_id) == 10
        _, total = await ledger.get_transaction_history(db_session, player_id)
        assert total == 2

    async def test_store_rejects_negative_balance(self, db_session: AsyncSession, factory):
        """The players table itself refuses a negative balance."""
        player_id = await factory.player("Alice", balance=5)
        with pytest.raises(StorageError) as exc_info:
            async with atomic(db_session, "tamper"):
                await db_session.execute(
                    update(Player).where(Player.id == player_id).values(balance=-1)
                )
        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert await factory.balance(player_id) == 5


@pytest.mark.asyncio
class TestLedgerViews:
    """History, stats and reconciliation."""

    async def test_balance_equals_sum_of_transactions(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=100)
        async with atomic(db_session, "mixed"):
            await ledger.debit(db_session, player_id, 30, ledger.TX_BLESSING_LOSS, "Blessing")
            await ledger.credit(db_session, player_id, 60, ledger.TX_BLESSING_WIN_PERFECT, "Perfect")
            await ledger.debit(db_session, player_id, 100, ledger.TX_ADVANTAGE_PURCHASE, "Bag Trump")

        report = await ledger.verify_balance(db_session, player_id)
        assert report == {
            "player_id": player_id,
            "stored_balance": 30,
            "computed_balance": 30,
            "is_valid": True,
            "difference": 0,
        }

    async def test_verify_balance_detects_drift(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=40)
        await db_session.execute(update(Player).where(Player.id == player_id).values(balance=55))
        await db_session.commit()

        report = await ledger.verify_balance(db_session, player_id)
        assert report["is_valid"] is False
        assert report["difference"] == 15

    async def test_player_stats(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice", balance=100)
        async with atomic(db_session, "stats"):
            await ledger.debit(db_session, player_id, 30, ledger.TX_BLESSING_LOSS, "Blessing")
            await ledger.credit(db_session, player_id, 60, ledger.TX_BLESSING_WIN_PERFECT, "Perfect")

        stats = await ledger.get_player_stats(db_session, player_id)
        assert stats["current_balance"] == 130
        assert stats["total_earned"] == 160
        assert stats["total_spent"] == 30
        assert stats["net_gain"] == 130
        assert stats["transaction_count"] == 3
        assert stats["by_type"]["blessing_loss"] == {"count": 1, "total": -30}
        assert stats["by_type"]["admin_adjustment"] == {"count": 1, "total": 100}

    async def test_history_newest_first_with_paging(self, db_session: AsyncSession, factory):
        player_id = await factory.player("Alice")
        for amount in range(1, 6):
            async with atomic(db_session, "credit"):
                await ledger.credit(db_session, player_id, amount, ledger.TX_ADMIN_ADJUSTMENT, "x")

        entries, total = await ledger.get_transaction_history(db_session, player_id, limit=2)
        assert total == 5
        assert [e.amount for e in entries] == [5, 4]

        entries, _ = await ledger.get_transaction_history(db_session, player_id, limit=2, offset=4)
        assert [e.amount for e in entries] == [1]

    async def test_history_page_size_capped(self, db_session: AsyncSession, factory, monkeypatch):
        monkeypatch.setattr(get_settings(), "history_max_page_size", 3)
        player_id = await factory.player("Alice")
        for amount in range(1, 6):
            async with atomic(db_session, "credit"):
                await ledger.credit(db_session, player_id, amount, ledger.TX_ADMIN_ADJUSTMENT, "x")

        entries, total = await ledger.get_transaction_history(db_session, player_id, limit=1000)
        assert len(entries) == 3
        assert total == 5

    async def test_transactions_are_per_player(self, db_session: AsyncSession, factory):
        alice = await factory.player("Alice", balance=10)
        bob = await factory.player("Bob", balance=20)

        rows = (await db_session.execute(
            select(PulpTransaction.player_id, PulpTransaction.amount).order_by(PulpTransaction.id)
        )).all()
        assert [tuple(r) for r in rows] == [(alice, 10), (bob, 20)]

"""Pydantic models for balance and transaction history endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from pulp_economy.schemas import UtcDatetime


class BalanceResponse(BaseModel):
    player_id: int
    balance: int


class TransactionEntry(BaseModel):
    id: int
    amount: int
    transaction_type: str
    description: str | None = None
    metadata: dict[str, Any] = {}
    created_at: UtcDatetime


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionEntry]
    total: int
    limit: int
    offset: int


class TypeTotals(BaseModel):
    count: int
    total: int


class PlayerStatsResponse(BaseModel):
    player_id: int
    current_balance: int
    total_earned: int
    total_spent: int
    net_gain: int
    transaction_count: int
    by_type: dict[str, TypeTotals]

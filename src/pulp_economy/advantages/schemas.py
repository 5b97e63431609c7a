"""Pydantic models for advantage shop endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from pulp_economy.schemas import UtcDatetime


class CatalogEntryResponse(BaseModel):
    model_config = {"from_attributes": True}

    advantage_key: str
    name: str
    description: str
    pulp_cost: int
    expiration_hours: int


class CatalogResponse(BaseModel):
    advantages: list[CatalogEntryResponse]


class PurchaseAdvantageRequest(BaseModel):
    advantage_key: str = Field(..., min_length=1, max_length=32)


class UseAdvantageRequest(BaseModel):
    advantage_key: str = Field(..., min_length=1, max_length=32)
    round_id: int
    metadata: dict[str, Any] = {}


class PlayerAdvantageResponse(BaseModel):
    id: int
    advantage_key: str
    status: str
    name: str | None = None
    description: str | None = None
    pulp_cost: int | None = None
    purchased_at: UtcDatetime
    expires_at: UtcDatetime
    used_at: UtcDatetime | None = None
    round_id: int | None = None
    usage_metadata: dict[str, Any] | None = None


class PurchaseAdvantageResponse(BaseModel):
    advantage: PlayerAdvantageResponse
    new_balance: int
    weekly_bonus_awarded: bool = False


class PlayerAdvantagesResponse(BaseModel):
    advantages: list[PlayerAdvantageResponse]

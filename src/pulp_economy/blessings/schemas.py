"""Pydantic models for blessing endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from pulp_economy.schemas import UtcDatetime


class Predictions(BaseModel):
    first: str | None = None
    second: str | None = None
    third: str | None = None


class PlaceBlessingRequest(BaseModel):
    window_id: int
    event_id: int
    predictions: Predictions
    wager_amount: int


class BlessingResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    player_id: int
    window_id: int
    event_id: int
    prediction_first: str
    prediction_second: str
    prediction_third: str
    wager_amount: int
    status: str
    payout_amount: int
    round_id: int | None = None
    created_at: UtcDatetime
    resolved_at: UtcDatetime | None = None


class PlaceBlessingResponse(BaseModel):
    blessing: BlessingResponse
    new_balance: int
    weekly_bonus_awarded: bool = False


class BlessingListResponse(BaseModel):
    blessings: list[BlessingResponse]

"""Pydantic models for challenge endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from pulp_economy.schemas import UtcDatetime


class IssueChallengeRequest(BaseModel):
    challenged_id: int
    window_id: int
    wager_amount: int


class RespondChallengeRequest(BaseModel):
    challenge_id: int
    accept: bool


class ChallengeResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    challenger_id: int
    challenged_id: int
    window_id: int
    wager_amount: int
    status: str
    cowardice_tax_paid: int
    winner_id: int | None = None
    round_id: int | None = None
    issued_at: UtcDatetime
    responded_at: UtcDatetime | None = None
    resolved_at: UtcDatetime | None = None


class ChallengeActionResponse(BaseModel):
    challenge: ChallengeResponse
    new_balance: int
    weekly_bonus_awarded: bool = False


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]

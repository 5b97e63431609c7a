"""Pydantic models for PULPy window endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from pulp_economy.schemas import UtcDatetime


class WindowResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    opened_by: int
    opened_at: UtcDatetime
    closes_at: UtcDatetime
    status: str
    locked_at: UtcDatetime | None = None
    expires_at: UtcDatetime | None = None
    settled_by_round_id: int | None = None
    settled_at: UtcDatetime | None = None
    seconds_remaining: int | None = None

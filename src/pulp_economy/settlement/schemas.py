"""Pydantic models for round processing."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel


class ProcessRoundRequest(BaseModel):
    event_id: int
    event_type: Literal["season", "tournament"]
    round_meta: dict[str, Any] = {}


class PlayerRoundSummary(BaseModel):
    player_id: int
    player_name: str
    rank: int
    pulps_earned: int
    breakdown: dict[str, int]
    participation_streak: int


class ProcessRoundResponse(BaseModel):
    round_id: int
    event_id: int
    event_type: str
    already_processed: bool
    players_processed: int
    total_pulps_awarded: int
    player_summaries: list[PlayerRoundSummary]
    settlement: dict[str, Any] | None = None
    settlement_error: str | None = None

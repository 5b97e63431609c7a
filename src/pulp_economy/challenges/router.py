"""Challenge endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.challenges.schemas import (
    ChallengeActionResponse,
    ChallengeListResponse,
    ChallengeResponse,
    IssueChallengeRequest,
    RespondChallengeRequest,
)
from pulp_economy.challenges.service import (
    get_challenges_for_player,
    get_pending_challenges_for_player,
    issue_challenge,
    respond_to_challenge,
)
from pulp_economy.db.models import Player
from pulp_economy.dependencies import get_db
from pulp_economy.ledger.service import get_balance
from pulp_economy.players.dependencies import get_current_player
from pulp_economy.settlement.service import award_weekly_interaction_bonus

router = APIRouter(prefix="/api/v1/pulp", tags=["Challenges"])


@router.post("/challenges", response_model=ChallengeActionResponse, status_code=201)
async def create_challenge(
    body: IssueChallengeRequest,
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Challenge a higher-ranked player. Queued as waiting if they already have one pending."""
    player_id = player.id
    challenge = await issue_challenge(
        db,
        challenger_id=player_id,
        challenged_id=body.challenged_id,
        window_id=body.window_id,
        wager=body.wager_amount,
    )
    response = ChallengeResponse.model_validate(challenge)
    bonus = await award_weekly_interaction_bonus(db, player_id)
    return ChallengeActionResponse(
        challenge=response,
        new_balance=await get_balance(db, player_id),
        weekly_bonus_awarded=bonus,
    )


@router.post("/challenges/respond", response_model=ChallengeActionResponse)
async def respond_challenge(
    body: RespondChallengeRequest,
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Accept or decline a pending challenge."""
    player_id = player.id
    challenge = await respond_to_challenge(db, body.challenge_id, player_id, body.accept)
    response = ChallengeResponse.model_validate(challenge)
    bonus = await award_weekly_interaction_bonus(db, player_id)
    return ChallengeActionResponse(
        challenge=response,
        new_balance=await get_balance(db, player_id),
        weekly_bonus_awarded=bonus,
    )


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_challenges(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Challenges the caller issued or received, newest first."""
    challenges = await get_challenges_for_player(db, player.id, limit, offset)
    return ChallengeListResponse(challenges=[ChallengeResponse.model_validate(c) for c in challenges])


@router.get("/challenges/pending", response_model=ChallengeListResponse)
async def list_pending_challenges(
    player: Player = Depends(get_current_player),
    db: AsyncSession = Depends(get_db),
):
    """Challenges waiting for the caller's answer."""
    challenges = await get_pending_challenges_for_player(db, player.id)
    return ChallengeListResponse(challenges=[ChallengeResponse.model_validate(c) for c in challenges])

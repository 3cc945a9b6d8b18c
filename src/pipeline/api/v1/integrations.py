"""Integration OAuth state issuing and verification.

The connect flow asks for a state before redirecting to the provider and
verifies it on the callback; the state binds the redirect to the caller's
team and to the provider.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.pipeline.api.deps import CurrentUser, get_current_user, get_team
from src.pipeline.config import get_settings
from src.pipeline.core.tenant import TeamContext
from src.pipeline.integrations.oauth_state import (
    OAuthState,
    create_oauth_state,
    verify_oauth_state,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])


class StateResponse(BaseModel):
    state: str
    expires_in: int


class VerifyStateRequest(BaseModel):
    state: str


@router.post("/{provider}/state", response_model=StateResponse)
async def issue_state(
    provider: str,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> StateResponse:
    settings = get_settings()
    state = create_oauth_state(team.team_id, provider, settings.get_oauth_state_secret())
    return StateResponse(state=state, expires_in=settings.OAUTH_STATE_MAX_AGE_SECONDS)


@router.post("/{provider}/state/verify", response_model=OAuthState)
async def verify_state(
    provider: str,
    body: VerifyStateRequest,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> OAuthState:
    """Reject a state that fails verification or was issued for another team or provider."""
    settings = get_settings()
    parsed = verify_oauth_state(
        body.state,
        settings.get_oauth_state_secret(),
        max_age_ms=settings.OAUTH_STATE_MAX_AGE_SECONDS * 1000,
    )
    if parsed is None or parsed.team_id != team.team_id or parsed.provider != provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OAuth state",
        )
    return parsed

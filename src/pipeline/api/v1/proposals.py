"""Proposal lifecycle endpoints: create, send, record a view, sign."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.pipeline.api.deps import CurrentUser, get_current_user, get_state_service, get_team
from src.pipeline.core.tenant import TeamContext
from src.pipeline.proposals.schemas import (
    ProposalCreate,
    ProposalRead,
    ProposalViewCreate,
    ViewResult,
)
from src.pipeline.proposals.service import ProposalNotFoundError, ProposalService

router = APIRouter(prefix="/proposals", tags=["proposals"])


def _get_service(request: Request) -> ProposalService:
    return get_state_service(request, "proposal_service", "Proposal service")


def _not_found(exc: ProposalNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("", response_model=ProposalRead, status_code=201)
async def create_proposal(
    body: ProposalCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> ProposalRead:
    return await _get_service(request).create_proposal(team.team_id, body)


@router.post("/{proposal_id}/send", response_model=ProposalRead)
async def send_proposal(
    proposal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> ProposalRead:
    try:
        return await _get_service(request).mark_sent(team.team_id, proposal_id)
    except ProposalNotFoundError as exc:
        raise _not_found(exc)


@router.post("/{proposal_id}/view", response_model=ViewResult)
async def record_view(
    proposal_id: str,
    body: ProposalViewCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> ViewResult:
    data = body.model_copy(
        update={
            "ip_address": body.ip_address or (request.client.host if request.client else None),
            "user_agent": body.user_agent or request.headers.get("User-Agent"),
        }
    )
    try:
        return await _get_service(request).record_view(team.team_id, proposal_id, data)
    except ProposalNotFoundError as exc:
        raise _not_found(exc)


@router.post("/{proposal_id}/sign", response_model=ProposalRead)
async def sign_proposal(
    proposal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> ProposalRead:
    try:
        return await _get_service(request).mark_signed(team.team_id, proposal_id)
    except ProposalNotFoundError as exc:
        raise _not_found(exc)

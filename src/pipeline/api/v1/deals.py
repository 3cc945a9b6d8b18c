"""REST endpoints for the deal board: create, list, stage changes and drops.

Stage values in requests may use any recognised spelling; responses always
carry canonical stage ids.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from src.pipeline.api.deps import CurrentUser, get_current_user, get_state_service, get_team
from src.pipeline.core.tenant import TeamContext
from src.pipeline.deals.schemas import DealCard, DealCreate, StageChangeResult
from src.pipeline.deals.service import DealNotFoundError, DealStageService
from src.pipeline.deals.stages import StageConfig, get_stage_configs

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Request / Response Schemas ──────────────────────────────────────────────


class StageUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_id: str = Field(alias="dealId", min_length=1)
    stage: str = Field(min_length=1)


class BoardMoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_id: str = Field(alias="dealId", min_length=1)
    drop_target_id: str = Field(alias="dropTargetId", min_length=1)


class BoardResponse(BaseModel):
    stages: list[StageConfig]
    deals: list[DealCard]


def _get_deal_service(request: Request) -> DealStageService:
    return get_state_service(request, "deal_service", "Deal service")


# ── Endpoints ───────────────────────────────────────────────────────────────


@router.post("", response_model=DealCard, status_code=201)
async def create_deal(
    body: DealCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> DealCard:
    """Create a deal; queues ``deal.created``."""
    service = _get_deal_service(request)
    return await service.create_deal(team.team_id, body)


@router.get("", response_model=BoardResponse)
async def get_board(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> BoardResponse:
    """Stage columns plus the team's deal cards."""
    service = _get_deal_service(request)
    deals = await service.list_board(team.team_id)
    return BoardResponse(stages=get_stage_configs(), deals=deals)


@router.post("/stage", response_model=StageChangeResult)
async def update_stage(
    body: StageUpdateRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> StageChangeResult:
    """Move a deal to a stage; entering won/lost queues deal.won/deal.lost."""
    service = _get_deal_service(request)
    try:
        return await service.update_stage(team.team_id, body.deal_id, body.stage)
    except DealNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/board/move", response_model=StageChangeResult)
async def move_on_board(
    body: BoardMoveRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> StageChangeResult:
    """Apply a kanban drop; an unresolvable target returns ``cancelled``."""
    service = _get_deal_service(request)
    try:
        return await service.move_on_board(team.team_id, body.deal_id, body.drop_target_id)
    except DealNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

"""Deal stage workflow: persist first, then hand off the webhook event.

DealStageService is the single writer of deal stages. The stage row is
written and the write has returned before any event is published, and a
publishing failure never rolls back or fails the stage change.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.pipeline.deals.kanban import resolve_drop_target
from src.pipeline.deals.repository import DealRepository
from src.pipeline.deals.schemas import DealCard, DealCreate, StageChangeResult
from src.pipeline.deals.stages import Stage, closing_event_for, normalize_stage
from src.pipeline.events.publisher import EventPublisher
from src.pipeline.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

DEAL_CREATED_EVENT = "deal.created"


class DealNotFoundError(Exception):
    """The deal does not exist or belongs to another team."""

    def __init__(self, deal_id: str) -> None:
        super().__init__(f"Deal '{deal_id}' not found")
        self.deal_id = deal_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stage_event_data(deal: DealCard, previous: Stage, current: Stage) -> dict[str, Any]:
    return {
        "dealId": deal.id,
        "title": deal.title,
        "value": deal.value,
        "previousStage": previous.value,
        "stage": current.value,
        "contactId": deal.contact_id,
        "ownerId": deal.owner_id,
    }


class DealStageService:
    """Creates deals and moves them between stages.

    Args:
        repository: DealRepository (or a test double with the same methods).
        publisher: EventPublisher receiving deal.created/won/lost events.
        clock: Returns the timestamp written as ``updated_at``.
    """

    def __init__(
        self,
        repository: DealRepository,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._clock = clock

    async def create_deal(self, team_id: str, data: DealCreate) -> DealCard:
        deal = await self._repository.create_deal(team_id, data)
        logger.info("deal.created", team_id=team_id, deal_id=deal.id, stage=deal.stage.value)
        await self._publish(
            team_id,
            DEAL_CREATED_EVENT,
            {
                "dealId": deal.id,
                "title": deal.title,
                "value": deal.value,
                "stage": deal.stage.value,
                "contactId": deal.contact_id,
                "ownerId": deal.owner_id,
            },
        )
        return deal

    async def list_board(self, team_id: str) -> list[DealCard]:
        return await self._repository.list_deals(team_id)

    async def update_stage(
        self, team_id: str, deal_id: str, requested_stage: str | None,
    ) -> StageChangeResult:
        """Move a deal to ``requested_stage`` (any recognised spelling).

        Raises:
            DealNotFoundError: If the deal is not one of the team's.
        """
        deal = await self._repository.get_deal(team_id, deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)

        previous = normalize_stage(deal.stage)
        next_stage = normalize_stage(requested_stage)
        if previous == next_stage:
            return StageChangeResult(
                deal=deal, previous_stage=previous, stage=next_stage, changed=False,
            )

        updated = await self._repository.update_stage(
            team_id, deal_id, next_stage, self._clock(),
        )
        if updated is None:
            # Deleted between read and write
            raise DealNotFoundError(deal_id)

        logger.info(
            "deal.stage_updated",
            team_id=team_id,
            deal_id=deal_id,
            previous_stage=previous.value,
            stage=next_stage.value,
        )

        event = closing_event_for(next_stage)
        if event is not None:
            await self._publish(team_id, event, _stage_event_data(updated, previous, next_stage))

        return StageChangeResult(
            deal=updated,
            previous_stage=previous,
            stage=next_stage,
            changed=True,
            event=event,
        )

    async def move_on_board(
        self, team_id: str, deal_id: str, drop_target_id: str,
    ) -> StageChangeResult:
        """Apply a drag-and-drop onto ``drop_target_id``.

        An unresolvable target cancels the drop without touching storage.
        """
        board = await self._repository.list_deals(team_id)
        if not any(card.id == deal_id for card in board):
            raise DealNotFoundError(deal_id)

        target = resolve_drop_target(drop_target_id, board)
        if target is None:
            logger.debug(
                "deal.drop_cancelled",
                team_id=team_id,
                deal_id=deal_id,
                drop_target_id=drop_target_id,
            )
            return StageChangeResult(cancelled=True)

        return await self.update_stage(team_id, deal_id, target.value)

    async def _publish(self, team_id: str, event: str, data: dict[str, Any]) -> None:
        queued = await self._publisher.publish(
            PipelineEvent(event=event, team_id=team_id, data=data),
        )
        if not queued:
            logger.warning("deal.event_not_queued", team_id=team_id, event_type=event)

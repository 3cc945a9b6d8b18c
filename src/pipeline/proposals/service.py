"""Proposal lifecycle transitions and their webhook events.

Each transition writes the new status first and queues its event after the
write returns: proposal.sent on send, proposal.viewed on the first view of a
sent proposal, proposal.signed on the first signature.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.pipeline.events.publisher import EventPublisher
from src.pipeline.events.schemas import PipelineEvent
from src.pipeline.proposals.repository import ProposalRepository
from src.pipeline.proposals.schemas import (
    ProposalCreate,
    ProposalRead,
    ProposalStatus,
    ProposalViewCreate,
    ViewResult,
)

logger = structlog.get_logger(__name__)

# Statuses a view does not move to "viewed"
_VIEW_FROZEN_STATUSES = frozenset({ProposalStatus.SIGNED.value, ProposalStatus.DRAFT.value})


class ProposalNotFoundError(Exception):
    """The proposal does not exist or belongs to another team."""

    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal '{proposal_id}' not found")
        self.proposal_id = proposal_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_data(proposal: ProposalRead, **extra: Any) -> dict[str, Any]:
    return {
        "proposal_id": proposal.id,
        "title": proposal.title,
        "status": proposal.status,
        "public_url": proposal.public_url,
        **extra,
    }


class ProposalService:
    """Moves proposals through their lifecycle.

    Args:
        repository: ProposalRepository (or an in-memory double).
        publisher: EventPublisher for proposal.* events.
        clock: Source of ``signed_at`` timestamps.
    """

    def __init__(
        self,
        repository: ProposalRepository,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._clock = clock

    async def create_proposal(self, team_id: str, data: ProposalCreate) -> ProposalRead:
        return await self._repository.create_proposal(team_id, data)

    async def _require(self, team_id: str, proposal_id: str) -> ProposalRead:
        proposal = await self._repository.get_proposal(team_id, proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    async def mark_sent(self, team_id: str, proposal_id: str) -> ProposalRead:
        await self._require(team_id, proposal_id)
        updated = await self._repository.set_status(
            team_id, proposal_id, ProposalStatus.SENT.value,
        )
        if updated is None:
            raise ProposalNotFoundError(proposal_id)
        logger.info("proposal.sent", team_id=team_id, proposal_id=proposal_id)
        await self._publish(team_id, "proposal.sent", _event_data(updated))
        return updated

    async def record_view(
        self, team_id: str, proposal_id: str, data: ProposalViewCreate,
    ) -> ViewResult:
        """Store a view and advance the status to ``viewed`` where allowed."""
        proposal = await self._require(team_id, proposal_id)
        view = await self._repository.insert_view(proposal_id, data)

        previous = proposal.status
        notified = previous not in _VIEW_FROZEN_STATUSES and previous != ProposalStatus.VIEWED.value
        if previous not in _VIEW_FROZEN_STATUSES:
            proposal = (
                await self._repository.set_status(
                    team_id, proposal_id, ProposalStatus.VIEWED.value,
                )
                or proposal
            )

        if notified:
            logger.info("proposal.viewed", team_id=team_id, proposal_id=proposal_id)
            await self._publish(team_id, "proposal.viewed", _event_data(proposal))

        return ViewResult(proposal=proposal, view=view, notified=notified)

    async def mark_signed(self, team_id: str, proposal_id: str) -> ProposalRead:
        proposal = await self._require(team_id, proposal_id)
        if proposal.status == ProposalStatus.SIGNED.value:
            return proposal

        signed_at = self._clock()
        updated = await self._repository.set_status(
            team_id, proposal_id, ProposalStatus.SIGNED.value, signed_at=signed_at,
        )
        if updated is None:
            raise ProposalNotFoundError(proposal_id)
        logger.info("proposal.signed", team_id=team_id, proposal_id=proposal_id)
        await self._publish(
            team_id,
            "proposal.signed",
            _event_data(updated, signed_at=signed_at.isoformat()),
        )
        return updated

    async def _publish(self, team_id: str, event: str, data: dict[str, Any]) -> None:
        queued = await self._publisher.publish(
            PipelineEvent(event=event, team_id=team_id, data=data),
        )
        if not queued:
            logger.warning("proposal.event_not_queued", team_id=team_id, event_type=event)

"""Proposal repository -- team-scoped async CRUD for proposals and views."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.pipeline.proposals.models import ProposalModel, ProposalViewModel
from src.pipeline.proposals.schemas import (
    ProposalCreate,
    ProposalRead,
    ProposalViewCreate,
    ProposalViewRead,
)

logger = structlog.get_logger(__name__)


def _model_to_proposal(model: ProposalModel) -> ProposalRead:
    return ProposalRead(
        id=str(model.id),
        team_id=str(model.team_id),
        deal_id=str(model.deal_id) if model.deal_id else None,
        title=model.title,
        status=model.status,
        public_url=model.public_url,
        signed_at=model.signed_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_view(model: ProposalViewModel) -> ProposalViewRead:
    return ProposalViewRead(
        id=str(model.id),
        proposal_id=str(model.proposal_id),
        duration_seconds=model.duration_seconds,
        created_at=model.created_at,
    )


class ProposalRepository:
    """Async CRUD operations for proposals.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_proposal(self, team_id: str, data: ProposalCreate) -> ProposalRead:
        async for session in self._session_factory():
            model = ProposalModel(
                team_id=uuid.UUID(team_id),
                deal_id=uuid.UUID(data.deal_id) if data.deal_id else None,
                title=data.title,
                public_url=data.public_url,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_proposal(model)

    async def get_proposal(self, team_id: str, proposal_id: str) -> ProposalRead | None:
        try:
            proposal_uuid = uuid.UUID(proposal_id)
        except ValueError:
            return None
        async for session in self._session_factory():
            stmt = select(ProposalModel).where(
                ProposalModel.team_id == uuid.UUID(team_id),
                ProposalModel.id == proposal_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_proposal(model) if model is not None else None

    async def set_status(
        self,
        team_id: str,
        proposal_id: str,
        status: str,
        signed_at: datetime | None = None,
    ) -> ProposalRead | None:
        """Write a new status (and signed_at when given)."""
        values: dict = {"status": status}
        if signed_at is not None:
            values["signed_at"] = signed_at
        async for session in self._session_factory():
            stmt = (
                update(ProposalModel)
                .where(
                    ProposalModel.team_id == uuid.UUID(team_id),
                    ProposalModel.id == uuid.UUID(proposal_id),
                )
                .values(**values)
                .returning(ProposalModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            return _model_to_proposal(model) if model is not None else None

    async def insert_view(self, proposal_id: str, data: ProposalViewCreate) -> ProposalViewRead:
        async for session in self._session_factory():
            model = ProposalViewModel(
                proposal_id=uuid.UUID(proposal_id),
                duration_seconds=data.duration_seconds,
                ip_address=data.ip_address,
                user_agent=data.user_agent,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_view(model)

    async def list_created_since(self, team_id: str, since: datetime) -> list[ProposalRead]:
        """Team proposals created at or after ``since`` (funnel window)."""
        async for session in self._session_factory():
            stmt = select(ProposalModel).where(
                ProposalModel.team_id == uuid.UUID(team_id),
                ProposalModel.created_at >= since,
            )
            result = await session.execute(stmt)
            return [_model_to_proposal(m) for m in result.scalars().all()]
        return []

    async def list_views(self, proposal_ids: Sequence[str]) -> list[ProposalViewRead]:
        if not proposal_ids:
            return []
        async for session in self._session_factory():
            stmt = select(ProposalViewModel).where(
                ProposalViewModel.proposal_id.in_([uuid.UUID(p) for p in proposal_ids]),
            )
            result = await session.execute(stmt)
            return [_model_to_view(m) for m in result.scalars().all()]
        return []

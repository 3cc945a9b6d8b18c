"""Deal repository -- async CRUD for deals, team-scoped.

Uses the session_factory callable pattern shared by every repository in
this service. All methods take team_id as first argument; rows are returned
as DealCard schemas with the stage already normalised.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.pipeline.deals.models import DealModel
from src.pipeline.deals.schemas import DealCard, DealCreate
from src.pipeline.deals.stages import Stage, normalize_stage, to_db_value

logger = structlog.get_logger(__name__)


def _model_to_card(model: DealModel) -> DealCard:
    """Convert DealModel to DealCard schema."""
    return DealCard(
        id=str(model.id),
        team_id=str(model.team_id),
        title=model.title,
        value=model.value or 0.0,
        stage=normalize_stage(model.stage),
        contact_id=str(model.contact_id) if model.contact_id else None,
        owner_id=str(model.owner_id) if model.owner_id else None,
        expected_close_date=model.expected_close_date,
        notes=model.notes,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _optional_uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


class DealRepository:
    """Async CRUD operations for deals.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_deal(self, team_id: str, data: DealCreate) -> DealCard:
        """Insert a deal, persisting the canonical db value of its stage."""
        async for session in self._session_factory():
            model = DealModel(
                team_id=uuid.UUID(team_id),
                title=data.title,
                value=data.value,
                stage=to_db_value(normalize_stage(data.stage)),
                contact_id=_optional_uuid(data.contact_id),
                owner_id=_optional_uuid(data.owner_id),
                expected_close_date=data.expected_close_date,
                notes=data.notes,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_card(model)

    async def get_deal(self, team_id: str, deal_id: str) -> DealCard | None:
        """Get one of the team's deals by ID, or None."""
        try:
            deal_uuid = uuid.UUID(deal_id)
        except ValueError:
            return None
        async for session in self._session_factory():
            stmt = select(DealModel).where(
                DealModel.team_id == uuid.UUID(team_id),
                DealModel.id == deal_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_card(model) if model is not None else None

    async def list_deals(self, team_id: str) -> list[DealCard]:
        """List the team's deals, most recently updated first."""
        async for session in self._session_factory():
            stmt = (
                select(DealModel)
                .where(DealModel.team_id == uuid.UUID(team_id))
                .order_by(DealModel.updated_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_card(m) for m in result.scalars().all()]
        return []

    async def update_stage(
        self,
        team_id: str,
        deal_id: str,
        stage: Stage,
        updated_at: datetime,
    ) -> DealCard | None:
        """Persist a stage change and return the updated deal.

        Last write wins; no compare-and-swap on the previous stage.
        """
        async for session in self._session_factory():
            stmt = (
                update(DealModel)
                .where(
                    DealModel.team_id == uuid.UUID(team_id),
                    DealModel.id == uuid.UUID(deal_id),
                )
                .values(stage=to_db_value(stage), updated_at=updated_at)
                .returning(DealModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                return None
            logger.debug(
                "deal.stage_persisted",
                team_id=team_id,
                deal_id=deal_id,
                stage=stage.value,
            )
            return _model_to_card(model)
        return None

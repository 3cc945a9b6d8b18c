"""Pydantic schemas for deals and stage transitions."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.pipeline.deals.stages import Stage, normalize_stage


class DealCard(BaseModel):
    """A deal as it appears on the board.

    ``stage`` is always canonical; the raw stored value is normalised on the
    way in.
    """

    id: str
    team_id: str
    title: str
    value: float = 0.0
    stage: Stage = Stage.LEAD
    contact_id: str | None = None
    owner_id: str | None = None
    expected_close_date: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime

    @field_validator("stage", mode="before")
    @classmethod
    def _normalize_stage(cls, value: object) -> Stage:
        return normalize_stage(value if isinstance(value, str) else None)


class DealCreate(BaseModel):
    """Data required to put a new deal on the board."""

    title: str = Field(min_length=1, max_length=300)
    value: float = Field(default=0.0, ge=0)
    stage: str = Stage.LEAD.value
    contact_id: str | None = None
    owner_id: str | None = None
    expected_close_date: datetime | None = None
    notes: str | None = None


class StageChangeResult(BaseModel):
    """Outcome of a stage update.

    ``changed`` is False for the no-op case (deal already in the requested
    stage) and for cancelled board drops. ``event`` names the webhook event
    handed to the dispatch queue, if any.
    """

    deal: DealCard | None = None
    previous_stage: Stage | None = None
    stage: Stage | None = None
    changed: bool = False
    cancelled: bool = False
    event: str | None = None

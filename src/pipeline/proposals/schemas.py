"""Pydantic schemas for proposals and their views."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ProposalStatus(str, Enum):
    """Proposal lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    EXPIRED = "expired"
    FAILED = "failed"


class ProposalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    deal_id: str | None = None
    public_url: str | None = None


class ProposalRead(BaseModel):
    """A proposal as returned by the repository."""

    id: str
    team_id: str
    deal_id: str | None = None
    title: str
    status: str = ProposalStatus.DRAFT.value
    public_url: str | None = None
    signed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProposalViewCreate(BaseModel):
    duration_seconds: float | None = Field(default=None, ge=0)
    ip_address: str | None = None
    user_agent: str | None = None


class ProposalViewRead(BaseModel):
    id: str
    proposal_id: str
    duration_seconds: float | None = None
    created_at: datetime | None = None


class ViewResult(BaseModel):
    """Outcome of recording a view.

    ``notified`` is True only on the first transition into ``viewed``.
    """

    proposal: ProposalRead
    view: ProposalViewRead
    notified: bool = False

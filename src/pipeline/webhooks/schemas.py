"""Pydantic schemas for webhooks, delivery logs and delivery results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class WebhookEvent(str, Enum):
    """Events a webhook can subscribe to."""

    DEAL_CREATED = "deal.created"
    DEAL_WON = "deal.won"
    DEAL_LOST = "deal.lost"
    PROPOSAL_SENT = "proposal.sent"
    PROPOSAL_VIEWED = "proposal.viewed"
    PROPOSAL_SIGNED = "proposal.signed"
    WEBHOOK_TEST = "webhook.test"


def _validate_url(value: str) -> str:
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = "Webhook URL must be an absolute http(s) URL"
        raise ValueError(msg)
    return value


def _validate_events(values: list[WebhookEvent]) -> list[WebhookEvent]:
    if not values:
        msg = "At least one webhook event must be selected"
        raise ValueError(msg)
    # Drop duplicates, keep first-seen order
    return list(dict.fromkeys(values))


# ── Webhook CRUD ────────────────────────────────────────────────────────────


class WebhookCreate(BaseModel):
    url: str = Field(max_length=2048)
    events: list[WebhookEvent]
    active: bool = True

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_url(value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, values: list[WebhookEvent]) -> list[WebhookEvent]:
        return _validate_events(values)


class WebhookUpdate(BaseModel):
    """Partial update; the secret key is never editable."""

    url: str | None = Field(default=None, max_length=2048)
    events: list[WebhookEvent] | None = None
    active: bool | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        return _validate_url(value) if value is not None else None

    @field_validator("events")
    @classmethod
    def _check_events(cls, values: list[WebhookEvent] | None) -> list[WebhookEvent] | None:
        return _validate_events(values) if values is not None else None


class Webhook(BaseModel):
    """A webhook row as used by the dispatcher (includes the secret)."""

    id: str
    team_id: str
    url: str
    active: bool = True
    secret_key: str
    events: list[str] = Field(default_factory=list)
    last_triggered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class WebhookStats(BaseModel):
    success_count: int = 0
    failure_count: int = 0


class WebhookRead(BaseModel):
    """API view of a webhook; counters are derived from the delivery log."""

    id: str
    url: str
    active: bool
    secret_key: str
    events: list[str]
    success_count: int = 0
    failure_count: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime | None = None


# ── Delivery log ────────────────────────────────────────────────────────────


class WebhookLogCreate(BaseModel):
    webhook_id: str
    team_id: str
    event_type: str
    payload: dict[str, Any]
    response_status: int | None = None
    response_body: str | None = None
    success: bool
    duration_ms: int | None = None
    error_message: str | None = None


class WebhookLog(WebhookLogCreate):
    """One delivery attempt. Rows are append-only."""

    id: str
    created_at: datetime | None = None


# ── Delivery results ────────────────────────────────────────────────────────


class DeliveryAttempt(BaseModel):
    """What happened on one POST to a subscriber."""

    sent_at: str
    payload: str
    success: bool
    status_code: int | None = None
    response_body: str | None = None
    duration_ms: int = 0
    error: str | None = None


class DispatchSummary(BaseModel):
    """Result of fanning one event out to a team's subscribers."""

    event: str
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class RetryResult(BaseModel):
    attempt: DeliveryAttempt
    log: WebhookLog | None = None

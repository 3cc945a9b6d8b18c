"""Shared test fixtures: in-memory repositories and a recording publisher.

Provides:
- deal_repo / proposal_repo / webhook_repo: in-memory doubles exposing the
  same async methods as the SQLAlchemy repositories
- publisher: records every PipelineEvent handed to it
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

import pytest

from src.pipeline.deals.schemas import DealCard, DealCreate
from src.pipeline.deals.stages import Stage, normalize_stage
from src.pipeline.events.schemas import PipelineEvent
from src.pipeline.proposals.schemas import (
    ProposalCreate,
    ProposalRead,
    ProposalViewCreate,
    ProposalViewRead,
)
from src.pipeline.webhooks.schemas import (
    Webhook,
    WebhookCreate,
    WebhookLog,
    WebhookLogCreate,
    WebhookStats,
    WebhookUpdate,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryDealRepository:
    """In-memory DealRepository; records the order of stage writes."""

    def __init__(self) -> None:
        self._deals: dict[str, DealCard] = {}
        self.stage_writes: list[tuple[str, Stage]] = []

    def add(self, team_id: str, title: str, stage: str = "lead", deal_id: str | None = None) -> DealCard:
        now = _now()
        card = DealCard(
            id=deal_id or str(uuid.uuid4()),
            team_id=team_id,
            title=title,
            stage=stage,
            created_at=now,
            updated_at=now,
        )
        self._deals[card.id] = card
        return card

    async def create_deal(self, team_id: str, data: DealCreate) -> DealCard:
        now = _now()
        card = DealCard(
            id=str(uuid.uuid4()),
            team_id=team_id,
            title=data.title,
            value=data.value,
            stage=normalize_stage(data.stage),
            contact_id=data.contact_id,
            owner_id=data.owner_id,
            expected_close_date=data.expected_close_date,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        self._deals[card.id] = card
        return card

    async def get_deal(self, team_id: str, deal_id: str) -> DealCard | None:
        card = self._deals.get(deal_id)
        if card is not None and card.team_id == team_id:
            return card
        return None

    async def list_deals(self, team_id: str) -> list[DealCard]:
        return [d for d in self._deals.values() if d.team_id == team_id]

    async def update_stage(
        self, team_id: str, deal_id: str, stage: Stage, updated_at: datetime,
    ) -> DealCard | None:
        card = await self.get_deal(team_id, deal_id)
        if card is None:
            return None
        updated = card.model_copy(update={"stage": stage, "updated_at": updated_at})
        self._deals[deal_id] = updated
        self.stage_writes.append((deal_id, stage))
        return updated


class InMemoryProposalRepository:
    def __init__(self) -> None:
        self._proposals: dict[str, ProposalRead] = {}
        self._views: list[ProposalViewRead] = []

    def add(
        self,
        team_id: str,
        status: str = "draft",
        created_at: datetime | None = None,
        proposal_id: str | None = None,
    ) -> ProposalRead:
        now = created_at or _now()
        proposal = ProposalRead(
            id=proposal_id or str(uuid.uuid4()),
            team_id=team_id,
            title=f"Proposal {len(self._proposals) + 1}",
            status=status,
            created_at=now,
            updated_at=now,
        )
        self._proposals[proposal.id] = proposal
        return proposal

    def add_view(self, proposal_id: str, duration_seconds: float | None) -> ProposalViewRead:
        view = ProposalViewRead(
            id=str(uuid.uuid4()),
            proposal_id=proposal_id,
            duration_seconds=duration_seconds,
            created_at=_now(),
        )
        self._views.append(view)
        return view

    async def create_proposal(self, team_id: str, data: ProposalCreate) -> ProposalRead:
        proposal = self.add(team_id)
        proposal = proposal.model_copy(update={
            "title": data.title,
            "deal_id": data.deal_id,
            "public_url": data.public_url,
        })
        self._proposals[proposal.id] = proposal
        return proposal

    async def get_proposal(self, team_id: str, proposal_id: str) -> ProposalRead | None:
        proposal = self._proposals.get(proposal_id)
        if proposal is not None and proposal.team_id == team_id:
            return proposal
        return None

    async def set_status(
        self,
        team_id: str,
        proposal_id: str,
        status: str,
        signed_at: datetime | None = None,
    ) -> ProposalRead | None:
        proposal = await self.get_proposal(team_id, proposal_id)
        if proposal is None:
            return None
        update: dict = {"status": status, "updated_at": _now()}
        if signed_at is not None:
            update["signed_at"] = signed_at
        updated = proposal.model_copy(update=update)
        self._proposals[proposal_id] = updated
        return updated

    async def insert_view(self, proposal_id: str, data: ProposalViewCreate) -> ProposalViewRead:
        return self.add_view(proposal_id, data.duration_seconds)

    async def list_created_since(self, team_id: str, since: datetime) -> list[ProposalRead]:
        return [
            p for p in self._proposals.values()
            if p.team_id == team_id and p.created_at is not None and p.created_at >= since
        ]

    async def list_views(self, proposal_ids: Sequence[str]) -> list[ProposalViewRead]:
        wanted = set(proposal_ids)
        return [v for v in self._views if v.proposal_id in wanted]


class InMemoryWebhookRepository:
    """In-memory WebhookRepository with an append-only log list."""

    def __init__(self) -> None:
        self._webhooks: dict[str, Webhook] = {}
        self.logs: list[WebhookLog] = []
        self.fail_lookup: Exception | None = None
        self.fail_log_write: Exception | None = None

    async def create_webhook(self, team_id: str, data: WebhookCreate, secret_key: str) -> Webhook:
        now = _now()
        webhook = Webhook(
            id=str(uuid.uuid4()),
            team_id=team_id,
            url=data.url,
            active=data.active,
            secret_key=secret_key,
            events=[event.value for event in data.events],
            created_at=now,
            updated_at=now,
        )
        self._webhooks[webhook.id] = webhook
        return webhook

    async def get_webhook(self, team_id: str, webhook_id: str) -> Webhook | None:
        webhook = self._webhooks.get(webhook_id)
        if webhook is not None and webhook.team_id == team_id:
            return webhook
        return None

    async def list_webhooks(self, team_id: str) -> list[Webhook]:
        return [w for w in self._webhooks.values() if w.team_id == team_id]

    async def list_subscribed(self, team_id: str, event: str) -> list[Webhook]:
        if self.fail_lookup is not None:
            raise self.fail_lookup
        return [
            w for w in self._webhooks.values()
            if w.team_id == team_id and w.active and event in w.events
        ]

    async def update_webhook(
        self, team_id: str, webhook_id: str, data: WebhookUpdate,
    ) -> Webhook | None:
        webhook = await self.get_webhook(team_id, webhook_id)
        if webhook is None:
            return None
        values = data.model_dump(exclude_none=True)
        if "events" in values:
            values["events"] = [event.value for event in data.events or []]
        updated = webhook.model_copy(update={**values, "updated_at": _now()})
        self._webhooks[webhook_id] = updated
        return updated

    async def delete_webhook(self, team_id: str, webhook_id: str) -> bool:
        if await self.get_webhook(team_id, webhook_id) is None:
            return False
        del self._webhooks[webhook_id]
        self.logs = [log for log in self.logs if log.webhook_id != webhook_id]
        return True

    async def touch_last_triggered(self, webhook_id: str, triggered_at: datetime) -> None:
        webhook = self._webhooks.get(webhook_id)
        if webhook is not None:
            self._webhooks[webhook_id] = webhook.model_copy(
                update={"last_triggered_at": triggered_at},
            )

    async def insert_log(self, data: WebhookLogCreate) -> WebhookLog:
        if self.fail_log_write is not None:
            raise self.fail_log_write
        log = WebhookLog(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        self.logs.append(log)
        return log

    async def get_log(self, team_id: str, log_id: str) -> WebhookLog | None:
        for log in self.logs:
            if log.id == log_id and log.team_id == team_id:
                return log
        return None

    async def list_logs(
        self, team_id: str, success: bool | None = None, limit: int = 200,
    ) -> list[WebhookLog]:
        logs = [log for log in reversed(self.logs) if log.team_id == team_id]
        if success is not None:
            logs = [log for log in logs if log.success is success]
        return logs[:limit]

    async def get_delivery_stats(self, webhook_ids: Sequence[str]) -> dict[str, WebhookStats]:
        stats: dict[str, WebhookStats] = {}
        for log in self.logs:
            if log.webhook_id not in webhook_ids:
                continue
            entry = stats.setdefault(log.webhook_id, WebhookStats())
            if log.success:
                entry.success_count += 1
            else:
                entry.failure_count += 1
        return stats


class RecordingPublisher:
    """EventPublisher double; ``accept=False`` simulates a queue outage."""

    def __init__(self, accept: bool = True, on_publish=None) -> None:
        self.events: list[PipelineEvent] = []
        self.accept = accept
        self._on_publish = on_publish

    async def publish(self, event: PipelineEvent) -> bool:
        if self._on_publish is not None:
            self._on_publish(event)
        self.events.append(event)
        return self.accept


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def deal_repo() -> InMemoryDealRepository:
    return InMemoryDealRepository()


@pytest.fixture
def proposal_repo() -> InMemoryProposalRepository:
    return InMemoryProposalRepository()


@pytest.fixture
def webhook_repo() -> InMemoryWebhookRepository:
    return InMemoryWebhookRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()

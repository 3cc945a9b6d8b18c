"""Webhook repository -- team-scoped CRUD plus the append-only delivery log.

Uses the session_factory callable pattern. Delivery counters come from
get_delivery_stats(), which aggregates webhook_logs on read.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.pipeline.webhooks.models import WebhookLogModel, WebhookModel
from src.pipeline.webhooks.schemas import (
    Webhook,
    WebhookCreate,
    WebhookLog,
    WebhookLogCreate,
    WebhookStats,
    WebhookUpdate,
)

logger = structlog.get_logger(__name__)

DEFAULT_LOG_LIMIT = 200


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


def _model_to_webhook(model: WebhookModel) -> Webhook:
    return Webhook(
        id=str(model.id),
        team_id=str(model.team_id),
        url=model.url,
        active=model.active,
        secret_key=model.secret_key,
        events=list(model.events or []),
        last_triggered_at=model.last_triggered_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_log(model: WebhookLogModel) -> WebhookLog:
    return WebhookLog(
        id=str(model.id),
        webhook_id=str(model.webhook_id),
        team_id=str(model.team_id),
        event_type=model.event_type,
        payload=model.payload or {},
        response_status=model.response_status,
        response_body=model.response_body,
        success=model.success,
        duration_ms=model.duration_ms,
        error_message=model.error_message,
        created_at=model.created_at,
    )


class WebhookRepository:
    """Async persistence for webhooks and webhook_logs.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Webhooks ─────────────────────────────────────────────────────────────

    async def create_webhook(
        self, team_id: str, data: WebhookCreate, secret_key: str,
    ) -> Webhook:
        async for session in self._session_factory():
            model = WebhookModel(
                team_id=uuid.UUID(team_id),
                url=data.url,
                active=data.active,
                secret_key=secret_key,
                events=[event.value for event in data.events],
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_webhook(model)

    async def get_webhook(self, team_id: str, webhook_id: str) -> Webhook | None:
        webhook_uuid = _parse_uuid(webhook_id)
        if webhook_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = select(WebhookModel).where(
                WebhookModel.team_id == uuid.UUID(team_id),
                WebhookModel.id == webhook_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_webhook(model) if model is not None else None

    async def list_webhooks(self, team_id: str) -> list[Webhook]:
        async for session in self._session_factory():
            stmt = (
                select(WebhookModel)
                .where(WebhookModel.team_id == uuid.UUID(team_id))
                .order_by(WebhookModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_webhook(m) for m in result.scalars().all()]
        return []

    async def list_subscribed(self, team_id: str, event: str) -> list[Webhook]:
        """Active webhooks of the team whose events include ``event``."""
        async for session in self._session_factory():
            stmt = select(WebhookModel).where(
                WebhookModel.team_id == uuid.UUID(team_id),
                WebhookModel.active.is_(True),
                WebhookModel.events.contains([event]),
            )
            result = await session.execute(stmt)
            return [_model_to_webhook(m) for m in result.scalars().all()]
        return []

    async def update_webhook(
        self, team_id: str, webhook_id: str, data: WebhookUpdate,
    ) -> Webhook | None:
        webhook_uuid = _parse_uuid(webhook_id)
        if webhook_uuid is None:
            return None
        values = data.model_dump(exclude_none=True)
        if "events" in values:
            values["events"] = [event.value for event in data.events or []]
        if not values:
            return await self.get_webhook(team_id, webhook_id)
        async for session in self._session_factory():
            stmt = (
                update(WebhookModel)
                .where(
                    WebhookModel.team_id == uuid.UUID(team_id),
                    WebhookModel.id == webhook_uuid,
                )
                .values(**values)
                .returning(WebhookModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            return _model_to_webhook(model) if model is not None else None

    async def delete_webhook(self, team_id: str, webhook_id: str) -> bool:
        webhook_uuid = _parse_uuid(webhook_id)
        if webhook_uuid is None:
            return False
        async for session in self._session_factory():
            stmt = delete(WebhookModel).where(
                WebhookModel.team_id == uuid.UUID(team_id),
                WebhookModel.id == webhook_uuid,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0
        return False

    async def touch_last_triggered(self, webhook_id: str, triggered_at: datetime) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(WebhookModel)
                .where(WebhookModel.id == uuid.UUID(webhook_id))
                .values(last_triggered_at=triggered_at)
            )
            await session.commit()

    # ── Delivery log ─────────────────────────────────────────────────────────

    async def insert_log(self, data: WebhookLogCreate) -> WebhookLog:
        async for session in self._session_factory():
            model = WebhookLogModel(
                webhook_id=uuid.UUID(data.webhook_id),
                team_id=uuid.UUID(data.team_id),
                event_type=data.event_type,
                payload=data.payload,
                response_status=data.response_status,
                response_body=data.response_body,
                success=data.success,
                duration_ms=data.duration_ms,
                error_message=data.error_message,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_log(model)

    async def get_log(self, team_id: str, log_id: str) -> WebhookLog | None:
        log_uuid = _parse_uuid(log_id)
        if log_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = select(WebhookLogModel).where(
                WebhookLogModel.team_id == uuid.UUID(team_id),
                WebhookLogModel.id == log_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_log(model) if model is not None else None

    async def list_logs(
        self,
        team_id: str,
        success: bool | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[WebhookLog]:
        """Most recent delivery attempts first, optionally by outcome."""
        async for session in self._session_factory():
            stmt = select(WebhookLogModel).where(
                WebhookLogModel.team_id == uuid.UUID(team_id),
            )
            if success is not None:
                stmt = stmt.where(WebhookLogModel.success.is_(success))
            stmt = stmt.order_by(WebhookLogModel.created_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_log(m) for m in result.scalars().all()]
        return []

    async def get_delivery_stats(self, webhook_ids: Sequence[str]) -> dict[str, WebhookStats]:
        """Success/failure counts per webhook id, computed from the log."""
        if not webhook_ids:
            return {}
        async for session in self._session_factory():
            stmt = (
                select(
                    WebhookLogModel.webhook_id,
                    func.count().filter(WebhookLogModel.success.is_(True)),
                    func.count().filter(WebhookLogModel.success.is_(False)),
                )
                .where(WebhookLogModel.webhook_id.in_([uuid.UUID(w) for w in webhook_ids]))
                .group_by(WebhookLogModel.webhook_id)
            )
            result = await session.execute(stmt)
            return {
                str(webhook_id): WebhookStats(success_count=ok, failure_count=failed)
                for webhook_id, ok, failed in result.all()
            }
        return {}

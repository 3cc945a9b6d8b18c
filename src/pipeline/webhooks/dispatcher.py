"""Webhook fan-out, retries and test sends.

Every delivery attempt appends exactly one row to webhook_logs and bumps the
webhook's last_triggered_at. Earlier log rows are never modified; a retry is
a new attempt with a new row.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from src.pipeline.webhooks.delivery import WebhookSender, utc_iso_now
from src.pipeline.webhooks.repository import WebhookRepository
from src.pipeline.webhooks.schemas import (
    DeliveryAttempt,
    DispatchSummary,
    RetryResult,
    Webhook,
    WebhookEvent,
    WebhookLog,
    WebhookLogCreate,
)
from src.pipeline.webhooks.signing import build_webhook_test_data

logger = structlog.get_logger(__name__)


# ── Errors ──────────────────────────────────────────────────────────────────


class WebhookNotFoundError(Exception):
    def __init__(self, webhook_id: str) -> None:
        super().__init__(f"Webhook '{webhook_id}' not found")
        self.webhook_id = webhook_id


class WebhookLogNotFoundError(Exception):
    def __init__(self, log_id: str) -> None:
        super().__init__(f"Webhook log '{log_id}' not found")
        self.log_id = log_id


class WebhookAlreadyDeliveredError(Exception):
    def __init__(self, log_id: str) -> None:
        super().__init__(f"Webhook log '{log_id}' was already delivered successfully")
        self.log_id = log_id


class WebhookInactiveError(Exception):
    def __init__(self, webhook_id: str) -> None:
        super().__init__(f"Webhook '{webhook_id}' is not active")
        self.webhook_id = webhook_id


# ── Dispatcher ──────────────────────────────────────────────────────────────


class WebhookDispatcher:
    """Delivers events to subscribed webhooks and records every attempt.

    Args:
        repository: WebhookRepository (or an in-memory double).
        sender: WebhookSender performing the signed POST.
    """

    def __init__(self, repository: WebhookRepository, sender: WebhookSender) -> None:
        self._repository = repository
        self._sender = sender

    async def dispatch_event(
        self, team_id: str, event: str, data: dict[str, Any],
    ) -> DispatchSummary:
        """Send ``event`` to every active subscriber of the team concurrently.

        Never raises. A send that cannot complete is recorded as a failed
        attempt; lookup and persistence failures are logged and collected in
        ``DispatchSummary.errors``.
        """
        summary = DispatchSummary(event=event)
        try:
            hooks = await self._repository.list_subscribed(team_id, event)
        except Exception as exc:
            logger.error("webhook.lookup_failed", team_id=team_id, event_type=event, error=str(exc))
            summary.errors.append(f"lookup: {exc}")
            return summary

        if not hooks:
            return summary

        results = await asyncio.gather(
            *(self._deliver(hook, event, data) for hook in hooks),
        )

        summary.dispatched = len(hooks)
        for attempt, _log, error in results:
            if attempt.success:
                summary.succeeded += 1
            else:
                summary.failed += 1
            if error is not None:
                summary.errors.append(error)

        logger.info(
            "webhook.dispatch_complete",
            team_id=team_id,
            event_type=event,
            dispatched=summary.dispatched,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary

    async def retry_delivery(
        self, webhook: Webhook, event: str, data: dict[str, Any],
    ) -> RetryResult:
        """Re-send ``data`` as a fresh attempt with a new sentAt."""
        attempt, log, _error = await self._deliver(webhook, event, data)
        return RetryResult(attempt=attempt, log=log)

    async def retry_log(self, team_id: str, log_id: str) -> RetryResult:
        """Retry the delivery recorded in one of the team's failed log rows.

        Raises:
            WebhookLogNotFoundError: Unknown log id or another team's log.
            WebhookAlreadyDeliveredError: The logged attempt succeeded.
            WebhookNotFoundError: The webhook was deleted.
            WebhookInactiveError: The webhook is paused.
        """
        log = await self._repository.get_log(team_id, log_id)
        if log is None:
            raise WebhookLogNotFoundError(log_id)
        if log.success:
            raise WebhookAlreadyDeliveredError(log_id)

        webhook = await self._repository.get_webhook(team_id, log.webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(log.webhook_id)
        if not webhook.active:
            raise WebhookInactiveError(webhook.id)

        logger.info(
            "webhook.retry_requested",
            team_id=team_id,
            log_id=log_id,
            webhook_id=webhook.id,
            event_type=log.event_type,
        )
        return await self.retry_delivery(webhook, log.event_type, log.payload)

    async def send_test(self, webhook: Webhook) -> RetryResult:
        """Deliver a ``webhook.test`` event regardless of subscriptions."""
        return await self.retry_delivery(
            webhook,
            WebhookEvent.WEBHOOK_TEST.value,
            build_webhook_test_data(webhook.id),
        )

    async def _deliver(
        self, webhook: Webhook, event: str, data: dict[str, Any],
    ) -> tuple[DeliveryAttempt, WebhookLog | None, str | None]:
        try:
            attempt = await self._sender.send(webhook, event, data)
        except Exception as exc:
            logger.exception(
                "webhook.send_crashed",
                webhook_id=webhook.id,
                team_id=webhook.team_id,
                event_type=event,
            )
            attempt = DeliveryAttempt(
                sent_at=utc_iso_now(),
                payload="",
                success=False,
                error=str(exc) or exc.__class__.__name__,
            )

        try:
            log = await self._repository.insert_log(
                WebhookLogCreate(
                    webhook_id=webhook.id,
                    team_id=webhook.team_id,
                    event_type=event,
                    # No body was built, so the data may not be JSON-safe
                    payload=data if attempt.payload else {},
                    response_status=attempt.status_code,
                    response_body=attempt.response_body,
                    success=attempt.success,
                    duration_ms=attempt.duration_ms,
                    error_message=None if attempt.success else attempt.error,
                )
            )
            await self._repository.touch_last_triggered(
                webhook.id, datetime.now(timezone.utc),
            )
        except Exception as exc:
            logger.error(
                "webhook.log_write_failed",
                webhook_id=webhook.id,
                team_id=webhook.team_id,
                event_type=event,
                error=str(exc),
            )
            return attempt, None, f"{webhook.id}: {exc}"
        return attempt, log, None

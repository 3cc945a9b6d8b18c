"""Webhook worker: drains the dispatch stream into WebhookDispatcher.

The handler raises only when the subscriber lookup itself failed, so the
consumer's retry and dead-letter path engages. Failed HTTP deliveries are
normal results and are not retried here; they stay in the log for a manual
retry.
"""

from __future__ import annotations

import structlog

from src.pipeline.events.consumer import EventConsumer
from src.pipeline.events.schemas import PipelineEvent
from src.pipeline.webhooks.dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)


class DispatchIncompleteError(Exception):
    """Subscriber lookup failed; nothing was delivered."""


class WebhookWorker:
    """Consumer-group member that fans pipeline events out to webhooks.

    Args:
        consumer: EventConsumer bound to the webhook stream and group.
        dispatcher: WebhookDispatcher doing the fan-out.
    """

    def __init__(self, consumer: EventConsumer, dispatcher: WebhookDispatcher) -> None:
        self._consumer = consumer
        self._dispatcher = dispatcher

    async def handle(self, event: PipelineEvent) -> None:
        summary = await self._dispatcher.dispatch_event(event.team_id, event.event, event.data)
        logger.debug(
            "worker.event_handled",
            event_id=event.event_id,
            event_type=event.event,
            team_id=event.team_id,
            dispatched=summary.dispatched,
        )
        if summary.errors and summary.dispatched == 0:
            raise DispatchIncompleteError("; ".join(summary.errors))

    async def run(self) -> None:
        await self._consumer.process_loop(self.handle)

    def stop(self) -> None:
        self._consumer.stop()

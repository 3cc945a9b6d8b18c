"""Webhook delivery -- signing, HTTP delivery, fan-out, retries and the log.

Exports:
    WebhookDispatcher: Fan-out, retry and test-send orchestration.
    WebhookSender: One signed POST per call; never raises.
    WebhookRepository: Webhook CRUD and the append-only delivery log.
    WebhookEvent: Subscribable event names.
"""

from __future__ import annotations

from src.pipeline.webhooks.delivery import WebhookSender
from src.pipeline.webhooks.dispatcher import WebhookDispatcher
from src.pipeline.webhooks.repository import WebhookRepository
from src.pipeline.webhooks.schemas import WebhookEvent

__all__ = [
    "WebhookDispatcher",
    "WebhookEvent",
    "WebhookRepository",
    "WebhookSender",
]

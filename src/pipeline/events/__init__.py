"""Webhook dispatch queue.

State changes are handed off as PipelineEvent messages and fanned out to
subscribed webhooks by a worker, never inline on the request path.

Exports:
    PipelineEvent: Event model with flat Redis Streams serialisation.
    PipelineEventBus: XADD/XREADGROUP/XACK on pipeline streams.
    EventConsumer: Consumer-group loop with backoff retry.
    DeadLetterQueue: Store, list and replay failed events.
    StreamEventPublisher, TaskEventPublisher: never-raising publishers.
"""

from __future__ import annotations

from src.pipeline.events.schemas import PipelineEvent

__all__ = [
    "DeadLetterQueue",
    "EventConsumer",
    "PipelineEvent",
    "PipelineEventBus",
    "StreamEventPublisher",
    "TaskEventPublisher",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the Redis-backed classes."""
    if name == "PipelineEventBus":
        from src.pipeline.events.bus import PipelineEventBus

        return PipelineEventBus
    if name == "EventConsumer":
        from src.pipeline.events.consumer import EventConsumer

        return EventConsumer
    if name == "DeadLetterQueue":
        from src.pipeline.events.dlq import DeadLetterQueue

        return DeadLetterQueue
    if name in ("StreamEventPublisher", "TaskEventPublisher"):
        from src.pipeline.events import publisher

        return getattr(publisher, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)

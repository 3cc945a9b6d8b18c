"""Publishers that hand pipeline events to the webhook dispatch queue.

State-changing services call ``publish()`` after their write has returned.
A publisher never raises: a failure is logged, counted and reported as
False, and the caller's write stands.

- StreamEventPublisher: XADD to Redis Streams, drained by the webhook worker.
- TaskEventPublisher: schedules the dispatch on a background asyncio task in
  the current process (single-process deployments and local development).
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.pipeline.core.monitoring import pipeline_events_published_total
from src.pipeline.events.bus import PipelineEventBus
from src.pipeline.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

_xadd_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type((aioredis.ConnectionError, aioredis.TimeoutError)),
)


class EventPublisher(Protocol):
    async def publish(self, event: PipelineEvent) -> bool: ...


class _Dispatcher(Protocol):
    async def dispatch_event(self, team_id: str, event: str, data: dict[str, Any]) -> Any: ...


def _count(event: PipelineEvent, status: str) -> None:
    pipeline_events_published_total.labels(event=event.event, status=status).inc()


class StreamEventPublisher:
    """Publish events onto the webhook stream.

    Args:
        bus: PipelineEventBus wrapping the Redis client.
        stream: Stream name the webhook worker consumes.
    """

    def __init__(self, bus: PipelineEventBus, stream: str) -> None:
        self._bus = bus
        self._stream = stream

    @_xadd_retry
    async def _xadd(self, event: PipelineEvent) -> str:
        return await self._bus.publish(self._stream, event)

    async def publish(self, event: PipelineEvent) -> bool:
        try:
            message_id = await self._xadd(event)
        except (RetryError, aioredis.RedisError, OSError) as exc:
            _count(event, "error")
            logger.error(
                "event.publish_failed",
                event_type=event.event,
                event_id=event.event_id,
                team_id=event.team_id,
                error=str(exc),
            )
            return False

        _count(event, "queued")
        logger.info(
            "event.queued",
            event_type=event.event,
            event_id=event.event_id,
            team_id=event.team_id,
            message_id=message_id,
        )
        return True


class TaskEventPublisher:
    """Dispatch events on background tasks inside the current event loop.

    Strong references to running tasks are held until they finish so they
    are not garbage-collected mid-flight.

    Args:
        dispatcher: Object exposing ``dispatch_event(team_id, event, data)``.
    """

    def __init__(self, dispatcher: _Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._tasks: set[asyncio.Task] = set()

    async def publish(self, event: PipelineEvent) -> bool:
        try:
            task = asyncio.create_task(self._run(event))
        except RuntimeError as exc:
            _count(event, "error")
            logger.error("event.publish_failed", event_type=event.event, error=str(exc))
            return False

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        _count(event, "scheduled")
        return True

    async def _run(self, event: PipelineEvent) -> None:
        try:
            await self._dispatcher.dispatch_event(event.team_id, event.event, event.data)
        except Exception:
            logger.exception(
                "event.dispatch_task_failed",
                event_type=event.event,
                event_id=event.event_id,
                team_id=event.team_id,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled dispatch to finish (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

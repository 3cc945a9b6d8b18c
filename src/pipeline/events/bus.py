"""Event bus for the webhook dispatch queue using Redis Streams.

Stream key pattern: pipeline:events:{stream_name}

Events from every team share one stream; the team travels inside the event
so a single worker pool can drain the queue for all teams.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
import structlog

from src.pipeline.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

STREAM_MAXLEN = 10_000


class PipelineEventBus:
    """Publish to and consume from pipeline Redis Streams.

    Args:
        redis: Async Redis client (``decode_responses=True``).
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    def stream_key(self, stream: str) -> str:
        """Full key for a stream name, e.g. ``pipeline:events:webhooks``."""
        return f"pipeline:events:{stream}"

    async def publish(self, stream: str, event: PipelineEvent) -> str:
        """Append an event to a stream and return the Redis message ID."""
        return await self.publish_raw(stream, event.to_stream_dict())

    async def publish_raw(self, stream: str, data: dict[str, str]) -> str:
        """Append an already-serialised entry (used for retries and replays)."""
        stream_key = self.stream_key(stream)
        message_id = await self._redis.xadd(
            stream_key,
            data,
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
        logger.debug(
            "event.published",
            stream=stream_key,
            event_type=data.get("event"),
            event_id=data.get("event_id"),
            message_id=message_id,
        )
        return message_id

    async def ensure_group(self, stream: str, group: str) -> None:
        """Create the consumer group if it does not exist yet."""
        try:
            await self._redis.xgroup_create(
                self.stream_key(stream), group, id="0", mkstream=True,
            )
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def subscribe(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read new entries as a member of a consumer group.

        Returns:
            List of ``(stream_key, [(message_id, data), ...])`` tuples.
        """
        await self.ensure_group(stream, group)
        messages = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={self.stream_key(stream): ">"},
            count=count,
            block=block,
        )
        return messages or []

    async def ack(self, stream: str, group: str, message_id: str) -> None:
        """Acknowledge a processed message."""
        await self._redis.xack(self.stream_key(stream), group, message_id)

    async def get_pending(self, stream: str, group: str) -> dict[str, Any]:
        """Pending-entry summary for a consumer group (backlog monitoring)."""
        return await self._redis.xpending(self.stream_key(stream), group)

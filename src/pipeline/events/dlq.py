"""Dead letter queue for pipeline events whose handler kept failing.

DLQ key pattern: pipeline:events:{original_stream}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.pipeline.events.bus import PipelineEventBus

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead letter queue backed by a Redis Stream next to the original one.

    Args:
        bus: PipelineEventBus used for key naming and replays.
    """

    def __init__(self, bus: PipelineEventBus) -> None:
        self._bus = bus
        self._redis = bus._redis

    def _dlq_key(self, original_stream: str) -> str:
        """Build the DLQ stream key for a given original stream.

        Args:
            original_stream: Stream name without the ``pipeline:events:`` prefix.

        Returns:
            Full DLQ key like ``pipeline:events:{stream}:dlq``.
        """
        return f"{self._bus.stream_key(original_stream)}:dlq"

    async def send_to_dlq(
        self,
        original_stream: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Move a failed entry to the dead letter queue.

        The original fields are kept and failure metadata is added under
        ``_dlq_*`` keys (error, retry count, timestamp, original id).

        Args:
            original_stream: Stream name the entry was consumed from.
            message_id: Original Redis message ID.
            data: Raw entry fields from the stream.
            error: Error message from the last handler attempt.
            retry_count: Number of retries already made.

        Returns:
            DLQ message ID assigned by XADD.
        """
        dlq_key = self._dlq_key(original_stream)
        dlq_data: dict[str, str] = {
            **data,
            "_dlq_original_stream": original_stream,
            "_dlq_original_id": message_id,
            "_dlq_error": error,
            "_dlq_retry_count": str(retry_count),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        dlq_message_id = await self._redis.xadd(dlq_key, dlq_data)

        logger.warning(
            "event.dead_lettered",
            dlq_key=dlq_key,
            original_id=message_id,
            event_type=data.get("event"),
            team_id=data.get("team_id"),
            error=error,
            retry_count=retry_count,
        )
        return dlq_message_id

    async def list_dlq_messages(
        self,
        original_stream: str,
        count: int = 50,
    ) -> list[tuple[str, dict[str, Any]]]:
        """List dead-lettered entries for review, oldest first.

        Args:
            original_stream: Stream name the entries were consumed from.
            count: Maximum number of entries to return.

        Returns:
            List of ``(message_id, fields)`` tuples including ``_dlq_*`` metadata.
        """
        return await self._redis.xrange(self._dlq_key(original_stream), count=count)

    async def replay_message(self, original_stream: str, dlq_message_id: str) -> str:
        """Move a DLQ entry back onto its original stream for a fresh attempt.

        Failure metadata and the retry counter are stripped, so the replayed
        entry starts with a full retry budget. The DLQ entry is deleted.

        Args:
            original_stream: Stream name to replay onto.
            dlq_message_id: ID of the entry in the DLQ stream.

        Returns:
            New message ID on the original stream.

        Raises:
            ValueError: If the DLQ message ID is not found.
        """
        dlq_key = self._dlq_key(original_stream)
        messages = await self._redis.xrange(
            dlq_key, min=dlq_message_id, max=dlq_message_id, count=1,
        )
        if not messages:
            msg = f"DLQ message '{dlq_message_id}' not found in {dlq_key}"
            raise ValueError(msg)

        _msg_id, data = messages[0]
        replay_data = {
            k: v for k, v in data.items()
            if not k.startswith("_dlq_") and k != "_retry_count"
        }
        new_id = await self._bus.publish_raw(original_stream, replay_data)
        await self._redis.xdel(dlq_key, dlq_message_id)

        logger.info(
            "event.replayed",
            original_stream=original_stream,
            dlq_message_id=dlq_message_id,
            new_message_id=new_id,
        )
        return new_id

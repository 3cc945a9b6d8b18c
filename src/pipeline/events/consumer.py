"""Consumer-group loop for pipeline events with retry and dead-lettering.

A failed handler call is retried by re-publishing the entry with an
incremented ``_retry_count`` after a backoff of 1s, 4s, 16s. After
MAX_RETRIES the entry goes to the dead letter queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.pipeline.events.bus import PipelineEventBus
from src.pipeline.events.dlq import DeadLetterQueue
from src.pipeline.events.schemas import PipelineEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[[PipelineEvent], Awaitable[None]]


class EventConsumer:
    """Reads a stream through a consumer group and invokes a handler.

    Args:
        bus: PipelineEventBus for reading and acking.
        stream: Stream name to consume from.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        dlq: DeadLetterQueue for permanently failed entries.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]

    def __init__(
        self,
        bus: PipelineEventBus,
        stream: str,
        group: str,
        consumer_name: str,
        dlq: DeadLetterQueue,
    ) -> None:
        self._bus = bus
        self._stream = stream
        self._group = group
        self._consumer_name = consumer_name
        self._dlq = dlq
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def process_loop(self, handler: EventHandler) -> None:
        """Main processing loop: read, deserialize, handle, ack.

        Blocks on XREADGROUP until stop() is called. Each entry is turned
        into a PipelineEvent and handed to ``handler``; failures go through
        the retry and dead-letter path.

        Args:
            handler: Async callable processing one PipelineEvent. Must raise
                on failure for the retry to engage.
        """
        self._running = True
        logger.info(
            "consumer.started",
            stream=self._stream,
            group=self._group,
            consumer=self._consumer_name,
        )
        while self._running:
            await self.process_batch(handler)
        logger.info("consumer.stopped", consumer=self._consumer_name)

    async def process_batch(self, handler: EventHandler) -> int:
        """Process one XREADGROUP batch.

        Args:
            handler: Async callable processing one PipelineEvent.

        Returns:
            Number of entries read, whether or not their handler succeeded.
        """
        messages = await self._bus.subscribe(
            self._stream, self._group, self._consumer_name,
        )
        seen = 0
        for _stream_key, stream_messages in messages:
            for message_id, raw_data in stream_messages:
                await self._process_with_retry(message_id, raw_data, handler)
                seen += 1
        return seen

    async def _process_with_retry(
        self,
        message_id: str,
        raw_data: dict[str, str],
        handler: EventHandler,
    ) -> None:
        """Run the handler for one entry and ack it.

        On failure:
        - If the retry count has reached MAX_RETRIES, the entry is sent to
          the DLQ and the original is acked.
        - Otherwise, sleeps for the backoff delay and re-publishes the entry
          with an incremented ``_retry_count``; the copy arrives as a new
          delivery and the original is acked.

        Args:
            message_id: Redis message ID.
            raw_data: Raw string fields from the stream.
            handler: Async handler callable.
        """
        retry_count = int(raw_data.get("_retry_count", "0"))

        try:
            event = PipelineEvent.from_stream_dict(raw_data)
            await handler(event)
        except Exception as exc:
            logger.warning(
                "event.processing_failed",
                message_id=message_id,
                retry_count=retry_count,
                error=str(exc),
            )
            if retry_count >= self.MAX_RETRIES:
                await self._dlq.send_to_dlq(
                    original_stream=self._stream,
                    message_id=message_id,
                    data=raw_data,
                    error=str(exc),
                    retry_count=retry_count,
                )
            else:
                delay = self.RETRY_DELAYS[min(retry_count, len(self.RETRY_DELAYS) - 1)]
                await asyncio.sleep(delay)
                retry_data = dict(raw_data)
                retry_data["_retry_count"] = str(retry_count + 1)
                await self._bus.publish_raw(self._stream, retry_data)
                logger.info(
                    "event.retried",
                    message_id=message_id,
                    retry_count=retry_count + 1,
                    delay=delay,
                )
            await self._bus.ack(self._stream, self._group, message_id)
            return

        await self._bus.ack(self._stream, self._group, message_id)
        logger.debug(
            "event.processed",
            event_id=event.event_id,
            event_type=event.event,
            message_id=message_id,
        )

    def stop(self) -> None:
        """Signal the processing loop to stop after the current batch."""
        self._running = False

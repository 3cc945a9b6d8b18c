#!/usr/bin/env python3
"""Run a webhook worker draining the pipeline dispatch stream.

Usage:
    python scripts/run_webhook_worker.py --consumer worker-1

Run several processes with distinct --consumer names to scale out; the
consumer group spreads entries between them. Stops cleanly on SIGINT/SIGTERM.

    python scripts/run_webhook_worker.py --replay-dlq
        Move every dead-lettered entry back onto the stream and exit.
"""

import argparse
import asyncio
import os
import signal
import socket
import sys

# Ensure project root is on sys.path so we can import src.pipeline
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx  # noqa: E402
import structlog  # noqa: E402

from src.pipeline.api.middleware.logging import configure_structlog  # noqa: E402
from src.pipeline.config import get_settings  # noqa: E402
from src.pipeline.core.database import close_db  # noqa: E402
from src.pipeline.core.monitoring import init_sentry  # noqa: E402
from src.pipeline.core.redis import close_redis, get_redis_pool  # noqa: E402
from src.pipeline.events.bus import PipelineEventBus  # noqa: E402
from src.pipeline.events.consumer import EventConsumer  # noqa: E402
from src.pipeline.events.dlq import DeadLetterQueue  # noqa: E402
from src.pipeline.events.worker import WebhookWorker  # noqa: E402
from src.pipeline.main import build_webhook_dispatcher  # noqa: E402

logger = structlog.get_logger("webhook_worker")


async def replay_dlq(bus: PipelineEventBus, stream: str) -> int:
    dlq = DeadLetterQueue(bus)
    replayed = 0
    for message_id, _data in await dlq.list_dlq_messages(stream, count=1000):
        await dlq.replay_message(stream, message_id)
        replayed += 1
    return replayed


async def main_async(args: argparse.Namespace) -> None:
    settings = get_settings()
    configure_structlog()
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    bus = PipelineEventBus(get_redis_pool())
    if args.replay_dlq:
        replayed = await replay_dlq(bus, settings.WEBHOOK_STREAM)
        logger.info("worker.dlq_replayed", count=replayed)
        await close_redis()
        return

    consumer = EventConsumer(
        bus,
        stream=settings.WEBHOOK_STREAM,
        group=settings.WEBHOOK_CONSUMER_GROUP,
        consumer_name=args.consumer,
        dlq=DeadLetterQueue(bus),
    )

    async with httpx.AsyncClient(follow_redirects=False) as http_client:
        _repository, dispatcher = build_webhook_dispatcher(settings, http_client)
        worker = WebhookWorker(consumer, dispatcher)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, worker.stop)

        try:
            await worker.run()
        finally:
            await close_db()
            await close_redis()


def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver queued pipeline events to webhooks")
    parser.add_argument(
        "--consumer",
        default=f"{socket.gethostname()}-{os.getpid()}",
        help="Consumer name within the group (default: host-pid)",
    )
    parser.add_argument(
        "--replay-dlq",
        action="store_true",
        help="Replay dead-lettered events onto the stream and exit",
    )
    args = parser.parse_args()
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()

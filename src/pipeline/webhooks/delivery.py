"""Outbound webhook delivery over httpx.

WebhookSender.send() performs exactly one signed POST and always returns a
DeliveryAttempt. Timeouts, connection errors and non-2xx answers become
``success=False`` results; nothing is raised to the caller.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from src.pipeline.core.monitoring import record_webhook_delivery
from src.pipeline.webhooks.schemas import DeliveryAttempt, Webhook
from src.pipeline.webhooks.signing import build_webhook_payload, build_webhook_signature

logger = structlog.get_logger(__name__)


def utc_iso_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class WebhookSender:
    """Signs and POSTs webhook payloads.

    Args:
        client: Shared httpx.AsyncClient; owned by the caller.
        timeout: Per-request timeout in seconds.
        signature_header: Header carrying the hex HMAC.
        event_header: Header carrying the event name.
        response_body_limit: Max characters of response body kept.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = 10.0,
        signature_header: str = "X-Aero-Signature",
        event_header: str = "X-Aero-Event",
        response_body_limit: int = 1000,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._signature_header = signature_header
        self._event_header = event_header
        self._response_body_limit = response_body_limit

    async def send(
        self,
        webhook: Webhook,
        event: str,
        data: dict[str, Any],
        sent_at: str | None = None,
    ) -> DeliveryAttempt:
        sent_at = sent_at or utc_iso_now()
        start = time.monotonic()
        try:
            payload = build_webhook_payload(event, data, sent_at)
        except (TypeError, ValueError) as exc:
            # Nothing is POSTed; the attempt fails without a body
            return self._finish(
                webhook,
                event,
                DeliveryAttempt(
                    sent_at=sent_at,
                    payload="",
                    success=False,
                    error=f"Payload could not be encoded: {exc}",
                ),
            )

        headers = {
            "Content-Type": "application/json",
            self._signature_header: build_webhook_signature(webhook.secret_key, payload),
            self._event_header: event,
        }

        try:
            response = await self._client.post(
                webhook.url,
                content=payload.encode("utf-8"),
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            attempt = DeliveryAttempt(
                sent_at=sent_at,
                payload=payload,
                success=False,
                duration_ms=self._elapsed_ms(start),
                error=f"Timed out after {self._timeout:g}s",
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            attempt = DeliveryAttempt(
                sent_at=sent_at,
                payload=payload,
                success=False,
                duration_ms=self._elapsed_ms(start),
                error=str(exc) or exc.__class__.__name__,
            )
        else:
            success = response.is_success
            attempt = DeliveryAttempt(
                sent_at=sent_at,
                payload=payload,
                success=success,
                status_code=response.status_code,
                response_body=response.text[: self._response_body_limit],
                duration_ms=self._elapsed_ms(start),
                error=None if success else f"HTTP {response.status_code}",
            )

        return self._finish(webhook, event, attempt)

    def _finish(self, webhook: Webhook, event: str, attempt: DeliveryAttempt) -> DeliveryAttempt:
        record_webhook_delivery(event, attempt.success, attempt.duration_ms)
        log = logger.info if attempt.success else logger.warning
        log(
            "webhook.delivered" if attempt.success else "webhook.delivery_failed",
            webhook_id=webhook.id,
            team_id=webhook.team_id,
            event_type=event,
            status_code=attempt.status_code,
            duration_ms=attempt.duration_ms,
            error=attempt.error,
        )
        return attempt

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

"""Webhook payload serialisation and HMAC-SHA256 signing.

Subscribers verify a delivery by recomputing the HMAC of the raw request
body with their secret and comparing it with the signature header.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import math
import secrets
from typing import Any

TEST_MESSAGE = "Webhook test delivery"


def _finite(value: Any) -> Any:
    """Replace NaN and infinities with None, as JavaScript's JSON.stringify does."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(item) for item in value]
    return value


def build_webhook_payload(event: str, data: dict[str, Any], sent_at: str) -> str:
    """Serialise ``{"event", "data", "sentAt"}`` as compact JSON.

    Key order is fixed and non-ASCII text is kept as-is, so the exact bytes
    are reproducible by any subscriber that re-serialises the same values.
    Non-finite floats are sent as ``null``.

    Raises:
        TypeError: If ``data`` holds a value JSON cannot represent.
    """
    return json.dumps(
        {"event": event, "data": _finite(data), "sentAt": sent_at},
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def build_webhook_signature(secret: str, payload: str) -> str:
    """Lowercase hex HMAC-SHA256 of the UTF-8 payload."""
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_webhook_signature(secret: str, payload: str, signature: str) -> bool:
    """Constant-time check of a received signature against the payload."""
    if not signature:
        return False
    expected = build_webhook_signature(secret, payload)
    return hmac.compare_digest(expected, signature.strip().lower())


def build_webhook_test_data(webhook_id: str) -> dict[str, str]:
    return {"message": TEST_MESSAGE, "webhookId": webhook_id}


def generate_secret_key() -> str:
    """32 hex chars; assigned once when the webhook is created."""
    return secrets.token_hex(16)

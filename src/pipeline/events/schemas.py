"""Pipeline event schema carried on the webhook dispatch queue.

A PipelineEvent is the explicit message handed off after a state change
(deal created/won/lost, proposal sent/viewed/signed). It serialises to a flat
string dict for Redis Streams and deserialises back losslessly.

Stream key pattern: pipeline:events:{stream_name}
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class PipelineEvent(BaseModel):
    """A domain event waiting to be fanned out to subscribed webhooks.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        version: Schema version for forward compatibility.
        event: Webhook event name, e.g. ``deal.won``.
        team_id: Team whose webhooks should be notified.
        data: JSON-serialisable payload sent as the ``data`` field.
        timestamp: UTC creation time.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    version: str = "1.0"
    event: str
    team_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for XADD."""
        return {
            "event_id": self.event_id,
            "version": self.version,
            "event": self.event,
            "team_id": self.team_id,
            "data": json.dumps(self.data, ensure_ascii=False),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> PipelineEvent:
        """Deserialize from a Redis Streams flat dict.

        Bookkeeping fields added by the consumer and DLQ (``_retry_count``,
        ``_dlq_*``) are ignored.
        """
        return cls(
            event_id=raw["event_id"],
            version=raw.get("version", "1.0"),
            event=raw["event"],
            team_id=raw["team_id"],
            data=json.loads(raw["data"]) if raw.get("data") else {},
            timestamp=datetime.fromisoformat(raw["timestamp"]),
        )

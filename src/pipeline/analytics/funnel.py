"""Proposal conversion funnel: sent -> viewed -> engaged -> signed.

build_conversion_funnel() is pure and total. Records may be FunnelProposal /
FunnelView models, ORM rows or plain mappings; a record with a missing or
malformed field simply does not count toward the stage that field decides.
The result always satisfies ``signed <= engaged <= viewed <= sent``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

SENT_STATUSES = frozenset({"sent", "pending", "viewed", "signed"})
VIEWED_STATUSES = frozenset({"viewed", "signed"})
SIGNED_STATUS = "signed"

DEFAULT_ENGAGED_THRESHOLD_SECONDS = 60.0

VIEWED_FLEX_FLOOR = 0.32
ENGAGED_FLEX_FLOOR = 0.28
SIGNED_FLEX_FLOOR = 0.22


# ── Inputs ──────────────────────────────────────────────────────────────────


class FunnelProposal(BaseModel):
    """The part of a proposal the funnel looks at."""

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str | None = None
    status: str | None = None


class FunnelView(BaseModel):
    """One recorded view of a proposal."""

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    proposal_id: str | None = None
    duration_seconds: float | None = None


class FunnelPolicy(BaseModel):
    """Business rules applied on top of the raw counts.

    ``signed_proposals_are_always_engaged``: a signed proposal counts as
    engaged even when no qualifying view was recorded for it.
    """

    model_config = ConfigDict(frozen=True)

    engaged_threshold_seconds: float = DEFAULT_ENGAGED_THRESHOLD_SECONDS
    signed_proposals_are_always_engaged: bool = True


# ── Output ──────────────────────────────────────────────────────────────────


class ConversionFunnelMetrics(BaseModel):
    """Funnel counts, percentages of ``sent`` and display-only flex factors."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True,
    )

    sent_count: int = 0
    viewed_count: int = 0
    engaged_count: int = 0
    signed_count: int = 0
    sent_percent: int = 0
    viewed_percent: int = 0
    engaged_percent: int = 0
    signed_percent: int = 0
    viewed_flex: float = VIEWED_FLEX_FLOOR
    engaged_flex: float = ENGAGED_FLEX_FLOOR
    signed_flex: float = SIGNED_FLEX_FLOOR


# ── Status classification ───────────────────────────────────────────────────


def is_sent_status(status: object) -> bool:
    return isinstance(status, str) and status in SENT_STATUSES


def is_viewed_status(status: object) -> bool:
    return isinstance(status, str) and status in VIEWED_STATUSES


def is_signed_status(status: object) -> bool:
    return status == SIGNED_STATUS


# ── Helpers ─────────────────────────────────────────────────────────────────


def _field(record: Any, name: str, alias: str | None = None) -> Any:
    if record is None:
        return None
    if isinstance(record, Mapping):
        value = record.get(name)
        if value is None and alias is not None:
            value = record.get(alias)
        return value
    return getattr(record, name, None)


def _record_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    key = str(value)
    return key or None


def _duration(value: Any) -> float | None:
    """Seconds spent on a view; missing means 0, malformed means None."""
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _to_percent(part: int, total: int) -> int:
    """Half-up rounded percentage clamped to [0, 100]; 0 when total is 0."""
    if total <= 0:
        return 0
    return min(100, max(0, math.floor(part / total * 100 + 0.5)))


# ── Aggregation ─────────────────────────────────────────────────────────────


def build_conversion_funnel(
    proposals: Iterable[Any],
    views: Iterable[Any],
    engaged_threshold_seconds: float = DEFAULT_ENGAGED_THRESHOLD_SECONDS,
    policy: FunnelPolicy | None = None,
) -> ConversionFunnelMetrics:
    """Aggregate proposals and their views into funnel metrics.

    Counts are over distinct proposal ids, so duplicated records and input
    order do not change the result. A view makes its proposal engaged when
    the proposal is viewed-like and the view lasted at least the threshold.

    ``policy`` overrides ``engaged_threshold_seconds`` when given.
    """
    if policy is None:
        policy = FunnelPolicy(engaged_threshold_seconds=engaged_threshold_seconds)
    threshold = policy.engaged_threshold_seconds

    sent_ids: set[str] = set()
    viewed_ids: set[str] = set()
    signed_ids: set[str] = set()

    for proposal in proposals or ():
        proposal_id = _record_id(_field(proposal, "id"))
        if proposal_id is None:
            continue
        status = _field(proposal, "status")
        if is_sent_status(status):
            sent_ids.add(proposal_id)
        if is_viewed_status(status):
            viewed_ids.add(proposal_id)
        if is_signed_status(status):
            signed_ids.add(proposal_id)

    engaged_ids: set[str] = set()
    for view in views or ():
        proposal_id = _record_id(_field(view, "proposal_id", "proposalId"))
        if proposal_id is None or proposal_id not in viewed_ids:
            continue
        duration = _duration(_field(view, "duration_seconds", "durationSeconds"))
        if duration is not None and duration >= threshold:
            engaged_ids.add(proposal_id)

    sent_count = len(sent_ids)
    viewed_raw = len(viewed_ids)
    signed_raw = len(signed_ids)

    if policy.signed_proposals_are_always_engaged:
        engaged_ids |= signed_ids
        engaged_raw = max(len(engaged_ids), signed_raw)
    else:
        engaged_raw = len(engaged_ids)

    viewed_count = min(viewed_raw, sent_count)
    engaged_count = min(engaged_raw, viewed_count)
    signed_count = min(signed_raw, engaged_count)

    viewed_percent = _to_percent(viewed_count, sent_count)
    engaged_percent = _to_percent(engaged_count, sent_count)
    signed_percent = _to_percent(signed_count, sent_count)

    return ConversionFunnelMetrics(
        sent_count=sent_count,
        viewed_count=viewed_count,
        engaged_count=engaged_count,
        signed_count=signed_count,
        sent_percent=100 if sent_count > 0 else 0,
        viewed_percent=viewed_percent,
        engaged_percent=engaged_percent,
        signed_percent=signed_percent,
        viewed_flex=max(VIEWED_FLEX_FLOOR, viewed_percent / 100),
        engaged_flex=max(ENGAGED_FLEX_FLOOR, engaged_percent / 100),
        signed_flex=max(SIGNED_FLEX_FLOOR, signed_percent / 100),
    )

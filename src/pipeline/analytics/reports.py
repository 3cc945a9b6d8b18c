"""Conversion funnel report over a trailing window of days."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import BaseModel

from src.pipeline.analytics.funnel import (
    ConversionFunnelMetrics,
    FunnelPolicy,
    build_conversion_funnel,
)
from src.pipeline.proposals.repository import ProposalRepository

logger = structlog.get_logger(__name__)

DEFAULT_REPORT_DAYS = 30
MIN_REPORT_DAYS = 1
MAX_REPORT_DAYS = 90


class FunnelReport(BaseModel):
    days: int
    since: datetime
    funnel: ConversionFunnelMetrics


def clamp_days(days: float | None) -> int:
    """Round and clamp a requested window to [1, 90]; default 30."""
    if days is None or not math.isfinite(days):
        return DEFAULT_REPORT_DAYS
    return min(MAX_REPORT_DAYS, max(MIN_REPORT_DAYS, math.floor(days + 0.5)))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FunnelReportService:
    """Loads a team's proposals and views and aggregates the funnel.

    Args:
        repository: ProposalRepository used for the window query.
        policy: Funnel business rules (engagement threshold and so on).
        clock: Reference "now" for the window start.
    """

    def __init__(
        self,
        repository: ProposalRepository,
        policy: FunnelPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._policy = policy or FunnelPolicy()
        self._clock = clock

    async def build_report(self, team_id: str, days: float | None = DEFAULT_REPORT_DAYS) -> FunnelReport:
        window = clamp_days(days)
        since = self._clock() - timedelta(days=window)

        proposals = await self._repository.list_created_since(team_id, since)
        views = await self._repository.list_views([p.id for p in proposals])
        funnel = build_conversion_funnel(proposals, views, policy=self._policy)

        logger.debug(
            "report.funnel_built",
            team_id=team_id,
            days=window,
            proposals=len(proposals),
            views=len(views),
            sent=funnel.sent_count,
            signed=funnel.signed_count,
        )
        return FunnelReport(days=window, since=since, funnel=funnel)

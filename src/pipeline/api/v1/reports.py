"""Reporting endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from src.pipeline.analytics.reports import DEFAULT_REPORT_DAYS, FunnelReportService
from src.pipeline.api.deps import CurrentUser, get_current_user, get_state_service, get_team
from src.pipeline.core.tenant import TeamContext

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/conversion-funnel")
async def conversion_funnel(
    request: Request,
    days: float = Query(default=DEFAULT_REPORT_DAYS, description="Window in days, clamped to 1-90"),
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> dict[str, Any]:
    """Proposal funnel (sent/viewed/engaged/signed) for the trailing window."""
    service: FunnelReportService = get_state_service(
        request, "funnel_report_service", "Funnel report service",
    )
    report = await service.build_report(team.team_id, days)
    return {
        "days": report.days,
        "since": report.since.isoformat(),
        "funnel": report.funnel.model_dump(by_alias=True),
    }

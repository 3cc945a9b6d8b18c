"""Tests for the conversion funnel report: window clamping, service and endpoint."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.pipeline.analytics.funnel import FunnelPolicy
from src.pipeline.analytics.reports import FunnelReportService, clamp_days

TEAM_ID = str(uuid.uuid4())
OTHER_TEAM_ID = str(uuid.uuid4())

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


# ── clamp_days ──────────────────────────────────────────────────────────────


class TestClampDays:
    @pytest.mark.parametrize(
        "requested,expected",
        [
            (None, 30),
            (math.nan, 30),
            (math.inf, 30),
            (0, 1),
            (-5, 1),
            (1, 1),
            (7.4, 7),
            (7.5, 8),
            (2.5, 3),
            (90, 90),
            (365, 90),
        ],
    )
    def test_clamp_days(self, requested, expected):
        assert clamp_days(requested) == expected


# ── FunnelReportService ─────────────────────────────────────────────────────


class TestFunnelReportService:
    @pytest.mark.asyncio
    async def test_counts_only_the_window_and_team(self, proposal_repo):
        inside = proposal_repo.add(TEAM_ID, status="signed", created_at=NOW - timedelta(days=3))
        proposal_repo.add(TEAM_ID, status="sent", created_at=NOW - timedelta(days=3))
        proposal_repo.add(TEAM_ID, status="signed", created_at=NOW - timedelta(days=10))
        proposal_repo.add(OTHER_TEAM_ID, status="signed", created_at=NOW - timedelta(days=1))
        proposal_repo.add_view(inside.id, 120)

        service = FunnelReportService(proposal_repo, clock=lambda: NOW)
        report = await service.build_report(TEAM_ID, days=7)

        assert report.days == 7
        assert report.since == NOW - timedelta(days=7)
        assert report.funnel.sent_count == 2
        assert report.funnel.signed_count == 1
        assert report.funnel.signed_percent == 50

    @pytest.mark.asyncio
    async def test_applies_policy_threshold(self, proposal_repo):
        viewed = proposal_repo.add(TEAM_ID, status="viewed", created_at=NOW - timedelta(days=1))
        proposal_repo.add_view(viewed.id, 20)

        lenient = FunnelReportService(
            proposal_repo, policy=FunnelPolicy(engaged_threshold_seconds=10), clock=lambda: NOW,
        )
        strict = FunnelReportService(proposal_repo, clock=lambda: NOW)

        assert (await lenient.build_report(TEAM_ID)).funnel.engaged_count == 1
        assert (await strict.build_report(TEAM_ID)).funnel.engaged_count == 0


# ── Endpoint ────────────────────────────────────────────────────────────────


def _make_mock_app():
    from fastapi import FastAPI

    from src.pipeline.api.v1.reports import router

    app = FastAPI()
    app.include_router(router, prefix="/v1")
    return app


def _mock_get_current_user():
    mock_user = MagicMock()
    mock_user.user_id = str(uuid.uuid4())
    mock_user.team_id = TEAM_ID
    return mock_user


def _mock_get_team():
    mock_team = MagicMock()
    mock_team.team_id = TEAM_ID
    return mock_team


@pytest_asyncio.fixture
async def client_and_repo(proposal_repo):
    from src.pipeline.api.deps import get_current_user, get_team

    app = _make_mock_app()
    app.dependency_overrides[get_current_user] = _mock_get_current_user
    app.dependency_overrides[get_team] = _mock_get_team
    app.state.funnel_report_service = FunnelReportService(proposal_repo, clock=lambda: NOW)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, proposal_repo


@pytest.mark.asyncio
async def test_conversion_funnel_endpoint(client_and_repo):
    """GET /v1/reports/conversion-funnel -> camelCase funnel for the window."""
    client, repo = client_and_repo
    repo.add(TEAM_ID, status="signed", created_at=NOW - timedelta(days=2))
    repo.add(TEAM_ID, status="sent", created_at=NOW - timedelta(days=2))

    response = await client.get("/v1/reports/conversion-funnel?days=14")

    assert response.status_code == 200
    data = response.json()
    assert data["days"] == 14
    assert data["funnel"]["sentCount"] == 2
    assert data["funnel"]["signedCount"] == 1
    assert data["funnel"]["signedPercent"] == 50


@pytest.mark.asyncio
async def test_conversion_funnel_clamps_days(client_and_repo):
    client, _repo = client_and_repo

    response = await client.get("/v1/reports/conversion-funnel?days=1000")
    assert response.json()["days"] == 90

    response = await client.get("/v1/reports/conversion-funnel")
    assert response.json()["days"] == 30


@pytest.mark.asyncio
async def test_conversion_funnel_service_missing_returns_503():
    from src.pipeline.api.deps import get_current_user, get_team

    app = _make_mock_app()
    app.dependency_overrides[get_current_user] = _mock_get_current_user
    app.dependency_overrides[get_team] = _mock_get_team

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/v1/reports/conversion-funnel")

    assert response.status_code == 503
    assert "not initialized" in response.json()["detail"]

"""Integration tests for the deal board API endpoints.

Uses the InMemoryDealRepository double behind a real DealStageService and
httpx AsyncClient against a minimal app with auth overridden.
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.pipeline.deals.service import DealStageService

# ── Test Fixtures ────────────────────────────────────────────────────────────

TEAM_ID = str(uuid.uuid4())


def _make_mock_app():
    """Create a minimal FastAPI app with the deals router."""
    from fastapi import FastAPI

    from src.pipeline.api.v1.deals import router

    app = FastAPI()
    app.include_router(router, prefix="/v1")
    return app


def _mock_get_current_user():
    mock_user = MagicMock()
    mock_user.user_id = str(uuid.uuid4())
    mock_user.team_id = TEAM_ID
    mock_user.role = "admin"
    return mock_user


def _mock_get_team():
    mock_team = MagicMock()
    mock_team.team_id = TEAM_ID
    return mock_team


@pytest_asyncio.fixture
async def client_and_repo(deal_repo, publisher):
    """Test client with an in-memory repository and a recording publisher."""
    from src.pipeline.api.deps import get_current_user, get_team

    app = _make_mock_app()
    app.dependency_overrides[get_current_user] = _mock_get_current_user
    app.dependency_overrides[get_team] = _mock_get_team
    app.state.deal_service = DealStageService(deal_repo, publisher)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, deal_repo, publisher


# ── Create / Board ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_deal(client_and_repo):
    """POST /v1/deals -> 201 with a canonical stage."""
    client, _repo, publisher = client_and_repo

    response = await client.post(
        "/v1/deals", json={"title": "Acme Corp", "value": 5000, "stage": "Görüşme"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Acme Corp"
    assert data["stage"] == "negotiation"
    assert publisher.events[0].event == "deal.created"


@pytest.mark.asyncio
async def test_create_deal_rejects_blank_title(client_and_repo):
    client, _repo, _publisher = client_and_repo
    response = await client.post("/v1/deals", json={"title": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_board_lists_stages_and_deals(client_and_repo):
    """GET /v1/deals -> five columns plus the team's cards."""
    client, repo, _publisher = client_and_repo
    repo.add(TEAM_ID, "Mine", stage="kazanildi")
    repo.add(str(uuid.uuid4()), "Someone else's")

    response = await client.get("/v1/deals")

    assert response.status_code == 200
    data = response.json()
    assert [s["id"] for s in data["stages"]] == ["lead", "proposal", "negotiation", "won", "lost"]
    assert [d["title"] for d in data["deals"]] == ["Mine"]
    assert data["deals"][0]["stage"] == "won"


# ── Stage changes ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_stage_to_won(client_and_repo):
    """POST /v1/deals/stage -> 200 and deal.won queued."""
    client, repo, publisher = client_and_repo
    deal = repo.add(TEAM_ID, "Closing")

    response = await client.post("/v1/deals/stage", json={"dealId": deal.id, "stage": "WON"})

    assert response.status_code == 200
    data = response.json()
    assert data["changed"] is True
    assert data["stage"] == "won"
    assert data["event"] == "deal.won"
    assert [e.event for e in publisher.events] == ["deal.won"]


@pytest.mark.asyncio
async def test_update_stage_unknown_deal(client_and_repo):
    """POST /v1/deals/stage with a bad id -> 404."""
    client, _repo, _publisher = client_and_repo

    response = await client.post(
        "/v1/deals/stage", json={"dealId": str(uuid.uuid4()), "stage": "won"},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_board_move_cancelled(client_and_repo):
    """POST /v1/deals/board/move with an unknown target -> cancelled, nothing written."""
    client, repo, _publisher = client_and_repo
    deal = repo.add(TEAM_ID, "Drag")

    response = await client.post(
        "/v1/deals/board/move", json={"dealId": deal.id, "dropTargetId": "stage-archived"},
    )

    assert response.status_code == 200
    assert response.json()["cancelled"] is True
    assert repo.stage_writes == []


@pytest.mark.asyncio
async def test_board_move_onto_card(client_and_repo):
    client, repo, _publisher = client_and_repo
    deal = repo.add(TEAM_ID, "Drag")
    target = repo.add(TEAM_ID, "Target", stage="proposal")

    response = await client.post(
        "/v1/deals/board/move", json={"dealId": deal.id, "dropTargetId": f"deal-{target.id}"},
    )

    assert response.status_code == 200
    assert response.json()["stage"] == "proposal"


@pytest.mark.asyncio
async def test_service_not_initialized_returns_503():
    from src.pipeline.api.deps import get_current_user, get_team

    app = _make_mock_app()
    app.dependency_overrides[get_current_user] = _mock_get_current_user
    app.dependency_overrides[get_team] = _mock_get_team

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/v1/deals")

    assert response.status_code == 503
    assert response.json()["detail"] == "Deal service not initialized"

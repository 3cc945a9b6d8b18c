"""Tests for OAuth state tokens, secret masking and the integration state endpoints."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.pipeline.integrations.masking import mask_presence, mask_sensitive_value
from src.pipeline.integrations.oauth_state import (
    DEFAULT_MAX_AGE_MS,
    create_oauth_state,
    verify_oauth_state,
)

SECRET = "state-secret"
NOW_MS = 1_780_000_000_000
TEAM_ID = str(uuid.uuid4())


# ── OAuth state ─────────────────────────────────────────────────────────────


class TestOAuthState:
    def test_round_trip(self):
        state = create_oauth_state(TEAM_ID, "hubspot", SECRET, nonce="n-1", now_ms=NOW_MS)

        parsed = verify_oauth_state(state, SECRET, now_ms=NOW_MS + 1000)

        assert parsed is not None
        assert parsed.team_id == TEAM_ID
        assert parsed.provider == "hubspot"
        assert parsed.nonce == "n-1"
        assert parsed.issued_at == NOW_MS

    def test_nonce_is_generated(self):
        first = verify_oauth_state(create_oauth_state(TEAM_ID, "p", SECRET, now_ms=NOW_MS), SECRET, now_ms=NOW_MS)
        second = verify_oauth_state(create_oauth_state(TEAM_ID, "p", SECRET, now_ms=NOW_MS), SECRET, now_ms=NOW_MS)
        assert first.nonce != second.nonce

    def test_empty_secret_cannot_issue(self):
        with pytest.raises(ValueError):
            create_oauth_state(TEAM_ID, "p", "")

    def test_expiry_boundary(self):
        state = create_oauth_state(TEAM_ID, "p", SECRET, now_ms=NOW_MS)
        assert verify_oauth_state(state, SECRET, now_ms=NOW_MS + DEFAULT_MAX_AGE_MS) is not None
        assert verify_oauth_state(state, SECRET, now_ms=NOW_MS + DEFAULT_MAX_AGE_MS + 1) is None

    def test_issued_in_the_future_is_rejected(self):
        state = create_oauth_state(TEAM_ID, "p", SECRET, now_ms=NOW_MS)
        assert verify_oauth_state(state, SECRET, now_ms=NOW_MS - 1) is None

    @pytest.mark.parametrize("state", [None, "", 42, "not-a-token", "a.b.c"])
    def test_garbage_is_rejected(self, state):
        assert verify_oauth_state(state, SECRET, now_ms=NOW_MS) is None

    def test_wrong_secret_or_tampering_is_rejected(self):
        state = create_oauth_state(TEAM_ID, "p", SECRET, now_ms=NOW_MS)
        assert verify_oauth_state(state, "other-secret", now_ms=NOW_MS) is None
        header, payload, signature = state.split(".")
        assert verify_oauth_state(f"{header}.{payload}x.{signature}", SECRET, now_ms=NOW_MS) is None
        assert verify_oauth_state(state, "", now_ms=NOW_MS) is None

    def test_other_token_types_are_rejected(self):
        access_like = jwt.encode(
            {"teamId": TEAM_ID, "provider": "p", "nonce": "n", "issuedAt": NOW_MS, "type": "access"},
            SECRET,
            algorithm="HS256",
        )
        assert verify_oauth_state(access_like, SECRET, now_ms=NOW_MS) is None

    def test_mistyped_claims_are_rejected(self):
        bad = jwt.encode(
            {"teamId": TEAM_ID, "provider": "p", "nonce": "n", "issuedAt": "yesterday", "type": "oauth_state"},
            SECRET,
            algorithm="HS256",
        )
        assert verify_oauth_state(bad, SECRET, now_ms=NOW_MS) is None


# ── Masking ─────────────────────────────────────────────────────────────────


class TestMasking:
    def test_keeps_prefix_and_suffix(self):
        assert mask_sensitive_value("abcdef0123456789wxyz") == "abcdef" + "*" * 10 + "wxyz"

    def test_short_values_are_fully_masked(self):
        assert mask_sensitive_value("abc") == "********"
        assert mask_sensitive_value("abcdefghijk") == "***********"

    def test_empty(self):
        assert mask_sensitive_value(None) == ""
        assert mask_presence("") == ""

    def test_custom_mask_char(self):
        assert mask_sensitive_value("abcdef0123456789wxyz", prefix=2, suffix=2, mask_char="#") == (
            "ab" + "#" * 16 + "yz"
        )

    def test_presence_mask_hides_length(self):
        assert mask_presence("short") == "•" * 16
        assert mask_presence("a much longer secret value", length=4) == "••••"

    def test_sentry_events_are_scrubbed(self):
        from src.pipeline.core.monitoring import scrub_sensitive_fields

        event = {
            "request": {
                "data": {"url": "https://hooks.example/a", "secret_key": "0123456789abcdef"},
                "headers": {"Authorization": "Bearer abc.def.ghi", "X-Team-ID": TEAM_ID},
            },
        }
        scrubbed = scrub_sensitive_fields(event)
        assert scrubbed["request"]["data"]["secret_key"] == "•" * 16
        assert scrubbed["request"]["data"]["url"] == "https://hooks.example/a"
        assert scrubbed["request"]["headers"]["Authorization"] == "•" * 16
        assert scrubbed["request"]["headers"]["X-Team-ID"] == TEAM_ID

    def test_sentry_events_without_request_pass_through(self):
        from src.pipeline.core.monitoring import scrub_sensitive_fields

        assert scrub_sensitive_fields({"message": "boom"}) == {"message": "boom"}


# ── Endpoints ───────────────────────────────────────────────────────────────


def _make_mock_app():
    from fastapi import FastAPI

    from src.pipeline.api.v1.integrations import router

    app = FastAPI()
    app.include_router(router, prefix="/v1")
    return app


def _mock_get_current_user():
    mock_user = MagicMock()
    mock_user.team_id = TEAM_ID
    return mock_user


def _team(team_id: str):
    def _get():
        mock_team = MagicMock()
        mock_team.team_id = team_id
        return mock_team

    return _get


@pytest_asyncio.fixture
async def app():
    from src.pipeline.api.deps import get_current_user, get_team

    application = _make_mock_app()
    application.dependency_overrides[get_current_user] = _mock_get_current_user
    application.dependency_overrides[get_team] = _team(TEAM_ID)
    return application


@pytest.mark.asyncio
async def test_issue_and_verify_state(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        issued = await client.post("/v1/integrations/hubspot/state")
        assert issued.status_code == 200
        assert issued.json()["expires_in"] == 600

        verified = await client.post(
            "/v1/integrations/hubspot/state/verify", json={"state": issued.json()["state"]},
        )

    assert verified.status_code == 200
    assert verified.json()["teamId"] == TEAM_ID
    assert verified.json()["provider"] == "hubspot"


@pytest.mark.asyncio
async def test_state_for_another_provider_or_team_is_rejected(app):
    from src.pipeline.api.deps import get_team

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        state = (await client.post("/v1/integrations/hubspot/state")).json()["state"]

        wrong_provider = await client.post(
            "/v1/integrations/salesforce/state/verify", json={"state": state},
        )
        app.dependency_overrides[get_team] = _team(str(uuid.uuid4()))
        wrong_team = await client.post(
            "/v1/integrations/hubspot/state/verify", json={"state": state},
        )

    assert wrong_provider.status_code == 400
    assert wrong_team.status_code == 400

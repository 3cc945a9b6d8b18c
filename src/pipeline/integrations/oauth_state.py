"""Signed OAuth ``state`` values for integration connect redirects.

The state is an HS256 JWT carrying ``{teamId, provider, nonce, issuedAt}``
plus ``type="oauth_state"``. Nothing is stored server-side: the callback
verifies the signature and the age from the token alone.
"""

from __future__ import annotations

import math
import time
import uuid

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

OAUTH_STATE_TOKEN_TYPE = "oauth_state"
OAUTH_STATE_ALGORITHM = "HS256"
DEFAULT_MAX_AGE_MS = 10 * 60 * 1000


class OAuthState(BaseModel):
    """Verified contents of an OAuth state token."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    team_id: str = Field(alias="teamId")
    provider: str
    nonce: str
    issued_at: int = Field(alias="issuedAt")


def _now_ms() -> int:
    return int(time.time() * 1000)


def create_oauth_state(
    team_id: str,
    provider: str,
    secret: str,
    nonce: str | None = None,
    now_ms: int | None = None,
) -> str:
    """Issue a state token bound to a team and provider.

    Raises:
        ValueError: If ``secret`` is empty.
    """
    if not secret:
        msg = "OAuth state secret must not be empty"
        raise ValueError(msg)
    claims = {
        "teamId": team_id,
        "provider": provider,
        "nonce": nonce or str(uuid.uuid4()),
        "issuedAt": _now_ms() if now_ms is None else now_ms,
        "type": OAUTH_STATE_TOKEN_TYPE,
    }
    return jwt.encode(claims, secret, algorithm=OAUTH_STATE_ALGORITHM)


def verify_oauth_state(
    state: object,
    secret: str,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    now_ms: int | None = None,
) -> OAuthState | None:
    """Return the state's claims, or None when it must be rejected.

    Rejected: wrong signature or algorithm, missing or mistyped claims, a
    token of another type, ``issuedAt`` in the future or older than
    ``max_age_ms``. Never raises.
    """
    if not isinstance(state, str) or not state or not secret:
        return None
    try:
        claims = jwt.decode(state, secret, algorithms=[OAUTH_STATE_ALGORITHM])
    except JWTError:
        return None

    if claims.get("type") != OAUTH_STATE_TOKEN_TYPE:
        return None
    team_id = claims.get("teamId")
    provider = claims.get("provider")
    nonce = claims.get("nonce")
    issued_at = claims.get("issuedAt")
    if not isinstance(team_id, str) or not isinstance(provider, str) or not isinstance(nonce, str):
        return None
    if isinstance(issued_at, bool) or not isinstance(issued_at, (int, float)):
        return None

    age = (_now_ms() if now_ms is None else now_ms) - issued_at
    if not math.isfinite(age) or age < 0 or age > max_age_ms:
        return None

    return OAuthState(team_id=team_id, provider=provider, nonce=nonce, issued_at=int(issued_at))

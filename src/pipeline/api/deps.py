"""FastAPI dependencies for team context, authentication and app services.

Services (repositories, workflow services, the dispatcher) are created in the
lifespan hook and stored on ``app.state``; endpoints fetch them through
``get_state_service`` and answer 503 when one is missing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request, status

from src.pipeline.core.security import verify_token
from src.pipeline.core.tenant import TeamContext, get_current_team


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, as asserted by the access token."""

    user_id: str
    team_id: str
    role: str | None = None


async def get_team() -> TeamContext:
    """Get the current team context (set by TeamMiddleware)."""
    try:
        return get_current_team()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing team context",
        )


async def get_current_user(
    request: Request,
    team: TeamContext = Depends(get_team),
) -> CurrentUser:
    """Validate the bearer token and check it belongs to the request's team.

    Raises:
        HTTPException(401): If no valid token is provided.
        HTTPException(403): If the token's team differs from the team context.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    if payload["team_id"] != team.team_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token team does not match request team context",
        )
    return CurrentUser(
        user_id=str(payload["sub"]),
        team_id=str(payload["team_id"]),
        role=payload.get("role"),
    )


def get_state_service(request: Request, name: str, label: str) -> Any:
    """Fetch a service from app.state, 503 if it was not initialized."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


# Alias for cleaner endpoint signatures
require_auth = Depends(get_current_user)

"""Team resolution middleware.

Resolves the team from:
1. the ``team_id`` claim of a Bearer JWT (user requests)
2. the X-Team-ID header (service-to-service calls)

and sets TeamContext in contextvars for the request scope. The team id is
also put on ``request.state`` for the logging middleware.
"""

from __future__ import annotations

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.pipeline.core.security import decode_token
from src.pipeline.core.tenant import (
    SKIP_TEAM_PATHS,
    TeamContext,
    reset_team_context,
    set_team_context,
)

logger = structlog.get_logger(__name__)


class TeamMiddleware(BaseHTTPMiddleware):
    """Resolve the team for every request outside SKIP_TEAM_PATHS."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TEAM_PATHS):
            return await call_next(request)

        team_ctx = self._resolve_from_jwt(request) or self._resolve_from_header(request)
        if team_ctx is None:
            # Raising HTTPException here would surface as a 500
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Missing team context. Provide a Bearer token with a "
                    "team_id claim or an X-Team-ID header.",
                },
            )

        request.state.team_id = team_ctx.team_id
        token = set_team_context(team_ctx)
        try:
            return await call_next(request)
        finally:
            reset_team_context(token)

    def _resolve_from_jwt(self, request: Request) -> TeamContext | None:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None
        payload = decode_token(auth_header[7:])
        if payload is None:
            return None
        team_id = payload.get("team_id")
        if not team_id:
            return None
        return TeamContext(team_id=str(team_id), source="jwt")

    def _resolve_from_header(self, request: Request) -> TeamContext | None:
        team_id = request.headers.get("X-Team-ID", "").strip()
        if not team_id:
            return None
        return TeamContext(team_id=team_id, source="header")

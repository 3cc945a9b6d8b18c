"""Team context propagation via Python contextvars.

Every CRM row belongs to a team. The TeamContext is set by TeamMiddleware at
the start of each request and is accessible anywhere in the call stack via
get_current_team(). Repositories take team_id explicitly; the context is used
for request logging, metrics labels and Sentry tags.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass

# ── Team Context ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TeamContext:
    """Immutable team context for the current request."""

    team_id: str
    source: str = "jwt"  # "jwt" or "header"


_team_context: contextvars.ContextVar[TeamContext] = contextvars.ContextVar("team_context")


def get_current_team() -> TeamContext:
    """Get the team context for the current request.

    Raises RuntimeError if no team context has been set (i.e., the call
    is not within a team-scoped request).
    """
    try:
        return _team_context.get()
    except LookupError:
        raise RuntimeError("No team context set -- request is not team-scoped")


def set_team_context(ctx: TeamContext) -> contextvars.Token[TeamContext]:
    """Set the team context for the current request. Returns a token for reset."""
    return _team_context.set(ctx)


def reset_team_context(token: contextvars.Token[TeamContext]) -> None:
    """Restore the team context that was active before set_team_context()."""
    _team_context.reset(token)


# ── Paths that skip team resolution ─────────────────────────────────────────

SKIP_TEAM_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
)

"""API middleware package."""

from src.pipeline.api.middleware.logging import LoggingMiddleware
from src.pipeline.api.middleware.team import TeamMiddleware

__all__ = ["LoggingMiddleware", "TeamMiddleware"]

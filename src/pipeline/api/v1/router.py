"""V1 API router -- aggregates the team-scoped v1 endpoint routers.

Mounted under /api/v1 by create_app(); health checks live at the root.
"""

from __future__ import annotations

from fastapi import APIRouter

from src.pipeline.api.v1 import deals, integrations, proposals, reports, webhooks

router = APIRouter()

router.include_router(deals.router)
router.include_router(reports.router)
router.include_router(webhooks.router)
router.include_router(proposals.router)
router.include_router(integrations.router)

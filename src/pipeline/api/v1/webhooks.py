"""Webhook management endpoints: CRUD, test sends, delivery log and retries.

Secrets are returned in full only when a webhook is created; list and update
responses carry a masked value.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from src.pipeline.api.deps import CurrentUser, get_current_user, get_state_service, get_team
from src.pipeline.core.tenant import TeamContext
from src.pipeline.integrations.masking import mask_sensitive_value
from src.pipeline.webhooks.dispatcher import (
    WebhookAlreadyDeliveredError,
    WebhookDispatcher,
    WebhookInactiveError,
    WebhookLogNotFoundError,
    WebhookNotFoundError,
)
from src.pipeline.webhooks.repository import WebhookRepository
from src.pipeline.webhooks.schemas import (
    RetryResult,
    Webhook,
    WebhookCreate,
    WebhookRead,
    WebhookStats,
    WebhookUpdate,
)
from src.pipeline.webhooks.signing import generate_secret_key

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _get_repository(request: Request) -> WebhookRepository:
    return get_state_service(request, "webhook_repository", "Webhook repository")


def _get_dispatcher(request: Request) -> WebhookDispatcher:
    return get_state_service(request, "webhook_dispatcher", "Webhook dispatcher")


def _to_read(webhook: Webhook, stats: WebhookStats | None, reveal_secret: bool = False) -> WebhookRead:
    stats = stats or WebhookStats()
    return WebhookRead(
        id=webhook.id,
        url=webhook.url,
        active=webhook.active,
        secret_key=webhook.secret_key if reveal_secret else mask_sensitive_value(webhook.secret_key),
        events=webhook.events,
        success_count=stats.success_count,
        failure_count=stats.failure_count,
        last_triggered_at=webhook.last_triggered_at,
        created_at=webhook.created_at,
    )


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# ── Webhook CRUD ────────────────────────────────────────────────────────────


@router.get("")
async def list_webhooks(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> dict[str, list[WebhookRead]]:
    repo = _get_repository(request)
    hooks = await repo.list_webhooks(team.team_id)
    stats = await repo.get_delivery_stats([h.id for h in hooks])
    return {"webhooks": [_to_read(h, stats.get(h.id)) for h in hooks]}


@router.post("", response_model=WebhookRead, status_code=201)
async def create_webhook(
    body: WebhookCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> WebhookRead:
    """Create a webhook. The response is the only place the full secret appears."""
    repo = _get_repository(request)
    webhook = await repo.create_webhook(team.team_id, body, generate_secret_key())
    return _to_read(webhook, None, reveal_secret=True)


@router.patch("/{webhook_id}", response_model=WebhookRead)
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> WebhookRead:
    repo = _get_repository(request)
    webhook = await repo.update_webhook(team.team_id, webhook_id, body)
    if webhook is None:
        raise _not_found(WebhookNotFoundError(webhook_id))
    stats = await repo.get_delivery_stats([webhook.id])
    return _to_read(webhook, stats.get(webhook.id))


@router.delete("/{webhook_id}", status_code=204)
async def delete_webhook(
    webhook_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> Response:
    repo = _get_repository(request)
    if not await repo.delete_webhook(team.team_id, webhook_id):
        raise _not_found(WebhookNotFoundError(webhook_id))
    return Response(status_code=204)


@router.post("/{webhook_id}/test", response_model=RetryResult)
async def send_test(
    webhook_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> RetryResult:
    """Deliver a ``webhook.test`` event now and return the attempt."""
    repo = _get_repository(request)
    dispatcher = _get_dispatcher(request)
    webhook = await repo.get_webhook(team.team_id, webhook_id)
    if webhook is None:
        raise _not_found(WebhookNotFoundError(webhook_id))
    return await dispatcher.send_test(webhook)


# ── Delivery log ────────────────────────────────────────────────────────────


@router.get("/logs")
async def list_logs(
    request: Request,
    log_status: Literal["success", "error"] | None = Query(default=None, alias="status"),
    limit: int = Query(default=200, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> dict[str, Any]:
    repo = _get_repository(request)
    success = None if log_status is None else log_status == "success"
    logs = await repo.list_logs(team.team_id, success=success, limit=limit)
    return {"logs": [log.model_dump(mode="json") for log in logs]}


@router.post("/logs/{log_id}/retry", response_model=RetryResult)
async def retry_log(
    log_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    team: TeamContext = Depends(get_team),
) -> RetryResult:
    """Re-send a failed delivery as a new attempt (new log row)."""
    dispatcher = _get_dispatcher(request)
    try:
        return await dispatcher.retry_log(team.team_id, log_id)
    except (WebhookLogNotFoundError, WebhookNotFoundError) as exc:
        raise _not_found(exc)
    except (WebhookAlreadyDeliveredError, WebhookInactiveError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

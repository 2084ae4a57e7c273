"""Webhook API routes.

FastAPI router providing owner-scoped endpoints for webhook management,
testing, replay and manual dispatch. The caller's owner id is taken from
the ``X-Owner-ID`` header.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from typing import List
import logging

from .exceptions import InvalidEventPatternError, InvalidUrlError, NotFoundOrForbiddenError
from .models import (
    DeliveryOutcome,
    ReplayRequest,
    TriggerRequest,
    TriggerResponse,
    WebhookCreateRequest,
    WebhookCreatedResponse,
    WebhookListResponse,
    WebhookStats,
    WebhookUpdateRequest,
    WebhookView,
)
from .service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_webhook_service(request: Request) -> WebhookService:
    """Dependency returning the service owned by the application."""
    return request.app.state.webhooks


def owner_id_header(x_owner_id: str = Header(..., min_length=1)) -> str:
    return x_owner_id


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Webhook not found")


# ============================================================================
# Webhook Registration Endpoints
# ============================================================================

@router.post("/", response_model=WebhookCreatedResponse, status_code=201)
async def create_webhook(
    body: WebhookCreateRequest,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Register a new webhook.

    The response is the only place the signing secret is ever returned.
    """
    try:
        sub = service.create_webhook(owner_id, **body.model_dump())
    except (InvalidUrlError, InvalidEventPatternError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return WebhookCreatedResponse.from_subscription(sub)


@router.get("/", response_model=WebhookListResponse)
async def list_webhooks(
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """List the caller's webhooks."""
    webhooks = [WebhookView.from_subscription(s) for s in service.list_webhooks(owner_id)]
    return WebhookListResponse(webhooks=webhooks, total=len(webhooks))


@router.get("/event-types")
async def list_event_types(service: WebhookService = Depends(get_webhook_service)):
    """List all supported event types."""
    return {"event_types": service.supported_event_types()}


@router.post("/trigger", response_model=TriggerResponse, status_code=202)
async def trigger_event(
    body: TriggerRequest,
    service: WebhookService = Depends(get_webhook_service),
):
    """Manually emit an event to all matching webhooks.

    Deliveries happen in the background.
    """
    try:
        enqueued = await service.trigger(body.event, body.data, body.subscription_ids)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return TriggerResponse(event=body.event, enqueued=enqueued)


@router.get("/{webhook_id}", response_model=WebhookView)
async def get_webhook(
    webhook_id: str,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Get a specific webhook by ID."""
    try:
        return WebhookView.from_subscription(service.get_webhook(webhook_id, owner_id))
    except NotFoundOrForbiddenError:
        raise _not_found()


@router.patch("/{webhook_id}", response_model=WebhookView)
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdateRequest,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Update a webhook; only the fields sent are changed."""
    try:
        sub = service.update_webhook(webhook_id, owner_id, **body.model_dump(exclude_unset=True))
    except NotFoundOrForbiddenError:
        raise _not_found()
    except (InvalidUrlError, InvalidEventPatternError, ValidationError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return WebhookView.from_subscription(sub)


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Delete a webhook registration."""
    try:
        service.delete_webhook(webhook_id, owner_id)
    except NotFoundOrForbiddenError:
        raise _not_found()
    return {"status": "success", "message": "Webhook deleted"}


# ============================================================================
# Stats, Test and Replay Endpoints
# ============================================================================

@router.get("/{webhook_id}/stats", response_model=WebhookStats)
async def get_webhook_stats(
    webhook_id: str,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Delivery counters and success rate for a webhook."""
    try:
        return service.get_stats(webhook_id, owner_id)
    except NotFoundOrForbiddenError:
        raise _not_found()


@router.get("/{webhook_id}/deliveries", response_model=List[DeliveryOutcome])
async def get_recent_deliveries(
    webhook_id: str,
    limit: int = 50,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Get recent delivery attempts for a webhook, newest first."""
    try:
        return service.recent_deliveries(webhook_id, owner_id, limit=limit)
    except NotFoundOrForbiddenError:
        raise _not_found()


@router.post("/{webhook_id}/test", response_model=DeliveryOutcome)
async def test_webhook(
    webhook_id: str,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Send a test event to a specific webhook.

    The outcome is returned whether or not the target accepted it.
    """
    try:
        return await service.test_webhook(webhook_id, owner_id)
    except NotFoundOrForbiddenError:
        raise _not_found()


@router.post("/{webhook_id}/replay", response_model=DeliveryOutcome)
async def replay_webhook(
    webhook_id: str,
    body: ReplayRequest,
    owner_id: str = Depends(owner_id_header),
    service: WebhookService = Depends(get_webhook_service),
):
    """Re-deliver an event to a specific webhook with a fresh retry budget."""
    try:
        return await service.replay_webhook(webhook_id, owner_id, body.event, body.data)
    except NotFoundOrForbiddenError:
        raise _not_found()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

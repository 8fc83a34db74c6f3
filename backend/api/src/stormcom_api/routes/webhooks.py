"""Webhook subscription endpoints.

Provides endpoints for:
- Registering, listing and deleting webhooks
- Enabling and disabling webhooks (enabling resets the failure counter)
- Reading delivery logs
- Sending a synthetic test event

Secrets are accepted on creation but never returned.
"""

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT

from stormcom.models import DeliveryResult, Webhook, WebhookCreate, WebhookDelivery
from stormcom.services.webhook_dispatcher import WebhookDispatcher
from stormcom.services.webhook_service import WebhookService
from stormcom_api.dependencies import (
    get_store_id,
    get_webhook_dispatcher,
    get_webhook_service,
)
from stormcom_api.models.webhooks import CreateWebhookRequest

router = APIRouter(tags=["webhooks"])

SECRET_FIELDS = {"secret"}


@router.post(
    "/webhooks",
    summary="Register webhook",
    description="""
Register an HTTPS endpoint for one or more events (or `*` for all).

**Notes:**
- URLs pointing at private, loopback, link-local or metadata addresses are rejected
- Only allow-listed custom headers are kept
- Deliveries are signed with HMAC-SHA256 when a secret is set
""",
    response_model=Webhook,
    response_model_exclude=SECRET_FIELDS,
    status_code=HTTP_201_CREATED,
    responses={400: {"description": "Unsafe URL or unknown event"}},
)
async def create_webhook(
    body: CreateWebhookRequest,
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> Webhook:
    return webhooks.create_webhook(WebhookCreate(store_id=store_id, **body.model_dump()))


@router.get(
    "/webhooks",
    summary="List webhooks",
    response_model=list[Webhook],
    response_model_exclude=SECRET_FIELDS,
)
async def list_webhooks(
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> list[Webhook]:
    return webhooks.list_webhooks(store_id)


@router.delete(
    "/webhooks/{webhook_id}",
    summary="Delete webhook",
    status_code=HTTP_204_NO_CONTENT,
    responses={404: {"description": "Webhook not found"}},
)
async def delete_webhook(
    webhook_id: str,
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> None:
    webhooks.delete_webhook(webhook_id, store_id)


@router.post(
    "/webhooks/{webhook_id}/enable",
    summary="Enable webhook",
    response_model=Webhook,
    response_model_exclude=SECRET_FIELDS,
    responses={404: {"description": "Webhook not found"}},
)
async def enable_webhook(
    webhook_id: str,
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> Webhook:
    """Re-enable a webhook, e.g. after it was disabled for repeated failures."""
    return webhooks.set_active(webhook_id, store_id, True)


@router.post(
    "/webhooks/{webhook_id}/disable",
    summary="Disable webhook",
    response_model=Webhook,
    response_model_exclude=SECRET_FIELDS,
    responses={404: {"description": "Webhook not found"}},
)
async def disable_webhook(
    webhook_id: str,
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> Webhook:
    return webhooks.set_active(webhook_id, store_id, False)


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    summary="List delivery attempts",
    response_model=list[WebhookDelivery],
    responses={404: {"description": "Webhook not found"}},
)
async def list_deliveries(
    webhook_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    store_id: str = Depends(get_store_id),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> list[WebhookDelivery]:
    """Newest attempt first."""
    return webhooks.get_delivery_logs(webhook_id, store_id, limit=limit)


@router.post(
    "/webhooks/{webhook_id}/test",
    summary="Send test event",
    description="Deliver a synthetic `test` event now and return the outcome.",
    response_model=DeliveryResult,
    responses={404: {"description": "Webhook not found"}},
)
async def test_webhook(
    webhook_id: str,
    store_id: str = Depends(get_store_id),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> DeliveryResult:
    return await dispatcher.test_webhook(webhook_id, store_id)

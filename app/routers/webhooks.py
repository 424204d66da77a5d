"""
FastAPI router for the Shopify webhook endpoint.
Every subscribed topic is delivered to one URL and dispatched by the X-Shopify-Topic header.
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import Optional
import structlog

from app.dependencies import get_ingestion_service
from app.models.shopify import WebhookEvent
from app.services.webhook_ingestion import WebhookIngestionService, WebhookRequestError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/shopify", tags=["webhooks"])


@router.post("/webhook")
async def shopify_webhook(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None, alias="X-Shopify-Hmac-Sha256"),
    x_shopify_shop_domain: Optional[str] = Header(None, alias="X-Shopify-Shop-Domain"),
    x_shopify_topic: Optional[str] = Header(None, alias="X-Shopify-Topic"),
    x_shopify_webhook_id: Optional[str] = Header(None, alias="X-Shopify-Webhook-Id"),
    x_shopify_api_version: Optional[str] = Header(None, alias="X-Shopify-Api-Version"),
    ingestion: WebhookIngestionService = Depends(get_ingestion_service),
):
    """
    Handle a Shopify webhook.

    Signature verification runs over the raw body bytes, so the body is read
    before anything parses it. Once verified the request is acknowledged with
    200 even if the topic handler fails; Shopify retries non-2xx deliveries.
    """
    body_bytes = await request.body()

    event = WebhookEvent(
        topic=x_shopify_topic or "",
        shop_domain=x_shopify_shop_domain or "",
        hmac_header=x_shopify_hmac_sha256,
        webhook_id=x_shopify_webhook_id,
        api_version=x_shopify_api_version,
        raw_body=body_bytes,
    )

    structlog.contextvars.bind_contextvars(
        shop_domain=event.shop_domain,
        topic=event.topic,
        webhook_id=event.webhook_id,
    )
    try:
        tenant = await ingestion.ingest(event)
    except WebhookRequestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        structlog.contextvars.unbind_contextvars("shop_domain", "topic", "webhook_id")

    return {
        "status": "success",
        "message": "Webhook received",
        "topic": event.topic,
        "tenant_id": tenant.id,
    }

"""
Inbound Shopify webhook pipeline: resolve tenant -> verify signature -> parse -> dispatch.

Resolution and verification failures are raised as WebhookRequestError
subclasses carrying the HTTP status the route should answer with. Nothing is
parsed, dispatched or mutated for a request that does not verify.
"""
import json
from typing import Any, Dict

import structlog
from fastapi import status

from app.models.shopify import WebhookEvent
from app.models.tenant import Tenant
from app.services.event_dispatcher import EventDispatcher
from app.services.tenant_resolver import TenantResolver
from app.services.webhook_verifier import verify_webhook_signature

logger = structlog.get_logger()


class WebhookRequestError(Exception):
    """Request-level webhook failure. Terminal for this delivery."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingShopDomainError(WebhookRequestError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnknownTenantError(WebhookRequestError):
    """No tenant is connected to the claimed shop domain (stale subscription or misconfiguration)."""

    status_code = status.HTTP_404_NOT_FOUND


class WebhookVerificationError(WebhookRequestError):
    status_code = status.HTTP_401_UNAUTHORIZED


class MalformedPayloadError(WebhookRequestError):
    status_code = status.HTTP_400_BAD_REQUEST


def parse_webhook_payload(raw_body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayloadError(f"Invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook payload must be a JSON object")
    return payload


class WebhookIngestionService:
    """Runs one webhook request through resolution, verification and dispatch."""

    def __init__(self, resolver: TenantResolver, dispatcher: EventDispatcher):
        self.resolver = resolver
        self.dispatcher = dispatcher

    def authenticate(self, event: WebhookEvent) -> Tenant:
        """
        Resolve the tenant for an event and verify its signature.

        Raises:
            MissingShopDomainError: no shop domain header
            UnknownTenantError: no tenant for the shop domain (404)
            WebhookVerificationError: signature does not match the tenant's secret (401)
        """
        if not event.shop_domain:
            raise MissingShopDomainError("Shopify shop domain not found")

        tenant = self.resolver.resolve(event.shop_domain)
        if tenant is None:
            logger.warning("Webhook received from unknown shop", shop_domain=event.shop_domain)
            raise UnknownTenantError(f"Shop not found: {event.shop_domain}")

        if not verify_webhook_signature(event.raw_body, event.hmac_header, tenant.webhook_secret):
            logger.warning(
                "Webhook signature verification failed",
                shop_domain=event.shop_domain,
                tenant_id=tenant.id,
            )
            raise WebhookVerificationError("Webhook signature verification failed")

        return tenant

    async def ingest(self, event: WebhookEvent) -> Tenant:
        """
        Authenticate, parse and dispatch a webhook.

        Returns:
            The resolved tenant

        Raises:
            WebhookRequestError: for any request-level failure; handler failures are not raised
        """
        tenant = self.authenticate(event)
        event.payload = parse_webhook_payload(event.raw_body)

        logger.info(
            "Shopify webhook verified",
            tenant_id=tenant.id,
            topic=event.topic,
            api_version=event.api_version,
            event_id=event.payload.get("id"),
        )
        await self.dispatcher.dispatch(event.topic, tenant, event.payload)
        return tenant

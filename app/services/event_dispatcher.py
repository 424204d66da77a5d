"""
Routes verified Shopify webhook events to topic handlers.
"""
from typing import Any, Awaitable, Callable, Dict, List

import structlog

from app.models.tenant import Tenant

logger = structlog.get_logger()

WebhookHandler = Callable[[Tenant, Dict[str, Any]], Awaitable[None]]


class EventDispatcher:
    """
    Topic -> handler registry.

    Only called after the webhook signature has been verified. Unknown topics
    are accepted silently and handler failures are logged, never raised, so
    a verified delivery is always acknowledged.
    """

    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}

    def register(self, topic: str, handler: WebhookHandler) -> None:
        if topic in self._handlers:
            logger.warning("Webhook handler already registered, replacing", topic=topic)
        self._handlers[topic] = handler

    def topics(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, topic: str, tenant: Tenant, payload: Dict[str, Any]) -> None:
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("Unhandled webhook topic", topic=topic, tenant_id=tenant.id)
            return

        try:
            await handler(tenant, payload)
        except Exception as e:
            logger.error(
                "Webhook handler failed",
                topic=topic,
                tenant_id=tenant.id,
                error=str(e),
                exc_info=True,
            )

"""
Shopify webhook topic handlers.

Handlers never call the Shopify API inline. Anything that needs the remote
catalog is handed to the reconciliation scheduler so the webhook response is
not held up by catalog latency.
"""
from typing import Any, Dict

import structlog

from app.models.shopify import (
    CustomerWebhook,
    InventoryLevelsUpdateWebhook,
    OrderWebhook,
    ProductDeleteWebhook,
    ShopifyProduct,
)
from app.models.tenant import Tenant
from app.services.credential_store import CredentialStore
from app.services.event_dispatcher import EventDispatcher
from app.services.fee_products import FEE_PRODUCT_VENDOR, is_fee_product, parse_fee_amount
from app.workers.reconciliation_scheduler import ReconciliationScheduler

logger = structlog.get_logger()

# Topics subscribed when webhooks are registered for a shop
SUBSCRIBED_TOPICS = [
    # Order lifecycle
    "orders/create",
    "orders/updated",
    "orders/cancelled",
    "orders/fulfilled",
    "orders/paid",
    # Product management
    "products/create",
    "products/update",
    "products/delete",
    "inventory_levels/update",
    # Customers
    "customers/create",
    "customers/update",
    # Fulfillment and shipping
    "fulfillments/create",
    "fulfillments/update",
    "fulfillment_events/create",
    # Carts
    "carts/create",
    "carts/update",
    # App lifecycle
    "app/uninstalled",
]


def order_has_fee_line_item(order: OrderWebhook) -> bool:
    """True if any line item is one of our express delivery fee products."""
    return any(
        item.vendor == FEE_PRODUCT_VENDOR or parse_fee_amount(item.title) is not None
        for item in order.line_items
    )


class ShopifyWebhookHandlers:
    """Handlers for every subscribed topic, bound to the tenant-scoped collaborators."""

    def __init__(self, scheduler: ReconciliationScheduler, credential_store: CredentialStore):
        self.scheduler = scheduler
        self.credential_store = credential_store

    def register_all(self, dispatcher: EventDispatcher) -> EventDispatcher:
        for topic in ("orders/create", "orders/updated"):
            dispatcher.register(topic, self._order_handler(topic, reconcile_on_fee=True))
        for topic in ("orders/cancelled", "orders/fulfilled", "orders/paid"):
            dispatcher.register(topic, self._order_handler(topic, reconcile_on_fee=False))
        dispatcher.register("products/create", self.handle_product_created)
        dispatcher.register("products/update", self.handle_product_updated)
        dispatcher.register("products/delete", self.handle_product_deleted)
        dispatcher.register("inventory_levels/update", self.handle_inventory_updated)
        dispatcher.register("customers/create", self.handle_customer_event)
        dispatcher.register("customers/update", self.handle_customer_event)
        for topic in ("fulfillments/create", "fulfillments/update", "fulfillment_events/create"):
            dispatcher.register(topic, self.handle_fulfillment_event)
        dispatcher.register("carts/create", self.handle_cart_event)
        dispatcher.register("carts/update", self.handle_cart_event)
        dispatcher.register("app/uninstalled", self.handle_app_uninstalled)
        return dispatcher

    # Orders

    def _order_handler(self, topic: str, reconcile_on_fee: bool):
        async def handle(tenant: Tenant, payload: Dict[str, Any]) -> None:
            order = OrderWebhook(**payload)
            has_fee = order_has_fee_line_item(order)
            logger.info(
                "Order webhook received",
                topic=topic,
                tenant_id=tenant.id,
                order_id=order.id,
                order_name=order.name,
                financial_status=order.financial_status,
                has_express_fee=has_fee,
            )
            if reconcile_on_fee and has_fee:
                self.scheduler.schedule(tenant.id, trigger=f"webhook:{topic}")

        return handle

    # Products

    async def handle_product_created(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        product = ShopifyProduct(**payload)
        logger.info(
            "Product created",
            tenant_id=tenant.id,
            product_id=product.id,
            title=product.title,
            fee_product=is_fee_product(product),
        )

    async def handle_product_updated(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        product = ShopifyProduct(**payload)
        if not is_fee_product(product):
            logger.debug("Product updated", tenant_id=tenant.id, product_id=product.id)
            return
        # Someone edited a managed fee product; bring it back in line
        logger.info("Fee product updated remotely", tenant_id=tenant.id, product_id=product.id)
        self.scheduler.schedule(tenant.id, trigger="webhook:products/update")

    async def handle_product_deleted(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        # Delete payloads carry only the id, so any deletion may have removed a fee product
        product = ProductDeleteWebhook(**payload)
        logger.info("Product deleted", tenant_id=tenant.id, product_id=product.id)
        self.scheduler.schedule(tenant.id, trigger="webhook:products/delete")

    async def handle_inventory_updated(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        level = InventoryLevelsUpdateWebhook(**payload)
        logger.info(
            "Inventory level updated",
            tenant_id=tenant.id,
            inventory_item_id=level.inventory_item_id,
            location_id=level.location_id,
            available=level.available,
        )

    # Customers, fulfillment, carts

    async def handle_customer_event(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        customer = CustomerWebhook(**payload)
        logger.info("Customer webhook received", tenant_id=tenant.id, customer_id=customer.id)

    async def handle_fulfillment_event(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        logger.info(
            "Fulfillment webhook received",
            tenant_id=tenant.id,
            fulfillment_id=payload.get("id"),
            order_id=payload.get("order_id"),
            status=payload.get("status"),
        )

    async def handle_cart_event(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        logger.debug("Cart webhook received", tenant_id=tenant.id, cart_id=payload.get("id"))

    # App lifecycle

    async def handle_app_uninstalled(self, tenant: Tenant, payload: Dict[str, Any]) -> None:
        # The access token is revoked by Shopify on uninstall; drop the credentials
        removed = self.credential_store.delete(tenant.id)
        logger.info(
            "App uninstalled, tenant credentials removed",
            tenant_id=tenant.id,
            shop_domain=tenant.shop_domain,
            removed=removed,
        )


def build_event_dispatcher(
    scheduler: ReconciliationScheduler, credential_store: CredentialStore
) -> EventDispatcher:
    return ShopifyWebhookHandlers(scheduler, credential_store).register_all(EventDispatcher())

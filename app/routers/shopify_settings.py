"""
FastAPI router for Shopify credentials and webhook subscription management.
"""

from typing import Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.config import settings
from app.dependencies import get_credential_store, get_scheduler, get_tenant_data_store
from app.models.tenant import Tenant, TenantCredentialsRequest
from app.routers.auth import verify_token
from app.services.credential_store import CredentialStore, DuplicateShopDomainError
from app.services.shopify_api_client import ShopifyAPIError
from app.services.tenant_data_store import TenantDataStore
from app.services.webhook_handlers import SUBSCRIBED_TOPICS
from app.workers.reconciliation_scheduler import ReconciliationScheduler

logger = structlog.get_logger()

router = APIRouter(prefix="/api/shopify", tags=["shopify-settings"])

WEBHOOK_PATH = "/api/shopify/webhook"


def _require_tenant(credential_store: CredentialStore, tenant_id: str) -> Tenant:
    tenant = credential_store.get(tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Shopify credentials are not configured",
        )
    return tenant


def webhook_address() -> str:
    return f"{settings.webhook_base_url.rstrip('/')}{WEBHOOK_PATH}"


@router.get("/settings")
async def get_shopify_settings(
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """Stored Shopify credentials for the caller's tenant, with the access token masked."""
    tenant = credential_store.get(current_user["tenant_id"])
    if tenant is None:
        return {"configured": False, "settings": None}
    return {"configured": True, "settings": tenant.masked()}


@router.put("/settings")
async def save_shopify_settings(
    request: TenantCredentialsRequest,
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """
    Create or replace the caller's Shopify credentials.

    A shop domain can belong to one tenant only; saving a domain already
    connected to another tenant is rejected with 409.
    """
    tenant_id = current_user["tenant_id"]
    try:
        tenant = Tenant(
            id=tenant_id,
            shop_domain=request.shop_domain,
            access_token=request.access_token,
            api_version=request.api_version,
            webhook_secret=request.webhook_secret,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    try:
        saved = credential_store.put(tenant)
    except DuplicateShopDomainError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Shop {e.shop_domain} is already connected to another account",
        )

    logger.info("Shopify settings saved", tenant_id=tenant_id, shop_domain=saved.shop_domain)
    return {"success": True, "settings": saved.masked()}


@router.delete("/settings")
async def delete_shopify_settings(
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
    data_store: TenantDataStore = Depends(get_tenant_data_store),
):
    """Remove the caller's credentials and all tenant data (timeslots, run records)."""
    tenant_id = current_user["tenant_id"]
    removed = credential_store.delete(tenant_id)
    data_store.delete_tenant_data(tenant_id)
    logger.info("Shopify settings deleted", tenant_id=tenant_id, removed=removed)
    return {"success": True, "removed": removed}


@router.post("/test-connection")
async def test_connection(
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """Call shop.json with the stored credentials."""
    tenant = _require_tenant(credential_store, current_user["tenant_id"])
    try:
        async with scheduler.engine.client_factory(tenant) as client:
            shop = await client.get_shop()
    except ShopifyAPIError as e:
        logger.warning("Shopify connection test failed", tenant_id=tenant.id, error=str(e))
        return {"success": False, "error": str(e), "status_code": e.status_code}

    return {
        "success": True,
        "shop": {
            "name": shop.get("name"),
            "domain": shop.get("domain"),
            "myshopify_domain": shop.get("myshopify_domain"),
            "currency": shop.get("currency"),
        },
    }


@router.post("/register-webhooks")
async def register_webhooks(
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """
    Subscribe the shop to every handled topic, pointing at this service.

    Existing subscriptions for a topic are repointed if their address differs.
    Per-topic failures are reported without aborting the remaining topics.
    """
    tenant = _require_tenant(credential_store, current_user["tenant_id"])
    if not settings.webhook_base_url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="WEBHOOK_BASE_URL is not configured",
        )
    address = webhook_address()

    created: List[str] = []
    updated: List[str] = []
    existing: List[str] = []
    errors: List[Dict[str, str]] = []

    try:
        async with scheduler.engine.client_factory(tenant) as client:
            current = {w.topic: w for w in await client.list_webhooks()}
            for topic in SUBSCRIBED_TOPICS:
                subscription = current.get(topic)
                try:
                    if subscription is None:
                        await client.create_webhook(topic, address)
                        created.append(topic)
                    elif subscription.address != address:
                        await client.update_webhook(subscription.id, address)
                        updated.append(topic)
                    else:
                        existing.append(topic)
                except ShopifyAPIError as e:
                    logger.error("Failed to register webhook", tenant_id=tenant.id, topic=topic, error=str(e))
                    errors.append({"topic": topic, "error": str(e)})
    except ShopifyAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to list webhooks: {e}",
        )

    logger.info(
        "Webhook registration finished",
        tenant_id=tenant.id,
        created=len(created),
        updated=len(updated),
        existing=len(existing),
        errors=len(errors),
    )
    return {
        "success": not errors,
        "address": address,
        "created": created,
        "updated": updated,
        "existing": existing,
        "errors": errors,
    }


@router.get("/webhooks")
async def list_webhooks(
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    tenant = _require_tenant(credential_store, current_user["tenant_id"])
    try:
        async with scheduler.engine.client_factory(tenant) as client:
            webhooks = await client.list_webhooks()
    except ShopifyAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return {"webhooks": [w.model_dump(mode="json") for w in webhooks]}


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(
    webhook_id: int,
    current_user: dict = Depends(verify_token),
    credential_store: CredentialStore = Depends(get_credential_store),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    tenant = _require_tenant(credential_store, current_user["tenant_id"])
    try:
        async with scheduler.engine.client_factory(tenant) as client:
            await client.delete_webhook(webhook_id)
    except ShopifyAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.info("Webhook subscription deleted", tenant_id=tenant.id, webhook_id=webhook_id)
    return {"success": True, "webhook_id": webhook_id}

"""
FastAPI router for express delivery fee automation.
Manual reconciliation, explicit cleanup of unused fee products, and status.
"""

from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.dependencies import get_credential_store, get_scheduler, get_tenant_data_store
from app.routers.auth import verify_token
from app.services.credential_store import CredentialStore
from app.services.fee_extractor import to_fee_amount
from app.services.shopify_api_client import ShopifyAPIError
from app.services.tenant_data_store import TenantDataStore
from app.workers.reconciliation_scheduler import ReconciliationScheduler, TenantNotConfigured

logger = structlog.get_logger()

router = APIRouter(prefix="/api/shopify", tags=["fee-automation"])

NOT_CONFIGURED_DETAIL = "Shopify credentials are not configured. Save them in settings first."


class CleanupRequest(BaseModel):
    """Optional authoritative set of fee amounts to keep."""

    active_amounts: Optional[List[Decimal]] = None


@router.post("/automate-express-fees")
async def automate_express_fees(
    current_user: dict = Depends(verify_token),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """
    Reconcile fee products against the tenant's current timeslot configuration.

    Waits for any background run for the tenant to finish, then runs and
    returns the full result.
    """
    tenant_id = current_user["tenant_id"]
    try:
        result = await scheduler.run_now(tenant_id, trigger="manual")
    except TenantNotConfigured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIGURED_DETAIL)

    logger.info(
        "Manual fee reconciliation finished",
        tenant_id=tenant_id,
        created=result.summary.products_created,
        updated=result.summary.products_updated,
        errors=result.summary.errors,
    )
    return {
        "success": result.summary.success,
        "results": result.model_dump(mode="json"),
        "summary": result.summary.model_dump(mode="json"),
    }


@router.post("/cleanup-fee-products")
async def cleanup_fee_products(
    request: Optional[CleanupRequest] = None,
    current_user: dict = Depends(verify_token),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """
    Delete fee products whose amount is no longer used by any express timeslot.

    Without a body the active set is derived from the stored timeslots. Never
    runs automatically.
    """
    tenant_id = current_user["tenant_id"]
    active_amounts = None
    if request is not None and request.active_amounts is not None:
        active_amounts = [a for a in (to_fee_amount(v) for v in request.active_amounts) if a is not None]

    try:
        result = await scheduler.run_cleanup(tenant_id, active_amounts)
    except TenantNotConfigured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIGURED_DETAIL)
    except ShopifyAPIError as e:
        logger.error("Fee product cleanup failed", tenant_id=tenant_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to list fee products: {e}",
        )

    return {
        "success": result.success,
        "results": result.model_dump(mode="json"),
        "summary": {
            "deleted": len(result.deleted),
            "kept": len(result.kept),
            "errors": len(result.errors),
        },
    }


@router.get("/fee-automation-status")
async def fee_automation_status(
    current_user: dict = Depends(verify_token),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    credential_store: CredentialStore = Depends(get_credential_store),
    data_store: TenantDataStore = Depends(get_tenant_data_store),
):
    """Current remote fee products plus the record of the last reconciliation run."""
    tenant_id = current_user["tenant_id"]
    tenant = credential_store.get(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIGURED_DETAIL)

    fee_status = await scheduler.engine.get_status(tenant)
    record = data_store.get_reconciliation_record(tenant_id)
    return {
        "status": fee_status.model_dump(mode="json"),
        "last_run": record.model_dump(mode="json") if record else None,
        "running": scheduler.is_running(tenant_id),
    }

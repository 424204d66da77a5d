"""
FastAPI router for delivery/collection/express timeslot configuration.
"""

import structlog
from fastapi import APIRouter, Depends

from app.dependencies import get_credential_store, get_scheduler, get_tenant_data_store
from app.models.timeslot import TimeslotConfiguration
from app.routers.auth import verify_token
from app.services.credential_store import CredentialStore
from app.services.fee_extractor import extract_fee_amounts
from app.services.tenant_data_store import TenantDataStore
from app.workers.reconciliation_scheduler import ReconciliationScheduler

logger = structlog.get_logger()

router = APIRouter(prefix="/api/timeslots", tags=["timeslots"])


@router.get("", response_model=TimeslotConfiguration)
async def get_timeslots(
    current_user: dict = Depends(verify_token),
    data_store: TenantDataStore = Depends(get_tenant_data_store),
):
    return TimeslotConfiguration(timeslots=data_store.get_timeslots(current_user["tenant_id"]))


@router.put("")
async def save_timeslots(
    configuration: TimeslotConfiguration,
    current_user: dict = Depends(verify_token),
    data_store: TenantDataStore = Depends(get_tenant_data_store),
    credential_store: CredentialStore = Depends(get_credential_store),
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """
    Replace the tenant's timeslot configuration.

    Saving is the usual reason fee tiers change, so a background
    reconciliation is scheduled when Shopify is connected. The response does
    not wait for it.
    """
    tenant_id = current_user["tenant_id"]
    saved = data_store.save_timeslots(tenant_id, configuration.timeslots)

    reconciliation_scheduled = False
    if credential_store.get(tenant_id) is not None:
        scheduler.schedule(tenant_id, trigger="timeslots_saved")
        reconciliation_scheduled = True

    return {
        "success": True,
        "timeslots": [slot.model_dump(mode="json") for slot in saved],
        "fee_amounts": [str(amount) for amount in extract_fee_amounts(saved)],
        "reconciliation_scheduled": reconciliation_scheduled,
    }

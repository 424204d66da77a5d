"""
Supabase-backed implementations of the credential and tenant data stores.

Tables:
    shopify_credentials      tenant_id (pk), shop_domain (unique), access_token, api_version,
                             webhook_secret, created_at, updated_at
    delivery_timeslots       tenant_id (pk), timeslots (jsonb), updated_at
    fee_reconciliation_runs  tenant_id (pk), trigger, result (jsonb), recorded_at
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from supabase import Client, create_client

from app.config import settings
from app.models.reconciliation import ReconciliationRecord
from app.models.tenant import Tenant, normalize_shop_domain
from app.models.timeslot import Timeslot
from app.services.credential_store import CredentialStore, DuplicateShopDomainError
from app.services.tenant_data_store import TenantDataStore
from app.utils.token_encryption import (
    decrypt_secrets_from_storage,
    encrypt_secrets_for_storage,
)

logger = structlog.get_logger()

CREDENTIALS_TABLE = "shopify_credentials"
TIMESLOTS_TABLE = "delivery_timeslots"
RUNS_TABLE = "fee_reconciliation_runs"


class SupabaseService:
    """Thin holder for the Supabase client shared by the Supabase stores."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client."""
        self.client: Client = client or create_client(
            settings.supabase_url, settings.supabase_service_key
        )


class SupabaseCredentialStore(CredentialStore):
    """
    Credential store on the shopify_credentials table.

    shop_domain carries a unique index in the database, which is the
    domain -> tenant secondary index used for webhook routing.
    """

    def __init__(self, service: Optional[SupabaseService] = None):
        self.client = (service or SupabaseService()).client

    @staticmethod
    def _to_tenant(row: Dict[str, Any]) -> Tenant:
        row = decrypt_secrets_from_storage(row)
        return Tenant(
            id=row["tenant_id"],
            shop_domain=row["shop_domain"],
            access_token=row.get("access_token") or "",
            api_version=row.get("api_version") or settings.shopify_api_version,
            webhook_secret=row.get("webhook_secret") or "",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def get(self, tenant_id: str) -> Optional[Tenant]:
        try:
            # Don't use .single() - it throws exception on 0 rows
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .select("*")
                .eq("tenant_id", tenant_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to get tenant credentials", tenant_id=tenant_id, error=str(e))
            raise

        if result.data:
            return self._to_tenant(result.data[0])
        return None

    def put(self, tenant: Tenant) -> Tenant:
        owner = self.find_by_domain(tenant.shop_domain)
        if owner is not None and owner.id != tenant.id:
            raise DuplicateShopDomainError(tenant.shop_domain, owner.id)

        row = encrypt_secrets_for_storage(
            {
                "tenant_id": tenant.id,
                "shop_domain": tenant.shop_domain,
                "access_token": tenant.access_token,
                "api_version": tenant.api_version,
                "webhook_secret": tenant.webhook_secret,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        try:
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .upsert(row, on_conflict="tenant_id")
                .execute()
            )
        except Exception as e:
            logger.error("Failed to store tenant credentials", tenant_id=tenant.id, error=str(e))
            raise

        if not result.data:
            raise Exception("No data returned from upsert")

        logger.info("Stored tenant credentials", tenant_id=tenant.id, shop_domain=tenant.shop_domain)
        return self._to_tenant(result.data[0])

    def delete(self, tenant_id: str) -> bool:
        try:
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .delete()
                .eq("tenant_id", tenant_id)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to delete tenant credentials", tenant_id=tenant_id, error=str(e))
            raise

        deleted = bool(result.data)
        if deleted:
            logger.info("Deleted tenant credentials", tenant_id=tenant_id)
        return deleted

    def find_by_domain(self, shop_domain: str) -> Optional[Tenant]:
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None
        try:
            result = (
                self.client.table(CREDENTIALS_TABLE)
                .select("*")
                .eq("shop_domain", domain)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to look up tenant by shop domain", shop_domain=domain, error=str(e))
            raise

        if result.data:
            return self._to_tenant(result.data[0])
        return None

    def list_tenants(self) -> List[Tenant]:
        result = self.client.table(CREDENTIALS_TABLE).select("*").execute()
        return [self._to_tenant(row) for row in result.data or []]


class SupabaseTenantDataStore(TenantDataStore):
    """Tenant timeslots and last-run records on Supabase."""

    def __init__(self, service: Optional[SupabaseService] = None):
        self.client = (service or SupabaseService()).client

    def get_timeslots(self, tenant_id: str) -> List[Timeslot]:
        result = (
            self.client.table(TIMESLOTS_TABLE)
            .select("timeslots")
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return []
        return [Timeslot(**slot) for slot in result.data[0].get("timeslots") or []]

    def save_timeslots(self, tenant_id: str, timeslots: List[Timeslot]) -> List[Timeslot]:
        row = {
            "tenant_id": tenant_id,
            "timeslots": [slot.model_dump(mode="json") for slot in timeslots],
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.client.table(TIMESLOTS_TABLE).upsert(row, on_conflict="tenant_id").execute()
        except Exception as e:
            logger.error("Failed to save timeslots", tenant_id=tenant_id, error=str(e))
            raise
        logger.info("Saved timeslots", tenant_id=tenant_id, count=len(timeslots))
        return list(timeslots)

    def save_reconciliation_record(self, record: ReconciliationRecord) -> None:
        row = record.model_dump(mode="json")
        try:
            self.client.table(RUNS_TABLE).upsert(row, on_conflict="tenant_id").execute()
        except Exception as e:
            # The record is display-only; losing it must not fail the run
            logger.error(
                "Failed to store reconciliation record",
                tenant_id=record.tenant_id,
                error=str(e),
            )

    def get_reconciliation_record(self, tenant_id: str) -> Optional[ReconciliationRecord]:
        result = (
            self.client.table(RUNS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return ReconciliationRecord(**result.data[0])

    def delete_tenant_data(self, tenant_id: str) -> None:
        for table in (TIMESLOTS_TABLE, RUNS_TABLE):
            self.client.table(table).delete().eq("tenant_id", tenant_id).execute()
        logger.info("Deleted tenant data", tenant_id=tenant_id)

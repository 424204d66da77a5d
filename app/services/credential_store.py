"""
Per-tenant Shopify credential storage.

The store is the single owner of Tenant records. Everything else receives
copies and never mutates them. Lookup by shop domain goes through a secondary
index (domain -> tenant id) so webhook routing does not scan every tenant.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import structlog

from app.models.tenant import Tenant, normalize_shop_domain

logger = structlog.get_logger()


class DuplicateShopDomainError(Exception):
    """Raised when a shop domain is already connected to a different tenant."""

    def __init__(self, shop_domain: str, owner_tenant_id: str):
        self.shop_domain = shop_domain
        self.owner_tenant_id = owner_tenant_id
        super().__init__(f"Shop domain {shop_domain} is already connected to another account")


class CredentialStore(ABC):
    """Repository interface for tenant credentials."""

    @abstractmethod
    def get(self, tenant_id: str) -> Tenant | None:
        """Return the tenant with this id, or None."""

    @abstractmethod
    def put(self, tenant: Tenant) -> Tenant:
        """
        Create or replace a tenant's credentials.

        Raises:
            DuplicateShopDomainError: if another tenant already owns the shop domain
        """

    @abstractmethod
    def delete(self, tenant_id: str) -> bool:
        """Delete a tenant. Returns True if something was removed."""

    @abstractmethod
    def find_by_domain(self, shop_domain: str) -> Tenant | None:
        """Keyed lookup of the tenant connected to a shop domain."""

    @abstractmethod
    def list_tenants(self) -> list[Tenant]:
        """Return all tenants."""


class InMemoryCredentialStore(CredentialStore):
    """
    Process-local credential store.

    Both maps are only touched under the lock, and callers get copies, so a
    reader never observes a record halfway through an update.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tenants: dict[str, Tenant] = {}
        self._domain_index: dict[str, str] = {}

    def get(self, tenant_id: str) -> Tenant | None:
        with self._lock:
            tenant = self._tenants.get(tenant_id)
            return tenant.model_copy() if tenant else None

    def put(self, tenant: Tenant) -> Tenant:
        with self._lock:
            owner = self._domain_index.get(tenant.shop_domain)
            if owner is not None and owner != tenant.id:
                raise DuplicateShopDomainError(tenant.shop_domain, owner)

            now = datetime.now(timezone.utc)
            existing = self._tenants.get(tenant.id)
            stored = tenant.model_copy(
                update={
                    "created_at": existing.created_at if existing else (tenant.created_at or now),
                    "updated_at": now,
                }
            )

            if existing and existing.shop_domain != stored.shop_domain:
                self._domain_index.pop(existing.shop_domain, None)

            self._tenants[stored.id] = stored
            self._domain_index[stored.shop_domain] = stored.id

            logger.info(
                "Stored tenant credentials",
                tenant_id=stored.id,
                shop_domain=stored.shop_domain,
                created=existing is None,
            )
            return stored.model_copy()

    def delete(self, tenant_id: str) -> bool:
        with self._lock:
            tenant = self._tenants.pop(tenant_id, None)
            if tenant is None:
                return False
            if self._domain_index.get(tenant.shop_domain) == tenant_id:
                del self._domain_index[tenant.shop_domain]
            logger.info("Deleted tenant credentials", tenant_id=tenant_id, shop_domain=tenant.shop_domain)
            return True

    def find_by_domain(self, shop_domain: str) -> Tenant | None:
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None
        with self._lock:
            tenant_id = self._domain_index.get(domain)
            if tenant_id is None:
                return None
            tenant = self._tenants.get(tenant_id)
            return tenant.model_copy() if tenant else None

    def list_tenants(self) -> list[Tenant]:
        with self._lock:
            return [tenant.model_copy() for tenant in self._tenants.values()]

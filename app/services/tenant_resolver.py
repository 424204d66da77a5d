"""
Maps the shop domain claimed by an inbound webhook to a tenant.
"""
from typing import Optional

import structlog

from app.models.tenant import Tenant, normalize_shop_domain
from app.services.credential_store import CredentialStore

logger = structlog.get_logger()


class TenantResolver:
    """Resolves X-Shopify-Shop-Domain to the connected tenant via the store's domain index."""

    def __init__(self, credential_store: CredentialStore):
        self.credential_store = credential_store

    def resolve(self, shop_domain: Optional[str]) -> Optional[Tenant]:
        """
        Look up the tenant connected to a shop domain.

        Args:
            shop_domain: Claimed shop domain from the request header (untrusted)

        Returns:
            Tenant snapshot, or None if no tenant is connected to this domain
        """
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None

        tenant = self.credential_store.find_by_domain(domain)
        if tenant is None:
            logger.info("No tenant connected to shop domain", shop_domain=domain)
        return tenant

"""
Pydantic models for tenants (one administrator's Shopify store pairing) and their credentials.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_API_VERSION = "2024-01"


def normalize_shop_domain(shop_domain: Optional[str]) -> str:
    """
    Normalize a Shopify shop domain for use as a lookup key.

    Strips protocol, surrounding whitespace and trailing slashes, and lowercases.
    'https://My-Shop.myshopify.com/' -> 'my-shop.myshopify.com'
    """
    if not shop_domain:
        return ""
    domain = shop_domain.strip().lower()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/")


class Tenant(BaseModel):
    """Shopify credentials for one tenant. Owned by the credential store."""

    id: str
    shop_domain: str
    access_token: str
    api_version: str = DEFAULT_API_VERSION
    webhook_secret: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("shop_domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        domain = normalize_shop_domain(value)
        if not domain:
            raise ValueError("shop_domain must not be empty")
        return domain

    def masked(self) -> dict:
        """Representation safe to return to the dashboard."""
        token = self.access_token or ""
        return {
            "tenant_id": self.id,
            "shop_domain": self.shop_domain,
            "api_version": self.api_version,
            "access_token": f"{token[:6]}...{token[-4:]}" if len(token) > 10 else "***",
            "has_webhook_secret": bool(self.webhook_secret),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class TenantCredentialsRequest(BaseModel):
    """Request model for saving Shopify credentials."""

    shop_domain: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    api_version: str = DEFAULT_API_VERSION
    webhook_secret: str = ""

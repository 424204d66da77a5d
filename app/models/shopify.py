"""
Pydantic models for Shopify Admin API resources and webhook payloads.
Covers products/variants (fee products), orders, customers, inventory levels and webhook subscriptions.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ShopifyVariant(BaseModel):
    """Shopify product variant model."""
    model_config = ConfigDict(extra="ignore")

    id: int
    product_id: Optional[int] = None
    title: str = "Default"
    price: str = "0.00"
    sku: Optional[str] = None
    requires_shipping: bool = False
    taxable: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShopifyProduct(BaseModel):
    """Shopify product model (as returned by products.json and products/* webhooks)."""
    model_config = ConfigDict(extra="ignore")

    id: int
    title: str = ""
    body_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    variants: List[ShopifyVariant] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Union[str, List[str], None]) -> List[str]:
        # REST returns tags as a comma separated string
        if value is None:
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return [str(tag).strip() for tag in value]

    @property
    def first_variant(self) -> Optional[ShopifyVariant]:
        return self.variants[0] if self.variants else None


class ProductDeleteWebhook(BaseModel):
    """Webhook payload for products/delete event."""
    model_config = ConfigDict(extra="ignore")

    id: int
    title: Optional[str] = None


class OrderLineItem(BaseModel):
    """Order line item, reduced to what fee detection needs."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    title: str = ""
    vendor: Optional[str] = None
    price: Optional[str] = None
    quantity: int = 1


class OrderWebhook(BaseModel):
    """Webhook payload for orders/* events."""
    model_config = ConfigDict(extra="ignore")

    id: int
    name: Optional[str] = None
    order_number: Optional[int] = None
    email: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    total_price: Optional[str] = None
    currency: Optional[str] = None
    tags: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    line_items: List[OrderLineItem] = Field(default_factory=list)
    note_attributes: List[Dict[str, Any]] = Field(default_factory=list)


class CustomerWebhook(BaseModel):
    """Webhook payload for customers/* events."""
    model_config = ConfigDict(extra="ignore")

    id: int
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    updated_at: Optional[datetime] = None


class InventoryLevelsUpdateWebhook(BaseModel):
    """Webhook payload for inventory_levels/update event."""
    model_config = ConfigDict(extra="ignore")

    inventory_item_id: int
    location_id: int
    available: Optional[int] = None
    updated_at: Optional[datetime] = None


class ShopifyWebhookSubscription(BaseModel):
    """Webhook subscription registered on the shop."""
    model_config = ConfigDict(extra="ignore")

    id: int
    topic: str
    address: str
    format: str = "json"
    api_version: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class WebhookEvent:
    """
    Inbound Shopify webhook, as received.

    raw_body keeps the exact wire bytes; the signature is computed over them,
    never over a re-serialized payload. Never persisted.
    """

    topic: str
    shop_domain: str
    hmac_header: Optional[str]
    webhook_id: Optional[str] = None
    api_version: Optional[str] = None
    raw_body: bytes = b""
    payload: Dict[str, Any] = field(default_factory=dict)

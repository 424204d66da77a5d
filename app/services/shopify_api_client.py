"""
Shopify API client for making direct Admin REST API calls to a tenant's shop.
Handles fee product search/create/price update/delete and webhook subscription management.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from app.config import settings
from app.models.shopify import ShopifyProduct, ShopifyWebhookSubscription
from app.models.tenant import Tenant
from app.utils.retry import async_retry_with_backoff, is_unsent_request_error

logger = structlog.get_logger()

PRODUCT_FIELDS = "id,title,vendor,product_type,tags,variants,created_at,updated_at"
PAGE_LIMIT = 250


class ShopifyAPIError(Exception):
    """Raised when a Shopify Admin API call fails (transport error or non-2xx response)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ShopifyAPIClient:
    """Client for making Shopify Admin API calls."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Shopify API client.

        Args:
            shop_domain: Shopify shop domain (e.g., 'myshop.myshopify.com')
            access_token: Shopify Admin API access token
            api_version: Admin API version (defaults to settings.shopify_api_version)
            transport: Optional httpx transport (used to stub the API in tests)
        """
        self.shop_domain = shop_domain
        self.api_version = api_version or settings.shopify_api_version
        self.base_url = f"https://{shop_domain}/admin/api/{self.api_version}"
        self.client = httpx.AsyncClient(
            timeout=settings.shopify_request_timeout_seconds,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def for_tenant(cls, tenant: Tenant) -> "ShopifyAPIClient":
        return cls(tenant.shop_domain, tenant.access_token, tenant.api_version)

    @async_retry_with_backoff()
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self.client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    @async_retry_with_backoff(retry_on=is_unsent_request_error)
    async def _send_create(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self.client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Make a request, retrying transient failures, and normalize errors to ShopifyAPIError.

        POST creates a resource, so it is only resent when Shopify cannot have
        received it (connect failure, 429).

        Args:
            method: HTTP method
            path: Path relative to the versioned admin API base, or an absolute URL
            params: Query parameters
            json: JSON body

        Raises:
            ShopifyAPIError: If the request fails after retries
        """
        url = path if path.startswith("https://") else f"{self.base_url}{path}"
        try:
            send = self._send_create if method == "POST" else self._send
            return await send(method, url, params=params, json=json)
        except httpx.HTTPStatusError as e:
            error_msg = f"Shopify API error {e.response.status_code}"
            if e.response.text:
                error_msg += f": {e.response.text}"
            logger.error(
                "Shopify API request failed",
                method=method,
                path=path,
                status_code=e.response.status_code,
                shop_domain=self.shop_domain,
            )
            raise ShopifyAPIError(
                error_msg,
                status_code=e.response.status_code,
                response_body=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "Shopify API transport error",
                method=method,
                path=path,
                shop_domain=self.shop_domain,
                error=str(e),
            )
            raise ShopifyAPIError(f"Shopify API request failed: {e}") from e

    # Products

    async def find_product_by_signature(
        self, title: str, vendor: str, marker_tag: str
    ) -> Optional[ShopifyProduct]:
        """
        Find the product whose title, vendor and tag all match.

        When several match (left over from an earlier race), the oldest id wins
        so the choice is stable across runs.
        """
        response = await self._request(
            "GET",
            "/products.json",
            params={"title": title, "limit": 10, "fields": PRODUCT_FIELDS},
        )
        products = [ShopifyProduct(**p) for p in response.json().get("products", [])]
        matches = [
            p for p in products
            if p.title == title and p.vendor == vendor and marker_tag in p.tags
        ]
        if not matches:
            return None
        return min(matches, key=lambda p: p.id)

    async def create_product(self, payload: Dict[str, Any]) -> ShopifyProduct:
        response = await self._request("POST", "/products.json", json=payload)
        product = response.json().get("product")
        if not product:
            raise ShopifyAPIError("Failed to create product - no product in response")
        created = ShopifyProduct(**product)
        logger.info(
            "Created Shopify product",
            product_id=created.id,
            title=created.title,
            shop_domain=self.shop_domain,
        )
        return created

    async def update_variant_price(
        self, product_id: int, variant_id: int, price: str
    ) -> ShopifyProduct:
        """
        Update a product variant's price in Shopify.

        Args:
            product_id: Shopify product ID
            variant_id: Shopify variant ID
            price: New price as string (e.g., "10.99")

        Returns:
            The updated product
        """
        payload = {"product": {"id": product_id, "variants": [{"id": variant_id, "price": price}]}}
        response = await self._request("PUT", f"/products/{product_id}.json", json=payload)
        product = response.json().get("product")
        if not product:
            raise ShopifyAPIError(f"Failed to update product {product_id} - no product in response")
        logger.info(
            "Updated Shopify variant price",
            product_id=product_id,
            variant_id=variant_id,
            price=price,
        )
        return ShopifyProduct(**product)

    async def list_products(
        self, vendor: str, product_type: Optional[str] = None
    ) -> List[ShopifyProduct]:
        """List every product of a vendor (and product type), following Link pagination."""
        params: Optional[Dict[str, Any]] = {
            "vendor": vendor,
            "limit": PAGE_LIMIT,
            "fields": PRODUCT_FIELDS,
        }
        if product_type:
            params["product_type"] = product_type

        products: List[ShopifyProduct] = []
        url = "/products.json"
        while url:
            response = await self._request("GET", url, params=params)
            products.extend(ShopifyProduct(**p) for p in response.json().get("products", []))
            # The next link already carries page_info and limit
            url = response.links.get("next", {}).get("url")
            params = None
        return products

    async def list_products_by_marker(
        self, vendor: str, product_type: str, marker_tag: str
    ) -> List[ShopifyProduct]:
        products = await self.list_products(vendor, product_type)
        return [p for p in products if marker_tag in p.tags]

    async def delete_product(self, product_id: int) -> None:
        try:
            await self._request("DELETE", f"/products/{product_id}.json")
        except ShopifyAPIError as e:
            if e.status_code == 404:
                logger.info("Shopify product already deleted", product_id=product_id)
                return
            raise
        logger.info("Deleted Shopify product", product_id=product_id, shop_domain=self.shop_domain)

    # Shop

    async def get_shop(self) -> Dict[str, Any]:
        response = await self._request("GET", "/shop.json")
        return response.json().get("shop", {})

    # Webhook subscriptions

    async def list_webhooks(self) -> List[ShopifyWebhookSubscription]:
        response = await self._request("GET", "/webhooks.json")
        return [ShopifyWebhookSubscription(**w) for w in response.json().get("webhooks", [])]

    async def create_webhook(self, topic: str, address: str) -> ShopifyWebhookSubscription:
        payload = {"webhook": {"topic": topic, "address": address, "format": "json"}}
        response = await self._request("POST", "/webhooks.json", json=payload)
        return ShopifyWebhookSubscription(**response.json()["webhook"])

    async def update_webhook(self, webhook_id: int, address: str) -> ShopifyWebhookSubscription:
        payload = {"webhook": {"id": webhook_id, "address": address}}
        response = await self._request("PUT", f"/webhooks/{webhook_id}.json", json=payload)
        return ShopifyWebhookSubscription(**response.json()["webhook"])

    async def delete_webhook(self, webhook_id: int) -> None:
        await self._request("DELETE", f"/webhooks/{webhook_id}.json")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

"""Shared fixtures: an in-memory Shopify catalog, seeded stores and an API client with overridden dependencies."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.models.shopify import ShopifyProduct, ShopifyWebhookSubscription
from app.models.tenant import Tenant
from app.models.timeslot import Timeslot
from app.services.admin_sessions import AdminSessionStore
from app.services.credential_store import InMemoryCredentialStore
from app.services.fee_products import FEE_PRODUCT_TAGS, FEE_PRODUCT_TYPE, FEE_PRODUCT_VENDOR, fee_product_title
from app.services.fee_reconciliation import FeeReconciliationEngine
from app.services.shopify_api_client import ShopifyAPIError
from app.services.tenant_data_store import InMemoryTenantDataStore
from app.services.tenant_resolver import TenantResolver
from app.services.webhook_handlers import build_event_dispatcher
from app.services.webhook_ingestion import WebhookIngestionService
from app.services.webhook_verifier import compute_webhook_signature
from app.workers.reconciliation_scheduler import ReconciliationScheduler

TENANT_ID = "tenant-a"
SHOP_DOMAIN = "fresh-flowers.myshopify.com"
WEBHOOK_SECRET = "shpss_test_secret"
ADMIN_TOKEN = "admin-token-a"


class FakeShopifyCatalog:
    """
    In-memory stand-in for a shop's Admin API, shaped like ShopifyAPIClient.

    `catalog.client_factory` plugs into FeeReconciliationEngine. Calls are
    recorded so tests can assert on remote side effects.
    """

    def __init__(self):
        self.products: Dict[int, Dict[str, Any]] = {}
        self.webhooks: Dict[int, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_create_titles: set = set()
        self.lose_create_response_titles: set = set()
        self.fail_delete_ids: set = set()
        self.fail_listing = False
        self._next_id = 1000
        self._next_variant_id = 5000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_product(
        self,
        title: str,
        price: str,
        vendor: str = FEE_PRODUCT_VENDOR,
        tags: Optional[List[str]] = None,
        product_id: Optional[int] = None,
    ) -> int:
        product_id = product_id or self._new_id()
        self._next_variant_id += 1
        self.products[product_id] = {
            "id": product_id,
            "title": title,
            "vendor": vendor,
            "product_type": FEE_PRODUCT_TYPE,
            "tags": ", ".join(FEE_PRODUCT_TAGS if tags is None else tags),
            "variants": [{"id": self._next_variant_id, "product_id": product_id, "price": price}],
        }
        return product_id

    def add_fee_product(self, amount: str, price: Optional[str] = None, product_id: Optional[int] = None) -> int:
        return self.add_product(fee_product_title(Decimal(amount)), price or amount, product_id=product_id)

    def fee_titles(self) -> List[str]:
        return sorted(p["title"] for p in self.products.values())

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    # Client contract

    def client_factory(self, tenant: Tenant) -> "FakeShopifyCatalog":
        self.calls.append(("open", tenant.id))
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def find_product_by_signature(self, title, vendor, marker_tag):
        self.calls.append(("find", title))
        matches = [
            ShopifyProduct(**p)
            for p in self.products.values()
            if p["title"] == title and p["vendor"] == vendor
        ]
        matches = [p for p in matches if marker_tag in p.tags]
        return min(matches, key=lambda p: p.id) if matches else None

    async def create_product(self, payload):
        body = payload["product"]
        self.calls.append(("create", body["title"]))
        if body["title"] in self.fail_create_titles:
            raise ShopifyAPIError("Shopify API error 422: title rejected", status_code=422)
        product_id = self.add_product(
            body["title"],
            body["variants"][0]["price"],
            vendor=body["vendor"],
            tags=[t.strip() for t in body["tags"].split(",")],
        )
        if body["title"] in self.lose_create_response_titles:
            raise ShopifyAPIError("Shopify API request failed: ReadTimeout")
        return ShopifyProduct(**self.products[product_id])

    async def update_variant_price(self, product_id, variant_id, price):
        self.calls.append(("update", product_id, price))
        product = self.products[product_id]
        for variant in product["variants"]:
            if variant["id"] == variant_id:
                variant["price"] = price
        return ShopifyProduct(**product)

    async def list_products_by_marker(self, vendor, product_type, marker_tag):
        self.calls.append(("list", vendor))
        if self.fail_listing:
            raise ShopifyAPIError("Shopify API error 503", status_code=503)
        products = [ShopifyProduct(**p) for p in self.products.values()]
        return [
            p for p in products
            if p.vendor == vendor and p.product_type == product_type and marker_tag in p.tags
        ]

    async def delete_product(self, product_id):
        self.calls.append(("delete", product_id))
        if product_id in self.fail_delete_ids:
            raise ShopifyAPIError("Shopify API error 500", status_code=500)
        self.products.pop(product_id, None)

    async def get_shop(self):
        self.calls.append(("shop",))
        return {"name": "Fresh Flowers", "domain": "freshflowers.example", "myshopify_domain": SHOP_DOMAIN, "currency": "USD"}

    async def list_webhooks(self):
        return [ShopifyWebhookSubscription(**w) for w in self.webhooks.values()]

    async def create_webhook(self, topic, address):
        self.calls.append(("create_webhook", topic))
        webhook_id = self._new_id()
        self.webhooks[webhook_id] = {"id": webhook_id, "topic": topic, "address": address}
        return ShopifyWebhookSubscription(**self.webhooks[webhook_id])

    async def update_webhook(self, webhook_id, address):
        self.calls.append(("update_webhook", webhook_id))
        self.webhooks[webhook_id]["address"] = address
        return ShopifyWebhookSubscription(**self.webhooks[webhook_id])

    async def delete_webhook(self, webhook_id):
        self.calls.append(("delete_webhook", webhook_id))
        self.webhooks.pop(webhook_id, None)


def express_slot(slot_id: str, fee: Any) -> Timeslot:
    return Timeslot(id=slot_id, name=f"Express {slot_id}", type="express", fee=fee)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_webhook_signature(body, secret)


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(
        id=TENANT_ID,
        shop_domain=SHOP_DOMAIN,
        access_token="shpat_0123456789abcdef",
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def credential_store(tenant: Tenant) -> InMemoryCredentialStore:
    store = InMemoryCredentialStore()
    store.put(tenant)
    return store


@pytest.fixture
def data_store() -> InMemoryTenantDataStore:
    return InMemoryTenantDataStore()


@pytest.fixture
def catalog() -> FakeShopifyCatalog:
    return FakeShopifyCatalog()


@pytest.fixture
def engine(catalog: FakeShopifyCatalog) -> FeeReconciliationEngine:
    return FeeReconciliationEngine(client_factory=catalog.client_factory)


@pytest.fixture
def scheduler(credential_store, data_store, engine) -> ReconciliationScheduler:
    return ReconciliationScheduler(credential_store, data_store, engine=engine)


@pytest.fixture
def mock_scheduler(engine) -> MagicMock:
    """Scheduler double for route tests; schedule() is recorded, not run."""
    scheduler = MagicMock(spec=ReconciliationScheduler)
    scheduler.engine = engine
    scheduler.is_running.return_value = False
    return scheduler


@pytest.fixture
def session_store() -> AdminSessionStore:
    return AdminSessionStore({ADMIN_TOKEN: TENANT_ID})


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def api_client(credential_store, data_store, mock_scheduler, session_store):
    """TestClient with stores, scheduler and webhook pipeline bound to the fixtures above."""
    from app import dependencies
    from app.main import app

    dispatcher = build_event_dispatcher(mock_scheduler, credential_store)
    ingestion = WebhookIngestionService(TenantResolver(credential_store), dispatcher)

    app.dependency_overrides[dependencies.get_credential_store] = lambda: credential_store
    app.dependency_overrides[dependencies.get_tenant_data_store] = lambda: data_store
    app.dependency_overrides[dependencies.get_scheduler] = lambda: mock_scheduler
    app.dependency_overrides[dependencies.get_session_store] = lambda: session_store
    app.dependency_overrides[dependencies.get_ingestion_service] = lambda: ingestion
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()

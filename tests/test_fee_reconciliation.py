"""Tests for fee product reconciliation and cleanup against an in-memory catalog and a mocked transport."""

import json
from decimal import Decimal

import httpx
import pytest

from app.config import settings
from app.services.fee_products import fee_product_title
from app.services.fee_reconciliation import FeeReconciliationEngine
from app.services.shopify_api_client import ShopifyAPIClient, ShopifyAPIError

D = Decimal


class TestReconcile:
    @pytest.mark.asyncio
    async def test_creates_missing_fee_products(self, engine, catalog, tenant):
        result = await engine.reconcile(tenant, [D("5"), D("10")])

        assert [o.fee_amount for o in result.created] == [D("5.00"), D("10.00")]
        assert result.updated == [] and result.unchanged == [] and result.errors == []
        assert result.summary.total_fee_amounts == 2
        assert result.summary.products_created == 2
        assert result.summary.success is True
        assert catalog.fee_titles() == [
            "Express Delivery Fee - $10.00",
            "Express Delivery Fee - $5.00",
        ]
        assert all(o.price == f"{o.fee_amount:.2f}" for o in result.created)

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, engine, catalog, tenant):
        await engine.reconcile(tenant, [D("5"), D("10")])
        catalog.calls.clear()

        result = await engine.reconcile(tenant, [D("5"), D("10")])

        assert result.created == [] and result.updated == []
        assert result.unchanged == [D("5.00"), D("10.00")]
        assert catalog.calls_named("create") == []
        assert catalog.calls_named("update") == []
        assert len(catalog.products) == 2

    @pytest.mark.asyncio
    async def test_repairs_price_drift(self, engine, catalog, tenant):
        product_id = catalog.add_fee_product("5.00", price="4.00")

        result = await engine.reconcile(tenant, [D("5.00")])

        assert len(result.updated) == 1
        outcome = result.updated[0]
        assert outcome.product_id == product_id
        assert outcome.previous_price == "4.00"
        assert outcome.price == "5.00"
        assert catalog.products[product_id]["variants"][0]["price"] == "5.00"
        assert catalog.calls_named("create") == []

    @pytest.mark.asyncio
    async def test_equal_prices_with_different_formatting_are_unchanged(self, engine, catalog, tenant):
        catalog.add_fee_product("5.00", price="5.0")

        result = await engine.reconcile(tenant, [D("5")])

        assert result.unchanged == [D("5.00")]
        assert catalog.calls_named("update") == []

    @pytest.mark.asyncio
    async def test_products_outside_required_set_are_left_alone(self, engine, catalog, tenant):
        stale_id = catalog.add_fee_product("20.00")

        await engine.reconcile(tenant, [D("5")])

        assert stale_id in catalog.products
        assert catalog.calls_named("delete") == []

    @pytest.mark.asyncio
    async def test_lookalike_from_other_vendor_is_not_adopted(self, engine, catalog, tenant):
        foreign_id = catalog.add_product(
            fee_product_title(D("5")), "99.00", vendor="Another App", tags=["delivery-fee"]
        )

        result = await engine.reconcile(tenant, [D("5")])

        assert len(result.created) == 1
        assert catalog.products[foreign_id]["variants"][0]["price"] == "99.00"

    @pytest.mark.asyncio
    async def test_one_failing_amount_does_not_stop_the_rest(self, engine, catalog, tenant):
        catalog.fail_create_titles.add(fee_product_title(D("10")))

        result = await engine.reconcile(tenant, [D("5"), D("10"), D("15")])

        assert [o.fee_amount for o in result.created] == [D("5.00"), D("15.00")]
        assert len(result.errors) == 1
        assert result.errors[0].fee_amount == D("10.00")
        assert "422" in result.errors[0].error
        assert result.summary.success is False
        assert result.summary.errors == 1

    @pytest.mark.asyncio
    async def test_lost_create_response_adopts_the_committed_product(self, engine, catalog, tenant):
        catalog.lose_create_response_titles.add(fee_product_title(D("5")))

        result = await engine.reconcile(tenant, [D("5")])

        assert len(catalog.products) == 1
        assert len(catalog.calls_named("create")) == 1
        assert [o.product_id for o in result.created] == list(catalog.products)
        assert result.summary.success is True

        second = await engine.reconcile(tenant, [D("5")])

        assert second.unchanged == [D("5.00")]
        assert len(catalog.products) == 1

    @pytest.mark.asyncio
    async def test_rejected_create_is_not_looked_up_again(self, engine, catalog, tenant):
        catalog.fail_create_titles.add(fee_product_title(D("5")))

        result = await engine.reconcile(tenant, [D("5")])

        assert len(result.errors) == 1
        assert len(catalog.calls_named("find")) == 1

    @pytest.mark.asyncio
    async def test_duplicates_resolve_to_oldest_product(self, engine, catalog, tenant):
        catalog.add_fee_product("5.00", price="4.00", product_id=2001)
        catalog.add_fee_product("5.00", price="4.00", product_id=2000)

        result = await engine.reconcile(tenant, [D("5")])

        assert result.updated[0].product_id == 2000
        assert catalog.products[2001]["variants"][0]["price"] == "4.00"

    @pytest.mark.asyncio
    async def test_empty_required_set_touches_nothing(self, engine, catalog, tenant):
        catalog.add_fee_product("5.00")

        result = await engine.reconcile(tenant, [])

        assert result.summary.total_fee_amounts == 0
        assert result.summary.success is True
        assert catalog.calls_named("find") == []
        assert len(catalog.products) == 1

    @pytest.mark.asyncio
    async def test_duplicate_and_invalid_inputs_are_normalized(self, engine, catalog, tenant):
        result = await engine.reconcile(tenant, [D("5"), D("5.00"), D("0"), D("-1")])

        assert result.summary.total_fee_amounts == 1
        assert len(catalog.products) == 1


class TestCleanup:
    @pytest.mark.asyncio
    async def test_deletes_unused_and_keeps_active(self, engine, catalog, tenant):
        keep_id = catalog.add_fee_product("5.00")
        stale_id = catalog.add_fee_product("20.00")

        result = await engine.cleanup(tenant, [D("5")])

        assert [e.product_id for e in result.kept] == [keep_id]
        assert [(e.product_id, e.reason) for e in result.deleted] == [(stale_id, "unused")]
        assert result.success
        assert set(catalog.products) == {keep_id}

    @pytest.mark.asyncio
    async def test_deletes_duplicates_keeping_oldest(self, engine, catalog, tenant):
        catalog.add_fee_product("5.00", product_id=3001)
        catalog.add_fee_product("5.00", product_id=3000)

        result = await engine.cleanup(tenant, [D("5")])

        assert [e.product_id for e in result.kept] == [3000]
        assert [(e.product_id, e.reason) for e in result.deleted] == [(3001, "duplicate")]

    @pytest.mark.asyncio
    async def test_deletes_managed_products_with_unrecognized_titles(self, engine, catalog, tenant):
        odd_id = catalog.add_product("Express Delivery Fee (legacy)", "3.00")

        result = await engine.cleanup(tenant, [])

        assert [(e.product_id, e.reason) for e in result.deleted] == [(odd_id, "unrecognized_title")]

    @pytest.mark.asyncio
    async def test_oversized_title_amount_is_unrecognized(self, engine, catalog, tenant):
        keep_id = catalog.add_fee_product("5.00")
        huge_id = catalog.add_product("Express Delivery Fee - $1" + "0" * 30 + ".00", "1.00")

        result = await engine.cleanup(tenant, [D("5")])

        assert [e.product_id for e in result.kept] == [keep_id]
        assert [(e.product_id, e.reason) for e in result.deleted] == [(huge_id, "unrecognized_title")]

    @pytest.mark.asyncio
    async def test_never_touches_unmanaged_products(self, engine, catalog, tenant):
        merchant_id = catalog.add_product("Express Delivery Fee - $5.00", "5.00", vendor="Merchant")

        result = await engine.cleanup(tenant, [])

        assert result.deleted == []
        assert merchant_id in catalog.products

    @pytest.mark.asyncio
    async def test_delete_failures_are_collected(self, engine, catalog, tenant):
        failing_id = catalog.add_fee_product("20.00")
        other_id = catalog.add_fee_product("30.00")
        catalog.fail_delete_ids.add(failing_id)

        result = await engine.cleanup(tenant, [])

        assert [e.product_id for e in result.deleted] == [other_id]
        assert [e.product_id for e in result.errors] == [failing_id]
        assert not result.success

    @pytest.mark.asyncio
    async def test_listing_failure_raises(self, engine, catalog, tenant):
        catalog.fail_listing = True

        with pytest.raises(ShopifyAPIError):
            await engine.cleanup(tenant, [D("5")])


class TestStatus:
    @pytest.mark.asyncio
    async def test_reports_fee_products(self, engine, catalog, tenant):
        catalog.add_fee_product("5.00")
        catalog.add_fee_product("10.00", price="9.00")

        status = await engine.get_status(tenant)

        assert status.error is None
        assert status.total_fee_products == 2
        prices = {p.fee_amount: p.price for p in status.fee_products}
        assert prices == {D("5.00"): "5.00", D("10.00"): "9.00"}

    @pytest.mark.asyncio
    async def test_listing_failure_is_reported(self, engine, catalog, tenant):
        catalog.fail_listing = True

        status = await engine.get_status(tenant)

        assert status.total_fee_products == 0
        assert "503" in status.error


class TestOverHttp:
    @pytest.mark.asyncio
    async def test_create_timeout_after_commit_leaves_one_product(self, tenant, monkeypatch):
        monkeypatch.setattr(settings, "retry_backoff_multiplier", 0.0)
        monkeypatch.setattr(settings, "retry_initial_delay_seconds", 0.0)
        remote = []
        posts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"products": remote})
            body = json.loads(request.content)["product"]
            posts.append(body)
            remote.append({**body, "id": 700 + len(remote), "variants": [{"id": 1, "price": "5.00"}]})
            raise httpx.ReadTimeout("response lost", request=request)

        engine = FeeReconciliationEngine(
            client_factory=lambda t: ShopifyAPIClient(
                t.shop_domain, t.access_token, t.api_version, transport=httpx.MockTransport(handler)
            )
        )

        result = await engine.reconcile(tenant, [D("5")])

        assert len(posts) == 1
        assert len(remote) == 1
        assert result.summary.products_created == 1
        assert result.created[0].product_id == 700
        assert result.summary.success is True

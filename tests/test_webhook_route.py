"""Tests for POST /api/shopify/webhook: resolution, verification, parsing and dispatch."""

import json

from conftest import SHOP_DOMAIN, TENANT_ID, sign

WEBHOOK_URL = "/api/shopify/webhook"


def _headers(body: bytes, topic="orders/create", shop=SHOP_DOMAIN, signature=None):
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Hmac-Sha256": signature if signature is not None else sign(body),
        "X-Shopify-Webhook-Id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
        "X-Shopify-Api-Version": "2024-01",
    }
    if shop is not None:
        headers["X-Shopify-Shop-Domain"] = shop
    return headers


def _order_body(with_fee=True) -> bytes:
    line_items = [{"id": 1, "title": "Dozen Roses", "vendor": "Fresh Flowers"}]
    if with_fee:
        line_items.append({"id": 2, "title": "Express Delivery Fee - $5.00", "vendor": "Delivery Scheduler"})
    return json.dumps({"id": 450789469, "name": "#1001", "line_items": line_items}).encode()


class TestWebhookRoute:
    def test_verified_order_is_accepted_and_dispatched(self, api_client, mock_scheduler):
        body = _order_body()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["tenant_id"] == TENANT_ID
        assert data["topic"] == "orders/create"
        mock_scheduler.schedule.assert_called_once_with(TENANT_ID, trigger="webhook:orders/create")

    def test_shop_header_is_normalized(self, api_client):
        body = _order_body(with_fee=False)

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, shop="FRESH-FLOWERS.myshopify.com"))

        assert response.status_code == 200

    def test_bad_signature_is_rejected_without_side_effects(self, api_client, mock_scheduler):
        body = _order_body()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, signature=sign(body, "wrong")))

        assert response.status_code == 401
        mock_scheduler.schedule.assert_not_called()

    def test_missing_signature_is_rejected(self, api_client):
        body = _order_body()
        headers = _headers(body)
        del headers["X-Shopify-Hmac-Sha256"]

        response = api_client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401

    def test_unknown_shop_is_not_found(self, api_client, mock_scheduler):
        body = _order_body()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, shop="stranger.myshopify.com"))

        assert response.status_code == 404
        mock_scheduler.schedule.assert_not_called()

    def test_missing_shop_header_is_bad_request(self, api_client):
        body = _order_body()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, shop=None))

        assert response.status_code == 400

    def test_signed_invalid_json_is_bad_request(self, api_client, mock_scheduler):
        body = b'{"id": 1, "line_items": ['

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body))

        assert response.status_code == 400
        mock_scheduler.schedule.assert_not_called()

    def test_signed_non_object_json_is_bad_request(self, api_client):
        body = b"[1, 2, 3]"

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body))

        assert response.status_code == 400

    def test_unknown_topic_is_acknowledged(self, api_client):
        body = b'{"id": 1}'

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, topic="themes/publish"))

        assert response.status_code == 200

    def test_failing_handler_is_still_acknowledged(self, api_client, mock_scheduler):
        mock_scheduler.schedule.side_effect = RuntimeError("scheduler unavailable")
        body = _order_body()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body))

        assert response.status_code == 200

    def test_uninstall_removes_credentials(self, api_client, credential_store):
        body = json.dumps({"id": 1, "domain": SHOP_DOMAIN}).encode()

        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body, topic="app/uninstalled"))

        assert response.status_code == 200
        assert credential_store.get(TENANT_ID) is None

        # later deliveries for the shop no longer resolve
        body = _order_body()
        response = api_client.post(WEBHOOK_URL, content=body, headers=_headers(body))
        assert response.status_code == 404

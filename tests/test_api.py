"""
HTTP layer tests: tenant resolution, the error envelope and the main
routes, with the database dependency pointed at the test store.
"""
import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from trackprofit.config import get_settings
from trackprofit.main import app
from trackprofit.models.base import get_db

from conftest import SHOP, seed_carrier_credentials, tariff_entry

HEADERS = {"X-Shopify-Shop-Domain": SHOP}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan (scheduler, init_db) stays off
    yield TestClient(app)
    app.dependency_overrides.clear()


FORM = {
    "client": "Amine", "primaryPhone": "0555123456", "address": "Rue 1", "wilayaId": 16,
    "commune": "Alger Centre", "total": 3500, "productDescription": "Mug", "confirmed": True,
}


def _order(order_id="9001"):
    return {
        "id": order_id,
        "createdAt": (datetime.utcnow().date() - timedelta(days=1)).isoformat() + "T10:00:00Z",
        "lineItems": [{"productId": "p1", "title": "Mug", "quantity": 2, "price": "300", "unitCost": "100"}],
    }


# ────────────────────────────────────────────
# PLUMBING
# ────────────────────────────────────────────


class TestPlumbing:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Robots-Tag"] == "noindex, nofollow"

    def test_json_responses_are_private(self, client):
        response = client.get("/status")
        assert response.headers["Cache-Control"] == "private, no-cache"

    def test_robots(self, client):
        assert client.get("/robots.txt").text == "User-agent: *\nDisallow: /\n"

    def test_missing_shop(self, client):
        response = client.get("/ledger")
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": {
                "code": "invalid_input",
                "message": "shop is required (X-Shopify-Shop-Domain header or ?shop=)",
                "field": "shop",
            },
        }

    def test_shop_from_query_is_lowercased(self, client):
        response = client.get("/credentials/carrier", params={"shop": "Test-Shop.MyShopify.com"})
        assert response.status_code == 200
        assert response.json()["credential"] == {"provider": "carrier", "isConfigured": False}

    def test_validation_errors_use_envelope(self, client):
        response = client.get("/shipments", params={"limit": 0}, headers=HEADERS)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "invalid_input"
        assert body["error"]["field"] == "limit"


# ────────────────────────────────────────────
# LEDGER
# ────────────────────────────────────────────


class TestLedgerRoute:

    def test_ledger(self, client, fake_storefront):
        client.post("/orders/observed", json=_order(), headers=HEADERS)

        response = client.get("/ledger", params={"preset": "last_7_days"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["perDay"]) == 7
        assert body["totals"]["orderRevenue"] == 600.0
        assert body["totals"]["cogs"] == 200.0
        assert body["totals"]["netProfit"] == 400.0
        assert body["diagnostics"]["providers"]["ads"] == "not_selected"

    def test_bad_exchange_rate(self, client):
        response = client.get("/ledger", params={"exchangeRate": "-1"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "exchangeRate"

    def test_bad_preset(self, client):
        response = client.get("/ledger", params={"preset": "forever"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "preset"

    def test_future_end(self, client):
        future = (datetime.utcnow().date() + timedelta(days=3)).isoformat()
        response = client.get("/ledger", params={"start": datetime.utcnow().date().isoformat(), "end": future}, headers=HEADERS)
        assert response.status_code == 400


# ────────────────────────────────────────────
# ORDERS / SHIPMENTS / CREDENTIALS
# ────────────────────────────────────────────


class TestResourceRoutes:

    def test_observe_and_read_order(self, client, fake_storefront):
        first = client.post("/orders/observed", json=_order(), headers=HEADERS)
        again = client.post("/orders/observed", json=_order(), headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["order"] == again.json()["order"]

        response = client.get("/orders/9001/cogs", headers=HEADERS)
        assert response.json()["order"]["totalCost"] == 200.0

    def test_unknown_order(self, client):
        response = client.get("/orders/nope/cogs", headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_shipment_requires_carrier(self, client, fake_carrier):
        response = client.post("/shipments", json=FORM, headers=HEADERS)
        assert response.status_code == 412
        assert response.json()["error"]["code"] == "not_configured"

    def test_create_and_list_shipment(self, client, session_factory, fake_carrier):
        seed_carrier_credentials(session_factory())
        fake_carrier.tariff = [tariff_entry(16, "Alger")]
        created = client.post("/shipments", json=FORM, headers=HEADERS)
        assert created.status_code == 200
        tracking = created.json()["tracking"]

        listed = client.get("/shipments", headers=HEADERS).json()
        assert listed["count"] == 1
        assert client.get(f"/shipments/{tracking}", headers=HEADERS).status_code == 200

    def test_unknown_provider(self, client):
        response = client.post("/credentials/paypal", json={}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "provider"

    def test_delete_missing_credentials(self, client):
        assert client.delete("/credentials/ads", headers=HEADERS).status_code == 404

    def test_save_carrier_credentials(self, client, fake_carrier):
        response = client.post("/credentials/carrier", json={"token": "t", "key": "k"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["credential"]["isConfigured"] is True
        assert "t" not in response.json()["credential"].values()


# ────────────────────────────────────────────
# WEBHOOKS
# ────────────────────────────────────────────


class TestWebhookRoute:

    @pytest.fixture
    def secret(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "shopify_api_secret", "whsec")
        return "whsec"

    def _post(self, client, body: bytes, topic="orders/create", signature=None):
        headers = {"X-Shopify-Topic": topic, "X-Shopify-Shop-Domain": SHOP, "Content-Type": "application/json"}
        if signature is not None:
            headers["X-Shopify-Hmac-Sha256"] = signature
        return client.post("/webhooks", content=body, headers=headers)

    def test_bad_signature(self, client, secret):
        response = self._post(client, b"{}", signature="bogus")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "auth_failed"

    def test_signed_webhook(self, client, secret, fake_storefront):
        body = json.dumps(_order("777")).encode()
        signature = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()

        response = self._post(client, body, signature=signature)

        assert response.status_code == 200
        assert response.json()["orderId"] == "777"

    def test_unknown_topic(self, client):
        response = self._post(client, b"{}", topic="carts/create")
        assert response.status_code == 404

    def test_invalid_json(self, client):
        response = self._post(client, b"not json", topic="orders/create")
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "body"

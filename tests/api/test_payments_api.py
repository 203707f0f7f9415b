"""Tests for the payments API: initiation, callbacks and error rendering."""
from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from pesaflow_api.main import API_VERSION, create_app
from pesaflow_checkout.models import OrderStatus

from conftest import FAILURE_URL, SUCCESS_URL

PURCHASE = {
    "amount": 4200000,
    "currency": "UGX",
    "email": "amina@example.com",
    "phone": "+256701234567",
    "packageName": "Grow",
}


@pytest.fixture
def app(settings, orchestrator):
    return create_app(settings=settings, orchestrator=orchestrator, configure_logging=False)


@pytest.fixture
def client(app):
    with TestClient(app, follow_redirects=False) as client:
        yield client


def _order(store, order_id):
    return asyncio.run(store.get(order_id))


class TestInitiatePayment:
    """POST /api/initiate-payment"""

    def test_happy_path(self, client, store, fake_gateway):
        response = client.post("/api/initiate-payment", json=PURCHASE)

        assert response.status_code == 200
        body = response.json()
        assert body["order_id"].startswith("ORDER-")
        assert body["order_tracking_id"] == f"trk-{body['order_id']}"
        assert body["redirect_url"].startswith("https://pay.test/iframe")
        assert body["iframeUrl"] == body["redirect_url"]

        order = _order(store, body["order_id"])
        assert order.status is OrderStatus.AWAITING_CALLBACK
        assert order.item_label == "Grow"
        assert fake_gateway.submit_calls == 1

    def test_alternate_field_names(self, client, store):
        response = client.post(
            "/api/initiate-payment",
            json={
                "amount": "9000000",
                "email_address": "amina@example.com",
                "phone_number": "0701234567",
                "package_name": "Store",
            },
        )

        assert response.status_code == 200
        order = _order(store, response.json()["order_id"])
        assert order.currency == "UGX"
        assert order.description == "Payment for Store"

    def test_zero_amount_rejected_without_gateway_call(self, client, store, fake_gateway):
        response = client.post("/api/initiate-payment", json={**PURCHASE, "amount": 0, "packageName": None})

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == 400
        assert body["errors"][0]["code"] == "invalid_amount"
        assert fake_gateway.submit_calls == 0
        assert store.count() == 1

    def test_huge_amount_rejected_without_gateway_call(self, client, store, fake_gateway):
        response = client.post(
            "/api/initiate-payment", json={**PURCHASE, "amount": "1E+5000", "packageName": None}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["errors"][0]["code"] == "invalid_amount"
        assert fake_gateway.submit_calls == 0
        assert store.count() == 1
        (order,) = store._orders.values()
        assert order.status is OrderStatus.INVALID

    def test_out_of_range_amount(self, client):
        response = client.post("/api/initiate-payment", json={**PURCHASE, "amount": 50000})

        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "amount_out_of_range"

    def test_missing_email(self, client, store):
        payload = {k: v for k, v in PURCHASE.items() if k != "email"}

        response = client.post("/api/initiate-payment", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert response.headers["content-type"].startswith("application/problem+json")
        assert any(e["field"] == "email" for e in body["errors"])
        assert store.count() == 0

    def test_non_numeric_amount(self, client, store):
        response = client.post("/api/initiate-payment", json={**PURCHASE, "amount": "lots"})

        assert response.status_code == 400
        assert store.count() == 0

    def test_gateway_failure_is_generic_502(self, client, fake_gateway):
        fake_gateway.submit_responses.extend(
            [httpx.Response(500, json={"error": {"message": "internal db host pg-7"}})] * 3
        )

        response = client.post("/api/initiate-payment", json=PURCHASE)

        assert response.status_code == 502
        body = response.json()
        assert body["type"].endswith("/payment-gateway-error")
        assert "pg-7" not in response.text
        assert "status_code" not in body
        assert fake_gateway.submit_calls == 3

    def test_authentication_failure_is_500(self, client, fake_gateway):
        fake_gateway.token_responses.append(
            httpx.Response(200, json={"token": None, "error": {"code": "invalid_consumer_key"}})
        )

        response = client.post("/api/initiate-payment", json=PURCHASE)

        assert response.status_code == 500
        body = response.json()
        assert body["detail"] == "Payment service is temporarily unavailable"
        assert "consumer" not in response.text

    def test_request_id_echoed(self, client):
        response = client.post(
            "/api/initiate-payment",
            json={**PURCHASE, "amount": 0},
            headers={"X-Request-ID": "req_from_storefront"},
        )

        assert response.headers["X-Request-ID"] == "req_from_storefront"
        assert response.json()["request_id"] == "req_from_storefront"


class TestPaymentCallback:
    """GET /payment-callback always redirects."""

    def _initiate(self, client):
        return client.post("/api/initiate-payment", json=PURCHASE).json()

    def test_completed_redirects_to_success(self, client, store):
        body = self._initiate(client)

        response = client.get(
            "/payment-callback",
            params={"orderTrackingId": body["order_tracking_id"], "status": "COMPLETED"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == SUCCESS_URL
        assert _order(store, body["order_id"]).status is OrderStatus.COMPLETED

    def test_gateway_parameter_name(self, client, store):
        body = self._initiate(client)

        response = client.get(
            "/payment-callback",
            params={"OrderTrackingId": body["order_tracking_id"], "status": "FAILED"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == FAILURE_URL
        assert _order(store, body["order_id"]).status is OrderStatus.FAILED

    def test_duplicate_callback_same_destination(self, client, store):
        body = self._initiate(client)
        params = {"orderTrackingId": body["order_tracking_id"], "status": "COMPLETED"}
        client.get("/payment-callback", params=params)
        settled = _order(store, body["order_id"])

        response = client.get(
            "/payment-callback",
            params={**params, "status": "FAILED"},
        )

        assert response.headers["location"] == SUCCESS_URL
        assert _order(store, body["order_id"]) == settled

    def test_unknown_tracking_id(self, client, store):
        response = client.get(
            "/payment-callback", params={"orderTrackingId": "trk-nobody", "status": "COMPLETED"}
        )

        assert response.status_code == 302
        assert response.headers["location"] == FAILURE_URL
        assert store.count() == 0

    def test_missing_tracking_id(self, client):
        response = client.get("/payment-callback", params={"status": "COMPLETED"})

        assert response.status_code == 302
        assert response.headers["location"] == FAILURE_URL

    def test_pending_status_does_not_settle(self, client, store):
        body = self._initiate(client)

        response = client.get(
            "/payment-callback",
            params={"orderTrackingId": body["order_tracking_id"], "status": "PENDING"},
        )

        assert response.headers["location"] == FAILURE_URL
        assert _order(store, body["order_id"]).status is OrderStatus.AWAITING_CALLBACK


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "version": API_VERSION,
            "environment": "sandbox",
            "gateway": "pesapal",
        }

    def test_unknown_route_is_problem_json(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.json()["type"].endswith("/not-found")
        assert response.headers["X-Request-ID"].startswith("req_")

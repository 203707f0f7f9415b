"""Shared fixtures: settings, a fake Pesapal gateway and wired components."""
from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import httpx
import pytest

# Add source to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pesaflow_core.config import PesaflowSettings
from pesaflow_core.retry import RetryConfig, is_retryable_gateway_error
from pesaflow_checkout.connectors.pesapal import PesapalConnector
from pesaflow_checkout.credentials import GatewayCredentials
from pesaflow_checkout.models import Order, OrderStatus
from pesaflow_checkout.orchestrator import CheckoutOrchestrator
from pesaflow_checkout.store import InMemoryOrderStore
from pesaflow_checkout.tokens import TokenManager

GATEWAY_BASE_URL = "https://gateway.test/api"
CALLBACK_URL = "https://shop.example.com/payment-callback"
SUCCESS_URL = "https://shop.example.com/payment-success"
FAILURE_URL = "https://shop.example.com/payment-failed"


class FakePesapal:
    """In-process stand-in for the Pesapal v3 API, served through httpx.MockTransport.

    Queue entries in `submit_responses` / `token_responses` are either an
    httpx.Response, an exception to raise, or a callable taking the request.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.issued_tokens: List[str] = []
        self.rejected_tokens: Set[str] = set()
        self.token_lifetime = timedelta(minutes=5)
        self.token_responses: List = []
        self.submit_responses: List = []
        self.ipn_id = "ipn-registered-1"

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @property
    def token_calls(self) -> int:
        return len(self.calls("/Auth/RequestToken"))

    @property
    def submit_calls(self) -> int:
        return len(self.calls("/Transactions/SubmitOrderRequest"))

    def _next(self, queue: List, request: httpx.Request) -> Optional[httpx.Response]:
        if not queue:
            return None
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    def _bearer(self, request: httpx.Request) -> str:
        return request.headers.get("Authorization", "").removeprefix("Bearer ")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/Auth/RequestToken"):
            queued = self._next(self.token_responses, request)
            if queued is not None:
                return queued
            token = f"token-{len(self.issued_tokens) + 1}"
            self.issued_tokens.append(token)
            expiry = datetime.now(timezone.utc) + self.token_lifetime
            return httpx.Response(
                200,
                json={
                    "token": token,
                    "expiryDate": expiry.strftime("%Y-%m-%dT%H:%M:%S.%f") + "0Z",
                    "error": None,
                    "status": "200",
                    "message": "Request processed successfully",
                },
            )

        if self._bearer(request) in self.rejected_tokens:
            return httpx.Response(401, json={"error": {"code": "invalid_access_token"}})

        if path.endswith("/URLSetup/RegisterIPN"):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"ipn_id": self.ipn_id, "url": body["url"], "error": None, "status": "200"},
            )

        if path.endswith("/Transactions/SubmitOrderRequest"):
            queued = self._next(self.submit_responses, request)
            if queued is not None:
                return queued
            order_id = json.loads(request.content)["id"]
            tracking_id = f"trk-{order_id}"
            return httpx.Response(
                200,
                json={
                    "order_tracking_id": tracking_id,
                    "merchant_reference": order_id,
                    "redirect_url": f"https://pay.test/iframe?OrderTrackingId={tracking_id}",
                    "error": None,
                    "status": "200",
                },
            )

        return httpx.Response(404, json={"error": {"code": "not_found"}})


@pytest.fixture
def settings() -> PesaflowSettings:
    return PesaflowSettings(
        _env_file=None,
        environment="sandbox",
        api_base_url=GATEWAY_BASE_URL,
        consumer_key="test-consumer-key",
        consumer_secret="test-consumer-secret",
        callback_url=CALLBACK_URL,
        ipn_id="ipn-123",
        success_redirect_url=SUCCESS_URL,
        failure_redirect_url=FAILURE_URL,
        enable_expiry_sweep=False,
        database_url="",
    )


@pytest.fixture
def fake_gateway() -> FakePesapal:
    return FakePesapal()


@pytest.fixture
def credentials(settings) -> GatewayCredentials:
    return GatewayCredentials.from_settings(settings)


@pytest.fixture
def connector(fake_gateway) -> PesapalConnector:
    return PesapalConnector(base_url=GATEWAY_BASE_URL, transport=fake_gateway.transport)


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def tokens(connector, credentials) -> TokenManager:
    return TokenManager(connector, credentials)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Submission retry policy without sleeping."""
    return RetryConfig(
        max_retries=2,
        base_delay=0.0,
        jitter=0.0,
        retry_condition=is_retryable_gateway_error,
    )


@pytest.fixture
def orchestrator(store, connector, credentials, tokens, fast_retry) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        store,
        connector,
        credentials,
        success_redirect_url=SUCCESS_URL,
        failure_redirect_url=FAILURE_URL,
        tokens=tokens,
        retry_config=fast_retry,
    )


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Factory for Created orders with valid defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> Order:
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        fields: Dict = {
            "order_id": f"ORDER-1700000000000-{counter['n']:09d}",
            "amount": Decimal("4200000"),
            "currency": "UGX",
            "payer_email": "amina@example.com",
            "payer_phone": "+256701234567",
            "description": "Payment for Grow",
            "item_label": "Grow",
            "status": OrderStatus.CREATED,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Order(**fields)

    return _make

"""
Checkout orchestration.

Composes the builder, store, token manager, submitter and reconciler into the
three operations the HTTP layer needs:

- initiate: build and store an order, submit it, return the redirect target
- notify: reconcile a gateway callback, return where to send the payer
- expire_stale: fail orders whose callback never arrived
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import httpx

from pesaflow_core.config import PesaflowSettings
from pesaflow_core.exceptions import UnknownOrderError
from pesaflow_core.logging_config import order_context
from pesaflow_core.retry import RetryConfig, retry_async, submit_retry_config

from .builder import OrderBuilder
from .connectors.base import GatewayConnector
from .connectors.pesapal import PesapalConnector
from .credentials import GatewayCredentials
from .models import Order, OrderRequest, RedirectDecision, SubmissionResult
from .reconciler import CallbackReconciler
from .store import OrderStore, PostgresOrderStore, create_order_store
from .submitter import OrderSubmitter
from .tokens import TokenManager

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    """
    Entry point for checkout flows.

    Everything is injectable; `from_settings` wires the production defaults.
    """

    def __init__(
        self,
        store: OrderStore,
        connector: GatewayConnector,
        credentials: GatewayCredentials,
        *,
        success_redirect_url: str,
        failure_redirect_url: str,
        tokens: Optional[TokenManager] = None,
        builder: Optional[OrderBuilder] = None,
        reconciler: Optional[CallbackReconciler] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.store = store
        self.connector = connector
        self.credentials = credentials
        self.tokens = tokens or TokenManager(connector, credentials)
        self.builder = builder or OrderBuilder()
        self.submitter = OrderSubmitter(store, self.tokens, connector, credentials)
        self.reconciler = reconciler or CallbackReconciler(store)
        self.retry_config = retry_config or submit_retry_config()
        self.success_redirect_url = success_redirect_url
        self.failure_redirect_url = failure_redirect_url

    @classmethod
    def from_settings(
        cls,
        settings: PesaflowSettings,
        store: Optional[OrderStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CheckoutOrchestrator":
        credentials = GatewayCredentials.from_settings(settings)
        connector = PesapalConnector(
            base_url=settings.gateway_base_url,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )
        store = store or create_order_store(settings.database_url)
        return cls(
            store,
            connector,
            credentials,
            success_redirect_url=settings.success_redirect_url,
            failure_redirect_url=settings.failure_redirect_url,
            tokens=TokenManager(
                connector,
                credentials,
                safety_margin=settings.token_safety_margin_seconds,
            ),
            reconciler=CallbackReconciler(
                store,
                callback_timeout_minutes=settings.callback_timeout_minutes,
            ),
            retry_config=submit_retry_config(settings.submit_max_retries),
        )

    async def start(self) -> None:
        if isinstance(self.store, PostgresOrderStore):
            await self.store.init_schema()

    async def close(self) -> None:
        await self.connector.close()
        await self.store.close()

    async def initiate(self, request: OrderRequest) -> SubmissionResult:
        """Create an order and submit it to the gateway.

        Retryable gateway failures are retried with backoff, resubmitting the
        same order id each time.
        """
        order = self.builder.build(request)
        await self.store.create(order)

        with order_context(order_id=order.order_id):
            logger.info(
                "Order created",
                extra={
                    "amount": str(order.amount),
                    "currency": order.currency,
                    "item_label": order.item_label,
                },
            )
            return await retry_async(self.submitter.submit, order, config=self.retry_config)

    async def notify(self, tracking_id: str, status: Optional[str]) -> str:
        """Reconcile a gateway callback and return the payer's redirect URL.

        Unknown tracking ids are logged and sent to the failure page.
        """
        try:
            decision = await self.reconciler.reconcile(tracking_id, status)
        except UnknownOrderError:
            return self.failure_redirect_url
        return self.redirect_for(decision)

    def redirect_for(self, decision: RedirectDecision) -> str:
        if decision is RedirectDecision.SUCCESS:
            return self.success_redirect_url
        return self.failure_redirect_url

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        return await self.reconciler.expire_stale(now=now)

    async def register_ipn(self, url: Optional[str] = None, notification_type: str = "GET") -> str:
        """One-time registration of the notification URL. Returns the notification id."""
        token = await self.tokens.get_token()
        ipn_id = await self.connector.register_ipn(
            token, url or self.credentials.callback_url, notification_type
        )
        logger.info("Registered notification URL", extra={"ipn_id": ipn_id})
        return ipn_id

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self.store.get(order_id)

"""
Order submission to the payment gateway.

Flow:
    validate -> token -> SubmitOrderRequest -> Created->Submitted -> AwaitingCallback

A submission that fails before the gateway accepts the order leaves it in
Created, so the same order can be submitted again. The gateway deduplicates
on the order id.
"""
from __future__ import annotations

import logging

from pesaflow_core.exceptions import (
    GatewayTokenRejectedError,
    MalformedGatewayResponseError,
    OrderNotFoundError,
    PesaflowAuthenticationError,
    PesaflowValidationError,
    StaleTransitionError,
)
from pesaflow_core.logging_config import order_context

from .connectors.base import GatewayConnector
from .credentials import GatewayCredentials
from .models import GatewaySubmission, Order, OrderStatus, SubmissionResult
from .store import OrderStore
from .tokens import TokenManager
from .validation import validate_order

logger = logging.getLogger(__name__)


def _stored_result(order: Order) -> SubmissionResult:
    return SubmissionResult(
        order_id=order.order_id,
        redirect_url=order.redirect_url or "",
        tracking_id=order.gateway_tracking_id or "",
        duplicate=True,
    )


class OrderSubmitter:
    """Validates an order and submits it to the gateway exactly once."""

    def __init__(
        self,
        store: OrderStore,
        tokens: TokenManager,
        connector: GatewayConnector,
        credentials: GatewayCredentials,
    ):
        self._store = store
        self._tokens = tokens
        self._connector = connector
        self._credentials = credentials

    async def submit(self, order: Order) -> SubmissionResult:
        """
        Submit `order` and return where to send the payer.

        Raises:
            PesaflowValidationError: preconditions not met; order is now Invalid
            PesaflowAuthenticationError: token exchange failed, or a fresh
                token was rejected too
            PesaflowGatewayError: any other gateway failure
            StaleTransitionError: the order is past Created without a
                tracking id (e.g. already Invalid)
        """
        with order_context(order_id=order.order_id):
            current = await self._store.get(order.order_id)
            if current is None:
                raise OrderNotFoundError(order.order_id)

            if current.gateway_tracking_id:
                logger.info("Order already submitted, returning stored result")
                return _stored_result(current)

            if current.status is not OrderStatus.CREATED:
                raise StaleTransitionError(
                    current.order_id, current.status.value, OrderStatus.SUBMITTED.value
                )

            errors = validate_order(current)
            if errors:
                await self._mark_invalid(current, errors[0]["code"])
                raise PesaflowValidationError(
                    "Order failed validation",
                    field=errors[0]["field"],
                    errors=errors,
                )

            try:
                submission = await self._send(current)
            except MalformedGatewayResponseError:
                await self._mark_invalid(current, "malformed_gateway_response")
                raise

            with order_context(tracking_id=submission.tracking_id):
                return await self._record(current, submission)

    async def _send(self, order: Order) -> GatewaySubmission:
        token = await self._tokens.get_token()
        try:
            return await self._connector.submit_order(
                token,
                order,
                self._credentials.callback_url,
                self._credentials.notification_id,
            )
        except GatewayTokenRejectedError:
            logger.info("Gateway rejected bearer token, refreshing once")
            await self._tokens.invalidate(token)

        fresh = await self._tokens.get_token()
        try:
            return await self._connector.submit_order(
                fresh,
                order,
                self._credentials.callback_url,
                self._credentials.notification_id,
            )
        except GatewayTokenRejectedError as e:
            await self._tokens.invalidate(fresh)
            raise PesaflowAuthenticationError(
                "Gateway rejected a freshly issued token",
                details={"cause": e.error_code},
            ) from e

    async def _record(self, order: Order, submission: GatewaySubmission) -> SubmissionResult:
        try:
            submitted = await self._store.transition(
                order.order_id,
                OrderStatus.SUBMITTED,
                expected_version=order.version,
                gateway_tracking_id=submission.tracking_id,
                redirect_url=submission.redirect_url,
            )
        except StaleTransitionError:
            winner = await self._store.get(order.order_id)
            if winner is not None and winner.gateway_tracking_id:
                logger.info(
                    "Concurrent submission won the race, returning its result",
                    extra={"winner_tracking_id": winner.gateway_tracking_id},
                )
                return _stored_result(winner)
            raise

        try:
            await self._store.transition(
                order.order_id,
                OrderStatus.AWAITING_CALLBACK,
                expected_version=submitted.version,
            )
        except StaleTransitionError:
            # A callback can land before this step; it already moved the order on
            logger.info("Order left Submitted before AwaitingCallback was recorded")

        logger.info("Order submitted to gateway")
        return SubmissionResult(
            order_id=order.order_id,
            redirect_url=submission.redirect_url,
            tracking_id=submission.tracking_id,
        )

    async def _mark_invalid(self, order: Order, reason: str) -> None:
        try:
            await self._store.transition(
                order.order_id,
                OrderStatus.INVALID,
                expected_version=order.version,
                failure_reason=reason,
            )
        except StaleTransitionError:
            logger.warning(
                "Could not mark order Invalid, it changed concurrently",
                extra={"failure_reason": reason},
            )
        else:
            logger.info("Order marked Invalid", extra={"failure_reason": reason})

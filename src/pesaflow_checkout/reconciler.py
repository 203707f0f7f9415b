"""
Callback reconciliation.

The gateway reports payment outcomes out-of-band, possibly more than once and
possibly concurrently. Reconciliation is idempotent: the first terminal
outcome recorded for an order wins and every later report gets the same
redirect decision without touching the order.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pesaflow_core.constants import Limits, Timeouts
from pesaflow_core.exceptions import StaleTransitionError, UnknownOrderError
from pesaflow_core.logging_config import order_context

from .models import Order, OrderStatus, RedirectDecision, utcnow
from .store import OrderStore

logger = logging.getLogger(__name__)


# Pesapal reports either a description or a numeric status code
COMPLETED_REPORTS = frozenset({"COMPLETED", "1"})
FAILED_REPORTS = frozenset({
    "FAILED",
    "CANCELLED",
    "INVALID",
    "REVERSED",
    "REJECTED",
    "0",
    "2",
    "3",
})


def map_reported_status(reported: Optional[str]) -> Optional[OrderStatus]:
    """Map a gateway-reported status to a terminal OrderStatus.

    Returns None for non-terminal (e.g. PENDING) and unrecognised reports.
    """
    key = (reported or "").strip().upper()
    if key in COMPLETED_REPORTS:
        return OrderStatus.COMPLETED
    if key in FAILED_REPORTS:
        return OrderStatus.FAILED
    return None


def decision_for(order: Order) -> RedirectDecision:
    if order.status is OrderStatus.COMPLETED:
        return RedirectDecision.SUCCESS
    return RedirectDecision.FAILURE


class CallbackReconciler:
    """Applies gateway-reported outcomes to stored orders."""

    def __init__(
        self,
        store: OrderStore,
        callback_timeout_minutes: int = Timeouts.CALLBACK_WINDOW_MINUTES,
        max_attempts: int = Limits.RECONCILE_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._callback_timeout = timedelta(minutes=callback_timeout_minutes)
        self._max_attempts = max_attempts
        self._clock = clock

    async def reconcile(self, tracking_id: str, reported_status: Optional[str]) -> RedirectDecision:
        """
        Record the outcome the gateway reported for `tracking_id`.

        Raises:
            UnknownOrderError: no order carries this tracking id
        """
        with order_context(tracking_id=tracking_id):
            order = await self._store.get_by_tracking_id(tracking_id)
            if order is None:
                logger.warning(
                    "Callback for unknown tracking id",
                    extra={"reported_status": reported_status},
                )
                raise UnknownOrderError(tracking_id)

            with order_context(order_id=order.order_id):
                return await self._apply(order, reported_status)

    async def _apply(self, order: Order, reported_status: Optional[str]) -> RedirectDecision:
        target = map_reported_status(reported_status)

        for attempt in range(self._max_attempts):
            if order.is_terminal:
                logger.info(
                    "Duplicate callback for settled order",
                    extra={
                        "current_status": order.status.value,
                        "reported_status": reported_status,
                    },
                )
                return decision_for(order)

            if target is None:
                logger.warning(
                    "Callback reported a non-terminal or unrecognised status",
                    extra={"reported_status": reported_status},
                )
                return RedirectDecision.FAILURE

            changes = {}
            if target is OrderStatus.FAILED:
                changes["failure_reason"] = f"gateway_reported:{(reported_status or '').strip().upper()}"

            try:
                updated = await self._store.transition(
                    order.order_id,
                    target,
                    expected_version=order.version,
                    **changes,
                )
            except StaleTransitionError:
                logger.info(
                    "Reconciliation lost a race, re-reading order",
                    extra={"attempt": attempt + 1},
                )
                reread = await self._store.get(order.order_id)
                if reread is None:
                    raise
                order = reread
                continue

            logger.info(
                "Callback reconciled",
                extra={"reported_status": reported_status, "final_status": updated.status.value},
            )
            return decision_for(updated)

        if order.is_terminal:
            return decision_for(order)

        logger.error(
            "Reconciliation gave up after repeated conflicts",
            extra={"attempts": self._max_attempts, "current_status": order.status.value},
        )
        return RedirectDecision.FAILURE

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Fail orders that have waited longer than the callback window.

        Returns the number of orders moved to Failed.
        """
        now = now or self._clock()
        cutoff = now - self._callback_timeout
        expired = 0

        for order in await self._store.list_stale(cutoff):
            try:
                await self._store.transition(
                    order.order_id,
                    OrderStatus.FAILED,
                    expected_version=order.version,
                    now=now,
                    failure_reason="callback_timeout",
                )
            except StaleTransitionError:
                logger.info(
                    "Skipped expiring order that changed concurrently",
                    extra={"order_id": order.order_id},
                )
                continue
            expired += 1

        if expired:
            logger.info("Expired stale orders", extra={"expired_count": expired})
        return expired

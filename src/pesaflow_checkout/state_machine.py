"""
Order state machine.

    Created -> Submitted -> AwaitingCallback -> Completed | Failed
    Created | Submitted -> Invalid

Completed, Failed and Invalid are terminal. `apply_transition` is pure: it
returns the next Order and leaves the input untouched. Persisting the result
is the store's job, guarded by the order's version.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from pesaflow_core.exceptions import DuplicateCallbackError, StaleTransitionError

from .models import IMMUTABLE_FIELDS, Order, OrderStatus, utcnow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.SUBMITTED, OrderStatus.INVALID}),
    OrderStatus.SUBMITTED: frozenset({
        OrderStatus.AWAITING_CALLBACK,
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.INVALID,
    }),
    OrderStatus.AWAITING_CALLBACK: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.INVALID: frozenset(),
}

MUTABLE_FIELDS = frozenset({"gateway_tracking_id", "redirect_url", "failure_reason"})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def apply_transition(
    order: Order,
    target: OrderStatus,
    *,
    now: Optional[datetime] = None,
    **changes,
) -> Order:
    """Return `order` moved to `target` with `version` + 1.

    Raises:
        DuplicateCallbackError: order is already terminal
        StaleTransitionError: transition not allowed, or the tracking id
            would be assigned outside Created -> Submitted
        ValueError: `changes` names a field transitions may not touch
    """
    forbidden = set(changes) & IMMUTABLE_FIELDS
    if forbidden:
        raise ValueError(f"Immutable order fields cannot change: {sorted(forbidden)}")
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown order fields: {sorted(unknown)}")

    if order.is_terminal:
        logger.info(
            "Rejected transition out of terminal status",
            extra={
                "order_id": order.order_id,
                "current_status": order.status.value,
                "target_status": target.value,
            },
        )
        raise DuplicateCallbackError(order.order_id, order.status.value, target.value)

    if not can_transition(order.status, target):
        logger.warning(
            "Rejected disallowed transition",
            extra={
                "order_id": order.order_id,
                "current_status": order.status.value,
                "target_status": target.value,
            },
        )
        raise StaleTransitionError(order.order_id, order.status.value, target.value)

    _check_tracking_id(order, target, changes.get("gateway_tracking_id"))

    return dataclasses.replace(
        order,
        status=target,
        updated_at=now or utcnow(),
        version=order.version + 1,
        **changes,
    )


def _check_tracking_id(order: Order, target: OrderStatus, tracking_id: Optional[str]) -> None:
    entering_submitted = order.status is OrderStatus.CREATED and target is OrderStatus.SUBMITTED

    if entering_submitted and not tracking_id:
        raise StaleTransitionError(
            order.order_id,
            order.status.value,
            target.value,
            message=f"Order '{order.order_id}' needs a gateway tracking id to be Submitted",
        )

    if tracking_id is None or tracking_id == order.gateway_tracking_id:
        return

    if not entering_submitted or order.gateway_tracking_id is not None:
        logger.warning(
            "Rejected gateway tracking id reassignment",
            extra={"order_id": order.order_id, "current_status": order.status.value},
        )
        raise StaleTransitionError(
            order.order_id,
            order.status.value,
            target.value,
            message=f"Order '{order.order_id}' tracking id is already fixed",
        )

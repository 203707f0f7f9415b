"""Checkout data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pesaflow_core.constants import Timeouts


DEFAULT_CURRENCY = "UGX"


class OrderStatus(str, Enum):
    """Lifecycle status of an order."""
    CREATED = "Created"
    SUBMITTED = "Submitted"
    AWAITING_CALLBACK = "AwaitingCallback"
    COMPLETED = "Completed"
    FAILED = "Failed"
    INVALID = "Invalid"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.FAILED,
    OrderStatus.INVALID,
})


class RedirectDecision(str, Enum):
    """Where the payer is sent once the gateway reports back."""
    SUCCESS = "success"
    FAILURE = "failure"


# Fields fixed at creation; state transitions may never change them.
IMMUTABLE_FIELDS = frozenset({
    "order_id",
    "amount",
    "currency",
    "payer_email",
    "payer_phone",
    "description",
    "item_label",
    "created_at",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Order:
    """A single purchase attempt.

    Orders are immutable values. A status change produces a new Order with
    `version` incremented by one (see `state_machine.apply_transition`).
    """
    order_id: str
    amount: Decimal
    currency: str
    payer_email: str
    payer_phone: str
    description: str
    item_label: Optional[str] = None
    status: OrderStatus = OrderStatus.CREATED
    gateway_tracking_id: Optional[str] = None
    redirect_url: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class AuthToken:
    """Short-lived bearer token issued by the gateway."""
    value: str
    expires_at: datetime

    def is_usable(self, safety_margin: float, now: Optional[datetime] = None) -> bool:
        """True while more than `safety_margin` seconds remain before expiry."""
        now = now or utcnow()
        return self.expires_at - now > timedelta(seconds=safety_margin)

    @classmethod
    def with_default_lifetime(cls, value: str, now: Optional[datetime] = None) -> "AuthToken":
        now = now or utcnow()
        return cls(value=value, expires_at=now + timedelta(seconds=Timeouts.GATEWAY_TOKEN_LIFETIME))

    def __repr__(self) -> str:
        return f"AuthToken(value='***', expires_at={self.expires_at.isoformat()})"


@dataclass(frozen=True)
class OrderRequest:
    """Purchase request as received from the storefront."""
    amount: Any
    email: str
    phone: str
    currency: str = DEFAULT_CURRENCY
    description: Optional[str] = None
    item_label: Optional[str] = None


@dataclass(frozen=True)
class GatewaySubmission:
    """What the gateway returned for an accepted order."""
    tracking_id: str
    redirect_url: str
    merchant_reference: Optional[str] = None


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of submitting an order.

    `duplicate` is True when the result belongs to an earlier submission of
    the same order rather than to this call.
    """
    order_id: str
    redirect_url: str
    tracking_id: str
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_tracking_id": self.tracking_id,
            "redirect_url": self.redirect_url,
            "iframeUrl": self.redirect_url,
        }

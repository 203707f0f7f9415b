"""Turns storefront purchase requests into Orders."""
from __future__ import annotations

import secrets
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from pesaflow_core.constants import Limits
from pesaflow_core.exceptions import PesaflowValidationError

from .models import DEFAULT_CURRENCY, Order, OrderRequest, OrderStatus, utcnow


def new_order_id() -> str:
    """`ORDER-<epoch ms>-<9 random hex chars>`."""
    suffix = secrets.token_hex(5)[: Limits.ORDER_ID_RANDOM_CHARS]
    return f"ORDER-{int(time.time() * 1000)}-{suffix}"


def parse_amount(value) -> Decimal:
    """Parse an amount as sent by the storefront (number or numeric string).

    Raises PesaflowValidationError when the value is not a number at all.
    Range checks happen at submission so that the order is recorded as
    Invalid rather than silently dropped.
    """
    if isinstance(value, bool) or value is None:
        raise PesaflowValidationError("Amount is required", field="amount")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise PesaflowValidationError("Amount must be a number", field="amount") from None
    if not amount.is_finite():
        raise PesaflowValidationError("Amount must be a number", field="amount")
    return amount


class OrderBuilder:
    """Builds new Orders in status Created.

    Does not validate contact details or price ranges; that happens in
    OrderSubmitter so a bad order leaves an auditable Invalid record.
    """

    def __init__(
        self,
        id_factory: Callable[[], str] = new_order_id,
        clock: Callable[[], datetime] = utcnow,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        self._id_factory = id_factory
        self._clock = clock
        self._default_currency = default_currency

    def build(self, request: OrderRequest) -> Order:
        amount = parse_amount(request.amount)
        currency = (request.currency or self._default_currency).strip().upper()
        item_label = (request.item_label or "").strip() or None
        now = self._clock()

        return Order(
            order_id=self._id_factory(),
            amount=amount,
            currency=currency,
            payer_email=(request.email or "").strip(),
            payer_phone=(request.phone or "").strip(),
            description=self._describe(request.description, item_label),
            item_label=item_label,
            status=OrderStatus.CREATED,
            created_at=now,
            updated_at=now,
            version=0,
        )

    @staticmethod
    def _describe(description: Optional[str], item_label: Optional[str]) -> str:
        text = (description or "").strip()
        if not text:
            text = f"Payment for {item_label}" if item_label else "Payment"
        # Pesapal rejects descriptions longer than 100 characters
        return text[: Limits.MAX_DESCRIPTION_LENGTH]

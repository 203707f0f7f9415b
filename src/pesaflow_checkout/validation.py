"""Pre-submission checks on an order.

Each check yields `{"field", "code", "message"}` dicts; the first error code
becomes the order's failure reason when it is marked Invalid.
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Dict, List

from pesaflow_core.constants import Limits

from .catalogue import CATALOGUE_CURRENCY, find_item
from .models import Order

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# +256 / 256 / 0 prefix followed by nine digits
UGANDA_PHONE_PATTERN = re.compile(r"^(?:\+256|256|0)\d{9}$")

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


def normalize_phone(phone: str) -> str:
    """Drop the spaces and dashes people type into phone fields."""
    return re.sub(r"[\s\-]", "", phone or "")


def _error(field: str, code: str, message: str) -> Dict[str, str]:
    return {"field": field, "code": code, "message": message}


def validate_order(order: Order) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []

    amount = order.amount
    if not amount.is_finite() or amount <= 0:
        errors.append(_error("amount", "invalid_amount", "Amount must be greater than zero"))
    elif -amount.as_tuple().exponent > Limits.MAX_AMOUNT_DECIMALS:
        errors.append(
            _error(
                "amount",
                "invalid_amount",
                f"Amount may have at most {Limits.MAX_AMOUNT_DECIMALS} decimal places",
            )
        )
    elif amount > Limits.MAX_AMOUNT:
        errors.append(
            _error("amount", "invalid_amount", f"Amount may not exceed {Limits.MAX_AMOUNT:,}")
        )

    if not CURRENCY_PATTERN.match(order.currency or ""):
        errors.append(_error("currency", "invalid_currency", "Currency must be a 3-letter code"))

    if not EMAIL_PATTERN.match(order.payer_email or ""):
        errors.append(_error("email", "invalid_email", "Email address is not valid"))

    if not UGANDA_PHONE_PATTERN.match(normalize_phone(order.payer_phone)):
        errors.append(
            _error("phone", "invalid_phone", "Phone number must be a Ugandan number (+256XXXXXXXXX)")
        )

    if not errors:
        errors.extend(_check_catalogue_price(order))

    return errors


def _check_catalogue_price(order: Order) -> List[Dict[str, str]]:
    item = find_item(order.item_label)
    if item is None or order.currency != CATALOGUE_CURRENCY:
        return []
    if item.accepts(Decimal(order.amount)):
        return []
    return [
        _error(
            "amount",
            "amount_out_of_range",
            f"Amount is outside the {item.name} price range ({item.price_label()})",
        )
    ]

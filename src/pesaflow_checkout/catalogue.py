"""Storefront catalogue: website packages and add-ons with their UGX price ranges."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

CATALOGUE_CURRENCY = "UGX"


@dataclass(frozen=True)
class CatalogueItem:
    name: str
    kind: str  # "package" or "addon"
    min_price: Decimal
    max_price: Optional[Decimal] = None  # None means open-ended
    per_unit: bool = False

    def accepts(self, amount: Decimal) -> bool:
        """Whether `amount` is a plausible price for this item.

        Per-unit items (per page, per month) may be bought in multiples, so
        only the lower bound applies to them.
        """
        if amount < self.min_price:
            return False
        if self.per_unit or self.max_price is None:
            return True
        return amount <= self.max_price

    def price_label(self) -> str:
        if self.max_price is None:
            return f"{CATALOGUE_CURRENCY} {self.min_price:,}+"
        if self.max_price == self.min_price:
            return f"{CATALOGUE_CURRENCY} {self.min_price:,}"
        return f"{CATALOGUE_CURRENCY} {self.min_price:,} - {self.max_price:,}"


def _fixed(name: str, price: int, per_unit: bool = False) -> CatalogueItem:
    return CatalogueItem(name, "addon", Decimal(price), Decimal(price), per_unit)


PACKAGES = (
    CatalogueItem("Launch", "package", Decimal("1800000"), Decimal("3500000")),
    CatalogueItem("Grow", "package", Decimal("4000000"), Decimal("7500000")),
    CatalogueItem("Store", "package", Decimal("8000000"), Decimal("18000000")),
    CatalogueItem("Enterprise", "package", Decimal("10000000"), Decimal("25000000")),
    CatalogueItem("Custom", "package", Decimal("20000000"), None),
)

ADD_ONS = (
    _fixed("Basic SEO Optimization", 600_000),
    _fixed("Advanced SEO Optimization", 2_500_000),
    _fixed("Content Writing (Per Page)", 150_000, per_unit=True),
    CatalogueItem("Logo & Branding", "addon", Decimal("800000"), Decimal("2500000")),
    _fixed("Social Media Setup", 400_000),
    CatalogueItem(
        "Maintenance Plan (Per Month)", "addon", Decimal("250000"), Decimal("600000"), per_unit=True
    ),
    _fixed("AI Chatbot Integration", 1_500_000),
)

_BY_NAME: Dict[str, CatalogueItem] = {
    item.name.lower(): item for item in (*PACKAGES, *ADD_ONS)
}


def find_item(label: Optional[str]) -> Optional[CatalogueItem]:
    """Case-insensitive lookup; a trailing " package" is ignored."""
    if not label:
        return None
    key = " ".join(label.split()).lower()
    item = _BY_NAME.get(key)
    if item is None and key.endswith(" package"):
        item = _BY_NAME.get(key[: -len(" package")])
    return item

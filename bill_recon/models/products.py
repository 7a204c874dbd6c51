from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .columns import OUT_PRODUCT_CODE, OUT_PRODUCT_NAME, OUT_QUANTITY, OUT_TOTAL, OUT_UNIT_PRICE

"""Product-level models of the bill (price entry) workflow."""

__all__ = [
    "PriceStatus",
    "ProductAggregate",
    "PricedRow",
    "QuantityTally",
]


class PriceStatus(Enum):
    """Price entry status of a product.

    - VALID: a unit price is attached (default price or manual input)
    - PENDING: waiting for a unit price
    """
    VALID = "valid"
    PENDING = "pending"


@dataclass(frozen=True)
class ProductAggregate:
    """Unique product sighted in the reconciled rows (first sighting wins)."""
    product_code: str
    product_name: str
    unit_price: float | None = None  # None = pending
    status: PriceStatus = PriceStatus.PENDING
    has_default_price: bool = False


@dataclass(frozen=True)
class PricedRow:
    """Simplified output row: name, code, unit price, quantity and total."""
    product_name: str
    product_code: str  # always str, avoids scientific notation on export
    unit_price: float | None
    quantity: float
    total: float | None  # unit_price * quantity, None while unpriced

    def to_record(self) -> dict[str, Any]:
        """Export form keyed by the output column labels."""
        return {
            OUT_PRODUCT_NAME: self.product_name,
            OUT_PRODUCT_CODE: self.product_code,
            OUT_UNIT_PRICE: self.unit_price,
            OUT_QUANTITY: self.quantity,
            OUT_TOTAL: self.total,
        }


@dataclass
class QuantityTally:
    """Ordered / refunded quantity of one product, keyed by product name.

    Mutable: the refund pass deducts from a tally built by the order pass.
    """
    product_name: str
    product_code: str
    order_quantity: float = 0.0
    refund_quantity: float = 0.0

    @property
    def final_quantity(self) -> float:
        return self.order_quantity - self.refund_quantity

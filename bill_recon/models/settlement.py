from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .columns import OUT_NET_AMOUNT, OUT_QUANTITY, OUT_SERVICE_FEE, OUT_SETTLEMENT_AMOUNT, PRODUCT_CODE

"""Settlement aggregation models.

``SettlementSchema`` is resolved once from the first row of a dataset so the
aggregator branches on an explicit variant instead of probing keys per row.
"""

__all__ = [
    "RowSchema",
    "SettlementSchema",
    "SettlementAggregate",
]


class RowSchema(Enum):
    """Whether the settlement export carries a fee-name column.

    - WITH_FEE_NAME: rows are classified by fee name (货款 / 直营服务费 / ...)
    - WITHOUT_FEE_NAME: every row is a settlement row
    """
    WITH_FEE_NAME = "with_fee_name"
    WITHOUT_FEE_NAME = "without_fee_name"


@dataclass(frozen=True)
class SettlementSchema:
    variant: RowSchema
    amount_column: str  # first candidate present in the first row
    has_quantity: bool

    @property
    def has_fee_name(self) -> bool:
        return self.variant is RowSchema.WITH_FEE_NAME


@dataclass(frozen=True)
class SettlementAggregate:
    """Per product code settlement totals, rounded to cents, ties toward +inf."""
    product_code: str
    settlement_amount: float
    service_fee: float
    net_amount: float  # settlement_amount + service_fee
    quantity: float | None = None  # None when the export has no quantity column

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            PRODUCT_CODE: self.product_code,
            OUT_SETTLEMENT_AMOUNT: self.settlement_amount,
        }
        if self.quantity is not None:
            record[OUT_QUANTITY] = self.quantity
        record[OUT_SERVICE_FEE] = self.service_fee
        record[OUT_NET_AMOUNT] = self.net_amount
        return record

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..logging.run_log import LogSink, logger_sink
from ..models.columns import (
    DOC_AFTER_SALES,
    DOC_CANCEL_REFUND,
    DOC_ORDER,
    DOCUMENT_TYPE,
    FEE_DIRECT_SERVICE,
    FEE_ITEM,
    PRODUCT_CODE,
    PRODUCT_NAME,
    QUANTITY,
)
from ..models.products import QuantityTally
from .normalizer import clean_product_code, clean_string, parse_quantity

"""Refund deduction mode of the bill filter.

Instead of dropping whole order groups, quantities are tallied per product
name: 订单 rows add, 取消退款单 / 售后服务单 rows subtract. Products whose
final quantity stays positive are priced like the regular filter output.
"""

__all__ = [
    "UNKNOWN_PRODUCT",
    "REFUND_DOCUMENT_TYPES",
    "remove_service_fee_rows",
    "tally_order_quantities",
    "deduct_refund_quantities",
    "positive_quantity_rows",
]

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

UNKNOWN_PRODUCT = "未知商品"
REFUND_DOCUMENT_TYPES = (DOC_CANCEL_REFUND, DOC_AFTER_SALES)


def _product_name(row: Row) -> str:
    return clean_string(row.get(PRODUCT_NAME)) or UNKNOWN_PRODUCT


def remove_service_fee_rows(rows: Sequence[Row], log_sink: LogSink | None = None) -> list[Row]:
    """Drop every 直营服务费 row regardless of document type."""
    emit = log_sink if log_sink is not None else logger_sink(logger)
    kept = [row for row in rows if clean_string(row.get(FEE_ITEM)) != FEE_DIRECT_SERVICE]
    removed = len(rows) - len(kept)
    if removed:
        emit(f"removed {removed} {FEE_DIRECT_SERVICE} rows", "info")
    return kept


def tally_order_quantities(rows: Iterable[Row], log_sink: LogSink | None = None) -> dict[str, QuantityTally]:
    """Sum 订单 quantities per product name.

    The product code of a tally is the one of its first row.
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    tallies: dict[str, QuantityTally] = {}
    order_rows = 0
    for row in rows:
        if clean_string(row.get(DOCUMENT_TYPE)) != DOC_ORDER:
            continue
        order_rows += 1
        name = _product_name(row)
        tally = tallies.get(name)
        if tally is None:
            tally = tallies[name] = QuantityTally(
                product_name=name,
                product_code=clean_product_code(row.get(PRODUCT_CODE)),
            )
        tally.order_quantity += parse_quantity(row.get(QUANTITY))
    emit(f"found {order_rows} {DOC_ORDER} rows for {len(tallies)} products", "info")
    return tallies


def deduct_refund_quantities(
    rows: Iterable[Row],
    tallies: Mapping[str, QuantityTally],
    log_sink: LogSink | None = None,
) -> int:
    """Subtract refund / after-sales quantities from the order tallies.

    Args:
        rows: bill rows (service fee rows already removed)
        tallies: result of ``tally_order_quantities``, updated in place
        log_sink: where deductions and unknown products are reported

    Returns:
        Number of refund / after-sales rows seen
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    refund_rows = 0
    for row in rows:
        document_type = clean_string(row.get(DOCUMENT_TYPE))
        if document_type not in REFUND_DOCUMENT_TYPES:
            continue
        refund_rows += 1
        name = _product_name(row)
        quantity = parse_quantity(row.get(QUANTITY))
        tally = tallies.get(name)
        if tally is None:
            emit(f"refunded product {name} has no {DOC_ORDER} rows", "warning")
            continue
        tally.refund_quantity += quantity
        emit(f"{name}: {quantity} deducted by {document_type}", "info")
    return refund_rows


def positive_quantity_rows(tallies: Iterable[QuantityTally]) -> list[dict[str, Any]]:
    """Bill-shaped rows (code, name, quantity) of tallies with a positive final quantity."""
    return [
        {PRODUCT_CODE: t.product_code, PRODUCT_NAME: t.product_name, QUANTITY: t.final_quantity}
        for t in tallies
        if t.final_quantity > 0
    ]

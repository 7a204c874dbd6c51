from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from typing import Any

from ..logging.run_log import LogSink, logger_sink
from ..models.columns import (
    DOC_AFTER_SALES,
    DOC_CANCEL_REFUND,
    DOC_NON_SALES,
    DOC_ORDER,
    DOCUMENT_TYPE,
    FEE_CONSOLIDATED_FREIGHT,
    FEE_ITEM,
    FEE_PAYMENT,
    ORDER_AMOUNT,
    ORDER_NUMBER,
    PRODUCT_CODE,
    PRODUCT_NAME,
    QUANTITY,
)
from ..models.processing_result import OrderMergeResult, OrderMergeStats
from ..models.products import PricedRow
from .errors import EmptyDatasetError, ReconciliationError
from .grouping import group_by_order
from .normalizer import clean_amount, clean_product_code, clean_string, parse_quantity

"""Order merge flow: line amounts -> one priced row per product.

Unlike the bill filter, which prices rows from a price table, this flow
derives unit prices from the 金额 column of the bill itself:

1. 售后服务单 amounts are summed per product code
2. each 非销售单 amount is moved onto the first row whose amount exceeds
   its magnitude
3. 订单 / 取消退款单 rows are kept, sorted by order number, and the first
   row of each product larger than that product's after-sales total is
   reduced by it (once per product)
4. per order, a 合流共配回收运费 row is replaced by the goods (货款) row
   whose name contains the first ten characters of its own name
5. rows are merged per order + product code: total = sum of amounts,
   unit price = total / quantity
6. lines with a positive total are summed per product code

Amounts are added as Decimal and stored back as float.
"""

__all__ = [
    "process_order_merge",
    "merge_after_sales",
    "apply_non_sales_adjustments",
    "deduct_after_sales",
    "merge_order_lines",
    "sum_same_sku",
]

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

FREIGHT_NAME_PREFIX = 10


def _amount(row: Row) -> Decimal:
    return Decimal(str(clean_amount(row.get(ORDER_AMOUNT))))


def _doc_type(row: Row) -> str:
    return clean_string(row.get(DOCUMENT_TYPE))


def _order_sort_key(row: Row) -> tuple[int, int, str]:
    # numeric order numbers first, in numeric order
    number = clean_product_code(row.get(ORDER_NUMBER))
    if number.isdigit():
        return (0, int(number), "")
    return (1, 0, number)


def merge_after_sales(rows: Iterable[Row]) -> dict[str, Decimal]:
    """Sum 售后服务单 amounts per product code.

    Args:
        rows: normalized bill rows

    Returns:
        ``code -> total`` in first-sighting order; rows without a product
        code are ignored
    """
    totals: dict[str, Decimal] = {}
    for row in rows:
        if _doc_type(row) != DOC_AFTER_SALES:
            continue
        code = clean_product_code(row.get(PRODUCT_CODE))
        if not code:
            continue
        totals[code] = totals.get(code, Decimal(0)) + _amount(row)
    if totals:
        logger.debug(f"{DOC_AFTER_SALES} totals for {len(totals)} products")
    return totals


def apply_non_sales_adjustments(
    rows: Sequence[Row],
    log_sink: LogSink | None = None,
) -> tuple[list[dict[str, Any]], int]:
    """Move every 非销售单 amount onto the first row larger than it.

    The target is the first row, in input order, whose amount is greater
    than the magnitude of the non-sales amount; the signed amount is added
    to it. A non-sales document (order number + product code) is applied
    once even when it appears on several rows.

    Args:
        rows: normalized bill rows, left unchanged
        log_sink: where adjustments are reported

    Returns:
        Tuple of (row copies with adjusted amounts, number of adjusted rows)
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    adjusted_rows = [dict(row) for row in rows]
    seen: set[tuple[str, str]] = set()
    adjusted = 0

    for non_sales in adjusted_rows:
        if _doc_type(non_sales) != DOC_NON_SALES:
            continue
        key = (
            clean_product_code(non_sales.get(ORDER_NUMBER)),
            clean_product_code(non_sales.get(PRODUCT_CODE)),
        )
        if key in seen:
            continue
        seen.add(key)

        amount = _amount(non_sales)
        for row in adjusted_rows:
            current = _amount(row)
            if current > abs(amount):
                row[ORDER_AMOUNT] = float(current + amount)
                adjusted += 1
                emit(
                    f"{DOC_NON_SALES} {key[0]}/{key[1]} amount {amount} moved to "
                    f"order {clean_product_code(row.get(ORDER_NUMBER))} "
                    f"product {clean_product_code(row.get(PRODUCT_CODE))}: {current} -> {row[ORDER_AMOUNT]}",
                    "info",
                )
                break
        else:
            emit(f"{DOC_NON_SALES} {key[0]}/{key[1]} amount {amount}: no row large enough, ignored", "warning")

    return adjusted_rows, adjusted


def deduct_after_sales(
    order_rows: Sequence[Row],
    after_sales: Mapping[str, Decimal],
    log_sink: LogSink | None = None,
) -> tuple[list[Row], int]:
    """Subtract each product's after-sales total from one of its order rows.

    The first row of the product whose amount is greater than the magnitude
    of the total is reduced; later rows of the same product are untouched.

    Returns:
        Tuple of (order rows, reduced rows replaced by copies; number of
        reduced rows)
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    used: set[str] = set()
    result: list[Row] = []

    for row in order_rows:
        code = clean_product_code(row.get(PRODUCT_CODE))
        deduction = after_sales.get(code)
        if deduction is not None and code not in used:
            original = _amount(row)
            if original > abs(deduction):
                reduced = original - abs(deduction)
                row = {**row, ORDER_AMOUNT: float(reduced)}
                used.add(code)
                emit(
                    f"order {clean_product_code(row.get(ORDER_NUMBER))} product {code}: "
                    f"{DOC_AFTER_SALES} {deduction} deducted, {original} -> {reduced}",
                    "info",
                )
        result.append(row)

    for code, deduction in after_sales.items():
        if code not in used:
            emit(f"{DOC_AFTER_SALES} total {deduction} of {code} not deducted: no order row large enough", "warning")
    return result, len(used)


def _substitute_freight(items: Sequence[Row]) -> tuple[list[Row], int]:
    items = list(items)
    substituted = 0
    for i, item in enumerate(items):
        if clean_string(item.get(FEE_ITEM)) != FEE_CONSOLIDATED_FREIGHT:
            continue
        prefix = clean_string(item.get(PRODUCT_NAME))[:FREIGHT_NAME_PREFIX]
        matched = False
        # the last matching goods row wins
        for candidate in items:
            if clean_string(candidate.get(FEE_ITEM)) == FEE_PAYMENT and prefix in clean_string(
                candidate.get(PRODUCT_NAME)
            ):
                items[i] = {**candidate, ORDER_AMOUNT: item.get(ORDER_AMOUNT)}
                matched = True
        if matched:
            substituted += 1
    return items, substituted


def merge_order_lines(
    order_rows: Sequence[Row],
    log_sink: LogSink | None = None,
) -> tuple[list[PricedRow], int]:
    """Merge order rows per order number + product code.

    The line total is the sum of the row amounts and the unit price is the
    total divided by the quantity of the first row. Name and code come from
    the first goods (货款) row of the line. A zero quantity leaves the unit
    price empty.

    Returns:
        Tuple of (merged lines, number of freight rows substituted)

    Raises:
        ReconciliationError: the first row of a line has no quantity
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    lines: list[PricedRow] = []
    substituted = 0

    for order_number, group in group_by_order(order_rows).items():
        items, count = _substitute_freight(group)
        substituted += count

        by_code: dict[str, list[Row]] = {}
        for item in items:
            by_code.setdefault(clean_product_code(item.get(PRODUCT_CODE)), []).append(item)

        for code, line_rows in by_code.items():
            if not code:
                emit(f"order {order_number}: {len(line_rows)} rows without {PRODUCT_CODE} dropped", "warning")
                continue
            if line_rows[0].get(QUANTITY) is None:
                raise ReconciliationError(f"order {order_number}: {QUANTITY} missing for product {code}")

            total = sum((_amount(r) for r in line_rows), Decimal(0))
            quantity = parse_quantity(line_rows[0].get(QUANTITY))
            if quantity:
                unit_price: float | None = float(total / Decimal(str(quantity)))
            else:
                unit_price = None
                emit(f"order {order_number} product {code}: zero quantity, no unit price", "warning")

            base = next((r for r in line_rows if clean_string(r.get(FEE_ITEM)) == FEE_PAYMENT), line_rows[0])
            lines.append(
                PricedRow(
                    product_name=clean_string(base.get(PRODUCT_NAME)),
                    product_code=code,
                    unit_price=unit_price,
                    quantity=quantity,
                    total=float(total),
                )
            )

    return lines, substituted


def sum_same_sku(lines: Iterable[PricedRow]) -> list[PricedRow]:
    """Sum lines with a positive total per product code.

    Quantities and totals add up; name and unit price are the first line's.
    """
    merged: dict[str, PricedRow] = {}
    for line in lines:
        if line.total is None or line.total <= 0:
            continue
        existing = merged.get(line.product_code)
        if existing is None:
            merged[line.product_code] = line
            continue
        merged[line.product_code] = PricedRow(
            product_name=existing.product_name,
            product_code=existing.product_code,
            unit_price=existing.unit_price,
            quantity=float(Decimal(str(existing.quantity)) + Decimal(str(line.quantity))),
            total=float(Decimal(str(existing.total)) + Decimal(str(line.total))),
        )
    return list(merged.values())


def process_order_merge(
    rows: Sequence[Row],
    log_sink: LogSink | None = None,
) -> OrderMergeResult:
    """Run the whole order merge over normalized bill rows.

    Raises:
        EmptyDatasetError: no 订单 / 取消退款单 rows to merge
        ReconciliationError: a merged line has no quantity
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)

    after_sales = merge_after_sales(rows)
    adjusted_rows, non_sales = apply_non_sales_adjustments(rows, log_sink=emit)

    order_rows: list[Row] = sorted(
        (r for r in adjusted_rows if _doc_type(r) in (DOC_ORDER, DOC_CANCEL_REFUND)),
        key=_order_sort_key,
    )
    if not order_rows:
        raise EmptyDatasetError(f"no {DOC_ORDER} / {DOC_CANCEL_REFUND} rows to merge")

    order_rows, deducted = deduct_after_sales(order_rows, after_sales, log_sink=emit)
    lines, substituted = merge_order_lines(order_rows, log_sink=emit)
    merged = sum_same_sku(lines)
    emit(
        f"order merge done: {len(order_rows)} order rows -> {len(lines)} order lines -> {len(merged)} products",
        "success",
    )

    stats = OrderMergeStats(
        order_rows=len(order_rows),
        after_sales_deducted=deducted,
        non_sales_adjusted=non_sales,
        freight_substituted=substituted,
        order_lines=len(lines),
    )
    return OrderMergeResult(rows=merged, stats=stats)

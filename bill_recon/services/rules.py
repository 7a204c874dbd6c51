from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..logging.run_log import LogSink, logger_sink
from ..models.columns import (
    DOC_CANCEL_REFUND,
    DOC_ORDER,
    DOCUMENT_TYPE,
    FEE_DIRECT_SERVICE,
    FEE_ITEM,
    ORDER_NUMBER,
    PRODUCT_CODE,
    PRODUCT_NAME,
    QUANTITY,
)
from ..models.config_models import DefaultPriceEntry
from ..models.processing_result import BillStatistics, RuleResult, RuleStats
from ..models.products import PricedRow, PriceStatus, ProductAggregate
from .normalizer import clean_product_code, clean_string, parse_quantity

"""Business rule engine of the bill workflow.

Order-group rules (in order, first match wins):

1. the group contains a cancel/refund document (取消退款单) -> drop the group
2. every row is a plain order document (订单) -> drop only the rows whose
   fee item is the direct-operation service fee (直营服务费)
3. mixed document types -> keep every row

Followed by the price entry helpers: unique product extraction, unit price
application and same-SKU merge.
"""

__all__ = [
    "apply_business_rules",
    "extract_unique_products",
    "apply_unit_prices",
    "merge_same_sku",
    "generate_statistics",
    "default_price_for",
    "has_default_price",
    "coerce_price_config",
]

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]
PriceConfig = Mapping[Any, Any]


def apply_business_rules(
    groups: Mapping[str, Sequence[Row]],
    log_sink: LogSink | None = None,
) -> RuleResult:
    """Apply the order-group rules to grouped bill rows.

    Output order follows group iteration order, then the original row order
    inside each surviving group. Surviving rows are the input objects,
    unchanged.
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    result: list[Row] = []
    processed_groups = 0
    filtered_groups = 0
    filtered_rows = 0

    for order_number, group in groups.items():
        processed_groups += 1
        document_types = {clean_string(row.get(DOCUMENT_TYPE)) for row in group}

        if DOC_CANCEL_REFUND in document_types:
            emit(
                f"order {order_number}: contains {DOC_CANCEL_REFUND}, "
                f"dropping whole group ({len(group)} rows)",
                "info",
            )
            filtered_groups += 1
            filtered_rows += len(group)
            continue

        if document_types == {DOC_ORDER}:
            kept = [row for row in group if clean_string(row.get(FEE_ITEM)) != FEE_DIRECT_SERVICE]
            removed = len(group) - len(kept)
            if removed > 0:
                emit(f"order {order_number}: removed {removed} {FEE_DIRECT_SERVICE} rows", "info")
                filtered_rows += removed
            result.extend(kept)
        else:
            emit(
                f"order {order_number}: mixed document types, keeping all rows ({len(group)} rows)",
                "info",
            )
            result.extend(group)

    emit(
        f"business rules done: {processed_groups} order groups processed, "
        f"{filtered_groups} groups filtered, {filtered_rows} rows filtered",
        "success",
    )
    stats = RuleStats(
        processed_groups=processed_groups,
        filtered_groups=filtered_groups,
        filtered_rows=filtered_rows,
    )
    return RuleResult(rows=list(result), stats=stats)


def _coerce_entry(product_code: str, info: Any) -> DefaultPriceEntry | None:
    if info is None:
        return None
    if isinstance(info, DefaultPriceEntry):
        return info
    if isinstance(info, Mapping):
        price = info.get("unit_price", info.get("unitPrice"))
        return DefaultPriceEntry(
            product_code=product_code,
            unit_price=price,
            enabled=bool(info.get("enabled", False)),
            product_name=str(info.get("product_name", info.get("productName", "")) or ""),
        )
    return None


def coerce_price_config(price_config: PriceConfig | None) -> dict[str, DefaultPriceEntry]:
    """Normalize a default-price mapping to ``code -> DefaultPriceEntry``.

    Keys are normalized like product codes so ``10200796175741`` and
    ``"10200796175741"`` address the same entry.
    """
    entries: dict[str, DefaultPriceEntry] = {}
    for raw_code, info in (price_config or {}).items():
        code = clean_product_code(raw_code)
        entry = _coerce_entry(code, info)
        if code and entry is not None:
            entries[code] = entry
    return entries


def default_price_for(product_code: Any, price_config: PriceConfig | None) -> float | None:
    """Default unit price of ``product_code`` or None when none applies."""
    entry = coerce_price_config(price_config).get(clean_product_code(product_code))
    if entry is None or not entry.applies:
        return None
    return float(entry.unit_price)  # type: ignore[arg-type]


def has_default_price(product_code: Any, price_config: PriceConfig | None) -> bool:
    return default_price_for(product_code, price_config) is not None


def extract_unique_products(
    rows: Iterable[Row],
    price_config: PriceConfig | None = None,
) -> list[ProductAggregate]:
    """Unique products of ``rows`` in first-sighting order.

    The name comes from the first row of each product code. Enabled default
    prices are attached (status ``valid``); other products stay ``pending``.
    Rows without a product code are ignored.
    """
    entries = coerce_price_config(price_config)
    products: dict[str, ProductAggregate] = {}
    for row in rows:
        code = clean_product_code(row.get(PRODUCT_CODE))
        if not code or code in products:
            continue
        entry = entries.get(code)
        has_default = entry is not None and entry.applies
        products[code] = ProductAggregate(
            product_code=code,
            product_name=clean_string(row.get(PRODUCT_NAME)),
            unit_price=float(entry.unit_price) if has_default else None,  # type: ignore[arg-type, union-attr]
            status=PriceStatus.VALID if has_default else PriceStatus.PENDING,
            has_default_price=has_default,
        )

    result = list(products.values())
    defaulted = sum(1 for p in result if p.has_default_price)
    logger.debug(f"extracted {len(result)} unique products, {defaulted} with default price")
    return result


def _unit_price_of(info: Any) -> float | None:
    if info is None or isinstance(info, bool):
        return None
    if isinstance(info, (int, float)):
        return float(info)
    if isinstance(info, DefaultPriceEntry):
        return float(info.unit_price) if info.applies else None  # type: ignore[arg-type]
    if isinstance(info, ProductAggregate):
        return info.unit_price
    if isinstance(info, Mapping):
        price = info.get("unit_price", info.get("unitPrice"))
        if isinstance(price, (int, float)) and not isinstance(price, bool):
            return float(price)
    return None


def apply_unit_prices(rows: Iterable[Row], price_map: PriceConfig) -> list[PricedRow]:
    """Map bill rows to simplified priced rows.

    ``price_map`` maps product code to a unit price (number, DefaultPriceEntry,
    ProductAggregate or a mapping with ``unit_price``). Codes without a price
    get ``unit_price=None`` and ``total=None``. Rows without a product code
    are dropped.
    """
    prices = {clean_product_code(code): _unit_price_of(info) for code, info in price_map.items()}
    priced: list[PricedRow] = []
    dropped = 0
    for row in rows:
        code = clean_product_code(row.get(PRODUCT_CODE))
        if not code:
            dropped += 1
            continue
        unit_price = prices.get(code)
        quantity = parse_quantity(row.get(QUANTITY))
        priced.append(
            PricedRow(
                product_name=clean_string(row.get(PRODUCT_NAME)),
                product_code=code,
                unit_price=unit_price,
                quantity=quantity,
                total=unit_price * quantity if unit_price is not None else None,
            )
        )
    if dropped:
        logger.warning(f"dropped {dropped} rows without {PRODUCT_CODE}")
    return priced


def merge_same_sku(rows: Iterable[PricedRow]) -> list[PricedRow]:
    """Merge priced rows sharing a product code, summing quantities.

    The total is recomputed as unit price x summed quantity. One unit price
    per code is expected; on conflict the first price seen is kept and the
    conflict is logged. Merging an already merged list changes nothing.
    """
    merged: dict[str, PricedRow] = {}
    before = 0
    for row in rows:
        before += 1
        existing = merged.get(row.product_code)
        if existing is None:
            merged[row.product_code] = PricedRow(
                product_name=row.product_name,
                product_code=row.product_code,
                unit_price=row.unit_price,
                quantity=row.quantity,
                total=row.unit_price * row.quantity if row.unit_price is not None else None,
            )
            continue

        unit_price = existing.unit_price
        if unit_price is None:
            unit_price = row.unit_price
        elif row.unit_price is not None and row.unit_price != unit_price:
            logger.warning(
                f"unit price conflict for {row.product_code}: "
                f"keeping {unit_price}, ignoring {row.unit_price}"
            )
        quantity = existing.quantity + row.quantity
        merged[row.product_code] = PricedRow(
            product_name=existing.product_name or row.product_name,
            product_code=existing.product_code,
            unit_price=unit_price,
            quantity=quantity,
            total=unit_price * quantity if unit_price is not None else None,
        )

    result = list(merged.values())
    logger.debug(f"SKU merge: {before} rows -> {len(result)} rows")
    return result


def generate_statistics(
    original_rows: Sequence[Row],
    processed_rows: Sequence[PricedRow],
) -> BillStatistics:
    """Before/after statistics of a bill run."""
    original_count = len(original_rows)
    processed_count = len(processed_rows)
    filtered_count = original_count - processed_count

    original_orders = len({clean_product_code(r.get(ORDER_NUMBER)) for r in original_rows})
    processed_orders = len({r.product_code for r in processed_rows})

    original_types: dict[str, int] = {}
    for row in original_rows:
        doc_type = clean_string(row.get(DOCUMENT_TYPE))
        original_types[doc_type] = original_types.get(doc_type, 0) + 1

    if original_count == 0:
        filter_rate = "0.00"
    else:
        filter_rate = f"{filtered_count / original_count * 100:.2f}"

    return BillStatistics(
        original_count=original_count,
        processed_count=processed_count,
        filtered_count=filtered_count,
        original_orders=original_orders,
        processed_orders=processed_orders,
        original_types=original_types,
        filter_rate=filter_rate,
    )

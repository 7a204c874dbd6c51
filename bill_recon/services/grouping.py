from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..models.columns import ORDER_NUMBER
from .normalizer import clean_product_code

"""Order grouping engine.

Partitions bill rows by order number. The returned dict keeps insertion
order, and that order is the iteration order the business rule engine
relies on for reproducible output.
"""

__all__ = [
    "group_by_order",
]

logger = logging.getLogger(__name__)


def group_by_order(
    rows: Iterable[Mapping[str, Any]],
    order_column: str = ORDER_NUMBER,
) -> dict[str, list[Mapping[str, Any]]]:
    """Group rows by order number, preserving row order within each group.

    Rows whose order number is missing / empty / falsy are skipped (logged at
    DEBUG, never an error). Row objects are not copied.
    """
    grouped: dict[str, list[Mapping[str, Any]]] = {}
    skipped = 0
    for index, row in enumerate(rows):
        raw = row.get(order_column)
        order_number = clean_product_code(raw) if raw else ""
        if not order_number:
            skipped += 1
            logger.debug(f"row {index}: empty order number, skipped")
            continue
        grouped.setdefault(order_number, []).append(row)

    if skipped:
        logger.info(f"skipped {skipped} rows without order number")
    return grouped

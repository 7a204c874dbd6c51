from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..models.columns import DEFAULT_AMOUNT_COLUMNS, PRODUCT_CODE, REQUIRED_BILL_COLUMNS
from .errors import EmptyDatasetError, MissingAmountColumnError, MissingColumnError

"""Schema validation for parsed datasets.

The header is taken from the first row only: spreadsheet parsers emit the
same key set for every row of a sheet, and checking one row keeps validation
O(columns) on large exports.
"""

__all__ = [
    "validate_schema",
    "validate_settlement_schema",
    "validate_unit_price",
    "similar_columns",
    "MAX_UNIT_PRICE",
]

logger = logging.getLogger(__name__)

MAX_UNIT_PRICE = 999999.99

_WHITESPACE = re.compile(r"\s+")


def similar_columns(column: str, available: Iterable[str]) -> list[str]:
    """Near-miss header labels for ``column`` (diagnostics only).

    A label is similar when one contains the other or both are equal once
    whitespace is removed.
    """
    target = _WHITESPACE.sub("", column)
    hits: list[str] = []
    for key in available:
        key_str = str(key)
        if not key_str:
            continue
        if column in key_str or key_str in column or _WHITESPACE.sub("", key_str) == target:
            hits.append(key_str)
    return hits


def validate_schema(
    rows: Sequence[Mapping[str, Any]],
    required_columns: Iterable[str] = REQUIRED_BILL_COLUMNS,
) -> bool:
    """Check that the dataset carries every required column.

    Raises:
        EmptyDatasetError: ``rows`` is empty
        MissingColumnError: first required column absent from the first row,
            with near-miss candidates attached for the error message
    """
    if len(rows) == 0:
        raise EmptyDatasetError()

    header = list(rows[0].keys())
    logger.debug(f"validating {len(rows)} rows, header={header}")
    for column in required_columns:
        if column in rows[0]:
            continue
        candidates = similar_columns(column, header)
        if candidates:
            logger.warning(f"column '{column}' not found, similar columns: {candidates}")
        logger.error(f"missing required column '{column}', available columns: {header}")
        raise MissingColumnError(column, candidates)
    return True


def validate_settlement_schema(
    rows: Sequence[Mapping[str, Any]],
    amount_columns: Sequence[str] = DEFAULT_AMOUNT_COLUMNS,
) -> str:
    """Validate a settlement dataset, returning the amount column to use."""
    validate_schema(rows, (PRODUCT_CODE,))
    for column in amount_columns:
        if column in rows[0]:
            return column
    raise MissingAmountColumnError(amount_columns)


def validate_unit_price(price: Any) -> bool:
    """True when ``price`` is a usable unit price (0 <= price <= 999999.99)."""
    if price is None or isinstance(price, bool):
        return False
    if isinstance(price, str):
        price = price.strip()
        if price == "":
            return False
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return value == value and 0 <= value <= MAX_UNIT_PRICE

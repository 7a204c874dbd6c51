from __future__ import annotations

import math
import numbers
import re
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd

from ..models.columns import ORDER_NUMBER, PRODUCT_CODE

"""Row normalizer: raw spreadsheet cells -> typed values.

Every function here is pure and total. Malformed cells never raise; they
degrade to 0 (amounts / quantities) or "" (strings / identifiers) so one bad
cell cannot abort a reconciliation run.
"""

__all__ = [
    "clean_amount",
    "clean_string",
    "clean_product_code",
    "parse_quantity",
    "normalize_row",
    "normalize_rows",
    "IDENTIFIER_COLUMNS",
]

# 货币符号 / 千位分隔符 / 空白
_AMOUNT_NOISE = re.compile(r"[¥￥$,\s]")
_CONTROL_CHARS = re.compile(r"[\t\n\r]")
# Leading numeric prefix, same leniency as a spreadsheet "parse float" ("12元" -> 12)
_NUMBER_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
# Excel text-forcing wrapper: ="10200796175741"
_EXCEL_TEXT_FORMULA = re.compile(r'^="([^"]+)"$')

# Columns holding long numeric identifiers that must stay exact strings
IDENTIFIER_COLUMNS = frozenset({ORDER_NUMBER, PRODUCT_CODE})


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes)):
        return False
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


def clean_amount(value: Any) -> float:
    """Parse a monetary cell into a float.

    Numbers pass through (NaN / inf become 0). Strings lose currency symbols
    (¥ ￥ $), thousands separators and whitespace before parsing. Anything
    else, including empty or non-numeric text, yields 0.

    >>> clean_amount("￥1,234.50")
    1234.5
    >>> clean_amount("n/a")
    0.0
    """
    if isinstance(value, bool) or _is_missing(value):
        return 0.0
    if isinstance(value, numbers.Number):
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        match = _NUMBER_PREFIX.match(_AMOUNT_NOISE.sub("", value))
        if match is None:
            return 0.0
        number = float(match.group(0))
        return number if math.isfinite(number) else 0.0
    return 0.0


def parse_quantity(value: Any) -> float:
    """Quantity cells follow the amount rules (missing / garbage -> 0)."""
    return clean_amount(value)


def clean_string(value: Any) -> str:
    """Strip tab / newline / carriage-return characters and outer whitespace.

    None and NaN become "". Integral floats render without ``.0`` so a code
    read as ``1001.0`` compares equal to ``"1001"``.
    """
    if _is_missing(value):
        return ""
    if isinstance(value, str):
        return _CONTROL_CHARS.sub("", value).strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return _CONTROL_CHARS.sub("", str(value)).strip()


def clean_product_code(value: Any) -> str:
    """Normalize a product code / order number to its exact string form.

    Handles the ``="123456"`` wrapper Excel exports use to force text, and
    numbers that went through float or scientific notation
    (``1.0200796175741e13`` -> ``"10200796175741"``).
    """
    if isinstance(value, bool) or _is_missing(value):
        return ""
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    text = clean_string(value)
    wrapped = _EXCEL_TEXT_FORMULA.match(text)
    if wrapped:
        return wrapped.group(1).strip()
    if "e" in text.lower() and _NUMBER_PREFIX.fullmatch(text):
        try:
            number = Decimal(text)
        except InvalidOperation:
            return text
        if number == number.to_integral_value():
            return str(int(number))
    return text


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Return a cleaned copy of one raw row.

    - header labels are stripped of control characters / whitespace
    - string cells are cleaned with ``clean_string``
    - identifier columns (order number, product code) become exact strings
    - missing cells (None / NaN) become None
    The input mapping is not modified.
    """
    cleaned: dict[str, Any] = {}
    for raw_key, value in row.items():
        key = clean_string(raw_key)
        if not key:
            continue
        if key in IDENTIFIER_COLUMNS:
            cleaned[key] = clean_product_code(value) if not _is_missing(value) else None
        elif _is_missing(value):
            cleaned[key] = None
        elif isinstance(value, str):
            cleaned[key] = clean_string(value)
        else:
            cleaned[key] = value
    return cleaned


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [normalize_row(row) for row in rows]

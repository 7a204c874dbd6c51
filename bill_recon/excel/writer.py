from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils import get_column_letter

from ..models.columns import NUMERIC_COLUMNS, PRODUCT_CODE_COLUMNS
from ..services.errors import EmptyDatasetError

"""Result workbook export (pandas + openpyxl).

One sheet "处理结果". Product code columns are text cells ("@") so long
codes never turn into scientific notation; amount / quantity / price
columns use the "0.00" number format.
"""

__all__ = ["write_records", "RESULT_SHEET"]

logger = logging.getLogger(__name__)

RESULT_SHEET = "处理结果"
COLUMN_WIDTH = 20


def write_records(records: Sequence[Mapping[str, Any]], path: Path, *, sheet_name: str = RESULT_SHEET) -> Path:
    """Write ``records`` (label -> value) to a new workbook at ``path``.

    Column order follows the keys of the first record.

    Raises:
        EmptyDatasetError: nothing to export
    """
    if not records:
        raise EmptyDatasetError("no records to export")

    df = pd.DataFrame([dict(r) for r in records])
    for col in df.columns:
        if col in PRODUCT_CODE_COLUMNS:
            df[col] = df[col].map(lambda v: "" if v is None else str(v))

    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
        ws = writer.sheets[sheet_name]
        for idx, col in enumerate(df.columns, start=1):
            letter = get_column_letter(idx)
            ws.column_dimensions[letter].width = COLUMN_WIDTH
            if col in PRODUCT_CODE_COLUMNS:
                number_format = "@"
            elif col in NUMERIC_COLUMNS:
                number_format = "0.00"
            else:
                continue
            for cell in ws[letter][1:]:
                cell.number_format = number_format

    logger.info(f"exported {len(df)} rows to {path}")
    return path

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

"""Workbook / CSV reader for bill and settlement exports.

- First sheet only, first row is the header, every following non-empty row
  is a data row (column label -> raw cell value, empty cells -> None)
- .xlsx via openpyxl, legacy .xls via xlrd
- .csv read as text, UTF-8 first then GBK (exports from Chinese Excel)
- header cells pandas could not name ("Unnamed: N") are dropped
"""

__all__ = [
    "InputFileError",
    "SUPPORTED_EXTENSIONS",
    "validate_input_file",
    "read_frame",
    "frame_to_rows",
    "read_rows",
]

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".csv")
CSV_ENCODINGS = ("utf-8-sig", "gbk")

_EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}


class InputFileError(Exception):
    """Raised when an input file is rejected or cannot be read."""


def validate_input_file(path: Path, max_size_bytes: int | None = None) -> None:
    """Check existence, extension and size before anything is parsed."""
    if not path.exists():
        raise InputFileError(f"file not found: {path}")
    if not path.is_file():
        raise InputFileError(f"not a file: {path}")
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise InputFileError(
            f"unsupported file type: {path.name} (expected {', '.join(SUPPORTED_EXTENSIONS)})"
        )
    if max_size_bytes is not None:
        size = path.stat().st_size
        if size > max_size_bytes:
            raise InputFileError(
                f"file too large: {path.name} ({size / 1024 / 1024:.1f}MB > "
                f"{max_size_bytes / 1024 / 1024:.0f}MB)"
            )


def _read_csv(path: Path) -> pd.DataFrame:
    last_error: UnicodeDecodeError | None = None
    for encoding in CSV_ENCODINGS:
        try:
            return pd.read_csv(path, dtype=str, encoding=encoding, skip_blank_lines=True)
        except UnicodeDecodeError as e:
            logger.debug(f"{path.name}: not {encoding}, trying next encoding")
            last_error = e
    raise InputFileError(f"cannot decode {path.name}: {last_error}")


def read_frame(path: Path) -> pd.DataFrame:
    """Read the first sheet (or the CSV) of ``path`` as a raw DataFrame."""
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            return _read_csv(path)
        return pd.read_excel(path, sheet_name=0, dtype=object, engine=_EXCEL_ENGINES[suffix])
    except InputFileError:
        raise
    except KeyError as e:
        raise InputFileError(f"unsupported file type: {path.name}") from e
    except pd.errors.EmptyDataError as e:
        raise InputFileError(f"no data in {path.name}") from e
    except Exception as e:  # openpyxl / xlrd / zipfile errors all mean the same here
        raise InputFileError(f"cannot read {path.name}: {e}") from e


def frame_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Convert a DataFrame to row dicts; empty cells become None."""
    keep = [c for c in df.columns if not str(c).startswith("Unnamed:")]
    df = df[keep].dropna(how="all")
    df.columns = [str(c).strip() for c in df.columns]
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def read_rows(path: Path, max_size_bytes: int | None = None) -> list[dict[str, Any]]:
    """Validate and read one input file into row dicts.

    Raises:
        InputFileError: rejected, unreadable, or no data rows
    """
    validate_input_file(path, max_size_bytes)
    df = read_frame(path)
    rows = frame_to_rows(df)
    if not rows:
        raise InputFileError(f"no data rows in {path.name}")
    logger.debug(f"{path.name}: {len(rows)} rows, columns={list(df.columns)}")
    return rows

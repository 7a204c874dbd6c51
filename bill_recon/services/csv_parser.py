from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd

from ..excel.reader import CSV_ENCODINGS, InputFileError, frame_to_rows, validate_input_file
from ..models.config_models import DEFAULT_PROGRESS_INTERVAL
from .errors import TaskCancelledError

"""Row-batched CSV parsing with progress and cooperative cancellation.

Large CSV exports are read in chunks of ``progress_interval`` rows so the
task channel can report progress and honour cancel requests while a file
is being parsed.
"""

__all__ = [
    "parse_csv",
    "count_data_lines",
]

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, str], None]


def count_data_lines(path: Path, encoding: str) -> int:
    """Number of non-empty lines after the header."""
    with path.open(encoding=encoding) as f:
        lines = sum(1 for line in f if line.strip())
    return max(lines - 1, 0)


def _parse_with(
    path: Path,
    encoding: str,
    progress: ProgressFn | None,
    should_cancel: Callable[[], bool] | None,
    progress_interval: int,
) -> list[dict[str, Any]]:
    total = count_data_lines(path, encoding)
    rows: list[dict[str, Any]] = []
    reader = pd.read_csv(
        path,
        dtype=str,
        encoding=encoding,
        skip_blank_lines=True,
        chunksize=max(progress_interval, 1),
    )
    with reader:
        for chunk in reader:
            if should_cancel is not None and should_cancel():
                raise TaskCancelledError()
            rows.extend(frame_to_rows(chunk))
            if progress is not None and total:
                percent = min(99, len(rows) * 100 // total)
                progress(percent, f"parsed {len(rows)}/{total} rows")
    return rows


def parse_csv(
    path: Path,
    max_size_bytes: int | None = None,
    *,
    progress: ProgressFn | None = None,
    should_cancel: Callable[[], bool] | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> list[dict[str, Any]]:
    """Parse a CSV export into row dicts, one chunk of rows at a time.

    Args:
        path: CSV file
        max_size_bytes: size limit checked before parsing
        progress: called with (percent, message) after each chunk
        should_cancel: polled before each chunk
        progress_interval: rows per chunk

    Returns:
        Row dicts as ``read_rows`` returns them

    Raises:
        InputFileError: rejected, undecodable, or no data rows
        TaskCancelledError: ``should_cancel`` returned True
    """
    validate_input_file(path, max_size_bytes)
    if path.suffix.lower() != ".csv":
        raise InputFileError(f"not a CSV file: {path.name}")

    last_error: UnicodeDecodeError | None = None
    for encoding in CSV_ENCODINGS:
        try:
            rows = _parse_with(path, encoding, progress, should_cancel, progress_interval)
        except UnicodeDecodeError as e:
            logger.debug(f"{path.name}: not {encoding}, trying next encoding")
            last_error = e
            continue
        except pd.errors.EmptyDataError as e:
            raise InputFileError(f"no data in {path.name}") from e
        break
    else:
        raise InputFileError(f"cannot decode {path.name}: {last_error}")

    if not rows:
        raise InputFileError(f"no data rows in {path.name}")
    if progress is not None:
        progress(100, "done")
    logger.debug(f"{path.name}: {len(rows)} rows parsed in chunks of {progress_interval}")
    return rows

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

from ..models.settlement import SettlementAggregate

"""Batch INSERT of settlement results (optional result sink).

psycopg2.extras.execute_values, one statement per page. The caller owns the
transaction; nothing here commits.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "SETTLEMENT_COLUMNS",
    "batch_insert",
    "persist_settlement",
    "settlement_rows",
]

logger = logging.getLogger(__name__)

SETTLEMENT_COLUMNS = ("product_code", "settlement_amount", "quantity", "service_fee", "net_amount")

# plain or schema-qualified identifier
_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    ``metrics_callback`` is not invoked when ``rows`` is empty.

    Raises:
        BatchInsertError: invalid table name or the INSERT failed
    """
    if not _TABLE_RE.match(table):
        raise BatchInsertError(f"invalid table name: {table!r}")

    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    base_sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"

    start_time = time.time()
    try:
        execute_values(cursor, base_sql, rows_list, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))


def settlement_rows(aggregates: Iterable[SettlementAggregate]) -> list[tuple[Any, ...]]:
    """Value tuples in ``SETTLEMENT_COLUMNS`` order."""
    return [
        (a.product_code, a.settlement_amount, a.quantity, a.service_fee, a.net_amount)
        for a in aggregates
    ]


def persist_settlement(cursor: Any, table: str, aggregates: Sequence[SettlementAggregate]) -> int:
    """Insert settlement aggregates into ``table``. Returns the inserted row count."""
    def _log_metrics(m: BatchMetrics) -> None:
        logger.debug(f"batch insert {table}: {m.batch_size} rows in {m.elapsed_seconds:.3f}s")

    result = batch_insert(
        cursor,
        table,
        SETTLEMENT_COLUMNS,
        settlement_rows(aggregates),
        metrics_callback=_log_metrics,
    )
    return result.inserted_rows

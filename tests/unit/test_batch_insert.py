from __future__ import annotations

import pytest

from bill_recon.db import batch_insert as bi
from bill_recon.db.batch_insert import (
    SETTLEMENT_COLUMNS,
    BatchInsertError,
    BatchMetrics,
    InsertResult,
    batch_insert,
    persist_settlement,
    settlement_rows,
)
from bill_recon.models import SettlementAggregate


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.rows: list = []


# Patch execute_values inside the module; no database needed for the logic
@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    def fake_execute_values(cursor, sql, rows, page_size=1000):
        cursor.queries.append(sql)
        cursor.rows.extend(rows)
    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(cur, table="recon.settlement", columns=["a", "b"], rows=[[1, "x"], [2, "y"]])
    assert res == InsertResult(inserted_rows=2)
    assert cur.queries == ['INSERT INTO recon.settlement ("a","b") VALUES %s']


def test_batch_insert_empty_rows_skips_metrics():
    seen: list[BatchMetrics] = []
    res = batch_insert(DummyCursor(), "t", ["a"], [], metrics_callback=seen.append)
    assert res.inserted_rows == 0
    assert seen == []


def test_batch_insert_metrics_callback():
    seen: list[BatchMetrics] = []
    batch_insert(DummyCursor(), "t", ["a"], [[1], [2], [3]], metrics_callback=seen.append)
    assert len(seen) == 1
    assert seen[0].batch_size == 3
    assert seen[0].elapsed_seconds >= 0


@pytest.mark.parametrize("table", ["bad name", "t;drop table x", "1t", ""])
def test_batch_insert_rejects_table_names(table):
    with pytest.raises(BatchInsertError, match="invalid table name"):
        batch_insert(DummyCursor(), table, ["a"], [[1]])


def test_batch_insert_wraps_driver_errors(monkeypatch):
    def boom(cursor, sql, rows, page_size=1000):
        raise RuntimeError("relation does not exist")
    monkeypatch.setattr(bi, "execute_values", boom)
    with pytest.raises(BatchInsertError, match="relation does not exist"):
        batch_insert(DummyCursor(), "t", ["a"], [[1]])


def test_persist_settlement_column_order():
    aggregates = [
        SettlementAggregate("P1", 60.0, -5.0, 55.0, 1.0),
        SettlementAggregate("P2", 50.5, 0.0, 50.5),
    ]
    cur = DummyCursor()
    assert persist_settlement(cur, "settlement_results", aggregates) == 2
    assert cur.rows == settlement_rows(aggregates) == [
        ("P1", 60.0, 1.0, -5.0, 55.0),
        ("P2", 50.5, None, 0.0, 50.5),
    ]
    assert SETTLEMENT_COLUMNS[0] == "product_code"

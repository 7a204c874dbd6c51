# Shared pytest fixtures
from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import pandas as pd
import pytest

from bill_recon.logging.init import LOGGER_NAME, reset_logging


@pytest.fixture(autouse=True)
def _isolate_logging():
    # setup_logging() disables propagation; undo it so caplog keeps working
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        # keep the developer's own .env / PG* variables out of the tests
        for var in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
            monkeypatch.delenv(var, raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """default_prices:
  "1001": {enabled: true, unit_price: 10.0}
  "1002": {enabled: false, unit_price: 99.0}
settlement:
  amount_columns: [应结金额, 金额]
  progress_interval: 2
input:
  max_file_size_mb: 5
output_directory: ./out
database:
  host: localhost
  port: 5432
  user: recon
  database: recon
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "recon.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def bill_row(order: str, doc_type: str, fee_item: str, code: str, qty, name: str = "") -> dict:
    return {
        "订单编号": order,
        "单据类型": doc_type,
        "费用项": fee_item,
        "商品编号": code,
        "商品名称": name or f"商品{code}",
        "商品数量": qty,
    }


@pytest.fixture()
def row_factory():
    return bill_row


@pytest.fixture()
def bill_rows() -> list[dict]:
    """Three orders: plain order with a service fee row, refunded order, mixed order."""
    return [
        bill_row("A1", "订单", "货款", "1001", 2, "苹果"),
        bill_row("A1", "订单", "直营服务费", "1001", 2, "苹果"),
        bill_row("B2", "订单", "货款", "1002", 1, "香蕉"),
        bill_row("B2", "取消退款单", "货款", "1002", 1, "香蕉"),
        bill_row("C3", "订单", "货款", "1003", 3, "橙子"),
        bill_row("C3", "售后服务单", "货款", "1003", 1, "橙子"),
    ]


@pytest.fixture()
def settlement_rows() -> list[dict]:
    return [
        {"商品编号": "P1", "费用名称": "货款", "应结金额": 100, "商品数量": 2},
        {"商品编号": "P1", "费用名称": "直营服务费", "应结金额": -5},
        {"商品编号": "P2", "费用名称": "货款", "应结金额": "50.5", "商品数量": 1},
        {"商品编号": "P1", "费用名称": "货款", "应结金额": -40, "商品数量": 1},
    ]


@pytest.fixture()
def make_workbook(temp_workdir: Path):
    """Write rows to data/<name> as a real workbook (first sheet, header row)."""
    def _make(name: str, rows: list[dict]) -> Path:
        path = temp_workdir / "data" / name
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            pd.DataFrame(rows).to_excel(writer, sheet_name="Sheet1", index=False)
        return path
    return _make

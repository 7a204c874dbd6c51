from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import load_workbook

from bill_recon.cli import main as cli_main
from bill_recon.excel.writer import RESULT_SHEET
from bill_recon.logging.init import reset_logging

"""Integration: settlement aggregation over real workbooks, via the task channel."""


@pytest.mark.integration
def test_settle_two_files(temp_workdir: Path, make_workbook, capsys):
    reset_logging()
    make_workbook(
        "s1.xlsx",
        [
            {"商品编号": 10200796175741, "费用名称": "货款", "应结金额": "￥1,000.00", "商品数量": 10},
            {"商品编号": 10200796175741, "费用名称": "直营服务费", "应结金额": -50, "商品数量": None},
            {"商品编号": "10200814928185", "费用名称": "货款", "应结金额": 55.5, "商品数量": 1},
        ],
    )
    make_workbook(
        "s2.xlsx",
        [
            {"商品编号": "10200796175741", "费用名称": "货款", "应结金额": -100, "商品数量": 1},
            {"商品编号": "10200814928185", "费用名称": "货款", "应结金额": -55.5, "商品数量": 1},
            {"商品编号": "", "费用名称": "售后卖家赔付费", "应结金额": -8, "商品数量": None},
        ],
    )

    code = cli_main(["settle", "data", "--output", "out/settle.xlsx"])
    out = capsys.readouterr().out

    assert code == 0, out
    assert "SUMMARY mode=settle files=2 rows=6 products=1 net_total=850.00 persisted=0" in out
    assert "WARN 售后卖家赔付费 total -8.0 recorded but not deducted" in out

    ws = load_workbook(temp_workdir / "out" / "settle.xlsx")[RESULT_SHEET]
    assert [c.value for c in ws[1]] == ["商品编号", "应结金额", "数量", "直营服务费", "净结金额"]
    assert [c.value for c in ws[2]] == ["10200796175741", 900, 9, -50, 850]


@pytest.mark.integration
def test_settle_file_too_large(temp_workdir: Path, capsys):
    reset_logging()
    (temp_workdir / "config" / "recon.yml").write_text("input:\n  max_file_size_mb: 1\n", encoding="utf-8")
    big = temp_workdir / "data" / "big.csv"
    big.write_bytes(b"a\n" + b"1\n" * (600 * 1024))
    code = cli_main(["settle", "data"])
    assert code == 1
    assert "ERROR input: file too large: big.csv" in capsys.readouterr().out

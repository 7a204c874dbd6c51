from __future__ import annotations

from pathlib import Path

from bill_recon.cli import main as cli_main
from bill_recon.logging.init import reset_logging

"""Exit code contract: 0 success, 1 fatal, 2 pending prices, 130 cancelled."""


def test_exit_code_fatal_on_bad_input(temp_workdir: Path, capsys):
    reset_logging()
    bad = temp_workdir / "data" / "bill.txt"
    bad.write_text("x", encoding="utf-8")
    code = cli_main(["filter", str(bad)])
    assert code == 1
    assert "ERROR input: unsupported file type" in capsys.readouterr().out


def test_exit_code_success_and_pending(temp_workdir: Path, make_workbook, bill_rows, capsys):
    reset_logging()
    make_workbook("bill.xlsx", bill_rows)
    prices = temp_workdir / "prices.yml"
    prices.write_text('"1001": 1\n"1003": 2\n', encoding="utf-8")

    assert cli_main(["filter", "data"]) == 2
    reset_logging()
    assert cli_main(["filter", "data", "--prices", str(prices)]) == 0
    capsys.readouterr()

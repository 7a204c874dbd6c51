from __future__ import annotations

from pathlib import Path

import pytest

from bill_recon.excel.reader import InputFileError
from bill_recon.services.csv_parser import count_data_lines, parse_csv
from bill_recon.services.errors import TaskCancelledError

HEADER = "商品编号,费用名称,应结金额\n"


def _write_csv(temp_workdir: Path, rows: int, encoding: str = "utf-8") -> Path:
    path = temp_workdir / "data" / "settle.csv"
    body = "".join(f"P{i},货款,{i}.5\n" for i in range(rows))
    path.write_bytes((HEADER + body + "\n").encode(encoding))
    return path


def test_parse_csv_reports_progress_per_batch(temp_workdir: Path):
    path = _write_csv(temp_workdir, 5)
    events: list[tuple[int, str]] = []

    rows = parse_csv(path, progress=lambda p, m: events.append((p, m)), progress_interval=2)

    assert len(rows) == 5
    assert rows[0] == {"商品编号": "P0", "费用名称": "货款", "应结金额": "0.5"}
    assert [p for p, _ in events] == [40, 80, 99, 100]
    assert events[0][1] == "parsed 2/5 rows"
    assert events[-1] == (100, "done")


def test_parse_csv_falls_back_to_gbk(temp_workdir: Path):
    path = _write_csv(temp_workdir, 3, encoding="gbk")
    assert count_data_lines(path, "gbk") == 3
    rows = parse_csv(path, progress_interval=10)
    assert [r["费用名称"] for r in rows] == ["货款"] * 3


def test_parse_csv_honours_cancel(temp_workdir: Path):
    path = _write_csv(temp_workdir, 5)
    with pytest.raises(TaskCancelledError):
        parse_csv(path, should_cancel=lambda: True, progress_interval=2)


def test_parse_csv_header_only_is_rejected(temp_workdir: Path):
    path = temp_workdir / "data" / "empty.csv"
    path.write_text(HEADER, encoding="utf-8")
    with pytest.raises(InputFileError, match="no data rows in empty.csv"):
        parse_csv(path)


def test_parse_csv_rejects_other_files(temp_workdir: Path):
    path = temp_workdir / "data" / "bill.xlsx"
    path.write_bytes(b"x")
    with pytest.raises(InputFileError, match="not a CSV file"):
        parse_csv(path)
    with pytest.raises(InputFileError, match="file too large"):
        parse_csv(_write_csv(temp_workdir, 5), max_size_bytes=10)

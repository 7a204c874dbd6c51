from __future__ import annotations

import pytest

from bill_recon.services.errors import (
    EmptyDatasetError,
    MissingAmountColumnError,
    MissingColumnError,
    ReconciliationError,
)
from bill_recon.services.schema import (
    similar_columns,
    validate_schema,
    validate_settlement_schema,
    validate_unit_price,
)


def test_validate_schema_accepts_complete_header(bill_rows):
    assert validate_schema(bill_rows) is True


def test_validate_schema_empty_dataset():
    with pytest.raises(EmptyDatasetError):
        validate_schema([])


def test_validate_schema_reports_first_missing_column_with_candidates(bill_rows):
    rows = [{("商品编号 " if k == "商品编号" else k): v for k, v in r.items()} for r in bill_rows]
    with pytest.raises(MissingColumnError) as ei:
        validate_schema(rows)
    assert ei.value.column == "商品编号"
    assert ei.value.candidates == ["商品编号 "]
    assert "商品编号" in str(ei.value)


def test_validate_schema_only_first_row_is_checked(bill_rows):
    rows = [bill_rows[0], {"unrelated": 1}]
    assert validate_schema(rows) is True


def test_missing_column_is_reconciliation_error():
    with pytest.raises(ReconciliationError):
        validate_schema([{"订单编号": "1"}])


def test_similar_columns_substring_and_whitespace():
    assert similar_columns("商品编号", ["商品编号(SKU)", "商品 编号", "订单编号"]) == ["商品编号(SKU)", "商品 编号"]


def test_validate_settlement_schema_picks_first_present_amount_column():
    rows = [{"商品编号": "P1", "金额": 1, "总金额": 2}]
    assert validate_settlement_schema(rows) == "金额"


def test_validate_settlement_schema_without_amount_column():
    with pytest.raises(MissingAmountColumnError) as ei:
        validate_settlement_schema([{"商品编号": "P1", "备注": "x"}])
    assert ei.value.candidates == ["应结金额", "金额", "合计金额", "总金额"]


@pytest.mark.parametrize("price", [0, 42.5, "38.3", 999999.99])
def test_validate_unit_price_accepts(price):
    assert validate_unit_price(price)


@pytest.mark.parametrize("price", [None, "", "  ", "abc", -1, 1_000_000, True, float("nan")])
def test_validate_unit_price_rejects(price):
    assert not validate_unit_price(price)


def test_validate_schema_requires_product_name(bill_rows):
    rows = [{k: v for k, v in r.items() if k != "商品名称"} for r in bill_rows]
    with pytest.raises(MissingColumnError) as ei:
        validate_schema(rows)
    assert ei.value.column == "商品名称"

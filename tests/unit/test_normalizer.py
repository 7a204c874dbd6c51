from __future__ import annotations

import math

import pytest

from bill_recon.services.normalizer import (
    clean_amount,
    clean_product_code,
    clean_string,
    normalize_row,
    parse_quantity,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("￥1,234.50", 1234.5),
        ("¥ 12", 12.0),
        ("$3.5", 3.5),
        ("-40", -40.0),
        ("12元", 12.0),
        (" 7.25 \n", 7.25),
        (15, 15.0),
        (2.5, 2.5),
    ],
)
def test_clean_amount_parses_currency_text(raw, expected):
    assert clean_amount(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "n/a", "--", float("nan"), float("inf"), True, [1, 2]])
def test_clean_amount_degrades_to_zero(raw):
    assert clean_amount(raw) == 0.0


def test_parse_quantity_follows_amount_rules():
    assert parse_quantity("3") == 3.0
    assert parse_quantity(None) == 0.0
    assert parse_quantity("abc") == 0.0


def test_clean_string_strips_control_characters():
    assert clean_string("\t订单\r\n") == "订单"
    assert clean_string("  货款 ") == "货款"
    assert clean_string(None) == ""
    assert clean_string(math.nan) == ""
    assert clean_string(1001.0) == "1001"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('="10200796175741"', "10200796175741"),
        (10200796175741, "10200796175741"),
        (10200796175741.0, "10200796175741"),
        ("1.0200796175741e13", "10200796175741"),
        ("1.0200796175741E+13", "10200796175741"),
        (" 1001\t", "1001"),
        ("SKU-9", "SKU-9"),
        (None, ""),
        (True, ""),
    ],
)
def test_clean_product_code_exact_strings(raw, expected):
    assert clean_product_code(raw) == expected


def test_normalize_row_cleans_keys_and_values_without_mutating():
    raw = {
        " 订单编号\t": 123456789012.0,
        "商品编号": '="1001"',
        "单据类型": " 订单\n",
        "商品数量": 2,
        "": "dropped",
        "备注": float("nan"),
    }
    snapshot = dict(raw)

    row = normalize_row(raw)

    assert row == {
        "订单编号": "123456789012",
        "商品编号": "1001",
        "单据类型": "订单",
        "商品数量": 2,
        "备注": None,
    }
    assert raw.keys() == snapshot.keys()


def test_normalize_row_missing_identifier_is_none():
    assert normalize_row({"商品编号": None})["商品编号"] is None

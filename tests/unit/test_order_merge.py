from __future__ import annotations

from decimal import Decimal

import pytest

from bill_recon.models import PricedRow
from bill_recon.services.errors import EmptyDatasetError, ReconciliationError
from bill_recon.services.order_merge import (
    apply_non_sales_adjustments,
    deduct_after_sales,
    merge_after_sales,
    merge_order_lines,
    process_order_merge,
    sum_same_sku,
)


def _row(order, doc_type, fee_item, code, qty, amount, name="牛肉粒") -> dict:
    return {
        "订单编号": order,
        "单据类型": doc_type,
        "费用项": fee_item,
        "商品编号": code,
        "商品名称": name,
        "商品数量": qty,
        "金额": amount,
    }


class Sink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def __call__(self, message: str, severity: str = "info") -> None:
        self.messages.append((message, severity))

    def severities(self) -> list[str]:
        return [s for _, s in self.messages]


def test_merge_after_sales_sums_per_product():
    rows = [
        _row("S1", "售后服务单", "货款", "P1", 1, -10.5),
        _row("S2", "售后服务单", "货款", "P1", 1, "-4.5"),
        _row("S3", "售后服务单", "货款", "", 1, -99),
        _row("O1", "订单", "货款", "P1", 1, 100),
    ]
    assert merge_after_sales(rows) == {"P1": Decimal("-15.0")}


def test_after_sales_deducted_from_first_larger_row_once():
    rows = [
        _row("O1", "订单", "货款", "P1", 2, 30),
        _row("O2", "订单", "货款", "P1", 1, 100),
        _row("O3", "订单", "货款", "P1", 1, 100),
    ]
    sink = Sink()
    result, deducted = deduct_after_sales(rows, {"P1": Decimal("-40")}, log_sink=sink)

    assert deducted == 1
    assert [r["金额"] for r in result] == [30, 60.0, 100]
    assert result[0] is rows[0]
    assert rows[1]["金额"] == 100
    assert sink.severities() == ["info"]


def test_after_sales_without_large_enough_row_is_reported():
    sink = Sink()
    rows = [_row("O1", "订单", "货款", "P1", 1, 5)]
    result, deducted = deduct_after_sales(rows, {"P1": Decimal("-40"), "P9": Decimal("-1")}, log_sink=sink)
    assert deducted == 0
    assert result[0]["金额"] == 5
    assert sink.severities() == ["warning", "warning"]


def test_non_sales_amount_moves_to_first_larger_row():
    rows = [
        _row("N1", "非销售单", "货款", "P9", 1, -20.1),
        _row("O1", "订单", "货款", "P1", 1, 10),
        _row("O2", "订单", "货款", "P2", 1, 50.3),
        _row("N1", "非销售单", "货款", "P9", 1, -20.1),
    ]
    sink = Sink()
    adjusted, count = apply_non_sales_adjustments(rows, log_sink=sink)

    assert count == 1
    assert adjusted[2]["金额"] == 30.2
    assert adjusted[1]["金额"] == 10
    # input rows untouched
    assert rows[2]["金额"] == 50.3
    assert sink.severities() == ["info"]


def test_non_sales_amount_without_target_is_ignored():
    rows = [
        _row("N1", "非销售单", "货款", "P9", 1, -100),
        _row("O1", "订单", "货款", "P1", 1, 100),
    ]
    sink = Sink()
    adjusted, count = apply_non_sales_adjustments(rows, log_sink=sink)
    assert count == 0
    assert adjusted[1]["金额"] == 100
    assert sink.severities() == ["warning"]


def test_freight_row_replaced_by_matching_goods_row():
    rows = [
        _row("O1", "订单", "货款", "P1", 2, 50, name="五香牛肉粒100g袋装特惠"),
        _row("O1", "订单", "合流共配回收运费", "", None, -5, name="五香牛肉粒100g袋装特惠运费"),
    ]
    lines, substituted = merge_order_lines(rows)
    assert substituted == 1
    assert lines == [PricedRow("五香牛肉粒100g袋装特惠", "P1", 22.5, 2.0, 45.0)]


def test_merge_order_lines_per_order_and_product():
    rows = [
        _row("O1", "订单", "直营服务费", "P1", 2, -2, name="服务费"),
        _row("O1", "订单", "货款", "P1", 2, 20),
        _row("O1", "订单", "货款", "P2", 0, 8, name="猪肉脯"),
        _row("O2", "订单", "货款", "P1", 1, 9),
    ]
    sink = Sink()
    lines, _ = merge_order_lines(rows, log_sink=sink)

    assert lines == [
        PricedRow("牛肉粒", "P1", 9.0, 2.0, 18.0),
        PricedRow("猪肉脯", "P2", None, 0.0, 8.0),
        PricedRow("牛肉粒", "P1", 9.0, 1.0, 9.0),
    ]
    assert ("order O1 product P2: zero quantity, no unit price", "warning") in sink.messages


def test_merge_order_lines_requires_quantity():
    with pytest.raises(ReconciliationError, match="商品数量 missing for product P1"):
        merge_order_lines([_row("O1", "订单", "货款", "P1", None, 10)])


def test_sum_same_sku_keeps_positive_totals():
    lines = [
        PricedRow("牛肉粒", "P1", 10.0, 1.0, 10.0),
        PricedRow("牛肉粒", "P1", 12.0, 1.0, 0.0),
        PricedRow("猪肉脯", "P2", -5.0, 1.0, -5.0),
        PricedRow("牛肉粒b", "P1", 11.0, 2.0, 22.1),
    ]
    assert sum_same_sku(lines) == [PricedRow("牛肉粒", "P1", 10.0, 3.0, 32.1)]


def test_process_order_merge_end_to_end():
    rows = [
        _row("O1", "订单", "货款", "P1", 2, 30),
        _row("O2", "订单", "货款", "P1", 1, 100),
        _row("O3", "售后服务单", "货款", "P1", 1, -40),
    ]
    result = process_order_merge(rows, log_sink=Sink())

    assert result.rows == [PricedRow("牛肉粒", "P1", 15.0, 3.0, 90.0)]
    assert result.stats.order_rows == 2
    assert result.stats.after_sales_deducted == 1
    assert result.stats.non_sales_adjusted == 0
    assert result.stats.order_lines == 2


def test_numeric_order_numbers_sorted_numerically():
    rows = [
        _row("10", "订单", "货款", "P1", 1, 100),
        _row("9", "订单", "货款", "P1", 1, 100),
        _row("S", "售后服务单", "货款", "P1", 1, -10),
    ]
    result = process_order_merge(rows, log_sink=Sink())
    # order 9 comes first, takes the deduction and supplies the unit price
    assert result.rows == [PricedRow("牛肉粒", "P1", 90.0, 2.0, 190.0)]


def test_cancel_refund_rows_take_part_in_the_merge():
    rows = [
        _row("O1", "订单", "货款", "P1", 1, 50),
        _row("O1", "取消退款单", "货款", "P1", 1, -50),
        _row("O2", "订单", "货款", "P2", 1, 8, name="猪肉脯"),
    ]
    result = process_order_merge(rows, log_sink=Sink())
    assert [r.product_code for r in result.rows] == ["P2"]
    assert result.stats.order_lines == 2


def test_no_order_rows_is_empty_dataset():
    with pytest.raises(EmptyDatasetError, match="no 订单"):
        process_order_merge([_row("N1", "非销售单", "货款", "P1", 1, -3)], log_sink=Sink())

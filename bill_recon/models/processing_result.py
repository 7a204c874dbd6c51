from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .products import PricedRow, ProductAggregate
from .settlement import SettlementAggregate

"""Processing result models for the reconciliation runs.

``RuleStats``/``RuleResult`` come out of the business rule engine,
``BillStatistics`` summarizes a whole bill run, ``OrderMergeStats`` an order
merge, and the ``*RunResult`` classes are what the orchestrator hands back to
the CLI for the SUMMARY line.
"""


@dataclass(frozen=True)
class RuleStats:
    """Counters of one business rule pass."""
    processed_groups: int = 0
    filtered_groups: int = 0  # groups dropped entirely (refund present)
    filtered_rows: int = 0  # rows dropped (refund groups + stripped service fees)


@dataclass(frozen=True)
class RuleResult:
    rows: list[dict[str, Any]]
    stats: RuleStats


@dataclass(frozen=True)
class BillStatistics:
    """Before/after comparison of a bill run."""
    original_count: int
    processed_count: int
    filtered_count: int
    original_orders: int  # distinct order numbers in the input
    processed_orders: int  # distinct product codes in the output
    original_types: dict[str, int]  # document type -> row count
    filter_rate: str  # percent, 2 decimals ("0.00" for an empty input)


@dataclass(frozen=True)
class FilterRunResult:
    """Result of the bill (filter -> price -> merge) flow."""
    input_rows: int
    rule_stats: RuleStats
    products: list[ProductAggregate]
    rows: list[PricedRow]  # merged, one per product code
    statistics: BillStatistics
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    output_path: Path | None = None

    @property
    def pending_products(self) -> list[ProductAggregate]:
        priced = {r.product_code for r in self.rows if r.unit_price is not None}
        return [p for p in self.products if p.product_code not in priced]

    @property
    def total_amount(self) -> float:
        return sum(r.total for r in self.rows if r.total is not None)


@dataclass(frozen=True)
class SettlementRunResult:
    """Result of the settlement aggregation flow."""
    input_rows: int
    aggregates: list[SettlementAggregate]
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    output_path: Path | None = None
    persisted_rows: int = 0
    files: list[str] = field(default_factory=list)

    @property
    def net_total(self) -> float:
        return round(sum(a.net_amount for a in self.aggregates), 2)


@dataclass(frozen=True)
class OrderMergeStats:
    """Counters of one order merge pass."""
    order_rows: int  # 订单 / 取消退款单 rows taken into the merge
    after_sales_deducted: int  # order rows reduced by a 售后服务单 total
    non_sales_adjusted: int  # rows that absorbed a 非销售单 amount
    freight_substituted: int  # 合流共配回收运费 rows replaced by their goods row
    order_lines: int  # order + product code lines before the SKU merge


@dataclass(frozen=True)
class OrderMergeResult:
    rows: list[PricedRow]
    stats: OrderMergeStats


@dataclass(frozen=True)
class MergeRunResult:
    """Result of the order merge flow."""
    input_rows: int
    stats: OrderMergeStats
    rows: list[PricedRow]
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    output_path: Path | None = None

    @property
    def total_amount(self) -> float:
        return round(sum(r.total for r in self.rows if r.total is not None), 2)

from __future__ import annotations

from ..models.processing_result import FilterRunResult, MergeRunResult, SettlementRunResult

"""SUMMARY line rendering for every run mode.

Formats:

    SUMMARY mode=filter rows=<in>/<out> groups=<n> filtered_groups=<n>
        filtered_rows=<n> products=<n> pending=<n> total=<amount> elapsed_sec=<s>
    SUMMARY mode=settle files=<n> rows=<in> products=<n> net_total=<amount>
        persisted=<n> elapsed_sec=<s>
    SUMMARY mode=merge rows=<in>/<out> orders=<n> after_sales=<n>
        non_sales=<n> total=<amount> elapsed_sec=<s>

(each on one line). ``render_*`` return the full line including the
``SUMMARY`` label; the CLI strips it before handing the content to
``log_summary`` which prints the label itself.
"""

__all__ = [
    "render_filter_summary",
    "render_settlement_summary",
    "render_merge_summary",
    "format_elapsed",
]


def format_elapsed(seconds: float) -> str:
    """Elapsed seconds without scientific notation or a trailing ``.0``."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return str(round(seconds, 3))


def _format_amount(value: float) -> str:
    return f"{value:.2f}"


def render_filter_summary(result: FilterRunResult) -> str:
    """Render the SUMMARY line of a bill filter run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> from bill_recon.models import BillStatistics, RuleStats
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> stats = BillStatistics(3, 1, 2, 2, 1, {"订单": 3}, "66.67")
        >>> r = FilterRunResult(3, RuleStats(2, 1, 2), [], [], stats, t, t, 2.0)
        >>> render_filter_summary(r)
        'SUMMARY mode=filter rows=3/0 groups=2 filtered_groups=1 filtered_rows=2 products=0 pending=0 total=0.00 elapsed_sec=2'
    """
    return (
        f"SUMMARY mode=filter "
        f"rows={result.input_rows}/{len(result.rows)} "
        f"groups={result.rule_stats.processed_groups} "
        f"filtered_groups={result.rule_stats.filtered_groups} "
        f"filtered_rows={result.rule_stats.filtered_rows} "
        f"products={len(result.products)} "
        f"pending={len(result.pending_products)} "
        f"total={_format_amount(result.total_amount)} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )


def render_settlement_summary(result: SettlementRunResult) -> str:
    return (
        f"SUMMARY mode=settle "
        f"files={len(result.files)} "
        f"rows={result.input_rows} "
        f"products={len(result.aggregates)} "
        f"net_total={_format_amount(result.net_total)} "
        f"persisted={result.persisted_rows} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )


def render_merge_summary(result: MergeRunResult) -> str:
    """Render the SUMMARY line of an order merge run.

    ``orders`` counts merged order + product lines before the SKU merge;
    ``after_sales`` / ``non_sales`` count the rows whose amount was adjusted.
    """
    return (
        f"SUMMARY mode=merge "
        f"rows={result.input_rows}/{len(result.rows)} "
        f"orders={result.stats.order_lines} "
        f"after_sales={result.stats.after_sales_deducted} "
        f"non_sales={result.stats.non_sales_adjusted} "
        f"total={_format_amount(result.total_amount)} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )

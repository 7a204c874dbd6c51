from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..excel.reader import SUPPORTED_EXTENSIONS, InputFileError, read_rows
from ..excel.writer import write_records
from ..logging.run_log import LogSink, logger_sink
from ..models.columns import ORDER_MERGE_COLUMNS
from ..models.config_models import ReconConfig
from ..models.processing_result import FilterRunResult, MergeRunResult, RuleStats, SettlementRunResult
from ..models.products import ProductAggregate
from ..models.settlement import SettlementAggregate
from ..models.task import ProgressEvent
from .grouping import group_by_order
from .normalizer import clean_product_code, normalize_rows
from .order_merge import process_order_merge
from .progress import ProgressTracker
from .quantities import deduct_refund_quantities, positive_quantity_rows, remove_service_fee_rows, tally_order_quantities
from .rules import apply_business_rules, apply_unit_prices, extract_unique_products, generate_statistics, merge_same_sku
from .schema import validate_schema, validate_settlement_schema
from .worker import ProgressListener, SettlementTaskChannel

"""Service orchestration for both reconciliation flows.

Bill filter flow:
    validate -> group by order -> business rules -> unique products ->
    price map (defaults, then overrides) -> apply prices -> merge SKUs ->
    statistics -> optional export
    (with deduct_refunds the group rules are replaced by per-product
    quantity tallies minus refund / after-sales quantities)

Order merge flow:
    validate -> after-sales / non-sales adjustments -> merge order lines ->
    merge SKUs -> optional export

Settlement flow:
    task channel (aggregate on the worker thread) -> optional export ->
    optional persist

Input files are read, concatenated in order and normalized by
``load_input_rows`` before any flow; CSV files go through the task channel
when one is given.
"""

__all__ = [
    "scan_input_files",
    "load_input_rows",
    "build_price_map",
    "run_bill_filter",
    "run_settlement",
    "run_order_merge",
    "default_output_path",
    "FILTER_OUTPUT_PREFIX",
    "SETTLEMENT_OUTPUT_PREFIX",
    "ORDER_MERGE_OUTPUT_PREFIX",
]

logger = logging.getLogger(__name__)

FILTER_OUTPUT_PREFIX = "订单处理结果"
SETTLEMENT_OUTPUT_PREFIX = "结算单合并结果"
ORDER_MERGE_OUTPUT_PREFIX = "订单合并结果"

Persist = Callable[[Sequence[SettlementAggregate]], int]


def scan_input_files(paths: Sequence[Path]) -> list[Path]:
    """Expand the given paths to input files.

    Directories are scanned non-recursively for supported files (sorted by
    name); files are kept as given, in argument order.

    Raises:
        InputFileError: a path does not exist, or nothing was found
    """
    files: list[Path] = []
    for path in paths:
        if not path.exists():
            raise InputFileError(f"path not found: {path}")
        if path.is_dir():
            try:
                found = sorted(
                    p for p in path.iterdir()
                    if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS and not p.name.startswith("~$")
                )
            except OSError as e:
                raise InputFileError(f"error reading directory {path}: {e}") from e
            logger.debug(f"{path}: {len(found)} input files")
            files.extend(found)
        else:
            files.append(path)
    if not files:
        raise InputFileError(f"no input files found (expected {', '.join(SUPPORTED_EXTENSIONS)})")
    return files


def _read_csv_on_channel(path: Path, config: ReconConfig, channel: SettlementTaskChannel) -> list[dict[str, Any]]:
    def report(event: ProgressEvent) -> None:
        logger.debug(f"{path.name}: {event.percent}% {event.message}")

    task = channel.submit_csv(path, config.input.max_file_size_bytes, on_progress=report)
    try:
        return task.result()
    except KeyboardInterrupt:
        task.cancel()
        raise


def load_input_rows(
    files: Sequence[Path],
    config: ReconConfig,
    channel: SettlementTaskChannel | None = None,
) -> list[dict[str, Any]]:
    """Read every file, concatenate the rows in order and normalize them.

    With a ``channel``, CSV files are parsed on its worker thread in batches
    of ``settlement.progress_interval`` rows.

    Raises:
        InputFileError: a file is rejected, unreadable or empty
        TaskCancelledError: a CSV parse task was cancelled
    """
    rows: list[dict[str, Any]] = []
    with ProgressTracker(len(files)) as tracker:
        for path in files:
            tracker.start_file(path.name)
            if channel is not None and path.suffix.lower() == ".csv":
                file_rows = _read_csv_on_channel(path, config, channel)
            else:
                file_rows = read_rows(path, config.input.max_file_size_bytes)
            logger.info(f"read {len(file_rows)} rows from {path.name}")
            rows.extend(file_rows)
            tracker.finish_file()
    return normalize_rows(rows)


def build_price_map(
    products: Sequence[ProductAggregate],
    overrides: Mapping[str, float] | None = None,
) -> dict[str, float | None]:
    """Unit price per product code: default prices first, overrides win."""
    price_map: dict[str, float | None] = {p.product_code: p.unit_price for p in products}
    for raw_code, price in (overrides or {}).items():
        code = clean_product_code(raw_code)
        if code not in price_map:
            logger.debug(f"price override for {code} ignored: product not in bill")
            continue
        price_map[code] = float(price)
    return price_map


def default_output_path(config: ReconConfig, prefix: str, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now(UTC)).strftime("%Y-%m-%d")
    return Path(config.output_directory) / f"{prefix}_{stamp}.xlsx"


def run_bill_filter(
    rows: Sequence[Mapping[str, Any]],
    config: ReconConfig,
    *,
    price_overrides: Mapping[str, float] | None = None,
    log_sink: LogSink | None = None,
    output_path: Path | None = None,
    deduct_refunds: bool = False,
) -> FilterRunResult:
    """Run the bill filter flow over normalized ``rows``.

    ``output_path`` None skips the export. With ``deduct_refunds`` refunded
    and after-sales quantities are subtracted per product instead of dropping
    whole order groups; the rule stats then count products (groups) and
    removed service fee rows. Validation errors propagate (EmptyDatasetError,
    MissingColumnError).
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    start_time = datetime.now(UTC)
    t0 = time.perf_counter()

    validate_schema(rows)
    if deduct_refunds:
        kept = remove_service_fee_rows(rows, log_sink=emit)
        tallies = tally_order_quantities(kept, log_sink=emit)
        deduct_refund_quantities(kept, tallies, log_sink=emit)
        selected: Sequence[Mapping[str, Any]] = positive_quantity_rows(tallies.values())
        rule_stats = RuleStats(
            processed_groups=len(tallies),
            filtered_groups=len(tallies) - len(selected),
            filtered_rows=len(rows) - len(kept),
        )
        emit(f"refund deduction done: {len(selected)} of {len(tallies)} products left", "success")
    else:
        groups = group_by_order(rows)
        emit(f"grouped by {len(groups)} orders", "info")
        rule_result = apply_business_rules(groups, log_sink=emit)
        selected = rule_result.rows
        rule_stats = rule_result.stats

    products = extract_unique_products(selected, config.default_prices)
    price_map = build_price_map(products, price_overrides)

    priced = apply_unit_prices(selected, price_map)
    merged = merge_same_sku(priced)
    emit(f"SKU merge done, {len(priced) - len(merged)} duplicate rows merged", "success")

    statistics = generate_statistics(rows, merged)
    pending = [code for code, price in price_map.items() if price is None]
    if pending:
        emit(f"{len(pending)} products have no unit price: {', '.join(pending)}", "warning")

    written: Path | None = None
    if output_path is not None:
        if merged:
            written = write_records([r.to_record() for r in merged], output_path)
        else:
            emit("no rows left after filtering, nothing exported", "warning")

    end_time = datetime.now(UTC)
    return FilterRunResult(
        input_rows=len(rows),
        rule_stats=rule_stats,
        products=products,
        rows=merged,
        statistics=statistics,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=round(time.perf_counter() - t0, 3),
        output_path=written,
    )


def run_settlement(
    rows: Sequence[Mapping[str, Any]],
    config: ReconConfig,
    *,
    channel: SettlementTaskChannel | None = None,
    on_progress: ProgressListener | None = None,
    output_path: Path | None = None,
    persist: Persist | None = None,
    files: Sequence[str] = (),
) -> SettlementRunResult:
    """Run the settlement flow over normalized ``rows`` on a task channel.

    A channel created here is closed before returning. The dataset is
    validated up front (EmptyDatasetError, MissingColumnError,
    MissingAmountColumnError); TaskCancelledError and any other aggregation
    error propagate from ``SettlementTask.result()``.
    """
    start_time = datetime.now(UTC)
    t0 = time.perf_counter()

    amount_column = validate_settlement_schema(rows, config.settlement.amount_columns)
    logger.info(f"settling {len(rows)} rows on amount column '{amount_column}'")

    own_channel = channel is None
    if channel is None:
        channel = SettlementTaskChannel(
            amount_columns=config.settlement.amount_columns,
            progress_interval=config.settlement.progress_interval,
        )
    try:
        task = channel.submit(rows, config.settlement.amount_columns, on_progress=on_progress)
        try:
            aggregates = task.result()
        except KeyboardInterrupt:
            task.cancel()
            raise
    finally:
        if own_channel:
            channel.close()

    written: Path | None = None
    if output_path is not None:
        if aggregates:
            written = write_records([a.to_record() for a in aggregates], output_path)
        else:
            logger.warning("no non-zero settlement totals, nothing exported")

    persisted = persist(aggregates) if persist is not None and aggregates else 0
    if persist is not None:
        logger.info(f"persisted {persisted} settlement rows")

    end_time = datetime.now(UTC)
    return SettlementRunResult(
        input_rows=len(rows),
        aggregates=aggregates,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=round(time.perf_counter() - t0, 3),
        output_path=written,
        persisted_rows=persisted,
        files=list(files),
    )


def run_order_merge(
    rows: Sequence[Mapping[str, Any]],
    *,
    log_sink: LogSink | None = None,
    output_path: Path | None = None,
) -> MergeRunResult:
    """Run the order merge flow over normalized ``rows``.

    Unit prices come from the bill's own 金额 column, so no price map is
    involved. ``output_path`` None skips the export.

    Raises:
        EmptyDatasetError: no rows, or no 订单 / 取消退款单 rows
        MissingColumnError: a bill column or 金额 is absent
        ReconciliationError: a merged line has no quantity
    """
    emit = log_sink if log_sink is not None else logger_sink(logger)
    start_time = datetime.now(UTC)
    t0 = time.perf_counter()

    validate_schema(rows, ORDER_MERGE_COLUMNS)
    merge_result = process_order_merge(rows, log_sink=emit)

    written: Path | None = None
    if output_path is not None:
        if merge_result.rows:
            written = write_records([r.to_record() for r in merge_result.rows], output_path)
        else:
            emit("no product with a positive total, nothing exported", "warning")

    end_time = datetime.now(UTC)
    return MergeRunResult(
        input_rows=len(rows),
        stats=merge_result.stats,
        rows=merge_result.rows,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=round(time.perf_counter() - t0, 3),
        output_path=written,
    )

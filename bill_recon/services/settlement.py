from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Any

from ..models.columns import (
    DEFAULT_AMOUNT_COLUMNS,
    FEE_AFTER_SALES_COMPENSATION,
    FEE_DIRECT_SERVICE,
    FEE_NAME,
    FEE_PAYMENT,
    PRODUCT_CODE,
    QUANTITY,
)
from ..models.config_models import DEFAULT_PROGRESS_INTERVAL
from ..models.settlement import RowSchema, SettlementAggregate, SettlementSchema
from .errors import EmptyDatasetError, MissingAmountColumnError, TaskCancelledError
from .normalizer import clean_amount, clean_product_code, clean_string, parse_quantity

"""Settlement aggregator.

Aggregates settlement amounts and quantities per product code in a single
pass over the rows, adding the direct-operation service fee booked for the
same code. Sums are kept as Decimal and rounded to cents (ties toward +inf)
only when the result records are built.

The after-sales seller compensation total (售后卖家赔付费) is accumulated and
logged, but not deducted from any product: no deduction rule is defined for
it yet.
"""

__all__ = [
    "resolve_settlement_schema",
    "SettlementAccumulator",
    "aggregate_settlement",
    "round_cents",
    "ProgressCallback",
    "CancelCheck",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
CancelCheck = Callable[[], bool]

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def round_cents(value: Decimal) -> float:
    """Round to 2 decimals, ties toward positive infinity.

    Same as round(x * 100) / 100 in a spreadsheet: 0.125 -> 0.13 and
    -0.125 -> -0.12.
    """
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    return float(value.quantize(_CENT, rounding=rounding))


def _to_decimal(value: float) -> Decimal:
    # str() keeps the shortest repr, so 0.1 stays 0.1 instead of 0.1000000000000000055...
    return Decimal(str(value))


def resolve_settlement_schema(
    first_row: Mapping[str, Any],
    amount_columns: Sequence[str] = DEFAULT_AMOUNT_COLUMNS,
) -> SettlementSchema:
    """Detect the settlement row schema from the first row's key set.

    Raises:
        MissingAmountColumnError: no candidate amount column is present
    """
    amount_column = next((col for col in amount_columns if col in first_row), None)
    if amount_column is None:
        raise MissingAmountColumnError(amount_columns)
    variant = RowSchema.WITH_FEE_NAME if FEE_NAME in first_row else RowSchema.WITHOUT_FEE_NAME
    return SettlementSchema(
        variant=variant,
        amount_column=amount_column,
        has_quantity=QUANTITY in first_row,
    )


class SettlementAccumulator:
    """Per-run accumulator. One instance per aggregation, discarded after.

    Tracks, per product code: settlement amount, signed quantity and service
    fee; plus the run-wide compensation total and processed / skipped
    counters.
    """

    def __init__(self, schema: SettlementSchema) -> None:
        self.schema = schema
        self.amounts: dict[str, Decimal] = {}
        self.quantities: dict[str, Decimal] = {}
        self.service_fees: dict[str, Decimal] = {}
        self.compensation_total = _ZERO
        self.processed = 0
        self.skipped = 0

    def add(self, row: Mapping[str, Any]) -> None:
        schema = self.schema
        code = clean_product_code(row.get(PRODUCT_CODE))
        fee_name = clean_string(row.get(FEE_NAME)) if schema.has_fee_name else ""
        amount = _to_decimal(clean_amount(row.get(schema.amount_column)))

        if schema.has_fee_name and fee_name == FEE_AFTER_SALES_COMPENSATION:
            self.compensation_total += amount

        if schema.has_fee_name and fee_name == FEE_DIRECT_SERVICE and code:
            self.service_fees[code] = self.service_fees.get(code, _ZERO) + amount

        if (not schema.has_fee_name or fee_name == FEE_PAYMENT) and code:
            self.processed += 1
            self.amounts[code] = self.amounts.get(code, _ZERO) + amount
            if schema.has_quantity:
                magnitude = abs(_to_decimal(parse_quantity(row.get(QUANTITY))))
                signed = -magnitude if amount < 0 else magnitude
                self.quantities[code] = self.quantities.get(code, _ZERO) + signed
        else:
            self.skipped += 1

    def results(self) -> list[SettlementAggregate]:
        """Aggregates with a non-zero settlement total, first-sighting order."""
        aggregates: list[SettlementAggregate] = []
        for code, amount in self.amounts.items():
            if amount == 0:
                continue
            # compensation is tracked run-wide only; nothing is deducted per code
            service_fee = self.service_fees.get(code, _ZERO)
            aggregates.append(
                SettlementAggregate(
                    product_code=code,
                    settlement_amount=round_cents(amount),
                    service_fee=round_cents(service_fee),
                    net_amount=round_cents(amount + service_fee),
                    quantity=round_cents(self.quantities.get(code, _ZERO)) if self.schema.has_quantity else None,
                )
            )
        return aggregates


def aggregate_settlement(
    rows: Sequence[Mapping[str, Any]],
    amount_columns: Sequence[str] = DEFAULT_AMOUNT_COLUMNS,
    *,
    progress: ProgressCallback | None = None,
    should_cancel: CancelCheck | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> list[SettlementAggregate]:
    """Aggregate settlement rows per product code.

    ``progress(percent, message)`` is called at every ``progress_interval``-th
    row (starting with row 0) and once with 100 at the end. ``should_cancel``
    is polled at the same boundaries; when it returns True the run stops with
    ``TaskCancelledError``.

    Raises:
        EmptyDatasetError: ``rows`` is empty
        MissingAmountColumnError: no amount column in the first row
        TaskCancelledError: cancellation observed
    """
    if len(rows) == 0:
        raise EmptyDatasetError("no settlement rows to process")
    interval = max(1, int(progress_interval))

    schema = resolve_settlement_schema(rows[0], amount_columns)
    logger.debug(
        f"settlement schema: {schema.variant.value}, amount column '{schema.amount_column}', "
        f"quantity={'yes' if schema.has_quantity else 'no'}"
    )

    acc = SettlementAccumulator(schema)
    total = len(rows)
    for index, row in enumerate(rows):
        if index % interval == 0:
            if should_cancel is not None and should_cancel():
                raise TaskCancelledError()
            if progress is not None:
                progress(round(index / total * 100), f"processed {index}/{total} rows")
        acc.add(row)

    results = acc.results()
    if acc.compensation_total != 0:
        logger.warning(
            f"{FEE_AFTER_SALES_COMPENSATION} total {round_cents(acc.compensation_total)} "
            f"recorded but not deducted from any product"
        )
    logger.info(
        f"settlement aggregated: {acc.processed} rows processed, {acc.skipped} skipped, "
        f"{len(results)} product codes"
    )
    if progress is not None:
        progress(100, "done")
    return results

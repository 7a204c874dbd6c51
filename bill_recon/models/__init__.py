"""Domain models for the bill reconciliation tool.

Configuration, product / settlement aggregates, rule and run results and the
events exchanged with the settlement worker.
"""

from .config_models import DatabaseConfig, DefaultPriceEntry, InputConfig, ReconConfig, SettlementConfig
from .log_entry import LogEntry
from .processing_result import (
    BillStatistics,
    FilterRunResult,
    MergeRunResult,
    OrderMergeResult,
    OrderMergeStats,
    RuleResult,
    RuleStats,
    SettlementRunResult,
)
from .products import PricedRow, PriceStatus, ProductAggregate, QuantityTally
from .settlement import RowSchema, SettlementAggregate, SettlementSchema
from .task import FailureEvent, FailureKind, ProgressEvent, SuccessEvent, TaskState

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "DefaultPriceEntry",
    "InputConfig",
    "ReconConfig",
    "SettlementConfig",
    # Pipeline models
    "BillStatistics",
    "OrderMergeResult",
    "OrderMergeStats",
    "PricedRow",
    "PriceStatus",
    "ProductAggregate",
    "QuantityTally",
    "RowSchema",
    "RuleResult",
    "RuleStats",
    "SettlementAggregate",
    "SettlementSchema",
    # Run results
    "FilterRunResult",
    "MergeRunResult",
    "SettlementRunResult",
    # Logging / worker
    "LogEntry",
    "FailureEvent",
    "FailureKind",
    "ProgressEvent",
    "SuccessEvent",
    "TaskState",
]

"""Reconciliation pipeline services.

Leaves first: normalizer -> schema -> grouping -> rules / quantities / order
merge / settlement -> csv parser -> task channel -> orchestrator.
"""

from .errors import (
    EmptyDatasetError,
    MissingAmountColumnError,
    MissingColumnError,
    ReconciliationError,
    TaskCancelledError,
)
from .grouping import group_by_order
from .order_merge import process_order_merge
from .rules import apply_business_rules, apply_unit_prices, extract_unique_products, merge_same_sku
from .schema import validate_schema
from .settlement import aggregate_settlement
from .worker import SettlementTaskChannel

__all__ = [
    "EmptyDatasetError",
    "MissingAmountColumnError",
    "MissingColumnError",
    "ReconciliationError",
    "TaskCancelledError",
    "SettlementTaskChannel",
    "aggregate_settlement",
    "apply_business_rules",
    "apply_unit_prices",
    "extract_unique_products",
    "group_by_order",
    "merge_same_sku",
    "process_order_merge",
    "validate_schema",
]

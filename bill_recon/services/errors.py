from __future__ import annotations

from collections.abc import Sequence

"""Pipeline error taxonomy.

All pipeline-level failures derive from ``ReconciliationError`` so the CLI can
report them with the exact failing condition. Cell-level parse problems are
never raised; they degrade to defaults in the normalizer.
"""

__all__ = [
    "ReconciliationError",
    "EmptyDatasetError",
    "MissingColumnError",
    "MissingAmountColumnError",
    "TaskCancelledError",
]


class ReconciliationError(Exception):
    """Base exception for reconciliation pipeline errors."""


class EmptyDatasetError(ReconciliationError):
    """Raised when the input dataset has zero rows."""

    def __init__(self, message: str = "dataset is empty") -> None:
        super().__init__(message)


class MissingColumnError(ReconciliationError):
    """Raised when a required column is absent from the dataset header."""

    def __init__(self, column: str, candidates: Sequence[str] | None = None) -> None:
        self.column = column
        self.candidates = list(candidates or [])
        message = f"missing required column: {column}"
        if self.candidates:
            message += f" (similar: {', '.join(self.candidates)})"
        super().__init__(message)


class MissingAmountColumnError(ReconciliationError):
    """Raised when none of the settlement amount columns is present."""

    def __init__(self, candidates: Sequence[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(
            f"no amount column found, expected one of: {', '.join(self.candidates)}"
        )


class TaskCancelledError(ReconciliationError):
    """Raised when a settlement task was cancelled before it completed."""

    def __init__(self, task_id: str | None = None) -> None:
        self.task_id = task_id
        super().__init__(f"task cancelled: {task_id}" if task_id else "task cancelled")

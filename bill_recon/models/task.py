from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Task state and channel events of the settlement worker.

Every message crossing the worker boundary is one of ``ProgressEvent``,
``SuccessEvent`` or ``FailureEvent`` and carries the id of the task that
produced it.
"""

__all__ = [
    "TaskState",
    "FailureKind",
    "ProgressEvent",
    "SuccessEvent",
    "FailureEvent",
    "TaskEvent",
]


class TaskState(Enum):
    """Lifecycle of a submitted task.

    State transitions: idle → running → (completed | failed | cancelled)
    """
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED)


class FailureKind(Enum):
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    task_id: str
    percent: int  # 0-100, non-decreasing per task
    message: str


@dataclass(frozen=True)
class SuccessEvent:
    task_id: str
    result: Any


@dataclass(frozen=True)
class FailureEvent:
    task_id: str
    kind: FailureKind
    message: str
    error: BaseException | None = None  # original exception, re-raised by the caller


TaskEvent = ProgressEvent | SuccessEvent | FailureEvent

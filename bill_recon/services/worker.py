from __future__ import annotations

import logging
import queue
import secrets
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from ..models.columns import DEFAULT_AMOUNT_COLUMNS
from ..models.config_models import DEFAULT_PROGRESS_INTERVAL
from ..models.settlement import SettlementAggregate
from ..models.task import FailureEvent, FailureKind, ProgressEvent, SuccessEvent, TaskEvent, TaskState
from .csv_parser import parse_csv
from .errors import ReconciliationError, TaskCancelledError
from .settlement import aggregate_settlement

"""Settlement task channel: runs long jobs off the caller's thread.

A single worker thread processes one task at a time. Two kinds of task are
submitted: settlement aggregation (``submit``) and row-batched CSV parsing
(``submit_csv``). The caller and the worker only exchange typed events
through a queue:

    caller --submit(rows copy) | submit_csv(path)--> worker
    worker --ProgressEvent* then SuccessEvent | FailureEvent--> caller

Cancellation is cooperative. ``SettlementTask.cancel()`` sets a flag the
job polls every ``progress_interval`` rows and resolves the task as
cancelled immediately on the caller side; anything the worker still sends
for that task id is discarded.
"""

__all__ = [
    "SettlementTask",
    "SettlementTaskChannel",
    "ProgressListener",
]

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]
Processor = Callable[..., list[SettlementAggregate]]
ProgressFn = Callable[[int, str], None]
# job(progress, should_cancel) -> result, run on the worker thread
Job = Callable[[ProgressFn, Callable[[], bool]], Any]

# queue poll granularity while a caller waits on a task
POLL_SECONDS = 0.05


def new_task_id() -> str:
    return f"task_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class SettlementTask:
    """Caller-side handle of one submitted job.

    State transitions: running → (completed | failed | cancelled). Progress
    is exposed as ``percent`` / ``message`` and pushed to listeners.
    """

    def __init__(self, channel: SettlementTaskChannel, task_id: str, cancel_flag: threading.Event) -> None:
        self.task_id = task_id
        self.state = TaskState.RUNNING
        self.percent = 0
        self.message = "started"
        self._channel = channel
        self._cancel_flag = cancel_flag
        self._listeners: list[ProgressListener] = []
        self._result: list[Any] | None = None
        self._error: BaseException | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"SettlementTask(task_id={self.task_id!r}, state={self.state.value}, percent={self.percent})"

    def on_progress(self, listener: ProgressListener) -> None:
        """Register a progress listener.

        Args:
            listener: called on the caller's thread with every ProgressEvent
                dispatched for this task while it is running
        """
        self._listeners.append(listener)

    def cancel(self) -> bool:
        """Request cancellation.

        The task is cancelled on the caller side at once and its listeners
        are dropped; the worker stops at its next cancel check.

        Returns:
            False when the task had already finished, True otherwise
        """
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = TaskState.CANCELLED
            self._listeners.clear()
        self._cancel_flag.set()
        logger.info(f"{self.task_id}: cancellation requested")
        return True

    def result(self, timeout: float | None = None) -> list[Any]:
        """Wait for the task outcome.

        Raises:
            TaskCancelledError: the task was cancelled (or replaced)
            TimeoutError: ``timeout`` seconds elapsed first
            ReconciliationError: the job failed (original type kept)
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.state is TaskState.COMPLETED:
                return list(self._result or [])
            if self.state is TaskState.CANCELLED:
                raise TaskCancelledError(self.task_id)
            if self.state is TaskState.FAILED:
                if self._error is None:
                    raise ReconciliationError(f"{self.task_id}: failed without an error")
                raise self._error
            wait = POLL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"{self.task_id}: no result within {timeout}s")
                wait = min(wait, remaining)
            self._channel.poll(wait)

    # -- transitions driven by the channel (caller thread) --

    def _apply_progress(self, event: ProgressEvent) -> None:
        with self._lock:
            if self.state is not TaskState.RUNNING:
                return
            self.percent = max(self.percent, event.percent)
            self.message = event.message
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    def _complete(self, result: list[Any]) -> None:
        with self._lock:
            if self.state is not TaskState.RUNNING:
                return
            self._result = result
            self.percent = 100
            self.message = "done"
            self.state = TaskState.COMPLETED
            self._listeners.clear()

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if self.state is not TaskState.RUNNING:
                return
            self._error = error
            self.state = TaskState.FAILED
            self._listeners.clear()


class SettlementTaskChannel:
    """Single-consumer channel in front of one worker thread.

    Only one task is awaited at a time: submitting while a task is in flight
    cancels and replaces it. Events of any task other than the active one are
    discarded when they arrive.
    """

    def __init__(
        self,
        processor: Processor = aggregate_settlement,
        *,
        amount_columns: Sequence[str] = DEFAULT_AMOUNT_COLUMNS,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self._processor = processor
        self._amount_columns = tuple(amount_columns)
        self._progress_interval = progress_interval
        self._events: queue.Queue[TaskEvent] = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="settlement-worker")
        self._active: SettlementTask | None = None
        self.discarded = 0

    @property
    def active(self) -> SettlementTask | None:
        return self._active

    @property
    def state(self) -> TaskState:
        return self._active.state if self._active is not None else TaskState.IDLE

    def _start(self, job: Job, on_progress: ProgressListener | None, what: str) -> SettlementTask:
        previous = self._active
        if previous is not None and not previous.state.is_terminal:
            logger.info(f"{previous.task_id}: replaced by a new submission")
            previous.cancel()

        task_id = new_task_id()
        cancel_flag = threading.Event()
        task = SettlementTask(self, task_id, cancel_flag)
        if on_progress is not None:
            task.on_progress(on_progress)
        self._active = task

        logger.debug(f"{task_id}: submitted {what}")
        self._executor.submit(self._run, task_id, job, cancel_flag)
        return task

    def submit(
        self,
        rows: Sequence[Mapping[str, Any]],
        amount_columns: Sequence[str] | None = None,
        on_progress: ProgressListener | None = None,
    ) -> SettlementTask:
        """Start aggregating a copy of ``rows`` on the worker thread.

        Args:
            rows: normalized settlement rows; copied before the worker sees them
            amount_columns: amount column candidates, channel default when None
            on_progress: optional listener registered before the job starts

        Returns:
            The new active task; its ``result()`` is the aggregate list
        """
        payload = [dict(row) for row in rows]
        columns = tuple(amount_columns) if amount_columns is not None else self._amount_columns

        def job(progress: ProgressFn, should_cancel: Callable[[], bool]) -> list[SettlementAggregate]:
            return self._processor(
                payload,
                columns,
                progress=progress,
                should_cancel=should_cancel,
                progress_interval=self._progress_interval,
            )

        return self._start(job, on_progress, f"{len(payload)} rows")

    def submit_csv(
        self,
        path: Path,
        max_size_bytes: int | None = None,
        on_progress: ProgressListener | None = None,
    ) -> SettlementTask:
        """Start parsing a CSV file on the worker thread.

        Rows are read in batches of ``progress_interval`` with a progress
        event after each batch.

        Args:
            path: CSV file to parse
            max_size_bytes: size limit checked before parsing
            on_progress: optional listener registered before the job starts

        Returns:
            The new active task; its ``result()`` is the list of raw row dicts
        """
        def job(progress: ProgressFn, should_cancel: Callable[[], bool]) -> list[dict[str, Any]]:
            return parse_csv(
                path,
                max_size_bytes,
                progress=progress,
                should_cancel=should_cancel,
                progress_interval=self._progress_interval,
            )

        return self._start(job, on_progress, f"csv {path.name}")

    def _run(self, task_id: str, job: Job, cancel_flag: threading.Event) -> None:
        """Worker thread body. Every outcome becomes exactly one final event."""
        def report(percent: int, message: str) -> None:
            self._events.put(ProgressEvent(task_id=task_id, percent=percent, message=message))

        try:
            result = job(report, cancel_flag.is_set)
        except TaskCancelledError:
            self._events.put(
                FailureEvent(
                    task_id=task_id,
                    kind=FailureKind.CANCELLED,
                    message="cancelled",
                    error=TaskCancelledError(task_id),
                )
            )
        except Exception as e:  # transported to the caller, re-raised by SettlementTask.result()
            self._events.put(FailureEvent(task_id=task_id, kind=FailureKind.ERROR, message=str(e), error=e))
        else:
            self._events.put(SuccessEvent(task_id=task_id, result=result))

    def dispatch(self, event: TaskEvent) -> bool:
        """Apply one worker event to the active task.

        Args:
            event: progress, success or failure event taken off the queue

        Returns:
            False when the event was discarded (no active task, another task
            id, or the task already finished), True otherwise
        """
        task = self._active
        if task is None or event.task_id != task.task_id or task.state.is_terminal:
            self.discarded += 1
            logger.debug(f"discarded {type(event).__name__} for {event.task_id}")
            return False

        if isinstance(event, ProgressEvent):
            task._apply_progress(event)
        elif isinstance(event, SuccessEvent):
            task._complete(event.result)
        elif event.kind is FailureKind.CANCELLED:
            task.cancel()
        else:
            task._fail(event.error or ReconciliationError(event.message))
        return True

    def poll(self, timeout: float = 0.0) -> bool:
        """Dispatch at most one pending event.

        Args:
            timeout: seconds to wait for an event; 0 does not block

        Returns:
            True when an event was taken off the queue (dispatched or
            discarded), False when none arrived in time
        """
        try:
            event = self._events.get(timeout=timeout) if timeout > 0 else self._events.get_nowait()
        except queue.Empty:
            return False
        self.dispatch(event)
        return True

    def drain(self, timeout: float | None = None) -> int:
        """Wait until the worker is idle, then dispatch every queued event.

        Args:
            timeout: seconds to wait for the worker, None waits forever

        Returns:
            Number of events discarded while draining
        """
        self._executor.submit(lambda: None).result(timeout=timeout)
        before = self.discarded
        while self.poll():
            pass
        return self.discarded - before

    def close(self) -> None:
        if self._active is not None and not self._active.state.is_terminal:
            self._active.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> SettlementTaskChannel:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

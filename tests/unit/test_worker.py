from __future__ import annotations

import threading

import pytest

from bill_recon.models import FailureEvent, FailureKind, ProgressEvent, TaskState
from bill_recon.services.errors import MissingAmountColumnError, ReconciliationError, TaskCancelledError
from bill_recon.services.worker import SettlementTaskChannel

WAIT = 5.0


class GatedProcessor:
    """Stands in for aggregate_settlement; blocks until released."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.received: list[list[dict]] = []

    def __call__(self, rows, amount_columns, *, progress, should_cancel, progress_interval):
        self.received.append(rows)
        progress(0, "start")
        self.started.set()
        self.release.wait(WAIT)
        progress(50, "late")
        if should_cancel():
            raise TaskCancelledError()
        progress(100, "done")
        return []


@pytest.fixture()
def gated():
    proc = GatedProcessor()
    yield proc
    proc.release.set()


def test_submit_runs_aggregation_off_thread(settlement_rows):
    seen: list[ProgressEvent] = []
    with SettlementTaskChannel(progress_interval=1) as channel:
        task = channel.submit(settlement_rows, on_progress=seen.append)
        assert task.task_id.startswith("task_")
        result = task.result(timeout=WAIT)
    assert task.state is TaskState.COMPLETED
    assert task.percent == 100
    assert [a.product_code for a in result] == ["P1", "P2"]
    percents = [e.percent for e in seen]
    assert percents == sorted(percents)
    assert all(e.task_id == task.task_id for e in seen)


def test_failure_reraises_original_error_type():
    with SettlementTaskChannel() as channel:
        task = channel.submit([{"商品编号": "P", "备注": 1}])
        with pytest.raises(MissingAmountColumnError):
            task.result(timeout=WAIT)
        assert task.state is TaskState.FAILED


def test_cancel_in_flight_task_discards_late_events(gated):
    seen: list[ProgressEvent] = []
    with SettlementTaskChannel(processor=gated) as channel:
        task = channel.submit([{"商品编号": "P", "应结金额": 1}], on_progress=seen.append)
        assert gated.started.wait(WAIT)
        assert channel.poll(WAIT)  # dispatch the "start" event
        assert [e.message for e in seen] == ["start"]

        assert task.cancel() is True
        assert task.state is TaskState.CANCELLED
        gated.release.set()

        with pytest.raises(TaskCancelledError) as ei:
            task.result(timeout=WAIT)
        assert ei.value.task_id == task.task_id

        # late progress + the worker's own cancellation both arrive after cancel
        assert channel.drain(timeout=WAIT) == 2
        assert [e.message for e in seen] == ["start"]
        assert task.percent == 0


def test_resubmit_replaces_in_flight_task(gated, settlement_rows):
    with SettlementTaskChannel(processor=gated) as channel:
        first = channel.submit(settlement_rows)
        assert gated.started.wait(WAIT)
        gated.started.clear()
        second = channel.submit(settlement_rows)
        assert first.state is TaskState.CANCELLED
        assert channel.active is second
        gated.release.set()
        assert second.result(timeout=WAIT) == []
        with pytest.raises(TaskCancelledError):
            first.result(timeout=WAIT)
        assert channel.discarded >= 1


def test_dispatch_rejects_foreign_task_ids(settlement_rows):
    with SettlementTaskChannel() as channel:
        assert channel.state is TaskState.IDLE
        assert channel.dispatch(ProgressEvent(task_id="task_0_dead", percent=10, message="x")) is False
        task = channel.submit(settlement_rows)
        task.result(timeout=WAIT)
        assert channel.dispatch(ProgressEvent(task_id=task.task_id, percent=10, message="x")) is False


def test_rows_are_copied_on_submit(gated):
    rows = [{"商品编号": "P", "应结金额": 1}]
    with SettlementTaskChannel(processor=gated) as channel:
        channel.submit(rows)
        assert gated.started.wait(WAIT)
        rows[0]["应结金额"] = 999
        gated.release.set()
        channel.drain(timeout=WAIT)
    assert gated.received[0] == [{"商品编号": "P", "应结金额": 1}]
    assert gated.received[0][0] is not rows[0]


def test_result_timeout(gated):
    with SettlementTaskChannel(processor=gated) as channel:
        task = channel.submit([{"商品编号": "P", "应结金额": 1}])
        with pytest.raises(TimeoutError):
            task.result(timeout=0.1)
        assert task.state is TaskState.RUNNING
        gated.release.set()
        assert task.result(timeout=WAIT) == []


def test_cancel_after_completion_is_noop(settlement_rows):
    with SettlementTaskChannel() as channel:
        task = channel.submit(settlement_rows)
        task.result(timeout=WAIT)
        assert task.cancel() is False
        assert task.state is TaskState.COMPLETED


def test_failure_without_exception_raises_reconciliation_error(gated):
    with SettlementTaskChannel(processor=gated) as channel:
        task = channel.submit([{"商品编号": "P", "应结金额": 1}])
        assert gated.started.wait(WAIT)
        event = FailureEvent(task_id=task.task_id, kind=FailureKind.ERROR, message="worker crashed")
        assert channel.dispatch(event) is True
        assert task.state is TaskState.FAILED
        with pytest.raises(ReconciliationError, match="worker crashed"):
            task.result(timeout=WAIT)
        gated.release.set()


def test_submit_csv_parses_in_batches(temp_workdir):
    path = temp_workdir / "data" / "settle.csv"
    path.write_text("商品编号,应结金额\nP1,1\nP2,2\nP3,3\n", encoding="utf-8")
    seen: list[ProgressEvent] = []
    with SettlementTaskChannel(progress_interval=1) as channel:
        task = channel.submit_csv(path, on_progress=seen.append)
        rows = task.result(timeout=WAIT)
    assert task.state is TaskState.COMPLETED
    assert [r["商品编号"] for r in rows] == ["P1", "P2", "P3"]
    assert [e.percent for e in seen] == [33, 66, 99, 100]


def test_submit_csv_failure_keeps_input_error_type(temp_workdir):
    from bill_recon.excel.reader import InputFileError

    with SettlementTaskChannel() as channel:
        task = channel.submit_csv(temp_workdir / "data" / "missing.csv")
        with pytest.raises(InputFileError, match="file not found"):
            task.result(timeout=WAIT)

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.conversion.exceptions import InvalidTaskTransitionError
from app.conversion.models import ConversionKind, ConversionPayload
from app.worker.models import ConversionTask, TaskOutcome, TaskStatus

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _make_task(status: TaskStatus = TaskStatus.PENDING) -> ConversionTask:
    payload = ConversionPayload(
        source_path=Path("/in/a.txt"),
        output_path=Path("/out/a_1234abcd.pdf"),
        source_format="txt",
        target_format="pdf",
        content_hash="a" * 64,
    )
    return ConversionTask(
        id="task-1", type=ConversionKind.DOCUMENT, payload=payload, created_at=T0, status=status
    )


class TestTaskStatus:
    @pytest.mark.parametrize(
        "status", [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED]
    )
    def test_terminal_states(self, status: TaskStatus) -> None:
        assert status.is_terminal

    @pytest.mark.parametrize("status", [TaskStatus.PENDING, TaskStatus.PROCESSING])
    def test_live_states(self, status: TaskStatus) -> None:
        assert not status.is_terminal


class TestTransition:
    def test_start_stamps_started_at(self) -> None:
        task = _make_task()

        task.transition(TaskStatus.PROCESSING, T0 + timedelta(seconds=1))

        assert task.status is TaskStatus.PROCESSING
        assert task.started_at == T0 + timedelta(seconds=1)
        assert task.finished_at is None

    @pytest.mark.parametrize(
        "status", [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED]
    )
    def test_finish_stamps_finished_at(self, status: TaskStatus) -> None:
        task = _make_task()
        task.transition(TaskStatus.PROCESSING, T0)

        task.transition(status, T0 + timedelta(milliseconds=250))

        assert task.finished_at == T0 + timedelta(milliseconds=250)
        assert task.duration_ms == 250

    def test_pending_task_can_be_cancelled(self) -> None:
        task = _make_task()

        task.transition(TaskStatus.CANCELLED, T0)

        assert task.status is TaskStatus.CANCELLED
        assert task.duration_ms is None

    @pytest.mark.parametrize("target", [TaskStatus.COMPLETED, TaskStatus.FAILED])
    def test_pending_cannot_skip_processing(self, target: TaskStatus) -> None:
        task = _make_task()

        with pytest.raises(InvalidTaskTransitionError, match="pending"):
            task.transition(target, T0)

    @pytest.mark.parametrize(
        "terminal", [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED]
    )
    @pytest.mark.parametrize("target", list(TaskStatus))
    def test_terminal_states_are_final(self, terminal: TaskStatus, target: TaskStatus) -> None:
        task = _make_task(status=terminal)

        with pytest.raises(InvalidTaskTransitionError):
            task.transition(target, T0)


class TestSnapshot:
    def test_snapshot_is_detached(self) -> None:
        task = _make_task()
        snapshot = task.snapshot()

        task.transition(TaskStatus.PROCESSING, T0)

        assert snapshot.status is TaskStatus.PENDING
        assert snapshot.id == task.id


class TestTaskOutcome:
    def test_success_has_no_error(self) -> None:
        assert TaskOutcome(result=Path("/out/a.pdf")).succeeded

    def test_error_means_failure(self) -> None:
        outcome = TaskOutcome(error="boom", error_kind="internal_error")
        assert not outcome.succeeded

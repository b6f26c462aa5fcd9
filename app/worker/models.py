from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

from app.conversion.exceptions import InvalidTaskTransitionError
from app.conversion.models import ConversionKind, ConversionPayload


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING, TaskStatus.CANCELLED}),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
}


@dataclass
class ConversionTask:
    """One queued conversion and its lifecycle state."""

    id: str
    type: ConversionKind
    payload: ConversionPayload
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    result: Path | None = None
    error: str | None = None
    error_kind: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def transition(self, status: TaskStatus, at: datetime) -> None:
        """Move to ``status``, stamping started_at / finished_at.

        Raises:
            InvalidTaskTransitionError: for any move the state machine does not allow,
                including every move out of a terminal state.
        """
        if status not in _ALLOWED_TRANSITIONS.get(self.status, frozenset()):
            raise InvalidTaskTransitionError(
                f"Task {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status is TaskStatus.PROCESSING:
            self.started_at = at
        else:
            self.finished_at = at

    @property
    def duration_ms(self) -> float | None:
        """Processing time, available once the task has started and finished."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def snapshot(self) -> "ConversionTask":
        return replace(self)


@dataclass(frozen=True)
class TaskOutcome:
    """What a single execution of a task produced."""

    result: Path | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ProcessorStats:
    total_processed: int
    total_failed: int
    total_cancelled: int
    average_processing_ms: float
    queue_length: int
    processing_count: int
    completed_count: int

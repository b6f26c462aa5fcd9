import asyncio
import uuid
from collections import OrderedDict, deque
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from functools import partial

from app.conversion.exceptions import (
    ConversionCancelledError,
    ProcessorClosedError,
    TaskNotFoundError,
)
from app.conversion.models import ConversionKind, ConversionPayload
from app.logging.logger import Log
from app.worker.events import EventBus, Subscription, TaskEvent, TaskListener
from app.worker.models import ConversionTask, ProcessorStats, TaskOutcome, TaskStatus
from app.worker.task_runner import TaskRunner

_TERMINAL_EVENTS = {
    TaskStatus.COMPLETED: TaskEvent.COMPLETED,
    TaskStatus.FAILED: TaskEvent.FAILED,
    TaskStatus.CANCELLED: TaskEvent.CANCELLED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_task_id() -> str:
    return uuid.uuid4().hex


class AsyncProcessor:
    """FIFO task queue with a concurrency cap, driven by the running event loop.

    Admission: while fewer than ``max_concurrent`` tasks are processing and the
    queue is not empty, the head of the queue starts. Admission runs after each
    submission and after each terminal transition, so tasks start strictly in
    submission order. All state is touched only from the event loop thread.

    Terminal tasks are kept for lookups, up to ``history_limit`` of them; the
    oldest are forgotten first.
    """

    def __init__(
        self,
        runner: TaskRunner,
        max_concurrent: int = 3,
        history_limit: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_task_id,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._runner = runner
        self._max_concurrent = max_concurrent
        self._history_limit = history_limit
        self._clock = clock
        self._id_factory = id_factory
        self._events = EventBus()

        self._queue: deque[ConversionTask] = deque()
        self._processing: dict[str, ConversionTask] = {}
        self._running: dict[str, asyncio.Task[None]] = {}
        self._completed: OrderedDict[str, ConversionTask] = OrderedDict()
        self._waiters: dict[str, asyncio.Future[ConversionTask]] = {}
        self._closed = False

        self._total_processed = 0
        self._total_failed = 0
        self._total_cancelled = 0
        self._average_processing_ms = 0.0

        Log.info(f"AsyncProcessor initialized (max concurrent {max_concurrent})")

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def subscribe(
        self,
        listener: TaskListener,
        events: Iterable[TaskEvent] | None = None,
    ) -> Subscription:
        """Register a lifecycle listener. Subscribe before submitting to see every event."""
        return self._events.subscribe(listener, events)

    def submit(self, task_type: ConversionKind, payload: ConversionPayload) -> str:
        """Queue a task and start it if a slot is free. Must run inside the event loop.

        Raises:
            ProcessorClosedError: after shutdown().
        """
        if self._closed:
            raise ProcessorClosedError("AsyncProcessor is shut down")
        loop = asyncio.get_running_loop()
        task = ConversionTask(
            id=self._id_factory(),
            type=task_type,
            payload=payload,
            created_at=self._clock(),
        )
        self._queue.append(task)
        self._waiters[task.id] = loop.create_future()
        Log.debug(f"Task {task.id} added ({task.type.value} {payload.pair})")
        self._events.emit(TaskEvent.ADDED, task)
        self._admit()
        return task.id

    def status(self, task_id: str) -> ConversionTask | None:
        """Snapshot of a task: pending queue first, then in-flight, then history."""
        task = self._find(task_id)
        return task.snapshot() if task is not None else None

    async def wait(self, task_id: str) -> ConversionTask:
        """Wait until a task is terminal and return its final snapshot.

        Raises:
            TaskNotFoundError: if the id is unknown (or already dropped from history).
        """
        task = self._find(task_id)
        if task is None:
            raise TaskNotFoundError(f"Unknown task {task_id}")
        if task.status.is_terminal:
            return task.snapshot()
        return await asyncio.shield(self._waiters[task_id])

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending or processing task. Returns False if it is terminal or unknown.

        A pending task becomes cancelled immediately. A processing task has its
        execution cancelled, which terminates the external process; the task
        becomes cancelled once that unwinds.
        """
        for task in self._queue:
            if task.id == task_id:
                self._queue.remove(task)
                self._finish(task, TaskStatus.CANCELLED, _cancelled_outcome())
                return True

        running = self._running.get(task_id)
        if running is not None and not running.done():
            Log.info(f"Cancelling task {task_id}")
            running.cancel()
            return True
        return False

    async def join(self) -> None:
        """Wait until nothing is queued or processing."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop admitting work, cancel everything outstanding and wait for it to unwind."""
        self._closed = True
        while self._queue:
            self._finish(self._queue.popleft(), TaskStatus.CANCELLED, _cancelled_outcome())
        for running in list(self._running.values()):
            running.cancel()
        await self.join()

    def stats(self) -> ProcessorStats:
        return ProcessorStats(
            total_processed=self._total_processed,
            total_failed=self._total_failed,
            total_cancelled=self._total_cancelled,
            average_processing_ms=self._average_processing_ms,
            queue_length=len(self._queue),
            processing_count=len(self._processing),
            completed_count=len(self._completed),
        )

    def _admit(self) -> None:
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        while len(self._processing) < self._max_concurrent and self._queue:
            task = self._queue.popleft()
            task.transition(TaskStatus.PROCESSING, self._clock())
            self._processing[task.id] = task
            Log.debug(f"Task {task.id} started")
            self._events.emit(TaskEvent.STARTED, task)
            handle = loop.create_task(self._run(task), name=f"conversion-{task.id}")
            handle.add_done_callback(partial(self._settle, task))
            self._running[task.id] = handle

    async def _run(self, task: ConversionTask) -> None:
        try:
            outcome = await self._runner.run(task)
        except asyncio.CancelledError:
            self._finish(task, TaskStatus.CANCELLED, _cancelled_outcome())
            return
        status = TaskStatus.COMPLETED if outcome.succeeded else TaskStatus.FAILED
        self._finish(task, status, outcome)

    def _settle(self, task: ConversionTask, _handle: "asyncio.Task[None]") -> None:
        # a task cancelled before its first step never enters _run
        if task.status is TaskStatus.PROCESSING:
            self._finish(task, TaskStatus.CANCELLED, _cancelled_outcome())

    def _finish(self, task: ConversionTask, status: TaskStatus, outcome: TaskOutcome) -> None:
        task.transition(status, self._clock())
        task.result = outcome.result
        task.error = outcome.error
        task.error_kind = outcome.error_kind

        self._processing.pop(task.id, None)
        self._running.pop(task.id, None)
        self._remember(task)
        self._update_stats(task)

        if status is TaskStatus.COMPLETED:
            Log.info(f"Task {task.id} completed in {task.duration_ms:.0f}ms")
        elif status is TaskStatus.FAILED:
            Log.error(f"Task {task.id} failed after {task.duration_ms:.0f}ms: {task.error}")
        else:
            Log.info(f"Task {task.id} cancelled")

        self._events.emit(_TERMINAL_EVENTS[status], task)
        waiter = self._waiters.get(task.id)
        if waiter is not None and not waiter.done():
            waiter.set_result(task.snapshot())
        self._admit()

    def _remember(self, task: ConversionTask) -> None:
        self._completed[task.id] = task
        while len(self._completed) > self._history_limit:
            dropped_id, _dropped = self._completed.popitem(last=False)
            self._waiters.pop(dropped_id, None)
            Log.debug(f"Task {dropped_id} dropped from history")

    def _update_stats(self, task: ConversionTask) -> None:
        if task.status is TaskStatus.CANCELLED:
            self._total_cancelled += 1
            return
        if task.status is TaskStatus.COMPLETED:
            self._total_processed += 1
        else:
            self._total_failed += 1
        total = self._total_processed + self._total_failed
        elapsed = task.duration_ms or 0.0
        self._average_processing_ms += (elapsed - self._average_processing_ms) / total

    def _find(self, task_id: str) -> ConversionTask | None:
        for task in self._queue:
            if task.id == task_id:
                return task
        return self._processing.get(task_id) or self._completed.get(task_id)


def _cancelled_outcome() -> TaskOutcome:
    return TaskOutcome(error="Task cancelled", error_kind=ConversionCancelledError.kind)

import itertools
from collections.abc import Callable, Iterable
from enum import Enum

from app.logging.logger import Log
from app.worker.models import ConversionTask


class TaskEvent(str, Enum):
    ADDED = "task_added"
    STARTED = "task_started"
    COMPLETED = "task_completed"
    FAILED = "task_failed"
    CANCELLED = "task_cancelled"


TaskListener = Callable[[TaskEvent, ConversionTask], None]


class Subscription:
    """Handle returned by EventBus.subscribe; cancel() stops delivery."""

    def __init__(self, bus: "EventBus", subscription_id: int) -> None:
        self._bus = bus
        self._id = subscription_id

    @property
    def active(self) -> bool:
        return self._bus.has_subscription(self._id)

    def cancel(self) -> None:
        self._bus.unsubscribe(self._id)


class EventBus:
    """Synchronous fan-out of task lifecycle events.

    Listeners are called in subscription order on the event loop thread and
    receive a snapshot of the task. Delivery is fire-and-forget: there is no
    replay for late subscribers, and a listener that raises is logged and
    skipped without affecting the others.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._listeners: dict[int, tuple[TaskListener, frozenset[TaskEvent] | None]] = {}

    def subscribe(
        self,
        listener: TaskListener,
        events: Iterable[TaskEvent] | None = None,
    ) -> Subscription:
        subscription_id = next(self._ids)
        wanted = frozenset(events) if events is not None else None
        self._listeners[subscription_id] = (listener, wanted)
        return Subscription(self, subscription_id)

    def unsubscribe(self, subscription_id: int) -> None:
        self._listeners.pop(subscription_id, None)

    def has_subscription(self, subscription_id: int) -> bool:
        return subscription_id in self._listeners

    def emit(self, event: TaskEvent, task: ConversionTask) -> None:
        for listener, wanted in list(self._listeners.values()):
            if wanted is not None and event not in wanted:
                continue
            try:
                listener(event, task.snapshot())
            except Exception as exc:
                Log.warning(f"Listener for {event.value} on task {task.id} raised: {exc}")

from collections.abc import Awaitable, Callable
from pathlib import Path

from app.conversion.exceptions import error_kind
from app.logging.logger import Log
from app.worker.models import ConversionTask, TaskOutcome

TaskExecutor = Callable[[ConversionTask], Awaitable[Path]]


class TaskRunner:
    """Run one task's executor exactly once and capture any failure as an outcome."""

    def __init__(self, executor: TaskExecutor) -> None:
        self._executor = executor

    async def run(self, task: ConversionTask) -> TaskOutcome:
        """Execute a single task. Cancellation propagates; every other exception is captured."""
        Log.info(f"Running task {task.id} ({task.type.value} {task.payload.pair})")
        try:
            result = await self._executor(task.snapshot())
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            Log.error(f"Task {task.id} failed: {message}")
            return TaskOutcome(error=message, error_kind=error_kind(exc))
        return TaskOutcome(result=result)

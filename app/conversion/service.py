import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from app.cache.models import CacheStats, ReconcileReport
from app.cache.store import ConversionCache
from app.config.settings import Settings
from app.conversion.exceptions import (
    ProcessorClosedError,
    SourceUnreadableError,
    TaskNotFoundError,
    UnsupportedConversionError,
)
from app.conversion.models import ConversionPayload, ConversionResult, FormatPair
from app.conversion.source_file import ensure_readable, output_path_for
from app.logging.logger import Log
from app.tools.invoker import ToolInvoker
from app.tools.registry import ToolRegistry, ToolSpec
from app.tools.verifier import OutputVerifier
from app.worker.events import Subscription, TaskEvent, TaskListener
from app.worker.models import ConversionTask, ProcessorStats, TaskStatus
from app.worker.processor import AsyncProcessor
from app.worker.task_runner import TaskRunner


@dataclass(frozen=True)
class _PreparedRequest:
    source: Path
    pair: FormatPair
    tool: ToolSpec
    content_hash: str


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class ConversionService:
    """Orchestrates one conversion: hash -> cache lookup -> queue on miss -> cache store.

    Requests that cannot be converted (unreadable source, unsupported format
    pair) fail before reaching the queue. Everything the service hands back
    through ``convert`` / ``get_result`` is a ConversionResult; no exception
    from a tool or the cache escapes to the caller.
    """

    def __init__(
        self,
        cache: ConversionCache,
        registry: ToolRegistry,
        invoker: ToolInvoker,
        output_dir: Path,
        tool_timeout_ms: int = 30_000,
        max_concurrent: int = 3,
        history_limit: int = 1000,
    ) -> None:
        self._cache = cache
        self._registry = registry
        self._invoker = invoker
        self._output_dir = Path(output_dir)
        self._tool_timeout_ms = tool_timeout_ms
        self._processor = AsyncProcessor(
            TaskRunner(self._execute_task),
            max_concurrent=max_concurrent,
            history_limit=history_limit,
        )

    @property
    def processor(self) -> AsyncProcessor:
        return self._processor

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def initialize(self) -> None:
        """Prepare the output directory and load the cache index."""
        self._output_dir.mkdir(parents=True, exist_ok=True)
        await self._cache.initialize()

    async def convert(
        self,
        source_path: Path | str,
        source_format: str,
        target_format: str,
    ) -> ConversionResult:
        """Convert a file, serving it from the cache when the same bytes were converted before."""
        started = time.monotonic()
        Log.info(f"Conversion started: {source_path} ({source_format} -> {target_format})")
        try:
            request = await self._prepare(Path(source_path), source_format, target_format)
        except (SourceUnreadableError, UnsupportedConversionError) as exc:
            Log.warning(f"Conversion rejected: {exc}")
            return ConversionResult.failed(str(exc), exc.kind, _elapsed_ms(started))

        cached = await self._cache.lookup(
            request.content_hash, request.pair.source, request.pair.target
        )
        if cached is not None:
            Log.info(f"Conversion served from cache: {cached.name}")
            return ConversionResult.succeeded(cached, _elapsed_ms(started), cached=True)

        try:
            task_id = self._enqueue(request)
        except ProcessorClosedError as exc:
            Log.warning(f"Conversion rejected: {exc}")
            return ConversionResult.failed(str(exc), exc.kind, _elapsed_ms(started))
        task = await self._processor.wait(task_id)
        result = self._result_of(task, _elapsed_ms(started))
        if result.success:
            Log.info(f"Conversion completed: {result.output_path} in {result.duration_ms:.0f}ms")
        else:
            Log.error(f"Conversion failed ({result.error_kind}): {result.error}")
        return result

    async def submit_conversion(
        self,
        source_path: Path | str,
        source_format: str,
        target_format: str,
    ) -> str:
        """Queue a conversion and return its task id without waiting.

        Raises:
            SourceUnreadableError: if the source cannot be read.
            UnsupportedConversionError: if no tool handles the format pair.
            ProcessorClosedError: after shutdown().
        """
        request = await self._prepare(Path(source_path), source_format, target_format)
        return self._enqueue(request)

    def get_status(self, task_id: str) -> ConversionTask:
        """Raises TaskNotFoundError for unknown ids."""
        task = self._processor.status(task_id)
        if task is None:
            raise TaskNotFoundError(f"Unknown task {task_id}")
        return task

    async def get_result(self, task_id: str) -> ConversionResult:
        """Wait for a task to finish and describe its outcome."""
        task = await self._processor.wait(task_id)
        return self._result_of(task, task.duration_ms or 0.0)

    def cancel(self, task_id: str) -> bool:
        return self._processor.cancel(task_id)

    def subscribe(
        self,
        listener: TaskListener,
        events: Iterable[TaskEvent] | None = None,
    ) -> Subscription:
        return self._processor.subscribe(listener, events)

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def get_processor_stats(self) -> ProcessorStats:
        return self._processor.stats()

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def reconcile_cache(self) -> ReconcileReport:
        await self._cache.purge_expired()
        return await self._cache.reconcile()

    async def drain(self) -> None:
        """Wait for every queued and running task to finish."""
        await self._processor.join()

    async def shutdown(self) -> None:
        await self._processor.shutdown()

    async def _prepare(
        self,
        source_path: Path,
        source_format: str,
        target_format: str,
    ) -> _PreparedRequest:
        source = ensure_readable(source_path)
        pair = FormatPair.of(source_format, target_format)
        tool = self._registry.resolve(pair)
        content_hash = await self._cache.hash(source)
        return _PreparedRequest(source=source, pair=pair, tool=tool, content_hash=content_hash)

    def _enqueue(self, request: _PreparedRequest) -> str:
        payload = ConversionPayload(
            source_path=request.source,
            output_path=output_path_for(self._output_dir, request.source, request.pair.target),
            source_format=request.pair.source,
            target_format=request.pair.target,
            content_hash=request.content_hash,
        )
        return self._processor.submit(request.tool.kind, payload)

    async def _execute_task(self, task: ConversionTask) -> Path:
        """Body of every queued task: re-check the cache, run the tool, cache the output."""
        payload = task.payload
        cached = await self._cache.lookup(
            payload.content_hash, payload.source_format, payload.target_format
        )
        if cached is not None:
            Log.info(f"Task {task.id} served from cache: {cached.name}")
            return cached

        tool = self._registry.resolve(payload.pair)
        produced = await self._invoker.execute(
            tool, payload.source_path, payload.output_path, self._tool_timeout_ms
        )
        stored = await self._cache.store(
            payload.content_hash, payload.source_format, payload.target_format, produced
        )
        return stored if stored is not None else produced

    @staticmethod
    def _result_of(task: ConversionTask, duration_ms: float) -> ConversionResult:
        if task.status is TaskStatus.COMPLETED and task.result is not None:
            return ConversionResult.succeeded(task.result, duration_ms, task_id=task.id)
        return ConversionResult.failed(
            task.error or f"Task ended as {task.status.value}",
            task.error_kind or "internal_error",
            duration_ms,
            task_id=task.id,
        )


def build_service(settings: Settings) -> ConversionService:
    """Build a ConversionService with all required adapters."""
    cache = ConversionCache(
        cache_dir=settings.cache_directory,
        max_size_bytes=settings.max_cache_size_bytes,
        max_age_seconds=settings.max_cache_age_ms / 1000,
    )
    registry = ToolRegistry.from_settings(settings)
    invoker = ToolInvoker(
        verifier=OutputVerifier.from_settings(settings),
        work_root=settings.output_directory / ".work",
        kill_grace_ms=settings.process_kill_grace_ms,
    )
    return ConversionService(
        cache=cache,
        registry=registry,
        invoker=invoker,
        output_dir=settings.output_directory,
        tool_timeout_ms=settings.tool_timeout_ms,
        max_concurrent=settings.max_concurrent_tasks,
        history_limit=settings.task_history_limit,
    )

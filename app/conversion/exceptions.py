class ConversionError(Exception):
    """Base exception for all conversion-related errors."""

    kind = "conversion_error"


class UnsupportedConversionError(ConversionError):
    """Raised when no tool is mapped to the requested format pair."""

    kind = "unsupported_conversion"


class ConversionTimeoutError(ConversionError):
    """Raised when an external tool exceeds its time limit."""

    kind = "conversion_timeout"


class ToolExecutionError(ConversionError):
    """Raised when an external tool cannot be started or exits with a nonzero code."""

    kind = "tool_execution_failed"

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class OutputNotProducedError(ConversionError):
    """Raised when a tool exits cleanly but leaves no usable output file."""

    kind = "output_not_produced"


class SourceUnreadableError(ConversionError):
    """Raised when the source file is missing or cannot be read."""

    kind = "source_unreadable"


class CacheIOError(ConversionError):
    """Raised inside the cache when its index or backing files cannot be accessed."""

    kind = "cache_io_error"


class TaskNotFoundError(ConversionError):
    """Raised when a task id is unknown to the processor."""

    kind = "task_not_found"


class InvalidTaskTransitionError(ConversionError):
    """Raised when a task is moved out of a terminal state or skips a state."""

    kind = "invalid_task_transition"


class ConversionCancelledError(ConversionError):
    """Recorded on tasks cancelled before reaching a terminal state."""

    kind = "cancelled"



class ProcessorClosedError(ConversionError):
    """Raised when work is submitted after the processor has been shut down."""

    kind = "processor_closed"

def error_kind(exc: BaseException) -> str:
    """Return the taxonomy tag for an exception; unknown exceptions map to 'internal_error'."""
    if isinstance(exc, ConversionError):
        return exc.kind
    return "internal_error"

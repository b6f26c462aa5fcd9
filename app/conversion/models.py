from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ConversionKind(str, Enum):
    """Family of external tool a conversion is delegated to."""

    DOCUMENT = "document"
    IMAGE = "image"
    PDF = "pdf"
    OCR = "ocr"


def normalize_format(value: str) -> str:
    """Lower-case a format name and drop a leading dot ('.PDF' -> 'pdf')."""
    return value.strip().lower().lstrip(".")


@dataclass(frozen=True)
class FormatPair:
    source: str
    target: str

    @classmethod
    def of(cls, source: str, target: str) -> "FormatPair":
        return cls(normalize_format(source), normalize_format(target))

    def __str__(self) -> str:
        return f"{self.source}->{self.target}"


@dataclass(frozen=True)
class ConversionPayload:
    """Everything a queued task needs to run one conversion."""

    source_path: Path
    output_path: Path
    source_format: str
    target_format: str
    content_hash: str

    @property
    def pair(self) -> FormatPair:
        return FormatPair(self.source_format, self.target_format)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of one conversion request. Never mutated after construction."""

    success: bool
    duration_ms: float
    output_path: Path | None = None
    error: str | None = None
    error_kind: str | None = None
    cached: bool = False
    task_id: str | None = None

    @classmethod
    def succeeded(
        cls,
        output_path: Path,
        duration_ms: float,
        cached: bool = False,
        task_id: str | None = None,
    ) -> "ConversionResult":
        return cls(
            success=True,
            duration_ms=duration_ms,
            output_path=output_path,
            cached=cached,
            task_id=task_id,
        )

    @classmethod
    def failed(
        cls,
        error: str,
        error_kind: str,
        duration_ms: float,
        task_id: str | None = None,
    ) -> "ConversionResult":
        return cls(
            success=False,
            duration_ms=duration_ms,
            error=error,
            error_kind=error_kind,
            task_id=task_id,
        )

import os
import uuid
from pathlib import Path

from app.conversion.exceptions import SourceUnreadableError
from app.conversion.models import normalize_format


def infer_format(path: Path) -> str:
    """Format implied by a file's extension ('report.DOCX' -> 'docx')."""
    suffix = normalize_format(path.suffix)
    if not suffix:
        raise SourceUnreadableError(f"Cannot infer format of {path.name}: no file extension")
    return suffix


def ensure_readable(path: Path) -> Path:
    """Resolve a source path, failing fast if it cannot be converted.

    Raises:
        SourceUnreadableError: if the path is missing, not a regular file, or unreadable.
    """
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        raise SourceUnreadableError(f"File not found: {path}")
    if not resolved.is_file():
        raise SourceUnreadableError(f"Not a regular file: {path}")
    if not os.access(resolved, os.R_OK):
        raise SourceUnreadableError(f"File is not readable: {path}")
    return resolved


def output_path_for(output_dir: Path, source: Path, target_format: str) -> Path:
    """Fresh output location: {output_dir}/{stem}_{8 hex}.{target}"""
    return output_dir / f"{source.stem}_{uuid.uuid4().hex[:8]}.{target_format}"

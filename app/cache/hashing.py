import asyncio
import hashlib
from pathlib import Path

from app.conversion.exceptions import SourceUnreadableError

HASH_CHUNK_BYTES = 1024 * 1024


def hash_file_sync(path: Path, chunk_size: int = HASH_CHUNK_BYTES) -> str:
    """SHA-256 of a file's bytes, read ``chunk_size`` bytes at a time.

    Raises:
        SourceUnreadableError: if the file is missing or cannot be read.
    """
    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            while chunk := handle.read(chunk_size):
                digest.update(chunk)
    except OSError as exc:
        raise SourceUnreadableError(f"Cannot read source file {path}: {exc}") from exc
    return digest.hexdigest()


async def hash_file(path: Path, chunk_size: int = HASH_CHUNK_BYTES) -> str:
    """Compute ``hash_file_sync`` off the event loop."""
    return await asyncio.to_thread(hash_file_sync, path, chunk_size)

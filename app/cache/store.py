import asyncio
import json
import os
import shutil
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path

from app.cache.hashing import hash_file
from app.cache.models import CacheEntry, CacheKey, CacheStats, ReconcileReport
from app.conversion.exceptions import CacheIOError
from app.logging.logger import Log


class ConversionCache:
    """Content-addressed store of conversion outputs.

    Entries are keyed on (SHA-256 of the source bytes, source format, target
    format). Artifacts live under ``<cache_dir>/artifacts`` and the index is a
    JSON file rewritten after every mutation. All index changes happen on the
    event loop thread without awaiting in between, so no locking is needed.
    Lookup and store never raise: I/O trouble is logged and reads as a miss.
    """

    INDEX_FILENAME = "index.json"
    ARTIFACTS_DIRNAME = "artifacts"
    INDEX_VERSION = 1

    def __init__(
        self,
        cache_dir: Path,
        max_size_bytes: int,
        max_age_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = Path(cache_dir).expanduser().resolve()
        self._artifacts_dir = self._cache_dir / self.ARTIFACTS_DIRNAME
        self._index_path = self._cache_dir / self.INDEX_FILENAME
        self._max_size_bytes = max_size_bytes
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._adopting: Counter[str] = Counter()

    @property
    def artifacts_dir(self) -> Path:
        return self._artifacts_dir

    @property
    def index_path(self) -> Path:
        return self._index_path

    async def initialize(self) -> None:
        """Create the cache directories and load the persisted index.

        Raises:
            CacheIOError: if the cache directory cannot be created.
        """
        try:
            self._artifacts_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            Log.error(f"Failed to initialize cache at {self._cache_dir}: {exc}")
            raise CacheIOError(f"Cannot create cache directory {self._cache_dir}: {exc}") from exc
        self._entries = self._load_index()
        Log.info(f"Cache initialized at {self._cache_dir} with {len(self._entries)} entries")

    async def hash(self, path: Path) -> str:
        """Content hash of a source file (raises SourceUnreadableError)."""
        return await hash_file(path)

    async def lookup(
        self,
        content_hash: str,
        source_format: str,
        target_format: str,
    ) -> Path | None:
        """Return the cached artifact path for a key, or None on a miss.

        Expired entries and entries whose file has disappeared are removed.
        """
        key = CacheKey(content_hash, source_format, target_format)
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if now - entry.created_at > self._max_age_seconds:
            Log.debug(f"Cache entry {key.as_string()} expired")
            self._discard(entry)
            self._save_index()
            return None

        path = Path(entry.output_path)
        if not path.is_file():
            Log.warning(f"Cached file for {key.as_string()} is missing, dropping entry")
            del self._entries[key]
            self._save_index()
            return None

        entry.last_accessed_at = now
        entry.access_count += 1
        self._save_index()
        Log.debug(f"Cache hit {key.as_string()} (access count {entry.access_count})")
        return path

    async def store(
        self,
        content_hash: str,
        source_format: str,
        target_format: str,
        output_path: Path,
    ) -> Path | None:
        """Move a produced artifact into the cache and index it.

        Returns the artifact's new location, or None when it was not cached; in
        that case the file is left at ``output_path``. Eviction runs before
        returning, so the index never references more than the size cap.
        """
        key = CacheKey(content_hash, source_format, target_format)
        try:
            size = output_path.stat().st_size
        except OSError as exc:
            Log.error(f"Failed to cache conversion result {key.as_string()}: {exc}")
            return None
        if size > self._max_size_bytes:
            Log.warning(
                f"Not caching {key.as_string()}: {size} bytes exceeds cache size "
                f"limit {self._max_size_bytes}"
            )
            return None

        destination = self._artifact_path(key)
        try:
            self._adopting[destination.name] += 1
            await asyncio.to_thread(self._adopt, output_path, destination)
        except OSError as exc:
            Log.error(f"Failed to cache conversion result {key.as_string()}: {exc}")
            return None
        finally:
            self._adopting[destination.name] -= 1
            if self._adopting[destination.name] <= 0:
                del self._adopting[destination.name]

        now = self._clock()
        self._entries[key] = CacheEntry(
            content_hash=content_hash,
            source_format=source_format,
            target_format=target_format,
            output_path=str(destination),
            created_at=now,
            last_accessed_at=now,
            access_count=0,
            file_size_bytes=size,
        )
        self._save_index()
        Log.info(f"Cached conversion result {key.as_string()} ({size} bytes)")
        self._evict(protect=key)
        return destination

    async def evict(self) -> list[CacheEntry]:
        """Remove least recently accessed entries until the cache fits its size cap."""
        return self._evict()

    async def invalidate(self, content_hash: str, source_format: str, target_format: str) -> bool:
        entry = self._entries.get(CacheKey(content_hash, source_format, target_format))
        if entry is None:
            return False
        self._discard(entry)
        self._save_index()
        Log.debug(f"Cache invalidated {entry.key.as_string()}")
        return True

    async def purge_expired(self) -> int:
        """Drop every entry older than the maximum age. Returns how many were removed."""
        now = self._clock()
        expired = [
            entry
            for entry in self._entries.values()
            if now - entry.created_at > self._max_age_seconds
        ]
        for entry in expired:
            self._discard(entry)
        if expired:
            self._save_index()
            Log.info(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    async def clear(self) -> int:
        entries = list(self._entries.values())
        for entry in entries:
            self._discard(entry)
        self._save_index()
        Log.info(f"Cache cleared ({len(entries)} entries)")
        return len(entries)

    async def reconcile(self) -> ReconcileReport:
        """Bring the artifacts directory and the index back in agreement.

        Entries whose file is gone are dropped; files no entry references
        (left behind by failed deletions or crashes) are unlinked.
        """
        report = ReconcileReport()
        for key, entry in list(self._entries.items()):
            if not Path(entry.output_path).is_file():
                del self._entries[key]
                report.stale_entries_removed.append(key.as_string())

        # artifacts still being moved in by store() are not indexed yet
        referenced = {Path(entry.output_path).name for entry in self._entries.values()}
        referenced.update(self._adopting)
        try:
            files = [path for path in self._artifacts_dir.iterdir() if path.is_file()]
        except OSError as exc:
            Log.warning(f"Cannot list cache artifacts in {self._artifacts_dir}: {exc}")
            files = []
        for path in files:
            if path.name in referenced:
                continue
            try:
                size = path.stat().st_size
                path.unlink()
            except OSError as exc:
                Log.warning(f"Failed to remove orphaned cache file {path.name}: {exc}")
                continue
            report.orphans_removed.append(path.name)
            report.bytes_reclaimed += size

        if report.stale_entries_removed:
            self._save_index()
        Log.info(
            f"Cache reconciled: {len(report.orphans_removed)} orphans removed, "
            f"{len(report.stale_entries_removed)} stale entries dropped, "
            f"{report.bytes_reclaimed} bytes reclaimed"
        )
        return report

    def stats(self) -> CacheStats:
        return CacheStats(
            entries=len(self._entries),
            total_bytes=self._total_bytes(),
            max_bytes=self._max_size_bytes,
        )

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def _evict(self, protect: CacheKey | None = None) -> list[CacheEntry]:
        total = self._total_bytes()
        if total <= self._max_size_bytes:
            return []

        candidates = sorted(
            (entry for key, entry in self._entries.items() if key != protect),
            key=lambda entry: (entry.last_accessed_at, entry.created_at),
        )
        evicted: list[CacheEntry] = []
        for entry in candidates:
            if total <= self._max_size_bytes:
                break
            self._discard(entry)
            total -= entry.file_size_bytes
            evicted.append(entry)

        self._save_index()
        Log.info(
            f"Cache eviction completed: {len(evicted)} entries removed, "
            f"{total} of {self._max_size_bytes} bytes in use"
        )
        return evicted

    def _discard(self, entry: CacheEntry) -> None:
        """Remove an entry from the index and unlink its file; unlink failures are logged."""
        self._entries.pop(entry.key, None)
        try:
            Path(entry.output_path).unlink(missing_ok=True)
        except OSError as exc:
            Log.warning(f"Failed to delete cached file {entry.output_path}: {exc}")

    def _total_bytes(self) -> int:
        return sum(entry.file_size_bytes for entry in self._entries.values())

    def _artifact_path(self, key: CacheKey) -> Path:
        return self._artifacts_dir / (
            f"{key.content_hash}_{key.source_format}_{key.target_format}.{key.target_format}"
        )

    @staticmethod
    def _adopt(source: Path, destination: Path) -> None:
        if source.resolve() == destination.resolve():
            return
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))

    def _load_index(self) -> dict[CacheKey, CacheEntry]:
        if not self._index_path.exists():
            return {}
        try:
            raw = json.loads(self._index_path.read_text(encoding="utf-8"))
            entries = [CacheEntry(**data) for data in raw["entries"]]
        except (OSError, ValueError, TypeError, KeyError) as exc:
            Log.warning(f"Cache index {self._index_path} unreadable, starting empty: {exc}")
            return {}
        Log.debug(f"Cache index loaded: {len(entries)} entries")
        return {entry.key: entry for entry in entries}

    def _save_index(self) -> None:
        try:
            self._write_index()
        except CacheIOError as exc:
            Log.error(str(exc))

    def _write_index(self) -> None:
        payload = {
            "version": self.INDEX_VERSION,
            "entries": [asdict(entry) for entry in self._entries.values()],
        }
        tmp_path = self._index_path.with_name(f"{self.INDEX_FILENAME}.tmp")
        try:
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._index_path)
        except OSError as exc:
            raise CacheIOError(f"Failed to write cache index {self._index_path}: {exc}") from exc

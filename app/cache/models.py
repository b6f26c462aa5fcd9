from dataclasses import dataclass, field


@dataclass(frozen=True)
class CacheKey:
    content_hash: str
    source_format: str
    target_format: str

    def as_string(self) -> str:
        return f"{self.content_hash}:{self.source_format}:{self.target_format}"


@dataclass
class CacheEntry:
    """One cached conversion artifact. Timestamps are epoch seconds."""

    content_hash: str
    source_format: str
    target_format: str
    output_path: str
    created_at: float
    last_accessed_at: float
    access_count: int
    file_size_bytes: int

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.content_hash, self.source_format, self.target_format)


@dataclass(frozen=True)
class CacheStats:
    entries: int
    total_bytes: int
    max_bytes: int

    @property
    def utilization(self) -> float:
        """Share of the size cap in use, as a percentage."""
        return round(self.total_bytes / self.max_bytes * 100, 2)


@dataclass
class ReconcileReport:
    """What a reconciliation sweep removed."""

    orphans_removed: list[str] = field(default_factory=list)
    stale_entries_removed: list[str] = field(default_factory=list)
    bytes_reclaimed: int = 0

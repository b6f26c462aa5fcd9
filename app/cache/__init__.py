from app.cache.models import CacheEntry, CacheKey, CacheStats, ReconcileReport
from app.cache.store import ConversionCache

__all__ = ["CacheEntry", "CacheKey", "CacheStats", "ConversionCache", "ReconcileReport"]

"""Build-environment cache.

This module handles:
- Cache key computation from build-definition content
- Content-addressed snapshot storage (memory, local disk, hybrid)
"""

from release_pipeline.cache.store import (
    CacheStore,
    HybridCacheStore,
    LocalCacheStore,
    MemoryCacheStore,
)

__all__ = ["CacheStore", "HybridCacheStore", "LocalCacheStore", "MemoryCacheStore"]

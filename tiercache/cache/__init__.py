"""Tiered caching system.

This module provides a bounded two-tier cache:
- Memory: in-memory tier bounded by entry count
- Filesystem: persistent tier bounded by the bytes of its stored artifacts

Both tiers evict expired entries first and then the least-accessed entry.
The tiered cache routes writes, promotes filesystem hits into memory and
applies the global TTL/TTI policy.
"""

from .base import MISSING, NEVER, CacheEntry, TierStats, TierStore, current_millis
from .file_cache import FilesystemTier, physical_size
from .manager import TieredCache, create_cache
from .memory_cache import MemoryTier

__all__ = [
    "MISSING",
    "NEVER",
    "CacheEntry",
    "TierStats",
    "TierStore",
    "current_millis",
    "FilesystemTier",
    "physical_size",
    "MemoryTier",
    "TieredCache",
    "create_cache",
]

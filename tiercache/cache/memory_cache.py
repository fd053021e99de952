"""In-memory cache tier bounded by entry count."""

import threading
from typing import Any, Dict, Optional

from tiercache.errors import ConfigurationError
from tiercache.utils.logger import log_debug, log_info
from .base import MISSING, CacheEntry, Clock, TierStore


class MemoryTier(TierStore):
    """In-memory tier that evicts expired entries first, then the coldest.

    When a ``lower_tier`` is attached, entries evicted for being cold are
    copied down to it (value, weight and deadline) before they are dropped.
    Expired entries are never demoted.
    """

    def __init__(
        self,
        max_entries: int,
        clock: Optional[Clock] = None,
        lower_tier: Optional[TierStore] = None,
        name: str = "memory",
    ):
        if isinstance(max_entries, bool) or not isinstance(max_entries, int):
            raise ConfigurationError("Size of the cache tier must be an integer!")
        if max_entries <= 0:
            raise ConfigurationError("Size of the cache tier must be greater than 0!")

        super().__init__(name, max_entries, clock)
        self.lower_tier = lower_tier
        self._entries: Dict[int, CacheEntry] = {}
        self._lock = threading.RLock()
        log_info("Memory cache tier created", name=name, max_entries=max_entries)

    def put(self, key: int, value: Any) -> None:
        """Store value, making room first if the tier is full."""
        with self._lock:
            self._check_open()
            # Overwriting an existing key never needs room.
            self._entries.pop(key, None)
            while len(self._entries) >= self.capacity:
                self._remove_expired()
                if len(self._entries) >= self.capacity:
                    self._evict_coldest()
            self._entries[key] = CacheEntry(key=key, value=value)

    def _remove_expired(self) -> None:
        now = self.now()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.stats.expirations += len(expired)
            log_debug("Expired entries removed", tier=self.name, count=len(expired))

    def _evict_coldest(self) -> None:
        # Only reached while len >= capacity > 0, so there is a victim.
        victim = min(self._entries.values(), key=lambda entry: entry.weight)
        if self.lower_tier is not None:
            self.lower_tier.put(victim.key, victim.value)
            self.lower_tier.set_weight(victim.key, victim.weight)
            self.lower_tier.set_deadline(victim.key, victim.deadline)
            self.stats.demotions += 1
            log_debug(
                "Entry demoted",
                tier=self.name,
                lower_tier=self.lower_tier.name,
                key=victim.key,
                weight=victim.weight,
            )
        del self._entries[victim.key]
        self.stats.evictions += 1

    def get(self, key: int) -> Optional[Any]:
        """Get a live value, counting the access in its weight."""
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None

            if entry.is_expired(self.now()):
                del self._entries[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None

            entry.weight += 1
            self.stats.hits += 1
            return entry.value

    def remove(self, key: int) -> None:
        with self._lock:
            self._check_open()
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._check_open()
            self._entries.clear()

    def contains_key(self, key: int) -> bool:
        with self._lock:
            self._check_open()
            return key in self._entries

    def increment_weight(self, key: int) -> None:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            if entry is not None:
                entry.weight += 1

    def set_weight(self, key: int, weight: int) -> None:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            if entry is not None:
                entry.weight = weight

    def get_weight(self, key: int) -> int:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            return entry.weight if entry is not None else MISSING

    def set_deadline(self, key: int, millis: int) -> None:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            if entry is not None:
                entry.deadline = millis

    def get_deadline(self, key: int) -> int:
        with self._lock:
            self._check_open()
            entry = self._entries.get(key)
            return entry.deadline if entry is not None else MISSING

    @property
    def usage(self) -> int:
        """Number of stored entries."""
        with self._lock:
            self._check_open()
            return len(self._entries)

    def __len__(self) -> int:
        with self._lock:
            self._check_open()
            return len(self._entries)

    def set_lower_tier(self, tier: Optional[TierStore]) -> None:
        """Attach the tier that receives demoted entries (not owned)."""
        with self._lock:
            self._check_open()
            self.lower_tier = tier

    def close(self) -> None:
        """Drop all entries and close the tier. The lower tier stays open."""
        with self._lock:
            self._check_open()
            self._entries.clear()
            self.lower_tier = None
            self._mark_closed()
        log_info("Memory cache tier closed", name=self.name)

"""Abstract base class and shared constants for cache tiers."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from tiercache.errors import ClosedStateError

# Weight/deadline reported for a key that is not stored.
MISSING = 0

# Deadline of an entry that never expires (largest 8-byte signed integer).
NEVER = 2**63 - 1

Clock = Callable[[], int]


def current_millis() -> int:
    """Wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass
class CacheEntry:
    """A cached value with its eviction metadata."""

    key: int
    value: Any
    weight: int = 0
    deadline: int = NEVER

    def is_expired(self, now: int) -> bool:
        """Check if the entry's deadline has been reached."""
        return self.deadline <= now


@dataclass
class TierStats:
    """Counters collected by a single tier."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    demotions: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate percentage."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate_percent": self.hit_rate,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "demotions": self.demotions,
            "errors": self.errors,
        }


class TierStore(ABC):
    """A bounded, key-addressed store of opaque values.

    Every entry carries a weight (access counter used to pick eviction
    victims) and a deadline (absolute expiry time in clock millis). A store
    starts open; after ``close()`` every call, ``close()`` included, raises
    ``ClosedStateError``.

    ``contains_key`` reports physical presence and ignores the deadline,
    while ``get`` removes an expired entry and reports a miss.
    """

    def __init__(self, name: str, capacity: int, clock: Optional[Clock] = None):
        self.name = name
        self.capacity = capacity
        self.stats = TierStats()
        self._clock: Clock = clock or current_millis
        self._open = True

    @abstractmethod
    def put(self, key: int, value: Any) -> None:
        """Store value with weight 0 and a ``NEVER`` deadline, then evict to capacity."""

    @abstractmethod
    def get(self, key: int) -> Optional[Any]:
        """Return the live value for key, or None on a miss."""

    @abstractmethod
    def remove(self, key: int) -> None:
        """Delete key if present."""

    @abstractmethod
    def clear(self) -> None:
        """Delete every entry."""

    @abstractmethod
    def contains_key(self, key: int) -> bool:
        """Check whether key is stored, expired or not."""

    @abstractmethod
    def increment_weight(self, key: int) -> None:
        pass

    @abstractmethod
    def set_weight(self, key: int, weight: int) -> None:
        pass

    @abstractmethod
    def get_weight(self, key: int) -> int:
        pass

    @abstractmethod
    def set_deadline(self, key: int, millis: int) -> None:
        pass

    @abstractmethod
    def get_deadline(self, key: int) -> int:
        pass

    @property
    @abstractmethod
    def usage(self) -> int:
        """Sum of the unit costs of all stored entries."""

    @abstractmethod
    def __len__(self) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        """Release resources. The store can't be used afterwards."""

    # Lifecycle helpers

    @property
    def closed(self) -> bool:
        return not self._open

    def set_clock(self, clock: Clock) -> None:
        """Replace the time source used for expiry decisions."""
        self._check_open()
        self._clock = clock

    def now(self) -> int:
        return self._clock()

    def _check_open(self) -> None:
        if not self._open:
            raise ClosedStateError(self.name)

    def _mark_closed(self) -> None:
        self._open = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get tier statistics."""
        self._check_open()
        return {
            **self.stats.to_dict(),
            "backend": self.name,
            "size": len(self),
            "usage": self.usage,
            "capacity": self.capacity,
        }

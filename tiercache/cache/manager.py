"""Tiered cache orchestrating the memory and filesystem tiers."""

import threading
from typing import Any, Dict, List, Mapping, Optional

from tiercache.config import CacheConfig, ExpirationPolicy, WriteTarget
from tiercache.errors import ClosedStateError, ConfigurationError
from tiercache.utils.logger import log_debug, log_info
from .base import NEVER, Clock, TierStore, current_millis
from .file_cache import FilesystemTier, SizeEvaluator
from .memory_cache import MemoryTier


class TieredCache:
    """Cache facade over an in-memory tier and a filesystem tier.

    Keys are assigned by the cache from a counter that is never reused until
    ``clear()``. Reads check memory first; a filesystem hit is promoted into
    memory with its weight and deadline. Cold entries evicted from memory are
    demoted to the filesystem tier when it is enabled.

    Args:
        config: Validated cache settings
        clock: Millisecond time source shared with the tiers
        size_evaluator: Per-artifact size function for the filesystem tier
    """

    def __init__(
        self,
        config: CacheConfig,
        clock: Optional[Clock] = None,
        size_evaluator: Optional[SizeEvaluator] = None,
    ):
        self.config = config
        self._clock: Clock = clock or current_millis
        self._lock = threading.RLock()
        self._next_key = 0
        self.promotions = 0
        self.memory_tier: Optional[MemoryTier] = None
        self.filesystem_tier: Optional[FilesystemTier] = None

        if not config.memory_tier and not config.filesystem_tier:
            raise ConfigurationError("At least one caching tier should be enabled!")

        if config.filesystem_tier:
            self.filesystem_tier = FilesystemTier(
                max_bytes=config.filesystem_bytes,
                storage_path=config.storage_path,
                clock=self._clock,
                size_evaluator=size_evaluator,
            )
        if config.memory_tier:
            try:
                self.memory_tier = MemoryTier(
                    max_entries=config.memory_entries,
                    clock=self._clock,
                    lower_tier=self.filesystem_tier,
                )
            except ConfigurationError:
                if self.filesystem_tier is not None:
                    self.filesystem_tier.close()
                raise

        self._open = True
        config.log_configuration()
        log_info(
            "Tiered cache initialized",
            tiers=[tier.name for tier in self.tiers],
            expiration_policy=config.expiration_policy.value,
        )

    @classmethod
    def from_properties(
        cls,
        props: Mapping[str, Any],
        clock: Optional[Clock] = None,
        size_evaluator: Optional[SizeEvaluator] = None,
    ) -> "TieredCache":
        """Create a cache from a flat ``cache.*`` properties mapping."""
        return cls(CacheConfig.from_properties(props), clock=clock, size_evaluator=size_evaluator)

    @property
    def tiers(self) -> List[TierStore]:
        """Enabled tiers, top first."""
        return [tier for tier in (self.memory_tier, self.filesystem_tier) if tier is not None]

    @property
    def closed(self) -> bool:
        return not self._open

    def _check_open(self) -> None:
        if not self._open:
            raise ClosedStateError("tiered cache")

    def _write_tier(self) -> TierStore:
        if self.memory_tier is None:
            return self.filesystem_tier
        if self.filesystem_tier is not None and self.config.put_to == WriteTarget.BOTTOM:
            return self.filesystem_tier
        return self.memory_tier

    def _expiry_deadline(self) -> int:
        return min(self._clock() + self.config.expiration_millis, NEVER)

    def set_clock(self, clock: Clock) -> None:
        """Replace the time source of the cache and all of its tiers."""
        with self._lock:
            self._check_open()
            self._clock = clock
            for tier in self.tiers:
                tier.set_clock(clock)

    def put(self, value: Any) -> int:
        """Store value and return the key assigned to it."""
        with self._lock:
            self._check_open()
            key = self._next_key
            self._next_key += 1

            tier = self._write_tier()
            tier.put(key, value)
            if self.config.expires:
                tier.set_deadline(key, self._expiry_deadline())
            return key

    def get(self, key: int) -> Optional[Any]:
        """Get value by key, promoting filesystem hits into memory."""
        with self._lock:
            self._check_open()
            value = None
            if self.memory_tier is not None:
                value = self.memory_tier.get(key)

            if value is None and self.filesystem_tier is not None:
                value = self.filesystem_tier.get(key)
                if value is not None and self.memory_tier is not None:
                    self._promote(key, value)

            if value is not None and self.config.expiration_policy == ExpirationPolicy.TIME_TO_IDLE:
                deadline = self._expiry_deadline()
                for tier in self.tiers:
                    if tier.contains_key(key):
                        tier.set_deadline(key, deadline)
            return value

    def _promote(self, key: int, value: Any) -> None:
        # The filesystem hit already counted this access in the weight.
        weight = self.filesystem_tier.get_weight(key)
        deadline = self.filesystem_tier.get_deadline(key)
        self.memory_tier.put(key, value)
        self.memory_tier.set_weight(key, weight)
        self.memory_tier.set_deadline(key, deadline)
        self.promotions += 1
        log_debug("Entry promoted to memory", key=key, weight=weight)

    def clear(self) -> None:
        """Remove every entry and restart key numbering."""
        with self._lock:
            self._check_open()
            for tier in self.tiers:
                tier.clear()
            self._next_key = 0

    def remove(self, key: int) -> None:
        with self._lock:
            self._check_open()
            for tier in self.tiers:
                tier.remove(key)

    def contains_key(self, key: int) -> bool:
        """Check every enabled tier for key, ignoring expiry."""
        with self._lock:
            self._check_open()
            return any(tier.contains_key(key) for tier in self.tiers)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            self._check_open()
            return {
                "next_key": self._next_key,
                "expiration_policy": self.config.expiration_policy.value,
                "put_to": self.config.put_to.value,
                "promotions": self.promotions,
                "tiers": {tier.name: tier.get_stats() for tier in self.tiers},
            }

    def close(self) -> None:
        """Close all tiers. The cache can't be used afterwards."""
        with self._lock:
            self._check_open()
            try:
                for tier in self.tiers:
                    tier.close()
            finally:
                self._open = False
        log_info("Tiered cache closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_cache(
    props: Optional[Mapping[str, Any]] = None,
    clock: Optional[Clock] = None,
    size_evaluator: Optional[SizeEvaluator] = None,
) -> TieredCache:
    """Create a tiered cache from properties, or from the environment if none are given."""
    config = CacheConfig.from_properties(props) if props is not None else CacheConfig.load()
    return TieredCache(config, clock=clock, size_evaluator=size_evaluator)

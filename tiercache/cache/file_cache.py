"""File-based cache tier bounded by the bytes of its stored artifacts.

Every entry is kept as three files in a directory owned by the tier instance::

    <key>.value     pickled value
    <key>.weight    8-byte big-endian signed integer
    <key>.deadline  8-byte big-endian signed integer

This tier is best effort: a failed read or write is logged and counted, and
the operation falls back to a miss or a default value instead of raising.
"""

import itertools
import os
import pickle
import struct
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from tiercache.errors import ConfigurationError, DegradedIOError
from tiercache.utils.logger import log_debug, log_info, log_warning
from .base import MISSING, NEVER, Clock, TierStore

VALUE_SUFFIX = ".value"
WEIGHT_SUFFIX = ".weight"
DEADLINE_SUFFIX = ".deadline"
ARTIFACT_SUFFIXES = (VALUE_SUFFIX, WEIGHT_SUFFIX, DEADLINE_SUFFIX)

STORAGE_SUBDIR = "filesystem_tier"

_LONG = struct.Struct(">q")
_ABSENT = object()

SizeEvaluator = Callable[[Path], int]


def physical_size(path: Path) -> int:
    """Size of a stored artifact in bytes, 0 if it can't be read."""
    try:
        return path.stat().st_size
    except OSError:
        return 0


class FilesystemTier(TierStore):
    """Persistent tier with expire-then-evict-coldest eviction by byte budget."""

    # Makes directory names unique when instances share pid, thread and millis.
    _instance_counter = itertools.count()

    def __init__(
        self,
        max_bytes: int,
        storage_path: Union[str, Path, None],
        clock: Optional[Clock] = None,
        size_evaluator: Optional[SizeEvaluator] = None,
        name: str = "filesystem",
    ):
        if isinstance(max_bytes, bool) or not isinstance(max_bytes, int):
            raise ConfigurationError("Size of the cache tier must be an integer!")
        if max_bytes <= 0:
            raise ConfigurationError("Size of the cache tier must be greater than 0!")
        if storage_path is None:
            raise ConfigurationError("Storage path can't be None!")
        root = Path(storage_path)
        if not root.is_dir():
            raise ConfigurationError(f"Cache storage path {root} is not a directory!")

        super().__init__(name, max_bytes, clock)
        self._size_evaluator: SizeEvaluator = size_evaluator or physical_size
        self._lock = threading.RLock()
        self._entry_sizes: Dict[int, int] = {}
        self._usage = 0

        instance_id = "_".join(
            str(part)
            for part in (
                os.getpid(),
                threading.get_ident(),
                self.now(),
                next(self._instance_counter),
            )
        )
        self.storage_dir = root / STORAGE_SUBDIR / instance_id
        try:
            self.storage_dir.mkdir(parents=True)
        except OSError as e:
            raise ConfigurationError(
                f"Can't create cache storage directory {self.storage_dir}: {e}"
            ) from e

        log_info(
            "Filesystem cache tier created",
            name=name,
            max_bytes=max_bytes,
            storage_dir=str(self.storage_dir),
        )

    # Paths and raw artifact I/O

    def _path(self, key: int, suffix: str) -> Path:
        return self.storage_dir / f"{key}{suffix}"

    def _artifact_paths(self, key: int) -> Iterator[Path]:
        return (self._path(key, suffix) for suffix in ARTIFACT_SUFFIXES)

    def _write_artifact(self, path: Path, data: bytes) -> None:
        try:
            path.write_bytes(data)
        except OSError as e:
            raise DegradedIOError(
                f"Failed attempt to write the file {path.name}: {e}", path
            ) from e

    def _read_artifact(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            log_debug("Cache artifact does not exist", tier=self.name, file=path.name)
            return None
        except OSError as e:
            raise DegradedIOError(
                f"Failed attempt to read the file {path.name}: {e}", path
            ) from e

    def _write_long(self, key: int, suffix: str, value: int) -> None:
        self._write_artifact(self._path(key, suffix), _LONG.pack(value))

    def _read_long(self, key: int, suffix: str) -> int:
        path = self._path(key, suffix)
        data = self._read_artifact(path)
        if data is None:
            return MISSING
        if len(data) != _LONG.size:
            raise DegradedIOError(f"Corrupted integer artifact {path.name}", path)
        return _LONG.unpack(data)[0]

    def _write_value(self, key: int, value: Any) -> None:
        path = self._path(key, VALUE_SUFFIX)
        try:
            payload = pickle.dumps(value)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise DegradedIOError(f"Can't serialize the value for {path.name}: {e}", path) from e
        self._write_artifact(path, payload)

    def _read_value(self, key: int) -> Any:
        path = self._path(key, VALUE_SUFFIX)
        data = self._read_artifact(path)
        if data is None:
            return _ABSENT
        try:
            return pickle.loads(data)  # nosec B301
        except Exception as e:
            raise DegradedIOError(f"Failed attempt to read the object from {path.name}: {e}", path) from e

    def _degraded(self, operation: str, key: Optional[int], error: DegradedIOError) -> None:
        self.stats.errors += 1
        log_warning(
            "Filesystem cache I/O degraded",
            tier=self.name,
            operation=operation,
            key=key,
            file=str(error.path) if error.path else None,
            error=str(error),
        )

    # Degrading wrappers and bookkeeping

    def _load_long(self, key: int, suffix: str, operation: str) -> int:
        try:
            return self._read_long(key, suffix)
        except DegradedIOError as e:
            self._degraded(operation, key, e)
            return MISSING

    def _store_long(self, key: int, suffix: str, value: int, operation: str) -> None:
        try:
            self._write_long(key, suffix, value)
        except DegradedIOError as e:
            self._degraded(operation, key, e)
        self._account(key)

    def _entry_cost(self, key: int) -> int:
        return sum(self._size_evaluator(path) for path in self._artifact_paths(key))

    def _account(self, key: int) -> None:
        """Refresh the recorded cost of key so usage stays the sum of entry costs."""
        cost = self._entry_cost(key)
        self._usage += cost - self._entry_sizes.get(key, 0)
        self._entry_sizes[key] = cost

    def _discard(self, key: int) -> None:
        for path in self._artifact_paths(key):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self._degraded("remove", key, DegradedIOError(str(e), path))
        self._usage -= self._entry_sizes.pop(key, 0)

    def _has_value(self, key: int) -> bool:
        return self._path(key, VALUE_SUFFIX).exists()

    # Eviction

    def _evict_to_capacity(self) -> None:
        while self._usage > self.capacity:
            self._remove_expired()
            if self._usage > self.capacity:
                self._evict_coldest()

    def _remove_expired(self) -> None:
        now = self.now()
        expired = [
            key
            for key in self._entry_sizes
            if self._load_long(key, DEADLINE_SUFFIX, "evict") <= now
        ]
        for key in expired:
            self._discard(key)
        if expired:
            self.stats.expirations += len(expired)
            log_debug("Expired entries removed", tier=self.name, count=len(expired))

    def _evict_coldest(self) -> None:
        # usage > capacity > 0 means at least one entry is recorded.
        victim = min(
            self._entry_sizes,
            key=lambda key: self._load_long(key, WEIGHT_SUFFIX, "evict"),
        )
        self._discard(victim)
        self.stats.evictions += 1
        log_debug("Coldest entry evicted", tier=self.name, key=victim)

    # TierStore API

    def put(self, key: int, value: Any) -> None:
        """Write all three artifacts, then evict until the byte budget holds."""
        with self._lock:
            self._check_open()
            self._discard(key)
            try:
                self._write_value(key, value)
                self._write_long(key, WEIGHT_SUFFIX, 0)
                self._write_long(key, DEADLINE_SUFFIX, NEVER)
            except DegradedIOError as e:
                self._degraded("put", key, e)
                self._discard(key)
                return

            self._account(key)
            if self._entry_sizes[key] > self.capacity:
                log_debug(
                    "Entry larger than tier capacity dropped",
                    tier=self.name,
                    key=key,
                    entry_size=self._entry_sizes[key],
                    capacity=self.capacity,
                )
                self._discard(key)
                self.stats.evictions += 1
                return

            self._evict_to_capacity()

    def get(self, key: int) -> Optional[Any]:
        """Read a live value, counting the access in its weight."""
        with self._lock:
            self._check_open()
            if not self._has_value(key):
                self.stats.misses += 1
                return None

            if self.now() >= self._load_long(key, DEADLINE_SUFFIX, "get"):
                self._discard(key)
                self.stats.expirations += 1
                self.stats.misses += 1
                return None

            try:
                value = self._read_value(key)
            except DegradedIOError as e:
                self._degraded("get", key, e)
                value = _ABSENT

            if value is _ABSENT:
                self.stats.misses += 1
                return None
            self._increment(key)
            self.stats.hits += 1
            return value

    def remove(self, key: int) -> None:
        with self._lock:
            self._check_open()
            self._discard(key)

    def clear(self) -> None:
        with self._lock:
            self._check_open()
            self._clear_storage()

    def _clear_storage(self) -> None:
        try:
            paths = [p for p in self.storage_dir.iterdir() if not p.name.startswith(".")]
        except OSError as e:
            self._degraded("clear", None, DegradedIOError(str(e), self.storage_dir))
            paths = []
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self._degraded("clear", None, DegradedIOError(str(e), path))
        self._entry_sizes.clear()
        self._usage = 0

    def contains_key(self, key: int) -> bool:
        with self._lock:
            self._check_open()
            return self._has_value(key)

    def _increment(self, key: int) -> None:
        weight = self._load_long(key, WEIGHT_SUFFIX, "increment_weight")
        self._store_long(key, WEIGHT_SUFFIX, weight + 1, "increment_weight")

    def increment_weight(self, key: int) -> None:
        with self._lock:
            self._check_open()
            if self._has_value(key):
                self._increment(key)

    def set_weight(self, key: int, weight: int) -> None:
        with self._lock:
            self._check_open()
            if self._has_value(key):
                self._store_long(key, WEIGHT_SUFFIX, weight, "set_weight")

    def get_weight(self, key: int) -> int:
        with self._lock:
            self._check_open()
            return self._load_long(key, WEIGHT_SUFFIX, "get_weight")

    def set_deadline(self, key: int, millis: int) -> None:
        with self._lock:
            self._check_open()
            if self._has_value(key):
                self._store_long(key, DEADLINE_SUFFIX, millis, "set_deadline")

    def get_deadline(self, key: int) -> int:
        with self._lock:
            self._check_open()
            return self._load_long(key, DEADLINE_SUFFIX, "get_deadline")

    def get_entry_size(self, key: int) -> int:
        """Cost of the entry's three artifacts, or 0 if key isn't stored."""
        with self._lock:
            self._check_open()
            if not self._has_value(key):
                return 0
            return self._entry_cost(key)

    def set_size_evaluator(self, size_evaluator: SizeEvaluator) -> None:
        """Replace the per-artifact size function and re-cost stored entries."""
        with self._lock:
            self._check_open()
            self._size_evaluator = size_evaluator
            for key in list(self._entry_sizes):
                self._account(key)

    @property
    def usage(self) -> int:
        """Total bytes accounted to stored entries."""
        with self._lock:
            self._check_open()
            return self._usage

    def __len__(self) -> int:
        with self._lock:
            self._check_open()
            return len(self._entry_sizes)

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["storage_dir"] = str(self.storage_dir)
        return stats

    def close(self) -> None:
        """Delete all entries and, best effort, the storage directory."""
        with self._lock:
            self._check_open()
            self._clear_storage()
            try:
                self.storage_dir.rmdir()
            except OSError as e:
                log_warning(
                    "Can't remove cache storage directory",
                    tier=self.name,
                    storage_dir=str(self.storage_dir),
                    error=str(e),
                )
            self._mark_closed()
        log_info("Filesystem cache tier closed", name=self.name)

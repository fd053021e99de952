"""Behavior shared by every cache tier, run against both implementations."""

import threading

import pytest

from tiercache.cache.base import MISSING, NEVER
from tiercache.cache.file_cache import FilesystemTier
from tiercache.cache.memory_cache import MemoryTier
from tiercache.errors import ClosedStateError


@pytest.fixture(params=["memory", "filesystem"])
def tier(request, clock, storage_root):
    """A roomy tier of each kind."""
    if request.param == "memory":
        store = MemoryTier(max_entries=100, clock=clock)
    else:
        store = FilesystemTier(max_bytes=1_000_000, storage_path=storage_root, clock=clock)
    yield store
    if not store.closed:
        store.close()


@pytest.fixture(params=["memory", "filesystem"])
def three_entry_tier(request, clock, storage_root):
    """A tier that holds exactly three entries, clock fixed at 100."""
    if request.param == "memory":
        store = MemoryTier(max_entries=3, clock=clock)
    else:
        # 3 artifacts of 5 bytes each: 15 bytes per entry.
        store = FilesystemTier(
            max_bytes=45,
            storage_path=storage_root,
            clock=clock,
            size_evaluator=lambda path: 5,
        )
    yield store
    if not store.closed:
        store.close()


CLOSED_OPERATIONS = {
    "put": lambda t: t.put(0, "Something"),
    "get": lambda t: t.get(0),
    "remove": lambda t: t.remove(0),
    "clear": lambda t: t.clear(),
    "contains_key": lambda t: t.contains_key(0),
    "increment_weight": lambda t: t.increment_weight(0),
    "set_weight": lambda t: t.set_weight(0, 3),
    "get_weight": lambda t: t.get_weight(0),
    "set_deadline": lambda t: t.set_deadline(0, 100),
    "get_deadline": lambda t: t.get_deadline(0),
    "get_stats": lambda t: t.get_stats(),
    "usage": lambda t: t.usage,
    "len": lambda t: len(t),
    "close": lambda t: t.close(),
}


class TestPut:
    """Test storing entries."""

    def test_put_stores_the_object(self, tier):
        tier.put(0, "An object")
        assert tier.get(0) == "An object"

    def test_put_sets_weight_to_zero(self, tier):
        """Test that put resets the weight, also on overwrite."""
        tier.put(1, "An object")
        assert tier.get_weight(1) == 0
        tier.get(1)
        tier.put(1, "An object")
        assert tier.get_weight(1) == 0

    def test_put_sets_deadline_to_never(self, tier):
        tier.put(2, "An object")
        assert tier.get_deadline(2) == NEVER

    def test_put_overwrites_value(self, tier):
        tier.put(3, "old")
        tier.put(3, "new")
        assert tier.get(3) == "new"
        assert len(tier) == 1

    def test_put_evicts_expired_objects_first_when_full(self, three_entry_tier):
        """Test the expire-then-evict order on a full tier."""
        cold_key, expired_key, hot_key, new_key = 0, 1, 2, 4

        three_entry_tier.put(cold_key, "Fresh Object #1")
        three_entry_tier.put(expired_key, "The Expired One")
        three_entry_tier.set_deadline(expired_key, 99)
        assert three_entry_tier.get(expired_key) is None
        three_entry_tier.put(hot_key, "Fresh Object #2")
        three_entry_tier.get(hot_key)
        three_entry_tier.get(hot_key)
        three_entry_tier.put(new_key, "A new Object")

        assert three_entry_tier.contains_key(cold_key)
        assert not three_entry_tier.contains_key(expired_key)
        assert three_entry_tier.contains_key(hot_key)
        assert three_entry_tier.contains_key(new_key)

    def test_put_sweeps_expired_entries_before_evicting_cold_ones(self, three_entry_tier):
        """Test that an unswept expired entry goes before a cold live one."""
        three_entry_tier.put(0, "cold")
        three_entry_tier.put(1, "expired")
        three_entry_tier.put(2, "hot")
        three_entry_tier.set_weight(1, 10)
        three_entry_tier.set_deadline(1, 100)
        three_entry_tier.get(2)

        three_entry_tier.put(3, "new")

        assert three_entry_tier.contains_key(0)
        assert not three_entry_tier.contains_key(1)
        assert three_entry_tier.contains_key(2)
        assert three_entry_tier.contains_key(3)

    def test_put_evicts_least_frequently_read_objects_second(self, three_entry_tier):
        """Test that the coldest live entry is evicted when nothing expired."""
        cold_key, warm_key, hot_key, new_key = 0, 1, 2, 4

        three_entry_tier.put(cold_key, "Cold Object")
        three_entry_tier.put(warm_key, "Warm Object")
        three_entry_tier.get(warm_key)
        three_entry_tier.put(hot_key, "Hot Object")
        three_entry_tier.get(hot_key)
        three_entry_tier.get(hot_key)
        three_entry_tier.put(new_key, "A new Object")

        assert not three_entry_tier.contains_key(cold_key)
        assert three_entry_tier.contains_key(warm_key)
        assert three_entry_tier.contains_key(hot_key)
        assert three_entry_tier.contains_key(new_key)
        assert three_entry_tier.stats.evictions == 1


class TestGet:
    """Test reading entries."""

    def test_get_returns_stored_object_before_deadline(self, tier):
        tier.put(0, "The Object")
        tier.set_deadline(0, 101)
        assert tier.get(0) == "The Object"

    def test_get_returns_none_for_missing_key(self, tier):
        assert tier.get(0) is None

    def test_get_returns_none_once_deadline_is_reached(self, tier):
        tier.put(0, "Expired Object")
        tier.set_deadline(0, 100)
        assert tier.get(0) is None

        tier.put(1, "Expired Object")
        tier.set_deadline(1, 99)
        assert tier.get(1) is None

    def test_get_increments_weight_on_hit(self, tier):
        tier.put(0, "An Object")
        assert tier.get_weight(0) == 0
        tier.get(0)
        assert tier.get_weight(0) == 1
        tier.get(0)
        assert tier.get_weight(0) == 2

    def test_get_removes_expired_object(self, tier):
        tier.put(0, "Expired Object")
        tier.set_deadline(0, 100)
        tier.get(0)
        assert not tier.contains_key(0)
        assert tier.get_weight(0) == MISSING

    def test_get_round_trips_structured_values(self, tier):
        value = {"numbers": [1, 2, 3], "nested": {"flag": True}}
        tier.put(7, value)
        assert tier.get(7) == value


class TestRemoveAndClear:
    """Test deleting entries."""

    def test_clear_wipes_all_stored_objects(self, tier):
        tier.put(0, "1")
        tier.put(1, "2")
        tier.get(0)
        tier.get(1)

        tier.clear()

        assert not tier.contains_key(0)
        assert not tier.contains_key(1)
        assert tier.get_weight(0) == MISSING
        assert tier.get_weight(1) == MISSING
        assert tier.get_deadline(0) == MISSING
        assert tier.get_deadline(1) == MISSING
        assert tier.usage == 0
        assert len(tier) == 0

    def test_remove_only_removes_the_specified_object(self, tier):
        tier.put(0, "1")
        tier.put(1, "2")
        tier.get(0)
        tier.get(1)

        tier.remove(1)

        assert tier.contains_key(0)
        assert not tier.contains_key(1)
        assert tier.get_weight(0) == 1
        assert tier.get_weight(1) == MISSING
        assert tier.get_deadline(0) == NEVER
        assert tier.get_deadline(1) == MISSING

    def test_remove_missing_key_is_a_noop(self, tier):
        tier.put(0, "1")
        tier.remove(42)
        assert tier.contains_key(0)
        assert len(tier) == 1


class TestContainsKey:
    """Test presence checks."""

    def test_contains_key_for_stored_and_missing_keys(self, tier):
        tier.put(0, "An Object")
        assert tier.contains_key(0)
        assert not tier.contains_key(1)

    def test_contains_key_ignores_expiry_while_get_removes(self, tier):
        """Test that contains_key sees an expired entry that get then removes."""
        tier.put(0, "An Object")
        tier.set_deadline(0, 99)

        assert tier.contains_key(0)
        assert tier.get(0) is None
        assert not tier.contains_key(0)


class TestMetadata:
    """Test weight and deadline accessors."""

    def test_increment_weight_adds_one(self, tier):
        tier.put(0, "An Object")
        tier.put(1, "An Other Object")
        tier.increment_weight(0)
        assert tier.get_weight(0) == 1
        tier.increment_weight(0)
        assert tier.get_weight(0) == 2
        assert tier.get_weight(1) == 0

    def test_metadata_writes_on_missing_key_do_nothing(self, tier):
        tier.increment_weight(0)
        tier.set_weight(0, 5)
        tier.set_deadline(0, 500)
        assert not tier.contains_key(0)
        assert tier.get_weight(0) == MISSING
        assert tier.get_deadline(0) == MISSING

    def test_increment_weight_works_on_expired_object(self, tier):
        tier.put(0, "An Object")
        tier.set_deadline(0, 99)
        tier.increment_weight(0)
        tier.increment_weight(0)
        assert tier.get_weight(0) == 2

    def test_get_weight_of_expired_object(self, tier):
        tier.put(0, "An Object")
        tier.set_deadline(0, 1000)
        tier.increment_weight(0)
        tier.set_deadline(0, 99)
        assert tier.get_weight(0) == 1

    def test_set_weight(self, tier):
        tier.put(0, "An Object")
        tier.set_weight(0, 42)
        assert tier.get_weight(0) == 42

    def test_set_deadline(self, tier):
        tier.put(0, "An Object")
        tier.set_deadline(0, 1100)
        assert tier.get_deadline(0) == 1100
        tier.set_deadline(0, 2334)
        assert tier.get_deadline(0) == 2334

    def test_missing_and_never_sentinels_differ(self):
        assert MISSING != NEVER


class TestLifecycle:
    """Test the open/closed state machine."""

    @pytest.mark.parametrize("operation", list(CLOSED_OPERATIONS), ids=list(CLOSED_OPERATIONS))
    def test_operations_fail_after_close(self, tier, operation):
        tier.put(0, "Something")
        tier.close()
        with pytest.raises(ClosedStateError):
            CLOSED_OPERATIONS[operation](tier)

    def test_close_twice_raises(self, tier):
        tier.close()
        assert tier.closed
        with pytest.raises(ClosedStateError):
            tier.close()

    def test_context_manager_closes_tier(self, tier):
        with tier as store:
            store.put(0, "value")
        assert tier.closed


class TestAccounting:
    """Test usage bookkeeping and statistics."""

    def test_usage_tracks_entries(self, tier):
        assert tier.usage == 0
        tier.put(0, "a")
        tier.put(1, "b")
        first_usage = tier.usage
        assert first_usage > 0
        tier.remove(0)
        assert 0 < tier.usage < first_usage
        tier.remove(1)
        assert tier.usage == 0

    def test_usage_never_exceeds_capacity(self, three_entry_tier):
        for key in range(10):
            three_entry_tier.put(key, f"value {key}")
            assert three_entry_tier.usage <= three_entry_tier.capacity
        assert len(three_entry_tier) == 3

    def test_stats(self, tier):
        tier.put(0, "value")
        tier.get(0)
        tier.get(1)

        stats = tier.get_stats()
        assert stats["backend"] == tier.name
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["size"] == 1
        assert stats["capacity"] == tier.capacity

    def test_concurrent_puts_respect_capacity(self, three_entry_tier):
        """Test that parallel writers never push the tier over capacity."""

        def writer(offset):
            for i in range(25):
                three_entry_tier.put(offset * 100 + i, f"value {i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(three_entry_tier) == 3
        assert three_entry_tier.usage <= three_entry_tier.capacity

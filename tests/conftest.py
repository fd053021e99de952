"""Pytest configuration and fixtures for tiercache tests."""

import sys
from pathlib import Path
from typing import Any, Dict

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


class FakeClock:
    """Manually driven millisecond clock."""

    def __init__(self, now: int = 100):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@pytest.fixture
def clock():
    """Clock fixed at 100 millis until a test moves it."""
    return FakeClock(100)


@pytest.fixture
def storage_root(tmp_path):
    """Existing directory to hold filesystem tier storage."""
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def memory_props() -> Dict[str, Any]:
    """Properties for a memory-only cache."""
    return {
        "cache.tiers.memory": "enable",
        "cache.tiers.filesystem": "disable",
        "cache.size.in.memory.entries": "4",
        "cache.expiration.policy": "no_expiry",
        "cache.expiration.millis": "0",
    }


@pytest.fixture
def two_tier_props(storage_root) -> Dict[str, Any]:
    """Properties for a cache with both tiers enabled."""
    return {
        "cache.tiers.memory": "enable",
        "cache.tiers.filesystem": "enable",
        "cache.size.in.memory.entries": "4",
        "cache.size.filesystem.bytes": "32768",
        "cache.filesystem.storage.path": str(storage_root),
        "cache.expiration.policy": "no_expiry",
        "cache.expiration.millis": "0",
        "cache.tiers.put.to": "top",
    }

"""Exception hierarchy for the tiered cache.

- ConfigurationError: a required setting is missing or invalid. Raised while
  constructing a tier or the orchestrator; construction is aborted.
- ClosedStateError: an operation (including a second close) was invoked on a
  store that has already been closed. Always surfaced to the caller.
- DegradedIOError: a persistent-tier read or write failed. Raised by the
  filesystem tier's artifact helpers and handled inside the tier, where it is
  logged and turned into a cache miss or default value.
"""


class CacheError(Exception):
    """Base class for all cache errors."""


class ConfigurationError(CacheError, ValueError):
    """Invalid or missing cache configuration."""


class ClosedStateError(CacheError, RuntimeError):
    """Operation attempted on a closed cache store."""

    def __init__(self, name: str = "cache"):
        super().__init__(f"The {name} is closed!")
        self.name = name


class DegradedIOError(CacheError, OSError):
    """Best-effort persistent storage failed to read or write an artifact."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path

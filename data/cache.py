"""
Simple in-memory TTL cache.
Stores provider responses with the time they were written.
Different data kinds change at different speeds, so each kind gets its own
cache instance with its own TTL (see CacheTtlConfig).

Expiry is lazy: an entry older than the TTL is evicted by the read that finds
it. There is no background sweep; cleanup() exists for callers that want to
reclaim memory explicitly.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable


class TTLCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Get a value if it exists and hasn't expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, written_at = entry
            if self._clock() - written_at > self.ttl_seconds:
                del self._store[key]
                return None
            return value

    def put(self, key: Hashable, value: Any):
        """Store a value, replacing any previous entry and its timestamp."""
        with self._lock:
            self._store[key] = (value, self._clock())

    def remove(self, key: Hashable):
        with self._lock:
            self._store.pop(key, None)

    def clear(self):
        """Clear all cached values."""
        with self._lock:
            self._store.clear()

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, written_at) in self._store.items() if now - written_at > self.ttl_seconds]
            for k in expired:
                del self._store[k]
            return len(expired)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def __len__(self):
        return self.size


MINUTE = 60


@dataclass(frozen=True)
class CacheTtlConfig:
    """TTL per data kind, in seconds. Build a new one to change TTLs."""
    quote: float = 1 * MINUTE
    intraday: float = 10 * MINUTE
    daily: float = 24 * 60 * MINUTE
    profile: float = 24 * 60 * MINUTE
    metrics: float = 24 * 60 * MINUTE
    sentiment: float = 30 * MINUTE

    KINDS = ("quote", "intraday", "daily", "profile", "metrics", "sentiment")

    def __post_init__(self):
        for kind in self.KINDS:
            object.__setattr__(self, kind, max(MINUTE, getattr(self, kind)))

    @classmethod
    def from_minutes(cls, quote: int = 1, intraday: int = 10, daily: int = 1440,
                     profile: int = 1440, metrics: int = 1440, sentiment: int = 30) -> "CacheTtlConfig":
        """Minutes below one are clamped up to one minute."""
        return cls(
            quote=max(1, quote) * MINUTE,
            intraday=max(1, intraday) * MINUTE,
            daily=max(1, daily) * MINUTE,
            profile=max(1, profile) * MINUTE,
            metrics=max(1, metrics) * MINUTE,
            sentiment=max(1, sentiment) * MINUTE,
        )

    def ttl_for(self, kind: str) -> float:
        if kind not in self.KINDS:
            raise KeyError(f"Unknown cache kind: {kind}")
        return getattr(self, kind)

"""
In-process TTL cache for upstream responses.

Staleness is enforced at read time: an entry is served only while
`now - written_at < ttl_seconds`. Entries are replaced on every write and
never mutated in place. `sweep()` is optional memory hygiene for keys that
are written once and never read again (per-symbol candle keys).
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional


class _Miss:
    """Sentinel returned by `TTLCache.get` on a miss."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'MISS'


MISS = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    written_at: float


class TTLCache:
    def __init__(self, ttl_seconds: float, name: str = 'cache', clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        self.ttl_seconds = float(ttl_seconds)
        self.name = name
        self._clock = clock
        self._store: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self._last_write: Optional[float] = None

    def get(self, key: Hashable) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
        if entry is None or now - entry.written_at >= self.ttl_seconds:
            return MISS
        return entry.value

    def put(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._store[key] = CacheEntry(value=value, written_at=now)
            self._last_write = now

    def sweep(self, max_age_multiple: float = 10.0) -> int:
        """Drop entries older than `ttl_seconds * max_age_multiple`. Returns count removed."""
        cutoff = self._clock() - self.ttl_seconds * max_age_multiple
        with self._lock:
            expired = [k for k, e in self._store.items() if e.written_at < cutoff]
            for k in expired:
                del self._store[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._store)

    def last_write(self) -> Optional[float]:
        return self._last_write

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            size = len(self._store)
            fresh = sum(1 for e in self._store.values() if now - e.written_at < self.ttl_seconds)
        last = self._last_write
        return {
            'name': self.name,
            'ttl': self.ttl_seconds,
            'entries': size,
            'fresh_entries': fresh,
            'last_write': last,
            'last_write_age_seconds': round(now - last, 3) if last is not None else None,
        }


__all__ = ['MISS', 'CacheEntry', 'TTLCache']

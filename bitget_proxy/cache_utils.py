import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable, TypeVar

from .cache import MISS, TTLCache

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RequestDeduplicator:
    """Collapse concurrent calls for the same key into one `produce()` call.

    The first caller for a key registers a pending future and runs `produce`;
    everyone arriving while it runs waits on that future and gets the same
    value or the same exception. The pending slot is released before the
    outcome is published, so the next caller after completion starts fresh.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._inflight: Dict[Hashable, Future] = {}

    def dedupe(self, key: Hashable, produce: Callable[[], T]) -> T:
        with self._lock:
            fut = self._inflight.get(key)
            owner = fut is None
            if owner:
                fut = Future()
                self._inflight[key] = fut
        if not owner:
            logger.debug('dedupe.wait', extra={'event': 'dedupe_wait', 'key': str(key)})
            return fut.result()
        try:
            value = produce()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            fut.set_exception(exc)
            raise
        with self._lock:
            self._inflight.pop(key, None)
        fut.set_result(value)
        return value

    def pending_count(self) -> int:
        with self._lock:
            return len(self._inflight)

    def pending_keys(self):
        with self._lock:
            return [str(k) for k in self._inflight]


def cached_fetch(cache: TTLCache, deduper: RequestDeduplicator, key: Hashable, produce: Callable[[], Any]) -> Any:
    """Serve `key` from `cache`, or run `produce` once across concurrent callers and cache the result.

    Only the deduplication winner writes the cache, and failures are never cached.
    """
    hit = cache.get(key)
    if hit is not MISS:
        return hit

    def _produce_and_store():
        # a previous winner may have filled the cache between our miss and registration
        fresh = cache.get(key)
        if fresh is not MISS:
            return fresh
        value = produce()
        cache.put(key, value)
        return value

    return deduper.dedupe(key, _produce_and_store)


__all__ = ['RequestDeduplicator', 'cached_fetch']

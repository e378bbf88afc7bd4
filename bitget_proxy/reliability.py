"""Circuit breaker in front of the Bitget REST API.

Network errors, 429s and 5xx responses count as failures. After
`fail_threshold` consecutive failures the breaker trips and the gateway fails
fast for `reset_seconds`; then one trial request is let through. A success
closes the breaker, a failed trial trips it again.
"""
from __future__ import annotations
import threading, time, logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

CLOSED, OPEN, HALF_OPEN = 'CLOSED', 'OPEN', 'HALF_OPEN'


class CircuitBreaker:
    def __init__(self, fail_threshold: int, reset_seconds: float, clock: Callable[[], float] = time.time):
        self.fail_threshold = max(1, int(fail_threshold))
        self.reset_seconds = float(reset_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CLOSED
        self.failures = 0
        self.trips = 0
        self.open_until = 0.0
        self.last_failure_at: Optional[float] = None
        self._trial_inflight = False

    def _trip(self, now: float) -> None:
        # caller holds the lock
        self.state = OPEN
        self.open_until = now + self.reset_seconds
        self.trips += 1
        self._trial_inflight = False

    def allow(self) -> bool:
        """True when a request may go upstream. Claims the trial slot in HALF_OPEN."""
        now = self._clock()
        with self._lock:
            if self.state == OPEN:
                if now < self.open_until:
                    return False
                self.state = HALF_OPEN
                self._trial_inflight = False
            if self.state == HALF_OPEN:
                if self._trial_inflight:
                    return False
                self._trial_inflight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            recovered = self.state != CLOSED
            self.state = CLOSED
            self.failures = 0
            self.open_until = 0.0
            self._trial_inflight = False
        if recovered:
            logger.info('circuit_breaker.reset', extra={'event': 'circuit_reset'})

    def record_failure(self, reason: Optional[str] = None) -> None:
        now = self._clock()
        with self._lock:
            self.failures += 1
            self.last_failure_at = now
            if self.state == HALF_OPEN:
                self._trip(now)
                action = 'reopen'
            elif self.state == CLOSED and self.failures >= self.fail_threshold:
                self._trip(now)
                action = 'open'
            else:
                return
            failures, open_until = self.failures, self.open_until
        logger.warning(f"circuit_breaker.{action} after {failures} failures ({reason or 'upstream error'})",
                       extra={'event': f'circuit_{action}', 'failures': failures, 'open_until': open_until})

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            return {
                'state': self.state,
                'failures': self.failures,
                'trips': self.trips,
                'open_until': self.open_until,
                'retry_in_seconds': round(max(0.0, self.open_until - now), 3) if self.state == OPEN else 0.0,
                'is_open': self.state == OPEN,
                'is_half_open': self.state == HALF_OPEN,
            }


__all__ = ['CircuitBreaker', 'CLOSED', 'OPEN', 'HALF_OPEN']

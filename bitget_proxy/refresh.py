"""
Background refresh of the all-tickers batch and periodic cache sweeps.

Runs in a daemon thread. Refreshes go through the service's deduplicator, so a
client miss and a timer tick arriving together still make one upstream call.
"""
import logging
import threading
import time

from .errors import ProxyError

logger = logging.getLogger(__name__)


class Refresher:
    """Periodic updater for the all-tickers cache."""

    def __init__(self, service, interval: float = 30.0, sweep_interval: float = 300.0, clock=time.time):
        self.service = service
        self.interval = max(1.0, float(interval))
        self.sweep_interval = max(self.interval, float(sweep_interval))
        self._clock = clock
        self._stop = threading.Event()
        self._thread = None
        self._last_sweep = clock()
        self.runs = 0
        self.failures = 0

    def run_once(self) -> bool:
        """One tick: refresh tickers, sweep when due. Returns True if the refresh succeeded."""
        ok = True
        try:
            batch = self.service.refresh_all_tickers()
            logger.debug(f"background refresh: {len(batch.tickers)} tickers")
        except ProxyError as e:
            ok = False
            self.failures += 1
            logger.warning(f"Background refresh failed: {e}")
        except Exception:
            ok = False
            self.failures += 1
            logger.exception('Background refresh crashed')
        self.runs += 1
        now = self._clock()
        if now - self._last_sweep >= self.sweep_interval:
            self._last_sweep = now
            try:
                self.service.sweep_caches()
            except Exception:
                logger.exception('Cache sweep crashed')
        return ok

    def _loop(self):
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='tickers_refresh', daemon=True)
        self._thread.start()
        logger.info(f"Background refresh started (every {self.interval:.0f}s, sweep every {self.sweep_interval:.0f}s)")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info('Background refresh stopped')

"""
Spike alerts over 24h ticker batches.

Metric per ticker, in order of preference:
    1. the upstream 24h change fraction, when present
    2. (price - low24h) / low24h, when low24h > 0 (else 0)

A ticker whose metric reaches the threshold produces a SpikeAlert unless the
log already holds one for the same display symbol with a spike value within
the tolerance, recorded inside the dedupe window. The log is newest-first and
capped; the oldest entries fall off the end. Duplicate search is a linear scan
over the capped log.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .errors import ComputationError
from .models import Ticker
from .utils import display_symbol

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.04
DEFAULT_DEDUPE_WINDOW_MS = 300_000
DEFAULT_DEDUPE_TOLERANCE = 0.001
DEFAULT_MAX_ALERTS = 50


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SpikeAlert:
    symbol: str
    spike_value: float  # fraction
    spike_percent: str  # spike_value * 100, 2 decimals
    timestamp: int  # epoch ms
    price: float

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'spikeValue': self.spike_value,
            'spikePercent': self.spike_percent,
            'timestamp': self.timestamp,
            'price': self.price,
        }


class AlertLog:
    """Process-wide newest-first alert history, capped at `max_alerts`."""

    def __init__(self, max_alerts: int = DEFAULT_MAX_ALERTS):
        self.max_alerts = max(1, int(max_alerts))
        self._alerts: List[SpikeAlert] = []
        self._lock = threading.Lock()

    def add_unless_duplicate(self, alert: SpikeAlert, window_ms: int, tolerance: float) -> bool:
        """Prepend `alert` unless an equivalent recent one exists. Returns True if appended."""
        with self._lock:
            for existing in self._alerts:
                if (existing.symbol == alert.symbol
                        and abs(existing.spike_value - alert.spike_value) <= tolerance
                        and alert.timestamp - existing.timestamp < window_ms):
                    return False
            self._alerts.insert(0, alert)
            del self._alerts[self.max_alerts:]
            return True

    def items(self, limit: Optional[int] = None) -> List[SpikeAlert]:
        with self._lock:
            alerts = list(self._alerts)
        return alerts[:limit] if limit else alerts

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)


def spike_metric(ticker: Ticker) -> float:
    if ticker.change24h is not None:
        metric = float(ticker.change24h)
    elif ticker.low24h is not None and ticker.low24h > 0:
        metric = (ticker.price - ticker.low24h) / ticker.low24h
    else:
        metric = 0.0
    if not math.isfinite(metric):
        raise ComputationError(f"non-finite spike metric for {ticker.symbol}")
    return metric


class SpikeDetector:
    def __init__(self,
                 alert_log: AlertLog,
                 threshold: float = DEFAULT_THRESHOLD,
                 dedupe_window_ms: int = DEFAULT_DEDUPE_WINDOW_MS,
                 dedupe_tolerance: float = DEFAULT_DEDUPE_TOLERANCE,
                 clock_ms: Callable[[], int] = _now_ms):
        self.alert_log = alert_log
        self.threshold = threshold
        self.dedupe_window_ms = dedupe_window_ms
        self.dedupe_tolerance = dedupe_tolerance
        self._clock_ms = clock_ms

    def scan(self, tickers: Iterable[Ticker]) -> List[SpikeAlert]:
        """Append qualifying alerts to the log; returns the ones actually appended."""
        appended = []
        now = int(self._clock_ms())
        for ticker in tickers:
            try:
                metric = spike_metric(ticker)
            except (ArithmeticError, TypeError, ValueError) as e:
                logger.warning(f"spike metric failed for {getattr(ticker, 'symbol', '?')}: {e}")
                continue
            if metric < self.threshold:
                continue
            alert = SpikeAlert(
                symbol=display_symbol(ticker.symbol),
                spike_value=metric,
                spike_percent=f"{metric * 100:.2f}",
                timestamp=now,
                price=ticker.price,
            )
            if self.alert_log.add_unless_duplicate(alert, self.dedupe_window_ms, self.dedupe_tolerance):
                appended.append(alert)
                logger.info('spike.alert', extra={'event': 'spike_alert', 'symbol': alert.symbol,
                                                  'spike_percent': alert.spike_percent})
        return appended


__all__ = ['SpikeAlert', 'AlertLog', 'SpikeDetector', 'spike_metric']

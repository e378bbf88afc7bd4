"""
Market data service: the cache + dedupe path between handlers and Bitget.

Owns one TTLCache per query family, a shared RequestDeduplicator, the spike
AlertLog/SpikeDetector and the gateway. Created once at startup and handed to
the Flask app; background refresh goes through the same objects.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .cache import MISS, TTLCache
from .cache_utils import RequestDeduplicator, cached_fetch
from .config import CONFIG
from .errors import InvalidRequest, NotFoundInCache, ProxyError, UpstreamRejected
from .models import (
    ALL_TICKERS_KEY, PRODUCTS_KEY, Candle, Ticker,
    candles_key, normalize_candles, normalize_tickers, ticker_key,
)
from .spike_detector import AlertLog, SpikeAlert, SpikeDetector
from .utils import normalize_symbol

logger = logging.getLogger(__name__)

# Bitget v1 spot candle periods, short to long
PERIODS = ('1min', '5min', '15min', '30min', '1h', '4h', '6h', '12h', '1day', '3day', '1week', '1M')
CHANGE_5M_PERIOD = '5min'


@dataclass(frozen=True)
class TickerBatch:
    """One poll cycle of tickers plus optional 5m candles, replaced as a whole."""
    tickers: Tuple[Ticker, ...]
    change_5m: Dict[str, Candle]
    fetched_at: float

    def find(self, symbol: str) -> Optional[Ticker]:
        for t in self.tickers:
            if t.symbol == symbol:
                return t
        return None


@dataclass(frozen=True)
class CandleSeries:
    symbol: str
    period: str
    candles: Tuple[Candle, ...]

    @property
    def latest(self) -> Candle:
        return self.candles[-1]


class MarketDataService:
    def __init__(self, gateway, config: Optional[Dict[str, Any]] = None, clock=time.time):
        self.gateway = gateway
        self.config = cfg = dict(config or CONFIG)
        self._clock = clock
        self.tickers_cache = TTLCache(cfg['TICKERS_CACHE_TTL'], name='all_tickers', clock=clock)
        self.ticker_cache = TTLCache(cfg['TICKER_CACHE_TTL'], name='ticker', clock=clock)
        self.candles_cache = TTLCache(cfg['CANDLES_CACHE_TTL'], name='candles', clock=clock)
        self.products_cache = TTLCache(cfg['PRODUCTS_CACHE_TTL'], name='products', clock=clock)
        self.deduper = RequestDeduplicator()
        self.alert_log = AlertLog(cfg['SPIKE_MAX_ALERTS'])
        self.spike_detector = SpikeDetector(
            self.alert_log,
            threshold=cfg['SPIKE_THRESHOLD'],
            dedupe_window_ms=cfg['SPIKE_DEDUPE_WINDOW_MS'],
            dedupe_tolerance=cfg['SPIKE_DEDUPE_TOLERANCE'],
            clock_ms=lambda: int(self._clock() * 1000),
        )
        self.started_at = clock()
        self._refresh_lock = threading.Lock()
        self.last_refresh: Optional[float] = None
        self.last_refresh_error: Optional[str] = None

    def caches(self) -> List[TTLCache]:
        return [self.tickers_cache, self.ticker_cache, self.candles_cache, self.products_cache]

    # ------------------------------------------------------------------ tickers

    def _load_all_tickers(self) -> TickerBatch:
        try:
            raw = self.gateway.fetch_all_tickers()
        except ProxyError as e:
            with self._refresh_lock:
                self.last_refresh_error = e.message
            raise
        tickers = normalize_tickers(raw)
        self.spike_detector.scan(tickers)
        change_5m = self._load_change_5m(tickers) if self.config['CHANGE_5M_ENABLED'] else {}
        now = self._clock()
        with self._refresh_lock:
            self.last_refresh = now
            self.last_refresh_error = None
        logger.info(f"all-tickers refreshed: {len(tickers)} tickers, {len(change_5m)} with 5m variation")
        return TickerBatch(tickers=tickers, change_5m=change_5m, fetched_at=now)

    def all_tickers(self) -> TickerBatch:
        return cached_fetch(self.tickers_cache, self.deduper, ALL_TICKERS_KEY, self._load_all_tickers)

    def refresh_all_tickers(self) -> TickerBatch:
        """Force a refetch through the deduplicator (background timer path)."""
        def _produce_and_store():
            batch = self._load_all_tickers()
            self.tickers_cache.put(ALL_TICKERS_KEY, batch)
            return batch
        return self.deduper.dedupe(ALL_TICKERS_KEY, _produce_and_store)

    def ticker(self, symbol) -> Ticker:
        symbol = normalize_symbol(symbol)
        batch = self.tickers_cache.get(ALL_TICKERS_KEY)
        if batch is not MISS:
            hit = batch.find(symbol)
            if hit is not None:
                return hit
        cached = self.ticker_cache.get(ticker_key(symbol))
        if cached is not MISS:
            return cached
        if not self.config['TICKER_FALLBACK_FETCH']:
            raise NotFoundInCache(f"Ticker {symbol} is not cached")

        def _fetch():
            raw = self.gateway.fetch_ticker(symbol)
            try:
                return Ticker.from_raw(raw)
            except ValueError as e:
                raise UpstreamRejected(200, raw, message=f"Malformed ticker for {symbol}: {e}") from e

        return cached_fetch(self.ticker_cache, self.deduper, ticker_key(symbol), _fetch)

    # ------------------------------------------------------------------ candles

    def _validate_candle_query(self, symbol, period, limit) -> Tuple[str, str, int]:
        symbol = normalize_symbol(symbol)
        period = str(period or '').strip()
        if period not in PERIODS:
            raise InvalidRequest(f"period must be one of {', '.join(PERIODS)}")
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidRequest('limit must be an integer') from None
        if limit < 1 or limit > self.config['CANDLE_LIMIT_MAX']:
            raise InvalidRequest(f"limit must be between 1 and {self.config['CANDLE_LIMIT_MAX']}")
        return symbol, period, limit

    def candles(self, symbol, period, limit=1) -> CandleSeries:
        symbol, period, limit = self._validate_candle_query(symbol, period, limit)

        def _fetch():
            raw = self.gateway.fetch_candles(symbol, period, limit)
            candles = normalize_candles(symbol, period, raw)
            if not candles:
                raise UpstreamRejected(404, raw, message=f"No candles for {symbol} {period}")
            return CandleSeries(symbol=symbol, period=period, candles=candles)

        return cached_fetch(self.candles_cache, self.deduper, candles_key(symbol, period, limit), _fetch)

    def _load_change_5m(self, tickers) -> Dict[str, Candle]:
        symbols = [t.symbol for t in tickers[: self.config['CHANGE_5M_MAX_SYMBOLS']]]
        out: Dict[str, Candle] = {}
        if not symbols:
            return out
        workers = max(1, min(self.config['CHANGE_5M_MAX_WORKERS'], len(symbols)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='change5m') as ex:
            futs = {ex.submit(self.candles, sym, CHANGE_5M_PERIOD, 1): sym for sym in symbols}
            for fut in as_completed(futs):
                sym = futs[fut]
                try:
                    out[sym] = fut.result().latest
                except (ProxyError, ArithmeticError) as e:
                    logger.warning(f"5m candle failed for {sym}: {e}")
        return out

    # ------------------------------------------------------------------ misc

    def products(self) -> List[Dict[str, Any]]:
        return cached_fetch(self.products_cache, self.deduper, PRODUCTS_KEY, self.gateway.fetch_products)

    def spike_alerts(self, limit: Optional[int] = None) -> List[SpikeAlert]:
        return self.alert_log.items(limit)

    def sweep_caches(self) -> int:
        multiple = self.config['CACHE_SWEEP_MULTIPLE']
        removed = sum(cache.sweep(multiple) for cache in self.caches())
        if removed:
            logger.info(f"cache sweep removed {removed} stale entries")
        return removed

    def health(self) -> Dict[str, Any]:
        now = self._clock()
        with self._refresh_lock:
            last_refresh = self.last_refresh
            last_error = self.last_refresh_error
        breaker = getattr(self.gateway, 'breaker', None)
        return {
            'status': 'ok',
            'uptime_seconds': round(now - self.started_at, 2),
            'caches': {c.name: c.snapshot() for c in self.caches()},
            'pending_requests': self.deduper.pending_count(),
            'last_refresh': last_refresh,
            'last_refresh_age_seconds': round(now - last_refresh, 3) if last_refresh is not None else None,
            'last_refresh_error': last_error,
            'spike_alerts': len(self.alert_log),
            'upstream_calls': getattr(self.gateway, 'calls', None),
            'circuit_breaker': breaker.snapshot() if breaker is not None else None,
        }


__all__ = ['MarketDataService', 'TickerBatch', 'CandleSeries', 'PERIODS']

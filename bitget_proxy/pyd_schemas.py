"""Pydantic response models for the proxy endpoints.

Internal values stay at full precision (variation in percent, change in
fractions); the `from_*` constructors are the only place rounding and
percent/fraction scaling happen.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from .models import Candle, Ticker
from .spike_detector import SpikeAlert
from .variation import format_variation

Timestamp = Union[str, int, None]


class TickerOut(BaseModel):
    model_config = ConfigDict(extra='allow')

    symbol: str
    price: float
    change24h: Optional[float] = None
    high24h: Optional[float] = None
    low24h: Optional[float] = None
    volume24h: Optional[float] = None
    timestamp: Timestamp = None

    @classmethod
    def from_ticker(cls, ticker: Ticker, candle_5m: Optional[Candle] = None, with_5m: bool = False) -> 'TickerOut':
        """`with_5m` keeps the 5m keys (change5m=0.0, the rest null) for tickers without a 5m candle."""
        fields = dict(
            symbol=ticker.symbol,
            price=ticker.price,
            change24h=ticker.change24h,
            high24h=ticker.high24h,
            low24h=ticker.low24h,
            volume24h=ticker.volume24h,
            timestamp=ticker.timestamp,
        )
        if candle_5m is not None:
            fields.update(
                change5m=candle_5m.variation / 100.0,
                open5m=candle_5m.open,
                close5m=candle_5m.close,
                ts5m=candle_5m.timestamp,
            )
        elif with_5m:
            fields.update(change5m=0.0, open5m=None, close5m=None, ts5m=None)
        return cls(**fields)


class CandleRow(BaseModel):
    open: float
    close: float
    variation: str
    ts: Timestamp = None


class CandleOut(BaseModel):
    symbol: str
    period: str
    open: float
    close: float
    variation: str
    ts: Timestamp = None
    candles: List[CandleRow]

    @classmethod
    def from_candles(cls, symbol: str, period: str, candles, decimals: int = 8) -> 'CandleOut':
        latest = candles[-1]
        return cls(
            symbol=symbol,
            period=period,
            open=latest.open,
            close=latest.close,
            variation=format_variation(latest.variation, decimals),
            ts=latest.timestamp,
            candles=[
                CandleRow(open=c.open, close=c.close, variation=format_variation(c.variation, decimals),
                          ts=c.timestamp)
                for c in candles
            ],
        )


class SpikeAlertOut(BaseModel):
    symbol: str
    spikeValue: float
    spikePercent: str
    timestamp: int
    price: float

    @classmethod
    def from_alert(cls, alert: SpikeAlert) -> 'SpikeAlertOut':
        return cls(**alert.to_dict())


class SpikeAlertsResponse(BaseModel):
    count: int
    alerts: List[SpikeAlertOut]


class CircuitBreakerModel(BaseModel):
    state: str
    failures: int
    trips: int = 0
    open_until: float
    retry_in_seconds: float = 0.0
    is_open: bool
    is_half_open: bool


class CacheStats(BaseModel):
    name: str
    ttl: float
    entries: int
    fresh_entries: int
    last_write: Optional[float] = None
    last_write_age_seconds: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    caches: Dict[str, CacheStats]
    pending_requests: int
    last_refresh: Optional[float] = None
    last_refresh_age_seconds: Optional[float] = None
    last_refresh_error: Optional[str] = None
    spike_alerts: int
    upstream_calls: Optional[int] = None
    circuit_breaker: Optional[CircuitBreakerModel] = None
    errors_5xx: int = 0


__all__ = [
    'TickerOut', 'CandleOut', 'CandleRow', 'SpikeAlertOut', 'SpikeAlertsResponse',
    'CircuitBreakerModel', 'CacheStats', 'HealthResponse',
]

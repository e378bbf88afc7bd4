"""Normalized market-data records and cache keys.

Bitget v1 spot records carry prices as strings; `change` is the 24h change as
a fraction. v2-style field names (`lastPr`, `change24h`, `baseVolume`) and
list-shaped candles are accepted as well.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .utils import as_float
from .variation import variation

logger = logging.getLogger(__name__)

ALL_TICKERS_KEY = 'all-tickers'
PRODUCTS_KEY = 'products'


def ticker_key(symbol: str) -> str:
    return f"ticker:{symbol}"


def candles_key(symbol: str, period: str, limit: int) -> str:
    return f"candles:{symbol}:{period}:{limit}"


def _first(record: Dict[str, Any], *names):
    for name in names:
        value = record.get(name)
        if value is not None and value != '':
            return value
    return None


@dataclass(frozen=True)
class Ticker:
    symbol: str
    price: float
    change24h: Optional[float]  # fraction, 0.05 == +5%
    high24h: Optional[float]
    low24h: Optional[float]
    volume24h: Optional[float]
    timestamp: Union[str, int, None]

    @classmethod
    def from_raw(cls, record: Dict[str, Any]) -> 'Ticker':
        if not isinstance(record, dict):
            raise ValueError(f"ticker record is not an object: {record!r}")
        symbol = str(record.get('symbol') or '').strip().upper()
        if not symbol:
            raise ValueError('ticker record has no symbol')
        price = as_float(_first(record, 'close', 'lastPr', 'last', 'price'))
        if price is None or price < 0:
            raise ValueError(f"ticker {symbol} has no usable price")
        return cls(
            symbol=symbol,
            price=price,
            change24h=as_float(_first(record, 'change', 'change24h')),
            high24h=as_float(_first(record, 'high24h', 'high')),
            low24h=as_float(_first(record, 'low24h', 'low')),
            volume24h=as_float(_first(record, 'baseVol', 'baseVolume', 'volume')),
            timestamp=_first(record, 'ts', 'timestamp'),
        )


@dataclass(frozen=True)
class Candle:
    symbol: str
    period: str
    open: float
    close: float
    variation: float  # percent, full precision
    timestamp: Union[str, int, None]

    @classmethod
    def from_raw(cls, symbol: str, period: str, record) -> 'Candle':
        if isinstance(record, (list, tuple)):
            # [ts, open, high, low, close, ...]
            if len(record) < 5:
                raise ValueError(f"candle row too short: {record!r}")
            ts, open_raw, close_raw = record[0], record[1], record[4]
        elif isinstance(record, dict):
            ts, open_raw, close_raw = record.get('ts'), record.get('open'), record.get('close')
        else:
            raise ValueError(f"unexpected candle record: {record!r}")
        open_price = as_float(open_raw)
        close_price = as_float(close_raw)
        if open_price is None or close_price is None:
            raise ValueError(f"candle for {symbol} missing open/close")
        return cls(
            symbol=symbol,
            period=period,
            open=open_price,
            close=close_price,
            variation=variation(open_price, close_price),
            timestamp=ts,
        )


def _ts_sort_key(candle: Candle) -> float:
    value = as_float(candle.timestamp)
    return value if value is not None else 0.0


def normalize_tickers(records: Iterable[Dict[str, Any]]) -> Tuple[Ticker, ...]:
    """Normalize a raw batch; malformed records are skipped, not fatal."""
    out = []
    for record in records or []:
        try:
            out.append(Ticker.from_raw(record))
        except ValueError as e:
            logger.debug(f"skipping ticker record: {e}")
    return tuple(out)


def normalize_candles(symbol: str, period: str, records) -> Tuple[Candle, ...]:
    """Normalize raw candles, oldest first. Rows that fail to parse are skipped."""
    out = []
    for record in records or []:
        try:
            out.append(Candle.from_raw(symbol, period, record))
        except ValueError as e:
            # ComputationError is an ArithmeticError, not a ValueError: it propagates
            logger.debug(f"skipping candle row for {symbol}: {e}")
    out.sort(key=_ts_sort_key)
    return tuple(out)

"""
Shared pytest fixtures: fake clock, stub Bitget gateway, service and Flask client.
"""

import threading

import pytest

from bitget_proxy.app import create_app
from bitget_proxy.config import load_config
from bitget_proxy.service import MarketDataService


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def raw_ticker(symbol="BTCUSDT_SPBL", close="100", change="0.01", low="95", high="105", ts="1700000000000"):
    return {
        "symbol": symbol,
        "close": close,
        "change": change,
        "low24h": low,
        "high24h": high,
        "baseVol": "1234.5",
        "ts": ts,
    }


def raw_candle(open_="100", close="110", ts="1700000000000"):
    return {"open": open_, "close": close, "high": "111", "low": "99", "ts": ts}


class StubGateway:
    """Stands in for BitgetGateway; counts calls per query and can block or fail on demand."""

    def __init__(self):
        self.tickers = [raw_ticker()]
        self.single = {}
        self.candles = {}
        self.products = [{"symbol": "BTCUSDT_SPBL", "baseCoin": "BTC"}]
        self.calls = 0
        self.counts = {"all_tickers": 0, "ticker": 0, "candles": 0, "products": 0}
        self.error = None
        self.gate = None  # threading.Event; calls wait on it when set
        self._lock = threading.Lock()

    def _hit(self, name):
        with self._lock:
            self.calls += 1
            self.counts[name] += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error

    def fetch_all_tickers(self):
        self._hit("all_tickers")
        return list(self.tickers)

    def fetch_ticker(self, symbol):
        self._hit("ticker")
        return self.single.get(symbol, raw_ticker(symbol=symbol))

    def fetch_candles(self, symbol, period, limit=1):
        self._hit("candles")
        return list(self.candles.get((symbol, period), [raw_candle()]))

    def fetch_products(self):
        self._hit("products")
        return list(self.products)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def config():
    cfg = load_config({})
    cfg["BACKGROUND_REFRESH"] = False
    return cfg


@pytest.fixture
def service(gateway, config, clock):
    return MarketDataService(gateway, config=config, clock=clock)


@pytest.fixture
def client(service, config):
    app = create_app(service, config)
    app.testing = True
    with app.test_client() as c:
        yield c

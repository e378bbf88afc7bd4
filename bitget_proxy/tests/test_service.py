import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bitget_proxy.errors import ComputationError, InvalidRequest, NotFoundInCache, UpstreamUnavailable
from bitget_proxy.service import MarketDataService

from conftest import FakeClock, raw_candle, raw_ticker


def test_all_tickers_cached_within_ttl(service, gateway, clock):
    first = service.all_tickers()
    clock.advance(29)
    second = service.all_tickers()
    assert first is second
    assert gateway.counts["all_tickers"] == 1
    clock.advance(1)
    service.all_tickers()
    assert gateway.counts["all_tickers"] == 2


def test_all_tickers_runs_spike_scan(service, gateway):
    gateway.tickers = [raw_ticker(change="0.05"), raw_ticker(symbol="ETHUSDT_SPBL", change="0.001")]
    service.all_tickers()
    alerts = service.spike_alerts()
    assert [a.symbol for a in alerts] == ["BTCUSDT"]


def test_all_tickers_failure_is_not_cached(service, gateway):
    gateway.error = UpstreamUnavailable("down")
    with pytest.raises(UpstreamUnavailable):
        service.all_tickers()
    assert service.tickers_cache.size() == 0
    assert service.health()["last_refresh_error"] == "down"

    gateway.error = None
    batch = service.all_tickers()
    assert len(batch.tickers) == 1
    assert gateway.counts["all_tickers"] == 2


def test_concurrent_all_tickers_single_upstream_call(service, gateway):
    gateway.gate = threading.Event()
    with ThreadPoolExecutor(max_workers=6) as ex:
        futs = [ex.submit(service.all_tickers) for _ in range(6)]
        gateway.gate.set()
        batches = [f.result(timeout=5) for f in futs]
    assert gateway.counts["all_tickers"] == 1
    assert all(b is batches[0] for b in batches)


def test_refresh_bypasses_cache_but_rewrites_it(service, gateway):
    service.all_tickers()
    gateway.tickers = [raw_ticker(close="200")]
    batch = service.refresh_all_tickers()
    assert gateway.counts["all_tickers"] == 2
    assert batch.tickers[0].price == 200.0
    assert service.all_tickers() is batch


def test_ticker_served_from_fresh_batch(service, gateway):
    service.all_tickers()
    t = service.ticker(" btcusdt_spbl ")
    assert t.symbol == "BTCUSDT_SPBL"
    assert gateway.counts["ticker"] == 0


def test_ticker_miss_falls_back_to_single_fetch(service, gateway):
    t = service.ticker("ethusdt_spbl")
    assert t.symbol == "ETHUSDT_SPBL"
    service.ticker("ETHUSDT_SPBL")
    assert gateway.counts["ticker"] == 1


def test_ticker_without_fallback_raises_not_found(gateway, config, clock):
    config["TICKER_FALLBACK_FETCH"] = False
    svc = MarketDataService(gateway, config=config, clock=clock)
    with pytest.raises(NotFoundInCache):
        svc.ticker("BTCUSDT_SPBL")
    assert gateway.calls == 0


def test_candles_cached_per_symbol_and_period(service, gateway, clock):
    first = service.candles("BTCUSDT", "1h")
    clock.advance(5)
    second = service.candles(" btcusdt ", "1h")
    assert second is first
    assert gateway.counts["candles"] == 1
    service.candles("BTCUSDT", "5min")
    assert gateway.counts["candles"] == 2


def test_candles_latest_is_newest(service, gateway):
    gateway.candles[("BTCUSDT", "1h")] = [
        raw_candle(open_="100", close="90", ts="2000"),
        raw_candle(open_="100", close="110", ts="1000"),
    ]
    series = service.candles("BTCUSDT", "1h", 2)
    assert series.latest.timestamp == "2000"
    assert series.latest.variation == pytest.approx(-10.0)


@pytest.mark.parametrize("period, limit", [("2h", 1), ("", 1), ("1h", 0), ("1h", "x"), ("1h", 5000)])
def test_candles_invalid_queries(service, gateway, period, limit):
    with pytest.raises(InvalidRequest):
        service.candles("BTCUSDT", period, limit)
    assert gateway.calls == 0


def test_candles_zero_open_surfaces_computation_error(service, gateway):
    gateway.candles[("BTCUSDT", "1h")] = [raw_candle(open_="0", close="1")]
    with pytest.raises(ComputationError):
        service.candles("BTCUSDT", "1h")
    assert service.candles_cache.size() == 0


def test_change_5m_enrichment(gateway, config, clock):
    config["CHANGE_5M_ENABLED"] = True
    gateway.tickers = [raw_ticker(), raw_ticker(symbol="ETHUSDT_SPBL")]
    gateway.candles[("ETHUSDT_SPBL", "5min")] = [raw_candle(open_="0", close="1")]
    svc = MarketDataService(gateway, config=config, clock=clock)
    batch = svc.all_tickers()
    # one symbol's failed variation does not drop the batch
    assert set(batch.change_5m) == {"BTCUSDT_SPBL"}
    assert batch.change_5m["BTCUSDT_SPBL"].variation == pytest.approx(10.0)
    assert len(batch.tickers) == 2


def test_products_cached(service, gateway):
    service.products()
    service.products()
    assert gateway.counts["products"] == 1


def test_sweep_and_health(service, gateway, clock):
    service.candles("BTCUSDT", "1h")
    service.all_tickers()
    clock.advance(service.candles_cache.ttl_seconds * 10 + 1)
    removed = service.sweep_caches()
    assert removed == 1
    health = service.health()
    assert health["pending_requests"] == 0
    assert health["caches"]["candles"]["entries"] == 0
    assert health["caches"]["all_tickers"]["entries"] == 1
    assert health["last_refresh"] is not None
    assert health["upstream_calls"] == gateway.calls


def test_health_refresh_age_at_epoch_zero(gateway, config):
    clock = FakeClock(start=0.0)
    svc = MarketDataService(gateway, config=config, clock=clock)
    svc.all_tickers()
    clock.advance(5)
    health = svc.health()
    assert health["last_refresh"] == 0.0
    assert health["last_refresh_age_seconds"] == pytest.approx(5.0)

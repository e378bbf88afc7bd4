import pytest

from bitget_proxy.cache import MISS, TTLCache


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


def test_get_within_ttl_returns_exact_value(clock):
    cache = TTLCache(30, clock=clock)
    value = {"tickers": [1, 2, 3]}
    cache.put("all-tickers", value)
    clock.now += 29.9
    assert cache.get("all-tickers") is value


def test_get_after_ttl_is_miss(clock):
    cache = TTLCache(30, clock=clock)
    cache.put("k", "v")
    clock.now += 30
    assert cache.get("k") is MISS


def test_missing_key_is_miss(clock):
    cache = TTLCache(5, clock=clock)
    assert cache.get("nope") is MISS
    assert not MISS


def test_falsy_values_are_hits(clock):
    cache = TTLCache(5, clock=clock)
    cache.put("empty", [])
    assert cache.get("empty") == []
    assert cache.get("empty") is not MISS


def test_put_overwrites_and_restarts_ttl(clock):
    cache = TTLCache(10, clock=clock)
    cache.put("k", "old")
    clock.now += 8
    cache.put("k", "new")
    clock.now += 8
    assert cache.get("k") == "new"


def test_ttl_is_per_instance(clock):
    short = TTLCache(2, clock=clock)
    long = TTLCache(60, clock=clock)
    short.put("k", 1)
    long.put("k", 1)
    clock.now += 5
    assert short.get("k") is MISS
    assert long.get("k") == 1


def test_sweep_removes_only_very_old_entries(clock):
    cache = TTLCache(10, clock=clock)
    cache.put("old", 1)
    clock.now += 95
    cache.put("recent", 2)
    clock.now += 10
    removed = cache.sweep(max_age_multiple=10)
    assert removed == 1
    assert cache.size() == 1
    # stale but inside the sweep horizon stays until overwritten
    assert cache.get("recent") is MISS


def test_snapshot_reports_sizes(clock):
    cache = TTLCache(10, name="candles", clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)
    clock.now += 3
    snap = cache.snapshot()
    assert snap["name"] == "candles"
    assert snap["entries"] == 2
    assert snap["fresh_entries"] == 2
    assert snap["last_write_age_seconds"] == pytest.approx(3.0)


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        TTLCache(0)


def test_snapshot_age_when_written_at_epoch_zero(clock):
    clock.now = 0.0
    cache = TTLCache(5, clock=clock)
    cache.put("k", 1)
    clock.now = 2.0
    snap = cache.snapshot()
    assert snap["last_write"] == 0.0
    assert snap["last_write_age_seconds"] == pytest.approx(2.0)

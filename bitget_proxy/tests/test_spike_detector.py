import pytest

from bitget_proxy.errors import ComputationError
from bitget_proxy.models import Ticker
from bitget_proxy.spike_detector import AlertLog, SpikeAlert, SpikeDetector, spike_metric


class MsClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now


def _ticker(symbol="BTCUSDT_SPBL", price=100.0, change=None, low=None):
    return Ticker(symbol=symbol, price=price, change24h=change, high24h=None, low24h=low,
                  volume24h=None, timestamp=None)


@pytest.fixture
def clock():
    return MsClock()


@pytest.fixture
def detector(clock):
    return SpikeDetector(AlertLog(50), threshold=0.04, clock_ms=clock)


def test_spike_appends_one_alert(detector):
    appended = detector.scan([_ticker(change=0.05)])
    alerts = detector.alert_log.items()
    assert len(appended) == 1
    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.symbol == "BTCUSDT"
    assert alert.spike_value == pytest.approx(0.05)
    assert alert.spike_percent == "5.00"
    assert alert.price == 100.0


def test_repeat_scan_within_window_is_suppressed(detector, clock):
    detector.scan([_ticker(change=0.05)])
    clock.now += 60_000
    assert detector.scan([_ticker(change=0.05)]) == []
    assert len(detector.alert_log) == 1


def test_small_value_change_still_duplicate(detector, clock):
    detector.scan([_ticker(change=0.05)])
    clock.now += 1_000
    detector.scan([_ticker(change=0.0505)])
    assert len(detector.alert_log) == 1


def test_larger_value_change_is_new_alert(detector, clock):
    detector.scan([_ticker(change=0.05)])
    clock.now += 1_000
    detector.scan([_ticker(change=0.06)])
    alerts = detector.alert_log.items()
    assert [a.spike_value for a in alerts] == [pytest.approx(0.06), pytest.approx(0.05)]


def test_same_alert_after_window_is_new(detector, clock):
    detector.scan([_ticker(change=0.05)])
    clock.now += 300_000
    detector.scan([_ticker(change=0.05)])
    assert len(detector.alert_log) == 2


def test_below_threshold_ignored(detector):
    detector.scan([_ticker(change=0.0399)])
    assert len(detector.alert_log) == 0


def test_threshold_is_inclusive(detector):
    detector.scan([_ticker(change=0.04)])
    assert len(detector.alert_log) == 1


def test_low_based_metric_when_change_missing(detector):
    detector.scan([_ticker(price=105.0, low=100.0)])
    alerts = detector.alert_log.items()
    assert len(alerts) == 1
    assert alerts[0].spike_value == pytest.approx(0.05)


def test_metric_zero_without_low():
    assert spike_metric(_ticker(low=0.0)) == 0.0
    assert spike_metric(_ticker(low=None)) == 0.0


def test_cap_drops_oldest(clock):
    log = AlertLog(50)
    detector = SpikeDetector(log, threshold=0.04, clock_ms=clock)
    for i in range(50):
        detector.scan([_ticker(symbol=f"COIN{i}USDT_SPBL", change=0.05)])
    assert len(log) == 50
    oldest = log.items()[-1]
    assert oldest.symbol == "COIN0USDT"

    detector.scan([_ticker(symbol="NEWUSDT_SPBL", change=0.07)])
    items = log.items()
    assert len(items) == 50
    assert items[0].symbol == "NEWUSDT"
    assert all(a.symbol != "COIN0USDT" for a in items)


def test_bad_ticker_does_not_abort_scan(detector):
    bad = _ticker(symbol="BADUSDT_SPBL", change=float("nan"))
    good = _ticker(symbol="ETHUSDT_SPBL", change=0.08)
    detector.scan([bad, good])
    assert [a.symbol for a in detector.alert_log.items()] == ["ETHUSDT"]


def test_alert_to_dict_shape():
    alert = SpikeAlert(symbol="ETHUSDT", spike_value=0.051234, spike_percent="5.12", timestamp=1, price=2.5)
    assert alert.to_dict() == {
        "symbol": "ETHUSDT",
        "spikeValue": 0.051234,
        "spikePercent": "5.12",
        "timestamp": 1,
        "price": 2.5,
    }


def test_non_finite_metric_is_computation_error():
    with pytest.raises(ComputationError):
        spike_metric(_ticker(change=float("inf")))

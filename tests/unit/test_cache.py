from __future__ import annotations

from pairagent.core.models import PriceSeries
from pairagent.data.cache import MarketDataCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_price_expires_after_ttl() -> None:
    clock = _Clock()
    cache = MarketDataCache(price_ttl=30.0, clock=clock)

    cache.set_price("BTCUSDT", 42000.0)
    clock.now += 29.0
    assert cache.get_price("BTCUSDT") == 42000.0

    clock.now += 1.0
    assert cache.get_price("BTCUSDT") is None
    # Dropped on the expired read, a later lookup still misses
    assert cache.get_price("BTCUSDT") is None


def test_series_keyed_by_interval_and_lookback() -> None:
    clock = _Clock()
    cache = MarketDataCache(series_ttl=60.0, clock=clock)
    series = PriceSeries("ETHUSDT")

    cache.set_series("ETHUSDT", "1h", 100, series)

    assert cache.get_series("ETHUSDT", "1h", 100) is series
    assert cache.get_series("ETHUSDT", "1h", 50) is None
    assert cache.get_series("ETHUSDT", "4h", 100) is None
    clock.now += 60.0
    assert cache.get_series("ETHUSDT", "1h", 100) is None


def test_zero_ttl_disables_caching() -> None:
    cache = MarketDataCache(price_ttl=0.0, series_ttl=0.0, clock=_Clock())

    cache.set_price("BTCUSDT", 1.0)

    assert cache.get_price("BTCUSDT") is None

"""TTL cache for current prices and price series, shared across a cycle."""

from __future__ import annotations

import time
from typing import Any, Callable

from pairagent.core.models import PriceSeries


class CacheEntry:
    """A cached value with its expiry on the cache's clock."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, expires_at: float) -> None:
        self.value = value
        self.expires_at = expires_at


class MarketDataCache:
    """Short-lived cache in front of the market data provider.

    The fast exit loop and the full cycle both ask for the same symbols'
    prices within seconds of each other; the cache absorbs the repeats.
    """

    def __init__(
        self,
        price_ttl: float = 30.0,
        series_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._price_ttl = price_ttl
        self._series_ttl = series_ttl
        self._clock = clock

        self._prices: dict[str, CacheEntry] = {}
        self._series: dict[tuple[str, str, int], CacheEntry] = {}

    def _lookup(self, store: dict, key: Any) -> Any | None:
        entry = store.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            # Expired entries are dropped on read
            del store[key]
            return None
        return entry.value

    # ── Prices ────────────────────────────────────────────────────────

    def get_price(self, symbol: str) -> float | None:
        return self._lookup(self._prices, symbol)

    def set_price(self, symbol: str, price: float) -> None:
        if self._price_ttl <= 0:
            return
        self._prices[symbol] = CacheEntry(price, self._clock() + self._price_ttl)

    # ── Series ────────────────────────────────────────────────────────

    def get_series(self, symbol: str, interval: str, lookback: int) -> PriceSeries | None:
        return self._lookup(self._series, (symbol, interval, lookback))

    def set_series(self, symbol: str, interval: str, lookback: int, series: PriceSeries) -> None:
        if self._series_ttl <= 0:
            return
        self._series[(symbol, interval, lookback)] = CacheEntry(series, self._clock() + self._series_ttl)

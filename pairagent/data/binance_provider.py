"""Binance public REST market data (no API key needed).

Hourly klines become PriceSeries; ticker prices feed mark-to-market.
Requests are spaced by a minimum interval and retried with exponential
backoff on rate limiting, 5xx responses and transport errors.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import httpx
import pandas as pd
import structlog

from pairagent.core.config import DataConfig
from pairagent.core.errors import ClientRejection, DataUnavailable, RateLimited
from pairagent.core.models import PriceSeries
from pairagent.data.cache import MarketDataCache

logger = structlog.get_logger()

KLINES_PATH = "/api/v3/klines"
TICKER_PATH = "/api/v3/ticker/price"
MAX_KLINES_PER_REQUEST = 1000

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_volume", "trades", "taker_base", "taker_quote", "ignore",
]

RATE_LIMIT_STATUSES = (418, 429)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def klines_to_frame(payload: list[list[Any]]) -> pd.DataFrame:
    """Kline rows -> DataFrame indexed by close time (UTC), oldest first."""
    if not payload:
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
    width = len(KLINE_COLUMNS)
    df = pd.DataFrame([row[:width] for row in payload], columns=KLINE_COLUMNS[: len(payload[0][:width])])
    df.index = pd.to_datetime(df["close_time"].astype("int64"), unit="ms", utc=True)
    df = df[["open", "high", "low", "close", "volume"]].astype(float)
    return df.sort_index()


class BinanceDataProvider:
    """Market data from the Binance spot REST API.

    All methods handle retries internally. Requests are serialized: each
    one starts at least ``min_request_interval_seconds`` after the last.
    """

    def __init__(
        self,
        config: DataConfig,
        client: httpx.AsyncClient | None = None,
        cache: MarketDataCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.request_timeout_seconds,
        )
        self._cache = cache or MarketDataCache(price_ttl=config.price_cache_ttl_seconds)
        self._sleep = sleep
        self._throttle = asyncio.Lock()
        self._last_request_at = 0.0
        self._log = logger.bind(component="binance_provider")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> BinanceDataProvider:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Transport ─────────────────────────────────────────────────────

    async def _wait_for_slot(self) -> None:
        async with self._throttle:
            elapsed = time.monotonic() - self._last_request_at
            wait = self._config.min_request_interval_seconds - elapsed
            if wait > 0:
                await self._sleep(wait)
            self._last_request_at = time.monotonic()

    async def _request(self, path: str, params: dict[str, Any], symbol: str) -> Any:
        """GET with retry. Maps responses onto the pairagent error taxonomy."""
        max_retries = self._config.max_retries
        last_error: Exception | None = None

        for attempt in range(max_retries):
            await self._wait_for_slot()
            wait = self._config.backoff_base_seconds * (2 ** attempt)

            try:
                response = await self._client.get(path, params=params)
            except httpx.TransportError as e:
                last_error = e
                self._log.warning("api_retry", symbol=symbol, attempt=attempt + 1, wait_seconds=wait, error=str(e))
            else:
                status = response.status_code
                if status in RATE_LIMIT_STATUSES:
                    retry_after = _retry_after(response)
                    last_error = RateLimited(f"{symbol}: HTTP {status} from {path}", retry_after=retry_after)
                    wait = max(wait, retry_after or 0.0)
                    self._log.warning("api_rate_limited", symbol=symbol, status=status, attempt=attempt + 1, wait_seconds=wait)
                elif 400 <= status < 500:
                    raise ClientRejection(
                        f"{symbol}: HTTP {status} from {path}: {response.text[:200]}",
                        symbol=symbol,
                        status_code=status,
                    )
                elif status >= 500:
                    last_error = DataUnavailable(f"{symbol}: HTTP {status} from {path}", symbol=symbol)
                    self._log.warning("api_retry", symbol=symbol, attempt=attempt + 1, wait_seconds=wait, status=status)
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise DataUnavailable(f"{symbol}: malformed JSON from {path}", symbol=symbol) from e

            if attempt < max_retries - 1:
                await self._sleep(wait)

        self._log.error("api_call_failed", symbol=symbol, path=path, attempts=max_retries, error=str(last_error))
        if isinstance(last_error, RateLimited):
            raise last_error
        raise DataUnavailable(f"{symbol}: {path} failed after {max_retries} attempts: {last_error}", symbol=symbol)

    # ── MarketDataProvider ────────────────────────────────────────────

    async def get_series(self, symbol: str, lookback: int) -> PriceSeries:
        interval = self._config.interval
        cached = self._cache.get_series(symbol, interval, lookback)
        if cached is not None:
            return cached

        params = {"symbol": symbol, "interval": interval, "limit": min(lookback, MAX_KLINES_PER_REQUEST)}
        payload = await self._request(KLINES_PATH, params, symbol)
        if not isinstance(payload, list):
            raise DataUnavailable(f"{symbol}: unexpected klines payload", symbol=symbol)

        try:
            df = klines_to_frame(payload)
        except (ValueError, TypeError, KeyError) as e:
            raise DataUnavailable(f"{symbol}: unparseable klines: {e}", symbol=symbol) from e
        if df.empty:
            raise DataUnavailable(f"{symbol}: no klines returned", symbol=symbol)

        series = PriceSeries.from_frame(symbol, df.tail(lookback))
        self._cache.set_series(symbol, interval, lookback, series)
        # The last close doubles as a current price for this cycle
        self._cache.set_price(symbol, series.last_price)
        self._log.debug("series_fetched", symbol=symbol, points=len(series))
        return series

    async def get_current_price(self, symbol: str) -> float:
        cached = self._cache.get_price(symbol)
        if cached is not None:
            return cached

        payload = await self._request(TICKER_PATH, {"symbol": symbol}, symbol)
        try:
            price = float(payload["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"{symbol}: unexpected ticker payload", symbol=symbol) from e

        self._cache.set_price(symbol, price)
        return price

"""Collaborator interfaces consumed by the orchestrator."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pairagent.core.models import CandidatePair, PriceSeries


@runtime_checkable
class MarketDataProvider(Protocol):
    """Abstract market data interface.

    Implementations handle retries and rate limiting internally. A lookup
    miss raises DataUnavailable (ClientRejection for a non-retriable 4xx).
    """

    async def get_series(self, symbol: str, lookback: int) -> PriceSeries:
        """Most recent ``lookback`` closes for a symbol, oldest first."""
        ...

    async def get_current_price(self, symbol: str) -> float:
        """Latest traded price for a symbol."""
        ...


@runtime_checkable
class PairSelector(Protocol):
    """Source of candidate pairs for the scan loop."""

    async def next_candidates(self, count: int) -> list[CandidatePair]:
        ...

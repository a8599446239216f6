"""Exception taxonomy shared by the analysis, data and tracking layers."""

from __future__ import annotations


class PairAgentError(Exception):
    """Base class for all pairagent errors."""


class ConfigError(PairAgentError):
    """Configuration could not be loaded or failed validation. Fatal at startup."""


class DataUnavailable(PairAgentError):
    """Too few price points, or a lookup miss for a symbol.

    Non-fatal: the candidate pair (or position refresh) is skipped.
    """

    def __init__(self, message: str, symbol: str = "") -> None:
        super().__init__(message)
        self.symbol = symbol


class ClientRejection(DataUnavailable):
    """Non-retriable 4xx-class response from the data provider."""

    def __init__(self, message: str, symbol: str = "", status_code: int = 400) -> None:
        super().__init__(message, symbol=symbol)
        self.status_code = status_code


class RateLimited(PairAgentError):
    """The data provider asked us to slow down (HTTP 429/418)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PersistenceFailure(PairAgentError):
    """A write to the persistent store failed. In-memory state stays authoritative."""


class InvalidPriceData(PairAgentError, ValueError):
    """Non-positive or non-finite price."""

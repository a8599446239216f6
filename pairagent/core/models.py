"""Domain models: price series, analysis results, candidate pairs, positions."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

import pandas as pd


class SignalDirection(str, Enum):
    """Spread direction.

    LONG: spread is depressed, buy A / sell B.
    SHORT: spread is elevated, sell A / buy B.
    """

    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    MAX_HOLDING = "max holding period"
    MEAN_REVERSION = "mean reversion"
    MANUAL = "manual"


@dataclass
class PriceSeries:
    """Ordered (timestamp, price) observations for one symbol."""

    symbol: str
    timestamps: list[datetime] = field(default_factory=list)
    prices: list[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.timestamps) != len(self.prices):
            raise ValueError(
                f"{self.symbol}: {len(self.timestamps)} timestamps vs {len(self.prices)} prices"
            )

    def __len__(self) -> int:
        return len(self.prices)

    @property
    def last_price(self) -> float:
        if not self.prices:
            raise IndexError(f"{self.symbol}: empty price series")
        return self.prices[-1]

    def tail(self, n: int) -> PriceSeries:
        """Return the most recent ``n`` observations."""
        if n <= 0:
            return PriceSeries(self.symbol)
        if n >= len(self):
            return PriceSeries(self.symbol, list(self.timestamps), list(self.prices))
        return PriceSeries(self.symbol, self.timestamps[-n:], self.prices[-n:])

    @classmethod
    def from_frame(cls, symbol: str, df: pd.DataFrame, column: str = "close") -> PriceSeries:
        """Build from a DataFrame indexed by timestamp (oldest first)."""
        if df.empty:
            return cls(symbol)
        closes = df[column].astype(float)
        return cls(
            symbol=symbol,
            timestamps=[ts.to_pydatetime() for ts in pd.DatetimeIndex(closes.index)],
            prices=closes.tolist(),
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Statistics for one aligned pair of price series. Recomputed each evaluation."""

    correlation: float
    hedge_ratio: float
    spread: float
    spread_mean: float
    spread_std: float
    z_score: float
    signal: SignalDirection
    half_life: float  # math.inf when the spread is not mean-reverting
    cointegration_pvalue: float
    is_cointegrated: bool
    sharpe: float
    volatility: float
    num_points: int = 0

    @property
    def has_finite_half_life(self) -> bool:
        return math.isfinite(self.half_life)


@dataclass(frozen=True)
class CandidatePair:
    """A pair proposed by a selector for evaluation."""

    symbol_a: str
    symbol_b: str
    category: str = ""

    @property
    def pair_id(self) -> str:
        return f"{self.symbol_a}/{self.symbol_b}"

    @property
    def key(self) -> tuple[str, str]:
        """Order-independent identity, used to detect duplicates."""
        return tuple(sorted((self.symbol_a, self.symbol_b)))  # type: ignore[return-value]


@dataclass
class Position:
    """A synthetic long/short pair position.

    Mutated only by ``PositionLedger``. Open -> closed is one-way.
    """

    id: str
    symbol_a: str
    symbol_b: str
    direction: SignalDirection
    long_asset: str
    short_asset: str
    entry_long_price: float
    entry_short_price: float
    entry_time: datetime
    status: PositionStatus = PositionStatus.OPEN
    current_pnl_pct: float = 0.0
    last_marked_at: datetime | None = None

    # Entry context
    entry_reason: str = ""
    entry_z_score: float = 0.0
    correlation: float = 0.0
    hedge_ratio: float = 0.0
    half_life: float = math.inf
    spread: float = 0.0
    spread_mean: float = 0.0
    spread_std: float = 0.0
    sharpe: float = 0.0
    volatility: float = 0.0
    size_fraction: float = 0.0

    # Close state, frozen once set
    close_time: datetime | None = None
    close_reason: CloseReason | None = None
    close_detail: str = ""
    close_trigger_value: float | None = None
    close_pnl_pct: float | None = None

    @property
    def pair(self) -> tuple[str, str]:
        return (self.symbol_a, self.symbol_b)

    @property
    def pair_id(self) -> str:
        return f"{self.symbol_a}/{self.symbol_b}"

    @property
    def key(self) -> tuple[str, str]:
        return tuple(sorted(self.pair))  # type: ignore[return-value]

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def holding_duration(self, now: datetime) -> timedelta:
        end = self.close_time if self.close_time is not None else now
        return end - self.entry_time

    def shares_leg_with(self, symbol_a: str, symbol_b: str) -> bool:
        return bool({self.symbol_a, self.symbol_b} & {symbol_a, symbol_b})


@dataclass
class PerformanceSummary:
    """Aggregate performance over closed positions."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    open_trades: int = 0
    win_rate: float = 0.0  # percent
    total_return_pct: float = 0.0
    total_return_leveraged_pct: float = 0.0
    leverage: float = 1.0
    apy: float = 0.0
    avg_trades_per_day: float = 0.0
    avg_return_per_day: float = 0.0
    profit_factor: float = 0.0
    avg_duration_hours: float = 0.0
    avg_win_pct: float = 0.0
    avg_loss_pct: float = 0.0
    largest_win_pct: float = 0.0
    largest_loss_pct: float = 0.0
    expectancy_pct: float = 0.0
    start_date: datetime | None = None
    last_updated: datetime | None = None

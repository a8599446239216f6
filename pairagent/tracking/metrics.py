"""Aggregate performance over the position history."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable

import numpy as np
import pytz
import structlog

from pairagent.core.models import PerformanceSummary, Position

logger = structlog.get_logger()

APY_CAP_PCT = 999_999.0
APY_MIN_DAYS = 3.0
APY_MIN_TRADES = 5


def annualized_return(total_return_pct: float, days: float, total_trades: int) -> float:
    """Annualize a total return (percent) over ``days``.

    Compounded for periods of at least a day, simple below that. Zero until
    there are at least APY_MIN_DAYS of history or APY_MIN_TRADES trades.
    """
    if days <= 0 or (days < APY_MIN_DAYS and total_trades < APY_MIN_TRADES):
        return 0.0

    decimal = total_return_pct / 100.0
    try:
        if days >= 1:
            apy = (math.pow(1.0 + decimal, 365.0 / days) - 1.0) * 100.0
        else:
            apy = decimal * (365.0 / days) * 100.0
    except OverflowError:
        return APY_CAP_PCT
    except ValueError:
        # Negative base with fractional exponent
        return 0.0

    if not math.isfinite(apy):
        return 0.0
    return max(-APY_CAP_PCT, min(APY_CAP_PCT, apy))


class PerformanceAggregator:
    """Compute a PerformanceSummary from closed positions.

    Returns are the sum of closing PnL percentages; the leveraged figure is
    that sum times the configured leverage.
    """

    def __init__(self, leverage: float = 2.0) -> None:
        self._leverage = leverage
        self._log = logger.bind(component="performance_aggregator")

    @property
    def leverage(self) -> float:
        return self._leverage

    def calculate(self, positions: Iterable[Position], now: datetime | None = None) -> PerformanceSummary:
        now = now or datetime.now(pytz.UTC)
        positions = list(positions)
        closed = [p for p in positions if not p.is_open]
        open_count = len(positions) - len(closed)

        if not closed:
            return PerformanceSummary(
                open_trades=open_count,
                leverage=self._leverage,
                start_date=now,
                last_updated=now,
            )

        pnls = np.array([p.close_pnl_pct or 0.0 for p in closed], dtype=float)
        wins = pnls[pnls > 0]
        # Break-even trades count as losses
        losses = pnls[pnls <= 0]
        total = len(closed)

        total_return = float(pnls.sum())
        total_return_leveraged = total_return * self._leverage

        first_entry = min(p.entry_time for p in closed)
        last_exit = max(p.close_time or p.entry_time for p in closed)
        days = (last_exit - first_entry).total_seconds() / 86400.0

        gross_profit = float(wins.sum())
        gross_loss = abs(float(pnls[pnls < 0].sum()))
        if gross_loss == 0:
            profit_factor = math.inf if gross_profit > 0 else 0.0
        else:
            profit_factor = gross_profit / gross_loss

        durations = [p.holding_duration(now).total_seconds() / 3600.0 for p in closed]

        win_rate = len(wins) / total
        avg_win = float(wins.mean()) if wins.size else 0.0
        avg_loss = float(losses.mean()) if losses.size else 0.0

        summary = PerformanceSummary(
            total_trades=total,
            winning_trades=int(wins.size),
            losing_trades=int(losses.size),
            open_trades=open_count,
            win_rate=win_rate * 100.0,
            total_return_pct=total_return,
            total_return_leveraged_pct=total_return_leveraged,
            leverage=self._leverage,
            apy=annualized_return(total_return_leveraged, days, total),
            avg_trades_per_day=total / days if days > 0 else 0.0,
            avg_return_per_day=total_return / days if days > 0 else 0.0,
            profit_factor=profit_factor,
            avg_duration_hours=float(np.mean(durations)),
            avg_win_pct=avg_win,
            avg_loss_pct=avg_loss,
            largest_win_pct=float(pnls.max()),
            largest_loss_pct=float(pnls.min()),
            expectancy_pct=win_rate * avg_win + (1.0 - win_rate) * avg_loss,
            start_date=first_entry,
            last_updated=now,
        )

        self._log.info(
            "performance_calculated",
            total_trades=summary.total_trades,
            open_trades=summary.open_trades,
            win_rate=round(summary.win_rate, 2),
            total_return_pct=round(summary.total_return_pct, 2),
            apy=round(summary.apy, 2),
            profit_factor=round(summary.profit_factor, 2) if math.isfinite(summary.profit_factor) else "inf",
        )
        return summary

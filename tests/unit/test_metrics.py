from __future__ import annotations

import math
from datetime import datetime, timedelta

import pytest
import pytz

from pairagent.core.models import CloseReason, Position, PositionStatus, SignalDirection
from pairagent.tracking.metrics import PerformanceAggregator, annualized_return

START = datetime(2024, 1, 1, tzinfo=pytz.UTC)


def _closed(pnl: float, entry_offset_hours: float = 0.0, held_hours: float = 4.0) -> Position:
    entry = START + timedelta(hours=entry_offset_hours)
    return Position(
        id=f"t{pnl}-{entry_offset_hours}",
        symbol_a="AAA",
        symbol_b="BBB",
        direction=SignalDirection.LONG,
        long_asset="AAA",
        short_asset="BBB",
        entry_long_price=100.0,
        entry_short_price=50.0,
        entry_time=entry,
        status=PositionStatus.CLOSED,
        current_pnl_pct=pnl,
        close_time=entry + timedelta(hours=held_hours),
        close_reason=CloseReason.MEAN_REVERSION,
        close_pnl_pct=pnl,
    )


def _open() -> Position:
    return Position(
        id="open",
        symbol_a="CCC",
        symbol_b="DDD",
        direction=SignalDirection.SHORT,
        long_asset="DDD",
        short_asset="CCC",
        entry_long_price=10.0,
        entry_short_price=20.0,
        entry_time=START,
    )


def test_empty_history() -> None:
    summary = PerformanceAggregator(leverage=2.0).calculate([_open()], now=START)

    assert summary.total_trades == 0
    assert summary.open_trades == 1
    assert summary.apy == 0.0
    assert summary.leverage == 2.0


def test_counts_and_returns() -> None:
    positions = [
        _closed(2.0, 0),
        _closed(-1.0, 6),
        _closed(0.0, 12),
        _closed(3.0, 18, held_hours=6),
        _open(),
    ]

    summary = PerformanceAggregator(leverage=2.0).calculate(positions, now=START + timedelta(days=2))

    assert summary.total_trades == 4
    assert summary.open_trades == 1
    assert summary.winning_trades == 2
    # Break-even counts as a loss
    assert summary.losing_trades == 2
    assert summary.win_rate == pytest.approx(50.0)
    assert summary.total_return_pct == pytest.approx(4.0)
    assert summary.total_return_leveraged_pct == pytest.approx(8.0)
    assert summary.profit_factor == pytest.approx(5.0)
    assert summary.avg_win_pct == pytest.approx(2.5)
    assert summary.avg_loss_pct == pytest.approx(-0.5)
    assert summary.largest_win_pct == 3.0
    assert summary.largest_loss_pct == -1.0
    assert summary.avg_duration_hours == pytest.approx(4.5)
    assert summary.start_date == START
    # One day of history and four trades: too little for an APY
    assert summary.apy == 0.0
    assert summary.avg_trades_per_day == pytest.approx(4.0)


def test_profit_factor_without_losses() -> None:
    summary = PerformanceAggregator().calculate([_closed(1.0), _closed(2.0, 5)])

    assert summary.profit_factor == math.inf
    assert summary.losing_trades == 0


def test_annualized_return_rules() -> None:
    # Compounded over a full year is the return itself
    assert annualized_return(10.0, 365.0, 1) == pytest.approx(10.0)
    # Not enough history
    assert annualized_return(10.0, 2.0, 4) == 0.0
    # Enough trades, sub-day period: simple annualization
    assert annualized_return(1.0, 0.5, 5) == pytest.approx(730.0)
    # Capped
    assert annualized_return(500.0, 3.0, 5) == 999_999.0
    # Total loss beyond -100% would need a negative base
    assert annualized_return(-150.0, 10.0, 5) == 0.0

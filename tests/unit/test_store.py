from __future__ import annotations

import math
from datetime import datetime, timedelta

import pytest
import pytz

from pairagent.core.errors import PersistenceFailure
from pairagent.core.models import (
    CloseReason, PerformanceSummary, Position, PositionStatus, SignalDirection,
)
from pairagent.tracking.store import PositionStore, SqlitePositionStore


def _position(position_id: str = "p1", half_life: float = 14.5) -> Position:
    return Position(
        id=position_id,
        symbol_a="BTCUSDT",
        symbol_b="ETHUSDT",
        direction=SignalDirection.LONG,
        long_asset="BTCUSDT",
        short_asset="ETHUSDT",
        entry_long_price=42000.0,
        entry_short_price=2500.0,
        entry_time=datetime(2024, 2, 1, 9, 0, tzinfo=pytz.UTC),
        entry_reason="Spread -2.31σ below mean",
        entry_z_score=-2.31,
        correlation=0.91,
        hedge_ratio=1.07,
        half_life=half_life,
        spread_std=3.2,
        size_fraction=0.1,
    )


@pytest.fixture
def store(tmp_path):
    s = SqlitePositionStore(str(tmp_path / "db" / "pairagent.db"))
    yield s
    s.close()


def test_satisfies_store_protocol(store) -> None:
    assert isinstance(store, PositionStore)


@pytest.mark.asyncio
async def test_position_lifecycle_round_trip(store) -> None:
    position = _position()
    await store.create_position(position)

    position.current_pnl_pct = 1.75
    position.last_marked_at = position.entry_time + timedelta(hours=2)
    await store.update_pnl(position)

    position.status = PositionStatus.CLOSED
    position.close_time = position.entry_time + timedelta(hours=5)
    position.close_reason = CloseReason.MEAN_REVERSION
    position.close_detail = "Mean reversion complete (z-score: 0.31)"
    position.close_trigger_value = 0.31
    position.close_pnl_pct = 1.75
    await store.close_position(position)

    [loaded] = await store.load_positions()

    assert loaded == position


@pytest.mark.asyncio
async def test_infinite_half_life_survives_round_trip(store) -> None:
    await store.create_position(_position(half_life=math.inf))

    [loaded] = await store.load_positions()

    assert loaded.half_life == math.inf
    assert loaded.is_open


@pytest.mark.asyncio
async def test_duplicate_id_raises_persistence_failure(store) -> None:
    await store.create_position(_position("dup"))

    with pytest.raises(PersistenceFailure):
        await store.create_position(_position("dup"))


@pytest.mark.asyncio
async def test_performance_snapshot_sanitized(store) -> None:
    summary = PerformanceSummary(
        total_trades=3,
        winning_trades=3,
        win_rate=100.0,
        total_return_pct=4.5,
        total_return_leveraged_pct=9.0,
        leverage=2.0,
        apy=math.nan,
        profit_factor=math.inf,
        avg_duration_hours=6.0,
        last_updated=datetime(2024, 2, 3, tzinfo=pytz.UTC),
    )

    await store.save_performance(summary)
    snapshot = store.latest_performance()

    assert snapshot["total_trades"] == 3
    assert snapshot["profit_factor"] == 0.0
    assert snapshot["apy"] == 0.0
    assert snapshot["total_return_leveraged_pct"] == 9.0


def test_latest_performance_empty(store) -> None:
    assert store.latest_performance() is None

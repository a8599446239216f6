from __future__ import annotations

from datetime import datetime

import pytest
import pytz

from pairagent.core.config import RiskConfig
from pairagent.core.models import CandidatePair, Position, PositionStatus, SignalDirection
from pairagent.risk.risk_manager import PairRiskManager


def _position(a: str, b: str, size: float = 0.1, status: PositionStatus = PositionStatus.OPEN) -> Position:
    return Position(
        id=f"{a}-{b}",
        symbol_a=a,
        symbol_b=b,
        direction=SignalDirection.LONG,
        long_asset=a,
        short_asset=b,
        entry_long_price=100.0,
        entry_short_price=50.0,
        entry_time=datetime(2024, 1, 1, tzinfo=pytz.UTC),
        status=status,
        size_fraction=size,
    )


def test_rejects_at_max_concurrent_positions() -> None:
    manager = PairRiskManager(RiskConfig(max_concurrent_positions=2))
    open_positions = [_position("AAA", "BBB"), _position("CCC", "DDD")]

    decision = manager.can_open(CandidatePair("EEE", "FFF"), open_positions)

    assert not decision.allowed
    assert decision.reason == "max_concurrent_positions"
    assert decision.open_count == 2
    assert manager.at_capacity(open_positions)


def test_rejects_at_max_correlated_positions() -> None:
    manager = PairRiskManager(RiskConfig(max_concurrent_positions=5, max_correlated_positions=1))
    open_positions = [_position("BTCUSDT", "ETHUSDT")]

    decision = manager.can_open(CandidatePair("BTCUSDT", "SOLUSDT"), open_positions)

    assert not decision.allowed
    assert decision.reason == "max_correlated_positions"
    assert decision.correlated_count == 1


def test_unrelated_candidate_allowed() -> None:
    manager = PairRiskManager(RiskConfig(max_concurrent_positions=5, max_correlated_positions=1))

    decision = manager.can_open(CandidatePair("SOLUSDT", "AVAXUSDT"), [_position("BTCUSDT", "ETHUSDT")])

    assert decision.allowed
    assert decision.correlated_count == 0


def test_closed_positions_do_not_count() -> None:
    manager = PairRiskManager(RiskConfig(max_concurrent_positions=1, max_correlated_positions=1))
    history = [_position("AAA", "BBB", status=PositionStatus.CLOSED)]

    assert manager.can_open(CandidatePair("AAA", "CCC"), history).allowed
    assert not manager.at_capacity(history)


def test_portfolio_cap_uses_cash_reserve() -> None:
    manager = PairRiskManager(RiskConfig(max_portfolio_risk=0.8, cash_reserve_pct=0.3))
    open_positions = [_position("AAA", "BBB", size=0.3), _position("CCC", "DDD", size=0.3)]

    assert manager.capacity == pytest.approx(0.7)
    assert manager.remaining_capacity(open_positions) == pytest.approx(0.1)

    rejected = manager.can_open(CandidatePair("EEE", "FFF"), open_positions, size_fraction=0.2)
    allowed = manager.can_open(CandidatePair("EEE", "FFF"), open_positions, size_fraction=0.1)

    assert not rejected.allowed and rejected.reason == "portfolio_risk_cap"
    assert allowed.allowed

from __future__ import annotations

import dataclasses
import math

import pytest

from pairagent.analysis.qualifier import SignalQualifier, dynamic_threshold
from pairagent.core.config import QualifierConfig
from pairagent.core.models import AnalysisResult, SignalDirection


def _result(**overrides) -> AnalysisResult:
    base = AnalysisResult(
        correlation=0.92,
        hedge_ratio=1.1,
        spread=12.0,
        spread_mean=10.0,
        spread_std=0.8,
        z_score=2.5,
        signal=SignalDirection.SHORT,
        half_life=12.0,
        cointegration_pvalue=0.03,
        is_cointegrated=True,
        sharpe=1.2,
        volatility=25.0,
        num_points=100,
    )
    return dataclasses.replace(base, **overrides)


def test_qualified_result_keeps_analyzer_direction() -> None:
    qualifier = SignalQualifier(QualifierConfig())

    outcome = qualifier.evaluate(_result())

    assert outcome.passed
    assert outcome.direction == SignalDirection.SHORT
    assert outcome.effective_threshold == 2.0


def test_infinite_half_life_rejected_when_enforced() -> None:
    qualifier = SignalQualifier(QualifierConfig(half_life_enforced=True))

    outcome = qualifier.evaluate(_result(half_life=math.inf))

    assert not outcome.passed
    assert outcome.reason == "half_life_infinite"


def test_infinite_half_life_allowed_by_adf_override() -> None:
    qualifier = SignalQualifier(QualifierConfig(adf_override_pvalue=0.05))

    assert qualifier.evaluate(_result(half_life=math.inf, cointegration_pvalue=0.03)).passed
    assert not qualifier.evaluate(_result(half_life=math.inf, cointegration_pvalue=0.20)).passed


def test_infinite_half_life_allowed_when_not_enforced() -> None:
    qualifier = SignalQualifier(QualifierConfig(half_life_enforced=False))

    assert qualifier.evaluate(_result(half_life=math.inf)).passed


def test_half_life_band() -> None:
    qualifier = SignalQualifier(QualifierConfig(min_half_life=2.0, max_half_life=48.0))

    too_fast = qualifier.evaluate(_result(half_life=1.0))
    too_slow = qualifier.evaluate(_result(half_life=100.0))

    assert not too_fast.passed and too_fast.reason.startswith("half_life_below_min")
    assert not too_slow.passed and too_slow.reason.startswith("half_life_above_max")


def test_half_life_band_applies_when_not_enforced() -> None:
    qualifier = SignalQualifier(QualifierConfig(half_life_enforced=False, min_half_life=1.0, max_half_life=48.0))

    outcome = qualifier.evaluate(_result(half_life=500.0, z_score=2.5, correlation=0.95))

    assert not outcome.passed
    assert outcome.reason.startswith("half_life_above_max")


def test_z_score_and_correlation_gates() -> None:
    qualifier = SignalQualifier(QualifierConfig(z_score_threshold=2.0, correlation_threshold=0.85))

    weak_z = qualifier.evaluate(_result(z_score=1.5, signal=SignalDirection.NEUTRAL))
    weak_corr = qualifier.evaluate(_result(correlation=0.5))
    negative_corr = qualifier.evaluate(_result(correlation=-0.9))

    assert not weak_z.passed and weak_z.reason.startswith("z_score_below_threshold")
    assert not weak_corr.passed and weak_corr.reason.startswith("correlation_below_threshold")
    assert negative_corr.passed


def test_optional_sharpe_and_volatility_gates() -> None:
    qualifier = SignalQualifier(QualifierConfig(min_sharpe=1.5, max_volatility=20.0))

    assert qualifier.evaluate(_result(sharpe=1.0)).reason.startswith("sharpe_below_min")
    assert qualifier.evaluate(_result(sharpe=2.0, volatility=30.0)).reason.startswith("volatility_above_max")
    assert qualifier.evaluate(_result(sharpe=2.0, volatility=10.0)).passed


@pytest.mark.parametrize(
    ("half_life", "expected"),
    [(4.0, 1.4), (12.0, 1.7), (30.0, 2.0), (100.0, 2.6), (math.inf, 2.0)],
)
def test_dynamic_threshold(half_life: float, expected: float) -> None:
    assert dynamic_threshold(2.0, half_life) == pytest.approx(expected)


def test_dynamic_threshold_relabels_neutral_result() -> None:
    qualifier = SignalQualifier(QualifierConfig(dynamic_z_score=True))

    upper = qualifier.evaluate(_result(half_life=4.0, z_score=1.5, signal=SignalDirection.NEUTRAL))
    lower = qualifier.evaluate(_result(half_life=4.0, z_score=-1.5, signal=SignalDirection.NEUTRAL))

    assert upper.passed and upper.direction == SignalDirection.SHORT
    assert lower.passed and lower.direction == SignalDirection.LONG
    assert upper.effective_threshold == pytest.approx(1.4)


def test_dynamic_threshold_raises_bar_for_slow_pairs() -> None:
    qualifier = SignalQualifier(QualifierConfig(dynamic_z_score=True))

    outcome = qualifier.evaluate(_result(half_life=100.0, z_score=2.5))

    assert not outcome.passed
    assert outcome.effective_threshold == pytest.approx(2.6)

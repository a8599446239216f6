"""Entry filters over an AnalysisResult.

Gate order:
1. Half-life (short-circuits): infinite is rejected unless the ADF override
   applies; finite but outside [min_half_life, max_half_life] is rejected.
2. Effective z threshold, optionally scaled by half-life speed.
3. |z| >= effective threshold and |correlation| >= correlation threshold.
4. Optional minimum Sharpe and maximum volatility.

The analyzer's own ``signal`` uses the base threshold. When the effective
threshold differs, the direction is re-derived here from the z-score sign;
the AnalysisResult itself is never modified.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import structlog

from pairagent.core.config import QualifierConfig
from pairagent.core.models import AnalysisResult, SignalDirection

logger = structlog.get_logger()

# (half-life upper bound in periods, threshold multiplier)
DYNAMIC_Z_MULTIPLIERS: list[tuple[float, float]] = [
    (8.0, 0.70),
    (24.0, 0.85),
    (48.0, 1.00),
]
SLOW_HALF_LIFE_MULTIPLIER = 1.30


@dataclass(frozen=True)
class Qualification:
    """Outcome of running the entry gates on one AnalysisResult."""

    passed: bool
    reason: str
    effective_threshold: float
    direction: SignalDirection = SignalDirection.NEUTRAL


def dynamic_threshold(base_threshold: float, half_life: float) -> float:
    """Scale the z threshold: fast-reverting pairs need less divergence, slow ones more."""
    if not math.isfinite(half_life):
        return base_threshold
    for upper, multiplier in DYNAMIC_Z_MULTIPLIERS:
        if half_life < upper:
            return base_threshold * multiplier
    return base_threshold * SLOW_HALF_LIFE_MULTIPLIER


class SignalQualifier:
    """Decide whether a candidate pair is tradeable."""

    def __init__(self, config: QualifierConfig) -> None:
        self._config = config
        self._log = logger.bind(component="signal_qualifier")

    @property
    def config(self) -> QualifierConfig:
        return self._config

    def _check_half_life(self, result: AnalysisResult) -> str | None:
        """Return a rejection reason, or None if the half-life gate passes."""
        cfg = self._config
        if not result.has_finite_half_life:
            if (
                cfg.adf_override_pvalue is not None
                and result.cointegration_pvalue <= cfg.adf_override_pvalue
            ):
                self._log.debug(
                    "half_life_infinite_adf_override",
                    pvalue=result.cointegration_pvalue,
                    ceiling=cfg.adf_override_pvalue,
                )
                return None
            if cfg.half_life_enforced:
                return "half_life_infinite"
            return None

        if result.half_life < cfg.min_half_life:
            return f"half_life_below_min ({result.half_life:.1f} < {cfg.min_half_life})"
        if cfg.max_half_life is not None and result.half_life > cfg.max_half_life:
            return f"half_life_above_max ({result.half_life:.1f} > {cfg.max_half_life})"
        return None

    def effective_threshold(self, result: AnalysisResult) -> float:
        base = self._config.z_score_threshold
        if not self._config.dynamic_z_score:
            return base
        threshold = dynamic_threshold(base, result.half_life)
        if threshold != base:
            self._log.debug(
                "dynamic_z_threshold",
                half_life=round(result.half_life, 1),
                base=base,
                effective=round(threshold, 3),
            )
        return threshold

    def evaluate(self, result: AnalysisResult) -> Qualification:
        """Run all gates in order and report the first failure, if any."""
        cfg = self._config
        base = cfg.z_score_threshold

        rejection = self._check_half_life(result)
        if rejection:
            return Qualification(False, rejection, base)

        threshold = self.effective_threshold(result)

        if abs(result.z_score) < threshold:
            return Qualification(False, f"z_score_below_threshold (|{result.z_score:.2f}| < {threshold:.2f})", threshold)
        if abs(result.correlation) < cfg.correlation_threshold:
            return Qualification(
                False,
                f"correlation_below_threshold (|{result.correlation:.2f}| < {cfg.correlation_threshold:.2f})",
                threshold,
            )

        if cfg.min_sharpe is not None and result.sharpe < cfg.min_sharpe:
            return Qualification(False, f"sharpe_below_min ({result.sharpe:.2f} < {cfg.min_sharpe})", threshold)
        if cfg.max_volatility is not None and result.volatility > cfg.max_volatility:
            return Qualification(
                False, f"volatility_above_max ({result.volatility:.2f} > {cfg.max_volatility})", threshold,
            )

        return Qualification(True, "qualified", threshold, self.resolve_direction(result, threshold))

    def resolve_direction(self, result: AnalysisResult, threshold: float) -> SignalDirection:
        """Direction for a qualified result.

        Explicit override of the analyzer's base-threshold label: with a lowered
        threshold a "neutral" result is re-labelled from the z-score sign.
        """
        if result.signal != SignalDirection.NEUTRAL:
            return result.signal
        if abs(result.z_score) < threshold or result.z_score == 0:
            return SignalDirection.NEUTRAL
        # |z| exactly on the threshold passes the gate, so compare on sign alone
        direction = SignalDirection.SHORT if result.z_score > 0 else SignalDirection.LONG
        self._log.info(
            "direction_override",
            z_score=round(result.z_score, 3),
            threshold=round(threshold, 3),
            direction=direction.value,
        )
        return direction

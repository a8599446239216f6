"""Admission control for new pair positions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import structlog

from pairagent.core.config import RiskConfig
from pairagent.core.models import CandidatePair, Position

logger = structlog.get_logger()


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str = ""
    open_count: int = 0
    correlated_count: int = 0
    committed_fraction: float = 0.0


class PairRiskManager:
    """Portfolio-level limits on the open position set.

    Enforces:
    - Max concurrent open positions
    - Max open positions sharing a leg with the candidate
    - Committed size (advisory fractions) within min(portfolio risk cap, 1 - cash reserve)
    """

    def __init__(self, config: RiskConfig) -> None:
        self._config = config
        self._log = logger.bind(component="risk_manager")

        self._log.info(
            "risk_manager_initialized",
            max_concurrent=config.max_concurrent_positions,
            max_correlated=config.max_correlated_positions,
            capacity=self.capacity,
        )

    @property
    def capacity(self) -> float:
        """Largest total size fraction that may be committed across open positions."""
        return min(self._config.max_portfolio_risk, 1.0 - self._config.cash_reserve_pct)

    @property
    def max_concurrent_positions(self) -> int:
        return self._config.max_concurrent_positions

    def at_capacity(self, open_positions: Iterable[Position]) -> bool:
        return sum(1 for p in open_positions if p.is_open) >= self._config.max_concurrent_positions

    def correlated_count(self, candidate: CandidatePair, open_positions: Iterable[Position]) -> int:
        """Open positions sharing either leg's symbol with the candidate."""
        return sum(
            1 for p in open_positions
            if p.is_open and p.shares_leg_with(candidate.symbol_a, candidate.symbol_b)
        )

    def remaining_capacity(self, open_positions: Iterable[Position]) -> float:
        committed = sum(p.size_fraction for p in open_positions if p.is_open)
        return max(0.0, self.capacity - committed)

    def can_open(
        self,
        candidate: CandidatePair,
        open_positions: list[Position],
        size_fraction: float = 0.0,
    ) -> RiskDecision:
        """Check whether a new position for ``candidate`` fits within limits."""
        open_list = [p for p in open_positions if p.is_open]
        open_count = len(open_list)
        correlated = self.correlated_count(candidate, open_list)
        committed = sum(p.size_fraction for p in open_list)

        def _reject(reason: str, **extra) -> RiskDecision:
            self._log.info("position_rejected", pair=candidate.pair_id, reason=reason, **extra)
            return RiskDecision(False, reason, open_count, correlated, committed)

        if open_count >= self._config.max_concurrent_positions:
            return _reject(
                "max_concurrent_positions",
                open_count=open_count,
                limit=self._config.max_concurrent_positions,
            )

        if correlated >= self._config.max_correlated_positions:
            return _reject(
                "max_correlated_positions",
                correlated=correlated,
                limit=self._config.max_correlated_positions,
            )

        if size_fraction > 0 and committed + size_fraction > self.capacity + 1e-9:
            return _reject(
                "portfolio_risk_cap",
                committed=round(committed, 4),
                requested=round(size_fraction, 4),
                capacity=round(self.capacity, 4),
            )

        return RiskDecision(True, "ok", open_count, correlated, committed)

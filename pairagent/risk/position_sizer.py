"""Advisory position sizing: fixed fraction, fractional Kelly, volatility targeting.

Sizes are fractions of notional capital recorded on the position. No capital
actually moves; the risk manager uses them for its portfolio cap.
"""

from __future__ import annotations

import math

import structlog

from pairagent.core.config import SizingConfig
from pairagent.core.models import PerformanceSummary

logger = structlog.get_logger()

KELLY_MAX_FRACTION = 0.5
VOL_SCALE_MIN = 0.1
VOL_SCALE_MAX = 1.0


def kelly_fraction(
    win_rate: float,
    avg_win: float,
    avg_loss: float,
    multiplier: float = 0.25,
) -> float:
    """Fractional Kelly: f = (p*b - q) / b scaled by ``multiplier``, clamped to [0, 0.5].

    Args:
        win_rate: Historical probability of a winning trade (0.0 to 1.0)
        avg_win: Average winning return (positive)
        avg_loss: Average losing return (sign ignored)
        multiplier: Fraction of full Kelly to apply (e.g. 0.25 = quarter Kelly)
    """
    if not all(math.isfinite(v) for v in (win_rate, avg_win, avg_loss, multiplier)):
        return 0.0

    p = max(0.0, min(1.0, win_rate))
    q = 1.0 - p
    loss = abs(avg_loss)

    if avg_win <= 0:
        return 0.0
    if loss == 0:
        # b -> infinity, f -> p
        full = p
    else:
        b = avg_win / loss
        full = (p * b - q) / b

    return max(0.0, min(KELLY_MAX_FRACTION, full * multiplier))


def volatility_scale(target_volatility: float, current_volatility: float) -> float:
    """Inverse-volatility multiplier clamped to [0.1, 1.0]."""
    if current_volatility <= 0 or not math.isfinite(current_volatility):
        return VOL_SCALE_MAX
    return max(VOL_SCALE_MIN, min(VOL_SCALE_MAX, target_volatility / current_volatility))


class PositionSizer:
    """Calculate the advisory size fraction for a new pair position.

    Rules:
    - Base size: configured fixed fraction
    - Kelly (optional): replaces the base once enough closed trades exist
    - Volatility target (optional): scales down pairs more volatile than target
    """

    def __init__(self, config: SizingConfig) -> None:
        self._config = config
        self._log = logger.bind(component="position_sizer")

    def size(self, performance: PerformanceSummary | None, volatility: float) -> float:
        cfg = self._config
        fraction = cfg.base_fraction
        source = "base"

        if cfg.use_kelly and performance is not None and performance.total_trades >= cfg.kelly_min_trades:
            fraction = kelly_fraction(
                win_rate=performance.win_rate / 100.0,
                avg_win=performance.avg_win_pct,
                avg_loss=performance.avg_loss_pct,
                multiplier=cfg.kelly_multiplier,
            )
            source = "kelly"

        scale = 1.0
        if cfg.target_volatility is not None:
            scale = volatility_scale(cfg.target_volatility, volatility)
            fraction *= scale

        self._log.debug(
            "position_sized",
            source=source,
            fraction=round(fraction, 4),
            vol_scale=round(scale, 3),
            volatility=round(volatility, 2),
        )
        return fraction

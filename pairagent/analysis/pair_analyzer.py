"""Pair statistics: correlation, hedge ratio, spread z-score, cointegration, half-life.

Every function here is pure. Degenerate inputs (zero variance, constant
spread, too few points for a test) produce sentinels instead of raising:
0.0 for correlation / hedge ratio / z-score, ``math.inf`` for half-life,
1.0 for the cointegration p-value.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
import structlog
from scipy import stats
from statsmodels.tsa.stattools import adfuller

from pairagent.core.config import AnalysisConfig
from pairagent.core.errors import DataUnavailable, InvalidPriceData
from pairagent.core.models import AnalysisResult, PriceSeries, SignalDirection

logger = structlog.get_logger()

# Approximate Dickey-Fuller critical values -> p-value. This is a coarse
# lookup, not a statistically rigorous test; use cointegration_method="adfuller"
# for the statsmodels implementation.
ADF_PVALUE_BREAKPOINTS: list[tuple[float, float]] = [
    (-3.43, 0.01),
    (-2.86, 0.05),
    (-2.57, 0.10),
    (-2.00, 0.20),
    (-1.50, 0.40),
    (-1.00, 0.60),
    (-0.50, 0.75),
]
ADF_PVALUE_CEILING = 0.90

COINTEGRATION_PVALUE = 0.05
MIN_COINTEGRATION_POINTS = 10
MAX_HALF_LIFE = 1000.0


def calculate_returns(prices: Sequence[float] | np.ndarray) -> np.ndarray:
    """Simple period-over-period returns (length n-1)."""
    arr = np.asarray(prices, dtype=float)
    if arr.size < 2:
        return np.array([], dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.diff(arr) / arr[:-1]


def correlation(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation; 0.0 if either side has zero variance."""
    if x.size != y.size or x.size == 0:
        raise ValueError("Arrays must have the same non-zero length")
    dx = x - x.mean()
    dy = y - y.mean()
    denom_x = float(np.dot(dx, dx))
    denom_y = float(np.dot(dy, dy))
    if denom_x == 0 or denom_y == 0:
        return 0.0
    corr = float(np.dot(dx, dy)) / math.sqrt(denom_x * denom_y)
    return max(-1.0, min(1.0, corr))


def hedge_ratio(returns_a: np.ndarray, returns_b: np.ndarray) -> float:
    """OLS slope of returns_a on returns_b: cov(a, b) / var(b). 0.0 if var(b) is zero."""
    db = returns_b - returns_b.mean()
    var_b = float(np.dot(db, db))
    if var_b == 0:
        return 0.0
    da = returns_a - returns_a.mean()
    return float(np.dot(da, db)) / var_b


def spread_series(prices_a: np.ndarray, prices_b: np.ndarray, beta: float) -> np.ndarray:
    return prices_a - beta * prices_b


def _lagged_regression(x: np.ndarray, y: np.ndarray) -> tuple[float, float, float] | None:
    """Regress y on x. Returns (slope, intercept, sxx), or None if x is constant."""
    dx = x - x.mean()
    sxx = float(np.dot(dx, dx))
    if sxx == 0:
        return None
    fit = stats.linregress(x, y)
    return float(fit.slope), float(fit.intercept), sxx


def adf_pvalue_from_tstat(t_stat: float) -> float:
    """Map a Dickey-Fuller style t-statistic to an approximate p-value.

    Non-increasing as the statistic becomes more negative.
    """
    if not math.isfinite(t_stat):
        return 0.01 if t_stat < 0 else ADF_PVALUE_CEILING
    for threshold, pvalue in ADF_PVALUE_BREAKPOINTS:
        if t_stat < threshold:
            return pvalue
    return ADF_PVALUE_CEILING


def approximate_adf_pvalue(spread: np.ndarray) -> float:
    """Simplified unit-root test: regress spread[t] on spread[t-1], test slope == 1."""
    if spread.size < MIN_COINTEGRATION_POINTS:
        return 1.0

    lagged = spread[:-1]
    current = spread[1:]
    fit = _lagged_regression(lagged, current)
    if fit is None:
        return 1.0
    rho, alpha, sxx = fit

    residuals = current - (alpha + rho * lagged)
    residual_std = float(np.std(residuals, ddof=1))
    if residual_std == 0 or not math.isfinite(residual_std):
        return 1.0

    t_stat = (rho - 1.0) / (residual_std / math.sqrt(sxx))
    pvalue = adf_pvalue_from_tstat(t_stat)
    logger.debug("adf_approximation", rho=round(rho, 4), t_stat=round(t_stat, 4), pvalue=pvalue, n=int(spread.size))
    return pvalue


def statsmodels_adf_pvalue(spread: np.ndarray) -> float:
    """Augmented Dickey-Fuller p-value from statsmodels; 1.0 when the test cannot run."""
    if spread.size < MIN_COINTEGRATION_POINTS or float(np.ptp(spread)) == 0:
        return 1.0
    try:
        pvalue = float(adfuller(spread, autolag="AIC")[1])
    except (ValueError, np.linalg.LinAlgError):
        return 1.0
    if not math.isfinite(pvalue):
        return 1.0
    return min(1.0, max(pvalue, 1e-6))


def cointegration_pvalue(spread: np.ndarray, method: str = "approximate") -> float:
    if method == "adfuller":
        return statsmodels_adf_pvalue(spread)
    return approximate_adf_pvalue(spread)


def half_life(spread: np.ndarray) -> float:
    """Mean-reversion half-life in periods from an AR(1) fit of Δspread on lagged spread.

    Returns ``math.inf`` when the fitted slope is >= 0 (no mean reversion) or the
    result is non-finite or longer than MAX_HALF_LIFE periods.
    """
    if spread.size < 3:
        return math.inf

    lagged = spread[:-1]
    delta = np.diff(spread)
    fit = _lagged_regression(lagged, delta)
    if fit is None:
        return math.inf
    rho = fit[0]

    if rho >= 0 or 1.0 + rho <= 0:
        return math.inf

    value = -math.log(2) / math.log(1.0 + rho)
    if not math.isfinite(value) or value < 0 or value > MAX_HALF_LIFE:
        return math.inf
    return value


def _finite_spread_returns(spread: np.ndarray) -> np.ndarray:
    returns = calculate_returns(spread)
    return returns[np.isfinite(returns)]


def spread_sharpe(spread: np.ndarray, periods_per_year: float) -> float:
    """Annualized Sharpe ratio of the spread's period returns."""
    returns = _finite_spread_returns(spread)
    if returns.size < 2:
        return 0.0
    std = float(np.std(returns, ddof=1))
    if std == 0:
        return 0.0
    return float(np.mean(returns)) / std * math.sqrt(periods_per_year)


def spread_volatility(spread: np.ndarray, periods_per_year: float) -> float:
    """Annualized volatility (percent) of the spread's period returns."""
    returns = _finite_spread_returns(spread)
    if returns.size < 2:
        return 0.0
    return float(np.std(returns, ddof=1)) * math.sqrt(periods_per_year) * 100.0


def signal_from_z_score(z_score: float, threshold: float) -> SignalDirection:
    """Direction from the sign of the z-score once |z| exceeds the threshold."""
    if z_score > threshold:
        return SignalDirection.SHORT
    if z_score < -threshold:
        return SignalDirection.LONG
    return SignalDirection.NEUTRAL


def _validate_prices(prices: np.ndarray, label: str) -> None:
    if not np.all(np.isfinite(prices)) or np.any(prices <= 0):
        raise InvalidPriceData(f"{label}: price series contains non-positive or non-finite values")


def analyze_pair(
    prices_a: Sequence[float] | np.ndarray,
    prices_b: Sequence[float] | np.ndarray,
    periods_per_year: float = 8760.0,
    signal_threshold: float = 2.0,
    cointegration_method: str = "approximate",
) -> AnalysisResult:
    """Compute all pair statistics for two aligned, equal-length price arrays."""
    a = np.asarray(prices_a, dtype=float)
    b = np.asarray(prices_b, dtype=float)
    if a.size != b.size:
        raise ValueError(f"Price arrays must have the same length ({a.size} vs {b.size})")
    if a.size < 2:
        raise DataUnavailable(f"Need at least 2 data points for analysis, got {a.size}")
    _validate_prices(a, "A")
    _validate_prices(b, "B")

    returns_a = calculate_returns(a)
    returns_b = calculate_returns(b)

    corr = correlation(returns_a, returns_b)
    beta = hedge_ratio(returns_a, returns_b)

    spread = spread_series(a, b, beta)
    spread_mean = float(np.mean(spread))
    spread_std = float(np.std(spread, ddof=1))
    current_spread = float(spread[-1])

    # Constant spread: z-score is pinned to 0 rather than NaN
    if spread_std > 0 and math.isfinite(spread_std):
        z_score = (current_spread - spread_mean) / spread_std
    else:
        spread_std = 0.0
        z_score = 0.0

    pvalue = cointegration_pvalue(spread, cointegration_method)

    return AnalysisResult(
        correlation=corr,
        hedge_ratio=beta,
        spread=current_spread,
        spread_mean=spread_mean,
        spread_std=spread_std,
        z_score=z_score,
        signal=signal_from_z_score(z_score, signal_threshold),
        half_life=half_life(spread),
        cointegration_pvalue=pvalue,
        is_cointegrated=pvalue < COINTEGRATION_PVALUE,
        sharpe=spread_sharpe(spread, periods_per_year),
        volatility=spread_volatility(spread, periods_per_year),
        num_points=int(a.size),
    )


def align_series(series_a: PriceSeries, series_b: PriceSeries) -> tuple[PriceSeries, PriceSeries]:
    """Trim both series to the shorter length, keeping the most recent points."""
    n = min(len(series_a), len(series_b))
    return series_a.tail(n), series_b.tail(n)


def analyze_series(
    series_a: PriceSeries,
    series_b: PriceSeries,
    config: AnalysisConfig,
) -> AnalysisResult:
    """Align two fetched series, enforce the minimum length, and analyze them."""
    aligned_a, aligned_b = align_series(series_a, series_b)
    if len(aligned_a) < config.min_points:
        short = series_a.symbol if len(series_a) <= len(series_b) else series_b.symbol
        raise DataUnavailable(
            f"{series_a.symbol}/{series_b.symbol}: {len(aligned_a)} aligned points < {config.min_points}",
            symbol=short,
        )
    return analyze_pair(
        aligned_a.prices,
        aligned_b.prices,
        periods_per_year=config.periods_per_year,
        signal_threshold=config.signal_threshold,
        cointegration_method=config.cointegration_method,
    )

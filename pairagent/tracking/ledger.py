"""Position ledger: sole owner of the in-memory position list.

Every open / mark / close goes through here and is written through to the
injected store. A failed write is logged; memory is never rolled back.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable

import pytz
import structlog

from pairagent.core.config import ExitConfig
from pairagent.core.errors import DataUnavailable, InvalidPriceData
from pairagent.core.models import (
    AnalysisResult, CandidatePair, CloseReason, Position, PositionStatus, SignalDirection,
)
from pairagent.tracking.store import PositionStore

logger = structlog.get_logger()

Clock = Callable[[], datetime]
# Fresh z-score for an open position's pair, or None if it cannot be computed
ZScoreFn = Callable[[Position], Awaitable[float | None]]


def _utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def _valid_price(price: float | None) -> bool:
    return price is not None and math.isfinite(price) and price > 0


def entry_reason(candidate: CandidatePair, direction: SignalDirection, z_score: float) -> str:
    a, b = candidate.symbol_a, candidate.symbol_b
    if direction == SignalDirection.LONG:
        return f"Spread {z_score:.2f}σ below mean, expecting reversion upward. Long {a}, short {b}."
    return f"Spread {z_score:.2f}σ above mean, expecting reversion downward. Short {a}, long {b}."


def compute_pnl_pct(position: Position, price_a: float, price_b: float) -> float:
    """Combined return of both legs in percent.

    long leg: (current - entry) / entry, short leg: (entry - current) / entry.
    """
    if position.long_asset == position.symbol_a:
        current_long, current_short = price_a, price_b
    else:
        current_long, current_short = price_b, price_a
    long_ret = (current_long - position.entry_long_price) / position.entry_long_price
    short_ret = (position.entry_short_price - current_short) / position.entry_short_price
    return (long_ret + short_ret) * 100.0


class PositionLedger:
    """Open -> closed state machine over synthetic pair positions."""

    def __init__(
        self,
        store: PositionStore | None,
        exit_config: ExitConfig,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._exits = exit_config
        self._clock = clock or _utcnow
        self._positions: list[Position] = []
        self._log = logger.bind(component="position_ledger")

    # ── Read access ───────────────────────────────────────────────────

    @property
    def positions(self) -> list[Position]:
        """Snapshot of every position, open and closed, oldest first."""
        return list(self._positions)

    @property
    def open_positions(self) -> list[Position]:
        return [p for p in self._positions if p.is_open]

    @property
    def closed_positions(self) -> list[Position]:
        return [p for p in self._positions if not p.is_open]

    def get(self, position_id: str) -> Position | None:
        for p in self._positions:
            if p.id == position_id:
                return p
        return None

    def has_open_pair(self, candidate: CandidatePair) -> bool:
        """True if an open position exists for this pair in either symbol order."""
        return any(p.is_open and p.key == candidate.key for p in self._positions)

    # ── Persistence ───────────────────────────────────────────────────

    async def _persist(self, operation: str, position: Position) -> None:
        if self._store is None:
            return
        try:
            await getattr(self._store, operation)(position)
        except Exception:
            self._log.warning(
                "persistence_failed",
                operation=operation,
                position_id=position.id,
                pair=position.pair_id,
                exc_info=True,
            )

    async def restore(self) -> int:
        """Reload positions from the store. Returns the number of open positions."""
        if self._store is None:
            return 0
        try:
            loaded = await self._store.load_positions()
        except Exception:
            self._log.warning("position_restore_failed", exc_info=True)
            return 0

        known = {p.id for p in self._positions}
        self._positions.extend(p for p in loaded if p.id not in known)
        open_count = len(self.open_positions)
        self._log.info("positions_restored", total=len(self._positions), open=open_count)
        return open_count

    # ── State transitions ─────────────────────────────────────────────

    async def open_position(
        self,
        candidate: CandidatePair,
        direction: SignalDirection,
        analysis: AnalysisResult,
        price_a: float,
        price_b: float,
        size_fraction: float = 0.0,
    ) -> Position:
        """Open a pair position. LONG buys A / sells B; SHORT buys B / sells A."""
        if direction == SignalDirection.NEUTRAL:
            raise ValueError(f"{candidate.pair_id}: cannot open a neutral position")
        if not (_valid_price(price_a) and _valid_price(price_b)):
            raise InvalidPriceData(
                f"{candidate.pair_id}: invalid entry prices ({price_a}, {price_b})"
            )

        if direction == SignalDirection.LONG:
            long_asset, short_asset = candidate.symbol_a, candidate.symbol_b
            entry_long, entry_short = price_a, price_b
        else:
            long_asset, short_asset = candidate.symbol_b, candidate.symbol_a
            entry_long, entry_short = price_b, price_a

        now = self._clock()
        position = Position(
            id=uuid.uuid4().hex,
            symbol_a=candidate.symbol_a,
            symbol_b=candidate.symbol_b,
            direction=direction,
            long_asset=long_asset,
            short_asset=short_asset,
            entry_long_price=entry_long,
            entry_short_price=entry_short,
            entry_time=now,
            current_pnl_pct=0.0,
            last_marked_at=now,
            entry_reason=entry_reason(candidate, direction, analysis.z_score),
            entry_z_score=analysis.z_score,
            correlation=analysis.correlation,
            hedge_ratio=analysis.hedge_ratio,
            half_life=analysis.half_life,
            spread=analysis.spread,
            spread_mean=analysis.spread_mean,
            spread_std=analysis.spread_std,
            sharpe=analysis.sharpe,
            volatility=analysis.volatility,
            size_fraction=size_fraction,
        )
        self._positions.append(position)

        self._log.info(
            "position_opened",
            position_id=position.id,
            pair=position.pair_id,
            direction=direction.value,
            long=long_asset,
            short=short_asset,
            entry_long=entry_long,
            entry_short=entry_short,
            z_score=round(analysis.z_score, 3),
            correlation=round(analysis.correlation, 3),
            size_fraction=round(size_fraction, 4),
        )
        await self._persist("create_position", position)
        return position

    async def mark_to_market(self, position: Position, price_a: float | None, price_b: float | None) -> bool:
        """Recompute PnL% from current prices. Returns False if the update was skipped."""
        if not position.is_open:
            return False
        if not (_valid_price(price_a) and _valid_price(price_b)):
            self._log.warning(
                "mark_to_market_skipped",
                pair=position.pair_id,
                price_a=price_a,
                price_b=price_b,
                stale_pnl_pct=round(position.current_pnl_pct, 4),
            )
            return False

        position.current_pnl_pct = compute_pnl_pct(position, price_a, price_b)
        position.last_marked_at = self._clock()
        self._log.debug("position_marked", pair=position.pair_id, pnl_pct=round(position.current_pnl_pct, 4))
        await self._persist("update_pnl", position)
        return True

    async def close_position(
        self,
        position: Position,
        reason: CloseReason,
        detail: str = "",
        trigger_value: float | None = None,
    ) -> bool:
        """Close at the last marked PnL. A second close is a no-op and returns False."""
        if not position.is_open:
            self._log.debug("position_already_closed", position_id=position.id, pair=position.pair_id)
            return False

        position.status = PositionStatus.CLOSED
        position.close_time = self._clock()
        position.close_reason = reason
        position.close_detail = detail
        position.close_trigger_value = trigger_value
        position.close_pnl_pct = position.current_pnl_pct

        self._log.info(
            "position_closed",
            position_id=position.id,
            pair=position.pair_id,
            reason=reason.value,
            detail=detail,
            pnl_pct=round(position.close_pnl_pct, 4),
            held_hours=round(position.holding_duration(position.close_time).total_seconds() / 3600, 2),
        )
        await self._persist("close_position", position)
        return True

    # ── Exit checks ───────────────────────────────────────────────────

    def _threshold_exit(self, position: Position, now: datetime) -> tuple[CloseReason, float, str] | None:
        """Stop-loss, take-profit and max holding, in that order."""
        pnl = position.current_pnl_pct
        if pnl <= self._exits.stop_loss_pct:
            return CloseReason.STOP_LOSS, pnl, f"Stop-loss triggered at {pnl:.2f}%"
        if pnl >= self._exits.take_profit_pct:
            return CloseReason.TAKE_PROFIT, pnl, f"Take-profit triggered at {pnl:.2f}%"

        held = now - position.entry_time
        if held >= timedelta(hours=self._exits.max_holding_hours):
            hours = held.total_seconds() / 3600
            return CloseReason.MAX_HOLDING, hours, f"Max holding period exceeded ({hours / 24:.1f} days)"
        return None

    async def check_exits(
        self,
        prices: dict[str, float | None],
        zscore_fn: ZScoreFn,
    ) -> list[Position]:
        """Mark every open position and close those hitting an exit condition.

        A position whose prices are missing or invalid is skipped entirely.
        The z-score is only requested when no threshold exit fired.
        """
        closed: list[Position] = []
        for position in self.open_positions:
            try:
                marked = await self.mark_to_market(
                    position, prices.get(position.symbol_a), prices.get(position.symbol_b),
                )
                if not marked:
                    continue

                now = self._clock()
                exit_ = self._threshold_exit(position, now)
                if exit_ is None:
                    z_score = await self._fresh_z_score(position, zscore_fn)
                    if z_score is not None and abs(z_score) <= self._exits.mean_reversion_threshold:
                        exit_ = (
                            CloseReason.MEAN_REVERSION,
                            z_score,
                            f"Mean reversion complete (z-score: {z_score:.2f})",
                        )
                    else:
                        self._log.info(
                            "position_held",
                            pair=position.pair_id,
                            pnl_pct=round(position.current_pnl_pct, 2),
                            z_score=round(z_score, 2) if z_score is not None else None,
                        )

                if exit_ is not None:
                    reason, value, detail = exit_
                    if await self.close_position(position, reason, detail, value):
                        closed.append(position)
            except Exception:
                self._log.exception("exit_check_failed", pair=position.pair_id)
        return closed

    async def _fresh_z_score(self, position: Position, zscore_fn: ZScoreFn) -> float | None:
        try:
            z_score = await zscore_fn(position)
        except DataUnavailable as e:
            self._log.info("z_score_unavailable", pair=position.pair_id, error=str(e))
            return None
        if z_score is None or not math.isfinite(z_score):
            return None
        return z_score

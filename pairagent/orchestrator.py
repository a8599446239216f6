"""Scan orchestrator: the full cycle, the fast exit loop, and their scheduler.

Full cycle: exit pass -> scan candidate pairs until one opens (or the
concurrency cap / scan budget is reached) -> optional fallback pairs ->
mark-to-market refresh -> performance snapshot.

Fast exit loop: exit pass only, for responsiveness between full cycles.

Both share one lock, so they never interleave on the position list.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

import pytz
import structlog

from pairagent.analysis.pair_analyzer import analyze_series
from pairagent.analysis.qualifier import SignalQualifier
from pairagent.core.config import Settings
from pairagent.core.errors import (
    ClientRejection, DataUnavailable, InvalidPriceData, PairAgentError, RateLimited,
)
from pairagent.core.models import CandidatePair, PerformanceSummary, Position
from pairagent.data.provider import MarketDataProvider, PairSelector
from pairagent.risk.position_sizer import PositionSizer
from pairagent.risk.risk_manager import PairRiskManager
from pairagent.tracking.ledger import PositionLedger
from pairagent.tracking.metrics import PerformanceAggregator
from pairagent.tracking.store import PositionStore

logger = structlog.get_logger()


@dataclass
class CycleReport:
    """What one full cycle did."""

    started_at: datetime
    exits: list[Position] = field(default_factory=list)
    scans: int = 0
    evaluated: int = 0
    opened: Position | None = None
    used_fallback: bool = False
    at_capacity: bool = False
    performance: PerformanceSummary | None = None


class ScanOrchestrator:
    """Drives analysis, qualification, admission and the ledger on two schedules.

    Collaborators (market data, pair selection, persistence) are injected;
    everything else is built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        data_provider: MarketDataProvider,
        pair_selector: PairSelector,
        store: PositionStore | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._provider = data_provider
        self._selector = pair_selector
        self._store = store
        self._clock = clock or (lambda: datetime.now(pytz.UTC))
        self._sleep = sleep
        self._log = logger.bind(component="orchestrator")

        self._ledger = PositionLedger(store, settings.exits, clock=self._clock)
        self._qualifier = SignalQualifier(settings.qualifier)
        self._risk_manager = PairRiskManager(settings.risk)
        self._sizer = PositionSizer(settings.sizing)
        self._aggregator = PerformanceAggregator(leverage=settings.performance.leverage)

        self._performance: PerformanceSummary | None = None
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._initialized = False

    # ── Accessors ─────────────────────────────────────────────────────

    @property
    def ledger(self) -> PositionLedger:
        return self._ledger

    @property
    def performance(self) -> PerformanceSummary | None:
        return self._performance

    @property
    def is_running_cycle(self) -> bool:
        return self._cycle_lock.locked()

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Restore trade history and compute the starting performance summary."""
        if self._initialized:
            return
        open_count = await self._ledger.restore()
        self._performance = self._aggregator.calculate(self._ledger.positions, self._clock())
        self._initialized = True
        self._log.info(
            "orchestrator_initialized",
            open_positions=open_count,
            closed_positions=len(self._ledger.closed_positions),
        )

    def stop(self) -> None:
        """Request shutdown. Takes effect between runs, never mid-cycle."""
        self._log.info("stop_requested")
        self._stop_event.set()

    async def run_forever(self) -> None:
        """Run the full cycle and fast exit schedules until ``stop()``."""
        await self.initialize()
        scan = self._settings.scan
        self._log.info(
            "scheduler_starting",
            full_cycle_seconds=scan.full_cycle_seconds,
            fast_exit_seconds=scan.fast_exit_seconds,
        )

        full = asyncio.create_task(self._schedule("full_cycle", scan.full_cycle_seconds, self.run_full_cycle, 0.0))
        fast = asyncio.create_task(
            self._schedule("fast_exit", scan.fast_exit_seconds, self.run_exit_checks, scan.fast_exit_seconds)
        )
        try:
            await asyncio.gather(full, fast)
        finally:
            for task in (full, fast):
                if not task.done():
                    task.cancel()
            self._log.info("scheduler_stopped")

    async def _schedule(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
        initial_delay: float,
    ) -> None:
        if await self._wait_or_stop(initial_delay):
            return
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                await job()
            except Exception:
                self._log.exception("cycle_error", schedule=name)

            remaining = max(0.0, interval - (time.monotonic() - started))
            self._log.debug("cycle_sleeping", schedule=name, seconds=round(remaining, 1))
            if await self._wait_or_stop(remaining):
                return

    async def _wait_or_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if stop was requested meanwhile."""
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    # ── Exit pass ─────────────────────────────────────────────────────

    async def run_exit_checks(self) -> list[Position]:
        """Fast exit loop body. Skipped when a full cycle holds the lock."""
        if self._cycle_lock.locked():
            self._log.info("fast_exit_skipped", reason="full_cycle_in_progress")
            return []
        async with self._cycle_lock:
            return await self._exit_pass()

    async def _exit_pass(self) -> list[Position]:
        open_positions = self._ledger.open_positions
        if not open_positions:
            return []

        self._log.info("exit_check_starting", open_positions=len(open_positions))
        prices = await self._fetch_prices(self._symbols_of(open_positions))
        closed = await self._ledger.check_exits(prices, self._current_z_score)
        self._log.info(
            "exit_check_complete",
            closed=len(closed),
            remaining_open=len(self._ledger.open_positions),
        )
        return closed

    @staticmethod
    def _symbols_of(positions: list[Position]) -> list[str]:
        return list(dict.fromkeys(s for p in positions for s in p.pair))

    async def _fetch_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Current prices, sequentially. A failed symbol maps to None."""
        prices: dict[str, float | None] = {}
        for symbol in symbols:
            try:
                prices[symbol] = await self._provider.get_current_price(symbol)
            except (ClientRejection, DataUnavailable) as e:
                self._log.info("price_unavailable", symbol=symbol, error=str(e))
                prices[symbol] = None
            except PairAgentError as e:
                self._log.warning("price_fetch_failed", symbol=symbol, error=str(e))
                prices[symbol] = None
            except Exception:
                self._log.exception("price_fetch_error", symbol=symbol)
                prices[symbol] = None
        return prices

    async def _current_z_score(self, position: Position) -> float | None:
        """Fresh z-score for an open position's pair from newly fetched series."""
        lookback = self._settings.analysis.lookback_periods
        try:
            series_a = await self._provider.get_series(position.symbol_a, lookback)
            series_b = await self._provider.get_series(position.symbol_b, lookback)
            return analyze_series(series_a, series_b, self._settings.analysis).z_score
        except PairAgentError as e:
            self._log.info("z_score_unavailable", pair=position.pair_id, error=str(e))
            return None

    # ── Candidate evaluation ──────────────────────────────────────────

    async def evaluate_candidate(self, candidate: CandidatePair) -> Position | None:
        """Analyze -> qualify -> admit -> open. Failures are contained to this candidate."""
        try:
            return await self._evaluate(candidate)
        except ClientRejection as e:
            self._log.info("candidate_rejected_by_provider", pair=candidate.pair_id, status=e.status_code)
        except DataUnavailable as e:
            self._log.info("candidate_data_unavailable", pair=candidate.pair_id, error=str(e))
        except InvalidPriceData as e:
            self._log.warning("candidate_invalid_prices", pair=candidate.pair_id, error=str(e))
        except RateLimited as e:
            self._log.warning("candidate_rate_limited", pair=candidate.pair_id, error=str(e))
        except Exception:
            self._log.exception("candidate_evaluation_failed", pair=candidate.pair_id)
        return None

    async def _evaluate(self, candidate: CandidatePair) -> Position | None:
        if candidate.symbol_a == candidate.symbol_b:
            self._log.debug("candidate_skipped", pair=candidate.pair_id, reason="same_symbol")
            return None
        if self._ledger.has_open_pair(candidate):
            self._log.info("candidate_skipped", pair=candidate.pair_id, reason="already_open")
            return None

        # Cheap count-based admission before spending requests on the pair
        if not self._risk_manager.can_open(candidate, self._ledger.open_positions).allowed:
            return None

        lookback = self._settings.analysis.lookback_periods
        series_a = await self._provider.get_series(candidate.symbol_a, lookback)
        series_b = await self._provider.get_series(candidate.symbol_b, lookback)
        analysis = analyze_series(series_a, series_b, self._settings.analysis)

        qualification = self._qualifier.evaluate(analysis)
        self._log.info(
            "pair_analyzed",
            pair=candidate.pair_id,
            z_score=round(analysis.z_score, 3),
            correlation=round(analysis.correlation, 3),
            half_life=round(analysis.half_life, 1) if analysis.has_finite_half_life else None,
            pvalue=analysis.cointegration_pvalue,
            qualified=qualification.passed,
            reason=qualification.reason,
        )
        if not qualification.passed:
            return None

        size = self._sizer.size(self._performance, analysis.volatility)
        decision = self._risk_manager.can_open(candidate, self._ledger.open_positions, size)
        if not decision.allowed:
            return None

        return await self._ledger.open_position(
            candidate,
            qualification.direction,
            analysis,
            price_a=series_a.last_price,
            price_b=series_b.last_price,
            size_fraction=size,
        )

    # ── Full cycle ────────────────────────────────────────────────────

    async def run_full_cycle(self) -> CycleReport:
        async with self._cycle_lock:
            return await self._full_cycle()

    async def _full_cycle(self) -> CycleReport:
        await self.initialize()
        report = CycleReport(started_at=self._clock())
        self._log.info("full_cycle_starting", open_positions=len(self._ledger.open_positions))

        try:
            report.exits = await self._exit_pass()
        except Exception:
            self._log.exception("exit_pass_failed")

        seen: set[tuple[str, str]] = set()
        await self._scan(report, seen)

        if report.opened is None and not report.at_capacity and self._settings.scan.fallback_pairs:
            await self._probe_fallback(report, seen)

        if report.opened is None:
            self._log.info("cycle_no_trade", scans=report.scans, evaluated=report.evaluated)

        await self._refresh_open_positions()
        report.performance = await self._update_performance()

        self._log.info(
            "full_cycle_complete",
            scans=report.scans,
            evaluated=report.evaluated,
            opened=report.opened.pair_id if report.opened else None,
            exits=len(report.exits),
            open_positions=len(self._ledger.open_positions),
        )
        return report

    def _check_capacity(self, report: CycleReport) -> bool:
        if self._risk_manager.at_capacity(self._ledger.open_positions):
            if not report.at_capacity:
                self._log.info(
                    "scan_stopped_at_capacity",
                    open_positions=len(self._ledger.open_positions),
                    limit=self._risk_manager.max_concurrent_positions,
                )
            report.at_capacity = True
        return report.at_capacity

    async def _try_candidates(
        self,
        candidates: list[CandidatePair],
        report: CycleReport,
        seen: set[tuple[str, str]],
    ) -> None:
        for candidate in candidates:
            if self._check_capacity(report):
                return
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            report.evaluated += 1
            position = await self.evaluate_candidate(candidate)
            if position is not None:
                report.opened = position
                return

    async def _scan(self, report: CycleReport, seen: set[tuple[str, str]]) -> None:
        scan = self._settings.scan
        while report.scans < scan.scan_budget and report.opened is None:
            if self._check_capacity(report):
                return

            report.scans += 1
            try:
                candidates = await self._selector.next_candidates(scan.candidates_per_scan)
            except Exception:
                self._log.exception("candidate_selection_failed", scan=report.scans)
                candidates = []

            self._log.info("scan_starting", scan=report.scans, candidates=len(candidates))
            await self._try_candidates(candidates, report, seen)

            if report.opened is not None:
                self._log.info("signal_found", scan=report.scans, pair=report.opened.pair_id)
                return
            if report.scans < scan.scan_budget and scan.inter_scan_delay_seconds > 0:
                await self._sleep(scan.inter_scan_delay_seconds)

    async def _probe_fallback(self, report: CycleReport, seen: set[tuple[str, str]]) -> None:
        fallback = [
            CandidatePair(p.symbol_a, p.symbol_b, category=p.category)
            for p in self._settings.scan.fallback_pairs
        ]
        self._log.info("scan_budget_exhausted_probing_fallback", pairs=len(fallback))
        report.used_fallback = True
        await self._try_candidates(fallback, report, seen)

    async def _refresh_open_positions(self) -> None:
        open_positions = self._ledger.open_positions
        if not open_positions:
            return
        prices = await self._fetch_prices(self._symbols_of(open_positions))
        for position in open_positions:
            try:
                await self._ledger.mark_to_market(
                    position, prices.get(position.symbol_a), prices.get(position.symbol_b),
                )
            except Exception:
                self._log.exception("mark_to_market_failed", pair=position.pair_id)

    async def _update_performance(self) -> PerformanceSummary:
        summary = self._aggregator.calculate(self._ledger.positions, self._clock())
        self._performance = summary
        if self._store is not None and summary.total_trades > 0:
            try:
                await self._store.save_performance(summary)
            except Exception:
                self._log.warning("performance_snapshot_failed", exc_info=True)
        return summary

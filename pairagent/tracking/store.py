"""Persistent store port and its SQLite implementation.

The ledger keeps positions in memory and writes every mutation through a
``PositionStore``. Writes are independently failable; the ledger logs a
failure and carries on with its in-memory state.
"""

from __future__ import annotations

import math
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import pytz
import structlog

from pairagent.core.errors import PersistenceFailure
from pairagent.core.models import (
    CloseReason, PerformanceSummary, Position, PositionStatus, SignalDirection,
)

logger = structlog.get_logger()


@runtime_checkable
class PositionStore(Protocol):
    """Asynchronous persistence for positions and performance snapshots."""

    async def create_position(self, position: Position) -> None: ...

    async def update_pnl(self, position: Position) -> None: ...

    async def close_position(self, position: Position) -> None: ...

    async def save_performance(self, summary: PerformanceSummary) -> None: ...

    async def load_positions(self) -> list[Position]: ...


CREATE_POSITIONS_SQL = """
CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    symbol_a TEXT NOT NULL,
    symbol_b TEXT NOT NULL,
    direction TEXT NOT NULL,
    long_asset TEXT NOT NULL,
    short_asset TEXT NOT NULL,
    entry_long_price REAL NOT NULL,
    entry_short_price REAL NOT NULL,
    entry_time TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    current_pnl_pct REAL DEFAULT 0.0,
    last_marked_at TEXT,
    entry_reason TEXT DEFAULT '',
    entry_z_score REAL DEFAULT 0.0,
    correlation REAL DEFAULT 0.0,
    hedge_ratio REAL DEFAULT 0.0,
    half_life REAL,
    spread REAL DEFAULT 0.0,
    spread_mean REAL DEFAULT 0.0,
    spread_std REAL DEFAULT 0.0,
    sharpe REAL DEFAULT 0.0,
    volatility REAL DEFAULT 0.0,
    size_fraction REAL DEFAULT 0.0,
    close_time TEXT,
    close_reason TEXT,
    close_detail TEXT DEFAULT '',
    close_trigger_value REAL,
    close_pnl_pct REAL,
    created_at TEXT NOT NULL
)
"""

CREATE_PERFORMANCE_SQL = """
CREATE TABLE IF NOT EXISTS performance_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    total_trades INTEGER NOT NULL,
    open_trades INTEGER NOT NULL,
    winning_trades INTEGER NOT NULL,
    losing_trades INTEGER NOT NULL,
    win_rate REAL NOT NULL,
    total_return_pct REAL NOT NULL,
    total_return_leveraged_pct REAL NOT NULL,
    leverage REAL NOT NULL,
    apy REAL NOT NULL,
    avg_trades_per_day REAL NOT NULL,
    avg_return_per_day REAL NOT NULL,
    profit_factor REAL NOT NULL,
    avg_duration_hours REAL NOT NULL,
    avg_win_pct REAL NOT NULL,
    avg_loss_pct REAL NOT NULL,
    start_date TEXT,
    last_updated TEXT NOT NULL
)
"""

CREATE_INDEX_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status)",
    "CREATE INDEX IF NOT EXISTS idx_positions_entry_time ON positions(entry_time)",
]

# Snapshot columns are bounded so a degenerate ratio never lands as inf/NaN
_SNAPSHOT_LIMIT = 99_999_999_999.0


def _sanitize(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(-_SNAPSHOT_LIMIT, min(_SNAPSHOT_LIMIT, value))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqlitePositionStore:
    """SQLite-backed position store.

    Records every position with its entry context, PnL updates, close
    reason, and periodic performance snapshots.
    """

    def __init__(self, db_path: str = "data/pairagent.db") -> None:
        self._db_path = db_path
        self._log = logger.bind(component="position_store")

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._init_db()
        self._log.info("position_store_initialized", db_path=db_path)

    def _init_db(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute(CREATE_POSITIONS_SQL)
        cursor.execute(CREATE_PERFORMANCE_SQL)
        for sql in CREATE_INDEX_SQL:
            cursor.execute(sql)
        self._conn.commit()

    def _execute(self, sql: str, params: tuple | list) -> sqlite3.Cursor:
        try:
            cursor = self._conn.cursor()
            cursor.execute(sql, params)
            self._conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise PersistenceFailure(f"SQLite write failed: {e}") from e

    async def create_position(self, position: Position) -> None:
        self._execute(
            """
            INSERT INTO positions (id, symbol_a, symbol_b, direction, long_asset,
                short_asset, entry_long_price, entry_short_price, entry_time, status,
                current_pnl_pct, last_marked_at, entry_reason, entry_z_score,
                correlation, hedge_ratio, half_life, spread, spread_mean, spread_std,
                sharpe, volatility, size_fraction, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                position.id,
                position.symbol_a,
                position.symbol_b,
                position.direction.value,
                position.long_asset,
                position.short_asset,
                position.entry_long_price,
                position.entry_short_price,
                position.entry_time.isoformat(),
                position.status.value,
                position.current_pnl_pct,
                _iso(position.last_marked_at),
                position.entry_reason,
                position.entry_z_score,
                position.correlation,
                position.hedge_ratio,
                position.half_life if math.isfinite(position.half_life) else None,
                position.spread,
                position.spread_mean,
                position.spread_std,
                position.sharpe,
                position.volatility,
                position.size_fraction,
                datetime.now(pytz.UTC).isoformat(),
            ),
        )
        self._log.debug("position_recorded", position_id=position.id, pair=position.pair_id)

    async def update_pnl(self, position: Position) -> None:
        self._execute(
            "UPDATE positions SET current_pnl_pct = ?, last_marked_at = ? WHERE id = ?",
            (position.current_pnl_pct, _iso(position.last_marked_at), position.id),
        )

    async def close_position(self, position: Position) -> None:
        self._execute(
            """
            UPDATE positions SET status = ?, current_pnl_pct = ?, close_time = ?,
                close_reason = ?, close_detail = ?, close_trigger_value = ?, close_pnl_pct = ?
            WHERE id = ?
            """,
            (
                position.status.value,
                position.current_pnl_pct,
                _iso(position.close_time),
                position.close_reason.value if position.close_reason else None,
                position.close_detail,
                position.close_trigger_value,
                position.close_pnl_pct,
                position.id,
            ),
        )

    async def save_performance(self, summary: PerformanceSummary) -> None:
        self._execute(
            """
            INSERT INTO performance_snapshots (total_trades, open_trades, winning_trades,
                losing_trades, win_rate, total_return_pct, total_return_leveraged_pct,
                leverage, apy, avg_trades_per_day, avg_return_per_day, profit_factor,
                avg_duration_hours, avg_win_pct, avg_loss_pct, start_date, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.total_trades,
                summary.open_trades,
                summary.winning_trades,
                summary.losing_trades,
                _sanitize(summary.win_rate),
                _sanitize(summary.total_return_pct),
                _sanitize(summary.total_return_leveraged_pct),
                summary.leverage,
                _sanitize(summary.apy),
                _sanitize(summary.avg_trades_per_day),
                _sanitize(summary.avg_return_per_day),
                _sanitize(summary.profit_factor),
                _sanitize(summary.avg_duration_hours),
                _sanitize(summary.avg_win_pct),
                _sanitize(summary.avg_loss_pct),
                _iso(summary.start_date),
                (_iso(summary.last_updated) or datetime.now(pytz.UTC).isoformat()),
            ),
        )
        self._log.debug("performance_snapshot_saved", total_trades=summary.total_trades)

    async def load_positions(self) -> list[Position]:
        try:
            cursor = self._conn.cursor()
            cursor.execute("SELECT * FROM positions ORDER BY entry_time ASC")
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"SQLite read failed: {e}") from e
        return [self._row_to_position(row) for row in rows]

    def latest_performance(self) -> dict[str, Any] | None:
        """Most recent performance snapshot as a plain dict."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT * FROM performance_snapshots ORDER BY id DESC LIMIT 1")
        row = cursor.fetchone()
        return dict(row) if row else None

    def _row_to_position(self, row: sqlite3.Row) -> Position:
        return Position(
            id=row["id"],
            symbol_a=row["symbol_a"],
            symbol_b=row["symbol_b"],
            direction=SignalDirection(row["direction"]),
            long_asset=row["long_asset"],
            short_asset=row["short_asset"],
            entry_long_price=row["entry_long_price"],
            entry_short_price=row["entry_short_price"],
            entry_time=datetime.fromisoformat(row["entry_time"]),
            status=PositionStatus(row["status"]),
            current_pnl_pct=row["current_pnl_pct"] or 0.0,
            last_marked_at=_parse(row["last_marked_at"]),
            entry_reason=row["entry_reason"] or "",
            entry_z_score=row["entry_z_score"] or 0.0,
            correlation=row["correlation"] or 0.0,
            hedge_ratio=row["hedge_ratio"] or 0.0,
            half_life=row["half_life"] if row["half_life"] is not None else math.inf,
            spread=row["spread"] or 0.0,
            spread_mean=row["spread_mean"] or 0.0,
            spread_std=row["spread_std"] or 0.0,
            sharpe=row["sharpe"] or 0.0,
            volatility=row["volatility"] or 0.0,
            size_fraction=row["size_fraction"] or 0.0,
            close_time=_parse(row["close_time"]),
            close_reason=CloseReason(row["close_reason"]) if row["close_reason"] else None,
            close_detail=row["close_detail"] or "",
            close_trigger_value=row["close_trigger_value"],
            close_pnl_pct=row["close_pnl_pct"],
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

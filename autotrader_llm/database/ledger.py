"""
Trade Ledger: SQLite persistence for trades, cycle outcomes and portfolio snapshots.

Records are append/update only:
- A BUY inserts an 'open' row; the matching sell marks it 'closed' with P&L
- Each sell also inserts a 'closed' SELL row for audit
- Cycle outcomes and portfolio snapshots are write-once
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from autotrader_llm.database.models import AnalysisLog, PortfolioSnapshot, Trade

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Raised when a ledger read or write fails"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    # Fixed-width UTC text so lexical order equals time order
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS trades (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        ticker TEXT NOT NULL,
        action TEXT NOT NULL CHECK(action IN ('BUY', 'SELL')),
        price REAL NOT NULL,
        quantity INTEGER NOT NULL,
        order_id TEXT NOT NULL DEFAULT '',
        stop_loss_price REAL NOT NULL DEFAULT 0,
        take_profit_price REAL NOT NULL DEFAULT 0,
        stop_loss_order_id TEXT NOT NULL DEFAULT '',
        take_profit_order_id TEXT NOT NULL DEFAULT '',
        pnl REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'open' CHECK(status IN ('open', 'closed'))
    );
    CREATE INDEX IF NOT EXISTS idx_trades_ticker ON trades(ticker);
    CREATE INDEX IF NOT EXISTS idx_trades_ticker_status ON trades(ticker, status);

    CREATE TABLE IF NOT EXISTS analysis_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        signals_count INTEGER NOT NULL DEFAULT 0,
        ai_response TEXT NOT NULL DEFAULT '',
        decisions_json TEXT NOT NULL DEFAULT '',
        error TEXT NOT NULL DEFAULT ''
    );

    CREATE TABLE IF NOT EXISTS portfolio_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        total_value REAL NOT NULL DEFAULT 0,
        available_cash REAL NOT NULL DEFAULT 0,
        positions_count INTEGER NOT NULL DEFAULT 0,
        positions_json TEXT NOT NULL DEFAULT '[]'
    );
"""


class TradeLedger:
    """
    Owns every persisted entity of the trading cycle.

    Opens a short-lived SQLite connection per call, so a single ledger can
    be shared by the orchestrator, the executor and the CLI.
    """

    def __init__(self, db_path: str, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize ledger and create tables if needed.

        Args:
            db_path: Path to SQLite database file
            clock: Source of aware "now" timestamps (injectable for tests)
        """
        self.db_path = db_path
        self._clock = clock
        self._ensure_database()
        logger.info(f"TradeLedger initialized with database: {db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_database(self):
        """Create database and tables if they don't exist"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = self._connect()
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Failed to initialize database {self.db_path}: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement; returns lastrowid"""
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Ledger write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Ledger read failed: {e}") from e

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> Trade:
        return Trade(
            id=row['id'],
            ticker=row['ticker'],
            action=row['action'],
            price=row['price'],
            quantity=row['quantity'],
            order_id=row['order_id'],
            stop_loss_price=row['stop_loss_price'],
            take_profit_price=row['take_profit_price'],
            stop_loss_order_id=row['stop_loss_order_id'],
            take_profit_order_id=row['take_profit_order_id'],
            pnl=row['pnl'],
            status=row['status'],
            created_at=_parse_ts(row['created_at']),
            updated_at=_parse_ts(row['updated_at'])
        )

    # Trades

    def save_trade(self, trade: Trade) -> Trade:
        """
        Insert a trade record.

        Returns:
            Trade with id and timestamps populated
        """
        now = self._clock()
        trade_id = self._execute("""
            INSERT INTO trades (
                created_at, updated_at, ticker, action, price, quantity, order_id,
                stop_loss_price, take_profit_price, stop_loss_order_id,
                take_profit_order_id, pnl, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            _ts(now), _ts(now), trade.ticker, trade.action, trade.price, trade.quantity,
            trade.order_id, trade.stop_loss_price, trade.take_profit_price,
            trade.stop_loss_order_id, trade.take_profit_order_id, trade.pnl, trade.status
        ))

        saved = trade.model_copy(update={'id': trade_id, 'created_at': now, 'updated_at': now})
        logger.debug(f"Saved {saved.action} {saved.ticker} x{saved.quantity} @ {saved.price:.2f} (ID: {trade_id})")
        return saved

    def update_trade(self, trade: Trade) -> Trade:
        """Persist every mutable field of an existing trade and bump updated_at"""
        if trade.id is None:
            raise LedgerError("Cannot update a trade without an id")

        now = self._clock()
        self._execute("""
            UPDATE trades SET
                updated_at = ?, price = ?, quantity = ?, order_id = ?,
                stop_loss_price = ?, take_profit_price = ?, stop_loss_order_id = ?,
                take_profit_order_id = ?, pnl = ?, status = ?
            WHERE id = ?
        """, (
            _ts(now), trade.price, trade.quantity, trade.order_id,
            trade.stop_loss_price, trade.take_profit_price, trade.stop_loss_order_id,
            trade.take_profit_order_id, trade.pnl, trade.status, trade.id
        ))
        return trade.model_copy(update={'updated_at': now})

    def get_open_trade_by_ticker(self, ticker: str) -> Optional[Trade]:
        """Most recent open BUY record for a ticker, or None"""
        rows = self._query("""
            SELECT * FROM trades
            WHERE status = 'open' AND ticker = ? AND action = 'BUY'
            ORDER BY created_at DESC, id DESC
            LIMIT 1
        """, (ticker,))
        return self._row_to_trade(rows[0]) if rows else None

    def get_open_trades(self) -> List[Trade]:
        rows = self._query("SELECT * FROM trades WHERE status = 'open' ORDER BY created_at")
        return [self._row_to_trade(row) for row in rows]

    def get_recent_trades(self, limit: int = 20) -> List[Trade]:
        rows = self._query("SELECT * FROM trades ORDER BY created_at DESC, id DESC LIMIT ?", (limit,))
        return [self._row_to_trade(row) for row in rows]

    def get_today_pnl(self, tz: str = "Europe/Moscow") -> float:
        """
        Realized P&L of sells closed since local midnight.

        Args:
            tz: Exchange timezone defining "today"
        """
        local_now = self._clock().astimezone(ZoneInfo(tz))
        midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        rows = self._query("""
            SELECT COALESCE(SUM(pnl), 0) AS total FROM trades
            WHERE status = 'closed' AND action = 'SELL' AND updated_at >= ?
        """, (_ts(midnight),))
        return float(rows[0]['total'])

    def get_total_pnl(self) -> float:
        rows = self._query("""
            SELECT COALESCE(SUM(pnl), 0) AS total FROM trades
            WHERE status = 'closed' AND action = 'SELL'
        """)
        return float(rows[0]['total'])

    def get_closed_trades_last_24h(self) -> List[Trade]:
        cutoff = self._clock() - timedelta(hours=24)
        rows = self._query("""
            SELECT * FROM trades
            WHERE status = 'closed' AND action = 'SELL' AND created_at >= ?
            ORDER BY created_at DESC
        """, (_ts(cutoff),))
        return [self._row_to_trade(row) for row in rows]

    def find_unpaired_closed_trades(self) -> List[Trade]:
        """
        Closed BUY records with no SELL audit record written after they closed.

        These appear when the process stops between closing a position and
        inserting its sell record. Quantities are not compared: a partially
        filled sell records fewer lots than the position it closed.
        """
        rows = self._query("""
            SELECT b.* FROM trades b
            WHERE b.action = 'BUY' AND b.status = 'closed'
            AND NOT EXISTS (
                SELECT 1 FROM trades s
                WHERE s.action = 'SELL' AND s.ticker = b.ticker
                AND s.created_at >= b.updated_at
            )
            ORDER BY b.updated_at
        """)
        return [self._row_to_trade(row) for row in rows]

    # Analysis logs

    def save_analysis_log(self, log: AnalysisLog) -> AnalysisLog:
        now = self._clock()
        log_id = self._execute("""
            INSERT INTO analysis_logs (created_at, signals_count, ai_response, decisions_json, error)
            VALUES (?, ?, ?, ?, ?)
        """, (_ts(now), log.signals_count, log.ai_response, log.decisions_json, log.error))
        return log.model_copy(update={'id': log_id, 'created_at': now})

    def get_analysis_logs(self, limit: int = 20) -> List[AnalysisLog]:
        rows = self._query("SELECT * FROM analysis_logs ORDER BY created_at DESC, id DESC LIMIT ?", (limit,))
        return [
            AnalysisLog(
                id=row['id'],
                signals_count=row['signals_count'],
                ai_response=row['ai_response'],
                decisions_json=row['decisions_json'],
                error=row['error'],
                created_at=_parse_ts(row['created_at'])
            )
            for row in rows
        ]

    # Portfolio snapshots

    def save_portfolio_snapshot(self, snapshot: PortfolioSnapshot) -> PortfolioSnapshot:
        now = self._clock()
        snapshot_id = self._execute("""
            INSERT INTO portfolio_snapshots (
                created_at, total_value, available_cash, positions_count, positions_json
            ) VALUES (?, ?, ?, ?, ?)
        """, (
            _ts(now), snapshot.total_value, snapshot.available_cash,
            snapshot.positions_count, snapshot.positions_json
        ))
        return snapshot.model_copy(update={'id': snapshot_id, 'created_at': now})

    def get_latest_snapshot(self) -> Optional[PortfolioSnapshot]:
        rows = self._query("SELECT * FROM portfolio_snapshots ORDER BY created_at DESC, id DESC LIMIT 1")
        if not rows:
            return None

        row = rows[0]
        return PortfolioSnapshot(
            id=row['id'],
            total_value=row['total_value'],
            available_cash=row['available_cash'],
            positions_count=row['positions_count'],
            positions_json=row['positions_json'],
            created_at=_parse_ts(row['created_at'])
        )

"""Canonical trade persistence for replay, smart-money and flow queries."""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog

from ..data.models import OptionSide, Trade
from ..errors import PersistenceError
from ..metrics.sentiment import FlowWindow
from ..metrics.significance import ClassifiedTrade
from ..utils.time import from_epoch_ms, to_epoch_ms, utc_now


@dataclass
class StoredTrade:
    """Stored trade with classification metadata."""
    id: int
    trade: Trade
    significant: bool
    dte: Optional[int]
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        record = self.trade.to_record()
        record.update(id=self.id, significant=self.significant, dte=self.dte)
        return record


@dataclass(frozen=True)
class FlowSummary:
    """Call/put premium totals for one underlying over a window."""
    underlying: str
    call_premium: Decimal
    put_premium: Decimal
    trade_count: int

    @property
    def net_premium(self) -> Decimal:
        return self.call_premium - self.put_premium

    def to_dict(self) -> dict[str, Any]:
        return {
            "underlying": self.underlying,
            "callPremium": self.call_premium,
            "putPremium": self.put_premium,
            "netPremium": self.net_premium,
            "tradeCount": self.trade_count,
        }


def _to_text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


class TradeStore:
    """SQLite-based canonical trade store."""

    def __init__(self, db_path: str = "flow.db"):
        self.db_path = Path(db_path)
        self.logger = structlog.get_logger("trade.store")
        self._lock = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts_ms INTEGER NOT NULL,
                    underlying TEXT,
                    contract_symbol TEXT NOT NULL,
                    side TEXT,
                    strike TEXT,
                    expiry TEXT,
                    premium TEXT,
                    size INTEGER,
                    action TEXT NOT NULL,
                    source TEXT NOT NULL,
                    raw_payload TEXT NOT NULL,
                    significant INTEGER NOT NULL DEFAULT 0,
                    dte INTEGER,
                    fingerprint TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_underlying_ts ON trades(underlying, ts_ms)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_ts ON trades(ts_ms)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_significant ON trades(significant, ts_ms)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_fingerprint ON trades(fingerprint)
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error("Database error", error=str(e))
            raise
        finally:
            if conn:
                conn.close()

    def store_trade(self, classified: ClassifiedTrade) -> int:
        """
        Store a classified trade verbatim.

        Returns:
            Row id of the stored trade

        Raises:
            PersistenceError: The insert failed
        """
        trade = classified.trade
        with self._lock:
            try:
                with self._get_connection() as conn:
                    cursor = conn.execute("""
                        INSERT INTO trades (
                            ts_ms, underlying, contract_symbol, side, strike, expiry,
                            premium, size, action, source, raw_payload,
                            significant, dte, fingerprint, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        trade.timestamp_ms,
                        trade.underlying,
                        trade.contract_symbol,
                        trade.side.value if trade.side else None,
                        _to_text(trade.strike),
                        trade.expiry.isoformat() if trade.expiry else None,
                        _to_text(trade.premium),
                        trade.size,
                        trade.action,
                        trade.source,
                        trade.raw_payload,
                        int(classified.significant),
                        classified.dte,
                        trade.fingerprint or None,
                        utc_now().isoformat()
                    ))

                    conn.commit()
                    return cursor.lastrowid

            except sqlite3.Error as e:
                raise PersistenceError(
                    f"Failed to store trade: {e}",
                    operation="store_trade",
                    context={"contract_symbol": trade.contract_symbol}
                ) from e

    def has_fingerprint(self, fingerprint: str) -> bool:
        """Check whether a trade with this idempotency key was already stored."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT 1 FROM trades WHERE fingerprint = ? LIMIT 1
                """, (fingerprint,)).fetchone()
                return row is not None

        except sqlite3.Error as e:
            self.logger.error("Error checking trade fingerprint", error=str(e))
            return False

    def get_trade(self, trade_id: int) -> Optional[StoredTrade]:
        """Get a trade by ID."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT * FROM trades WHERE id = ?
                """, (trade_id,)).fetchone()

                if row:
                    return self._row_to_stored_trade(row)
                return None

        except sqlite3.Error as e:
            self.logger.error("Failed to get trade", trade_id=trade_id, error=str(e))
            return None

    def get_trades(
        self,
        underlying: str,
        start: datetime,
        end: Optional[datetime] = None,
        significant_only: bool = False
    ) -> list[StoredTrade]:
        """Trades for one underlying with start <= ts < end, oldest first."""
        query = "SELECT * FROM trades WHERE underlying = ? AND ts_ms >= ?"
        params: list[Any] = [underlying.upper(), to_epoch_ms(start)]
        if end is not None:
            query += " AND ts_ms < ?"
            params.append(to_epoch_ms(end))
        if significant_only:
            query += " AND significant = 1"
        query += " ORDER BY ts_ms, id"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return [self._row_to_stored_trade(row) for row in rows]

        except sqlite3.Error as e:
            self.logger.error("Failed to get trades", underlying=underlying, error=str(e))
            return []

    def iter_trades(self, since: Optional[datetime] = None) -> Iterator[Trade]:
        """All stored trades oldest first, optionally from ``since``."""
        query = "SELECT * FROM trades"
        params: list[Any] = []
        if since is not None:
            query += " WHERE ts_ms >= ?"
            params.append(to_epoch_ms(since))
        query += " ORDER BY ts_ms, id"

        with self._get_connection() as conn:
            for row in conn.execute(query, params):
                yield self._row_to_trade(row)

    def smart_money(self, limit: int = 50, since: Optional[datetime] = None) -> list[StoredTrade]:
        """Significant trades, largest premium first."""
        query = "SELECT * FROM trades WHERE significant = 1"
        params: list[Any] = []
        if since is not None:
            query += " AND ts_ms >= ?"
            params.append(to_epoch_ms(since))
        query += " ORDER BY CAST(premium AS REAL) DESC, ts_ms DESC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return [self._row_to_stored_trade(row) for row in rows]

        except sqlite3.Error as e:
            self.logger.error("Failed to get smart money trades", error=str(e))
            return []

    def latest(self, underlying: Optional[str] = None, limit: int = 50) -> list[StoredTrade]:
        """Most recent trades, newest first."""
        query = "SELECT * FROM trades"
        params: list[Any] = []
        if underlying:
            query += " WHERE underlying = ?"
            params.append(underlying.upper())
        query += " ORDER BY ts_ms DESC, id DESC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return [self._row_to_stored_trade(row) for row in rows]

        except sqlite3.Error as e:
            self.logger.error("Failed to get latest trades", underlying=underlying, error=str(e))
            return []

    def recent_tickers(self, since: datetime) -> list[str]:
        """Distinct underlyings traded since ``since``."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT DISTINCT underlying FROM trades
                    WHERE ts_ms >= ? AND underlying IS NOT NULL
                    ORDER BY underlying
                """, (to_epoch_ms(since),)).fetchall()
                return [row[0] for row in rows]

        except sqlite3.Error as e:
            self.logger.error("Failed to get recent tickers", error=str(e))
            return []

    def flow_window(self, underlying: str, start: datetime,
                    end: Optional[datetime] = None) -> FlowWindow:
        """Call/put premium and trade count for one underlying between two instants."""
        call_premium = Decimal(0)
        put_premium = Decimal(0)
        trades = self.get_trades(underlying, start, end)
        for stored in trades:
            premium = stored.trade.premium or Decimal(0)
            if stored.trade.side is OptionSide.CALL:
                call_premium += premium
            elif stored.trade.side is OptionSide.PUT:
                put_premium += premium
        return FlowWindow(call_premium=call_premium, put_premium=put_premium,
                          trade_count=len(trades))

    def summary(self, underlying: str, since: datetime) -> FlowSummary:
        """Flow summary for one underlying since ``since``."""
        window = self.flow_window(underlying, since)
        return FlowSummary(
            underlying=underlying.upper(),
            call_premium=window.call_premium,
            put_premium=window.put_premium,
            trade_count=window.trade_count,
        )

    def count_trades(self, underlying: str, start: datetime,
                     end: Optional[datetime] = None) -> int:
        """Number of trades for one underlying with start <= ts < end."""
        query = "SELECT COUNT(*) FROM trades WHERE underlying = ? AND ts_ms >= ?"
        params: list[Any] = [underlying.upper(), to_epoch_ms(start)]
        if end is not None:
            query += " AND ts_ms < ?"
            params.append(to_epoch_ms(end))

        try:
            with self._get_connection() as conn:
                return conn.execute(query, params).fetchone()[0]

        except sqlite3.Error as e:
            self.logger.error("Failed to count trades", underlying=underlying, error=str(e))
            return 0

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics."""
        try:
            with self._get_connection() as conn:
                total_count = conn.execute("SELECT COUNT(*) FROM trades").fetchone()[0]
                significant_count = conn.execute(
                    "SELECT COUNT(*) FROM trades WHERE significant = 1"
                ).fetchone()[0]

                source_counts = {}
                for row in conn.execute("""
                    SELECT source, COUNT(*) as count FROM trades GROUP BY source
                """):
                    source_counts[row[0]] = row[1]

                return {
                    "total_trades": total_count,
                    "significant_trades": significant_count,
                    "trades_by_source": source_counts,
                }

        except sqlite3.Error as e:
            self.logger.error("Failed to get stats", error=str(e))
            return {}

    def cleanup_old_trades(self, cutoff: datetime) -> int:
        """Remove trades older than ``cutoff``."""
        with self._lock:
            try:
                with self._get_connection() as conn:
                    cursor = conn.execute("""
                        DELETE FROM trades WHERE ts_ms < ?
                    """, (to_epoch_ms(cutoff),))

                    conn.commit()
                    deleted_count = cursor.rowcount

                    self.logger.info("Cleaned up old trades", deleted=deleted_count)
                    return deleted_count

            except sqlite3.Error as e:
                self.logger.error("Failed to cleanup old trades", error=str(e))
                return 0

    def _row_to_trade(self, row: sqlite3.Row) -> Trade:
        """Convert database row to a canonical Trade."""
        return Trade(
            ts=from_epoch_ms(row["ts_ms"]),
            underlying=row["underlying"],
            contract_symbol=row["contract_symbol"],
            side=OptionSide(row["side"]) if row["side"] else None,
            strike=_to_decimal(row["strike"]),
            expiry=date.fromisoformat(row["expiry"]) if row["expiry"] else None,
            premium=_to_decimal(row["premium"]),
            size=row["size"],
            action=row["action"],
            source=row["source"],
            raw_payload=row["raw_payload"],
            fingerprint=row["fingerprint"] or "",
        )

    def _row_to_stored_trade(self, row: sqlite3.Row) -> StoredTrade:
        """Convert database row to StoredTrade object."""
        return StoredTrade(
            id=row["id"],
            trade=self._row_to_trade(row),
            significant=bool(row["significant"]),
            dte=row["dte"],
            created_at=row["created_at"]
        )

"""SQLite storage for candidates and executed trades."""

import json
import sqlite3
import time
from typing import Dict, List, Any, Optional
from loguru import logger

from ..core.types import ExecutedTrade, Opportunity, OpportunityStatus, StrategyType, TradeStatus
from .base import PersistenceError, TradeStore


class Database(TradeStore):
    """SQLite database interface."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[sqlite3.Connection] = None

    async def connect(self):
        """Connect to database."""
        if self.connection:
            return
        try:
            self.connection = sqlite3.connect(self.db_path)
            await self._create_tables()
            logger.info(f"Connected to database: {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise PersistenceError(f"Failed to connect to {self.db_path}: {e}") from e

    async def disconnect(self):
        """Disconnect from database."""
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info("Disconnected from database")

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS opportunities (
                id TEXT PRIMARY KEY,
                strategy TEXT NOT NULL,
                symbol TEXT NOT NULL,
                buy_venue TEXT NOT NULL,
                buy_price REAL NOT NULL,
                sell_venue TEXT NOT NULL,
                sell_price REAL NOT NULL,
                amount REAL NOT NULL,
                edge_bps REAL NOT NULL,
                expected_profit REAL NOT NULL,
                confidence REAL NOT NULL,
                risk_level INTEGER NOT NULL,
                status TEXT NOT NULL,
                reason TEXT,
                created_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL,
                metadata TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                id TEXT PRIMARY KEY,
                opportunity_id TEXT NOT NULL,
                strategy TEXT NOT NULL,
                symbol TEXT NOT NULL,
                amount REAL NOT NULL,
                pnl REAL NOT NULL,
                fees REAL NOT NULL,
                latency_ms INTEGER NOT NULL,
                status TEXT NOT NULL,
                external_ref TEXT,
                error TEXT,
                ts INTEGER NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_trades_ts ON trades (ts)")
        self.connection.commit()
        logger.debug("Database tables created/verified")

    def _cursor(self) -> sqlite3.Cursor:
        if not self.connection:
            raise PersistenceError("Database is not connected")
        return self.connection.cursor()

    async def save_candidate(self, candidate: Opportunity):
        """Insert a candidate record."""
        try:
            cursor = self._cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO opportunities
                (id, strategy, symbol, buy_venue, buy_price, sell_venue, sell_price, amount,
                 edge_bps, expected_profit, confidence, risk_level, status, reason,
                 created_at, expires_at, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                candidate.id,
                candidate.strategy.value,
                candidate.symbol,
                candidate.buy_venue,
                candidate.buy_price,
                candidate.sell_venue,
                candidate.sell_price,
                candidate.amount,
                candidate.edge_bps,
                candidate.estimated_profit,
                candidate.confidence,
                candidate.risk_level,
                candidate.status.value,
                None,
                candidate.created_at,
                candidate.expires_at,
                json.dumps({'path': candidate.path, **candidate.metadata}, default=str),
            ))
            self.connection.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to insert opportunity: {e}")
            raise PersistenceError(f"Failed to save candidate {candidate.id}: {e}") from e

    async def update_candidate_status(self, candidate_id: str, status: OpportunityStatus,
                                      reason: Optional[str] = None):
        try:
            cursor = self._cursor()
            cursor.execute("UPDATE opportunities SET status = ?, reason = ? WHERE id = ?",
                           (status.value, reason, candidate_id))
            self.connection.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to update opportunity {candidate_id}: {e}")
            raise PersistenceError(f"Failed to update candidate {candidate_id}: {e}") from e

    async def save_executed_trade(self, trade: ExecutedTrade):
        """Insert an executed trade record."""
        try:
            cursor = self._cursor()
            cursor.execute("""
                INSERT INTO trades (id, opportunity_id, strategy, symbol, amount, pnl, fees,
                                    latency_ms, status, external_ref, error, ts)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                trade.id,
                trade.opportunity_id,
                trade.strategy.value,
                trade.symbol,
                trade.amount_traded,
                trade.profit_realized,
                trade.fees,
                trade.duration_ms,
                trade.status.value,
                trade.external_ref,
                trade.error,
                trade.executed_at,
            ))
            self.connection.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to insert trade: {e}")
            raise PersistenceError(f"Failed to save trade {trade.id}: {e}") from e

    async def load_recent_trades(self, window_ms: int, now: Optional[int] = None) -> List[ExecutedTrade]:
        """Trades executed within the last window_ms, oldest first."""
        cutoff = (now if now is not None else int(time.time() * 1000)) - window_ms
        try:
            cursor = self._cursor()
            cursor.execute("""
                SELECT id, opportunity_id, strategy, symbol, amount, pnl, fees, latency_ms,
                       status, external_ref, error, ts
                FROM trades
                WHERE ts > ?
                ORDER BY ts ASC
            """, (cutoff,))
            return [self._row_to_trade(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to load trades: {e}")
            raise PersistenceError(f"Failed to load recent trades: {e}") from e

    async def get_candidate(self, candidate_id: str) -> Optional[Dict[str, Any]]:
        try:
            cursor = self._cursor()
            cursor.execute("""
                SELECT id, strategy, symbol, status, reason, edge_bps, amount, created_at
                FROM opportunities WHERE id = ?
            """, (candidate_id,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read candidate {candidate_id}: {e}") from e

        if not row:
            return None
        return {
            'id': row[0],
            'strategy': row[1],
            'symbol': row[2],
            'status': row[3],
            'reason': row[4],
            'edge_bps': row[5],
            'amount': row[6],
            'created_at': row[7],
        }

    async def get_recent_opportunities(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get recent candidates, newest first."""
        try:
            cursor = self._cursor()
            cursor.execute("""
                SELECT created_at, strategy, symbol, buy_venue, sell_venue, edge_bps, status, reason
                FROM opportunities
                ORDER BY created_at DESC
                LIMIT ?
            """, (limit,))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read opportunities: {e}") from e

        return [{
            'timestamp': row[0],
            'strategy': row[1],
            'symbol': row[2],
            'buy_venue': row[3],
            'sell_venue': row[4],
            'edge_bps': row[5],
            'status': row[6],
            'reason': row[7],
        } for row in rows]

    @staticmethod
    def _row_to_trade(row) -> ExecutedTrade:
        return ExecutedTrade(
            id=row[0],
            opportunity_id=row[1],
            strategy=StrategyType(row[2]),
            symbol=row[3],
            amount_traded=row[4],
            profit_realized=row[5],
            fees=row[6],
            duration_ms=row[7],
            status=TradeStatus(row[8]),
            external_ref=row[9],
            error=row[10],
            executed_at=row[11],
        )

"""
cascade-trader Analytics: Trade Journal

Persistent record of every instruction handed to the venue, with the
execution outcome. Queryable through SQLite for per-strategy activity and
failure analysis.
"""

import json
import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from core.models import ExecutionResult, TradingInstruction

logger = logging.getLogger(__name__)


@dataclass
class TradeRecord:
    """One executed (or attempted) instruction"""
    executed_at: str
    action: str
    source: Optional[str]
    destination: Optional[str]
    amount: float
    strategy: str
    confidence: float
    reason: str
    success: bool
    trade_id: Optional[str] = None
    from_amount: float = 0.0
    to_amount: float = 0.0
    price: float = 0.0
    error: Optional[str] = None
    bypass_risk: bool = False
    manual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TradeLog:
    """SQLite trade journal."""

    def __init__(self, log_dir: str = "data/trades"):
        """
        Initialize trade log.

        Args:
            log_dir: Directory for the trades database
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.db_file = self.log_dir / "trades.db"
        self._init_sqlite()
        logger.info(f"TradeLog initialized: dir={log_dir}")

    def _init_sqlite(self):
        """Initialize SQLite database"""
        conn = sqlite3.connect(str(self.db_file))
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                executed_at TIMESTAMP NOT NULL,
                action TEXT NOT NULL,
                source TEXT,
                destination TEXT,
                amount REAL NOT NULL,
                strategy TEXT,
                confidence REAL,
                reason TEXT,
                success INTEGER NOT NULL,
                trade_id TEXT,
                from_amount REAL,
                to_amount REAL,
                price REAL,
                error TEXT,
                bypass_risk INTEGER,
                manual INTEGER,
                raw TEXT
            )
        """)

        # Indexes for common queries
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_executed_at ON trades(executed_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_strategy ON trades(strategy)")

        conn.commit()
        conn.close()

    def record(
        self,
        instruction: TradingInstruction,
        result: ExecutionResult,
        executed_at: Optional[datetime] = None,
        manual: bool = False,
    ) -> TradeRecord:
        """Log an execution attempt"""
        at = executed_at or datetime.now(timezone.utc)
        record = TradeRecord(
            executed_at=at.isoformat(),
            action=instruction.action,
            source=instruction.source,
            destination=instruction.destination,
            amount=instruction.amount,
            strategy=instruction.strategy or ("manual" if manual else ""),
            confidence=instruction.confidence,
            reason=instruction.reason,
            success=result.success,
            trade_id=result.trade_id,
            from_amount=result.from_amount,
            to_amount=result.to_amount,
            price=result.price,
            error=result.error,
            bypass_risk=instruction.bypass_risk,
            manual=manual,
        )

        conn = sqlite3.connect(str(self.db_file))
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO trades (
                executed_at, action, source, destination, amount, strategy, confidence,
                reason, success, trade_id, from_amount, to_amount, price, error,
                bypass_risk, manual, raw
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.executed_at, record.action, record.source, record.destination,
            record.amount, record.strategy, record.confidence, record.reason,
            1 if record.success else 0, record.trade_id, record.from_amount,
            record.to_amount, record.price, record.error,
            1 if record.bypass_risk else 0, 1 if record.manual else 0,
            json.dumps(result.raw, default=str) if result.raw else None,
        ))
        conn.commit()
        conn.close()

        logger.info(
            f"Logged trade: {record.action} {record.amount:.6f} via {record.strategy} "
            f"(success={record.success}, trade_id={record.trade_id})"
        )
        return record

    def query(self, sql: str, params: tuple = ()) -> List[Dict]:
        """
        Execute SQL query on trade database.

        Returns:
            List of result rows as dictionaries
        """
        conn = sqlite3.connect(str(self.db_file))
        conn.row_factory = sqlite3.Row  # Return rows as dicts
        cursor = conn.cursor()

        cursor.execute(sql, params)
        results = [dict(row) for row in cursor.fetchall()]

        conn.close()
        return results

    def recent(self, limit: int = 100) -> List[TradeRecord]:
        """Most recent trades, newest first"""
        rows = self.query(
            "SELECT * FROM trades ORDER BY executed_at DESC, id DESC LIMIT ?", (int(limit),)
        )
        trades = []
        for row in rows:
            row.pop("id", None)
            row.pop("raw", None)
            row["success"] = bool(row["success"])
            row["bypass_risk"] = bool(row["bypass_risk"])
            row["manual"] = bool(row["manual"])
            trades.append(TradeRecord(**row))
        return trades

    def summary(self) -> Dict[str, Any]:
        """Get summary statistics"""
        totals = self.query("""
            SELECT
                COUNT(*) as total,
                SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) as succeeded,
                SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END) as failed,
                SUM(CASE WHEN manual = 1 THEN 1 ELSE 0 END) as manual
            FROM trades
        """)
        by_strategy = self.query("""
            SELECT strategy, COUNT(*) as count
            FROM trades
            WHERE success = 1
            GROUP BY strategy
            ORDER BY count DESC
        """)
        summary = {k: (v or 0) for k, v in (totals[0] if totals else {}).items()}
        summary["by_strategy"] = {row["strategy"]: row["count"] for row in by_strategy}
        return summary

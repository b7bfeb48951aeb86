"""
cascade-trader Infrastructure: Price History Store

SQLite-backed historical price series. One row per (timestamp, instrument);
re-writing the same pair replaces the row. Reads return the most recent
points in chronological order (oldest first) for SMA calculations.
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union
import logging

from core.models import HistoricalPoint

logger = logging.getLogger(__name__)


class SqliteHistoryStore:
    """Append/read access to the market_data table."""

    def __init__(self, db_path: str = "data/market_data.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_sqlite()
        logger.info(f"History store initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_sqlite(self):
        """Initialize SQLite database"""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS market_data (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                instrument TEXT NOT NULL,
                price REAL NOT NULL,
                portfolio_value REAL,
                created_at TIMESTAMP NOT NULL,
                UNIQUE(timestamp, instrument)
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_market_data_instrument_ts "
            "ON market_data(instrument, timestamp DESC)"
        )

        conn.commit()
        conn.close()

    def append(self, timestamp: Union[str, datetime], instrument: str, price: float,
               portfolio_value: Optional[float] = None) -> None:
        """Insert or replace one observation."""
        ts = timestamp.isoformat() if isinstance(timestamp, datetime) else str(timestamp)
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO market_data (timestamp, instrument, price, portfolio_value, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (ts, instrument, float(price), portfolio_value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Market data saved: {instrument[:10]} price={price} at {ts}")

    def get_history(self, instrument: str, count: int) -> List[HistoricalPoint]:
        """Most recent `count` points for an instrument, oldest first."""
        if count <= 0:
            return []
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT timestamp, price FROM market_data
                WHERE instrument = ?
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                (instrument, int(count)),
            ).fetchall()
        finally:
            conn.close()
        return [HistoricalPoint(timestamp=ts, price=float(price)) for ts, price in reversed(rows)]

    def latest_price(self, instrument: str) -> Optional[float]:
        points = self.get_history(instrument, 1)
        return points[0].price if points else None

    def count(self, instrument: Optional[str] = None) -> int:
        conn = self._connect()
        try:
            if instrument:
                row = conn.execute(
                    "SELECT COUNT(*) FROM market_data WHERE instrument = ?", (instrument,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM market_data").fetchone()
        finally:
            conn.close()
        return int(row[0])

    def prune(self, days_to_keep: int = 30, now: Optional[datetime] = None) -> int:
        """Delete rows written more than `days_to_keep` days ago; returns rows removed."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_to_keep)
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM market_data WHERE created_at < ?", (cutoff.isoformat(),)
            )
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        logger.info(f"Old market data cleaned: {deleted} rows")
        return deleted

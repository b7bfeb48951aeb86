"""
cascade-trader Core: Trade Frequency Window

Sliding one-hour window of executed trades used by the risk gate's
frequency check. The window lives in memory only; a restart starts from an
empty window.

Separation of Concerns:
- RiskGate: ordered accept/reject checks for one instruction
- TradeFrequencyWindow: pacing state (what was traded in the last hour)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class TradeEntry:
    """One executed trade inside the window"""
    timestamp: datetime
    amount: float


@dataclass
class TradeTimingResult:
    """Result of trade frequency check"""
    approved: bool
    reason: str = ""
    trades_in_window: int = 0
    limit: int = 0


def _utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TradeFrequencyWindow:
    """
    Timestamped trade entries pruned to the trailing 60 minutes.

    Entries are appended only by record(); prune() runs on every check.
    reset() is reserved for explicit operator action.
    """

    def __init__(self, window: timedelta = WINDOW):
        self.window = window
        self._entries: List[TradeEntry] = []
        self._lock = Lock()

    def record(self, amount: float, at: Optional[datetime] = None) -> None:
        entry = TradeEntry(timestamp=_utc(at), amount=float(amount))
        with self._lock:
            self._entries.append(entry)
        logger.debug(f"Trade recorded in frequency window: amount={amount} at={entry.timestamp.isoformat()}")

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop entries older than the window; returns how many were dropped."""
        cutoff = _utc(now) - self.window
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.timestamp > cutoff]
            return before - len(self._entries)

    def count(self, now: Optional[datetime] = None) -> int:
        self.prune(now)
        return len(self._entries)

    def volume(self, now: Optional[datetime] = None) -> float:
        """Sum of amounts traded in the window."""
        self.prune(now)
        return sum(e.amount for e in self._entries)

    def check(self, max_trades_per_hour: int, now: Optional[datetime] = None) -> TradeTimingResult:
        """Approve while the trailing-hour count is below the cap."""
        trades = self.count(now)
        if trades >= max_trades_per_hour:
            return TradeTimingResult(
                approved=False,
                reason=f"Hourly trade limit reached ({trades}/{max_trades_per_hour})",
                trades_in_window=trades,
                limit=max_trades_per_hour,
            )
        return TradeTimingResult(approved=True, trades_in_window=trades, limit=max_trades_per_hour)

    def reset(self) -> None:
        with self._lock:
            cleared = len(self._entries)
            self._entries = []
        logger.warning(f"Trade frequency window reset ({cleared} entries cleared)")

    def entries(self) -> List[TradeEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

"""
cascade-trader Core: Historical Series Accessor

Interface the evaluators use to read bounded price history, plus an
in-memory implementation used for dry runs and tests. The SQLite-backed
store lives in infra/history_store.py.
"""

from collections import defaultdict, deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Protocol, Union
import logging

from core.models import HistoricalPoint

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]


def _ts(value: Timestamp) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value)


class HistoryProvider(Protocol):
    """Read/write contract for per-instrument price history."""

    def get_history(self, instrument: str, count: int) -> List[HistoricalPoint]:
        """Return at most `count` most recent points, oldest first."""
        ...

    def append(self, timestamp: Timestamp, instrument: str, price: float,
               portfolio_value: float) -> None:
        ...


class InMemoryHistory:
    """Bounded per-instrument ring buffer of HistoricalPoint."""

    def __init__(self, max_points: int = 500):
        self.max_points = max_points
        self._series: Dict[str, Deque[HistoricalPoint]] = defaultdict(
            lambda: deque(maxlen=self.max_points)
        )
        self.portfolio_values: Dict[str, float] = {}

    def append(self, timestamp: Timestamp, instrument: str, price: float,
               portfolio_value: float = 0.0) -> None:
        ts = _ts(timestamp)
        series = self._series[instrument]
        # Same timestamp replaces the previous observation
        if series and series[-1].timestamp == ts:
            series.pop()
        series.append(HistoricalPoint(timestamp=ts, price=float(price)))
        self.portfolio_values[ts] = float(portfolio_value)

    def extend(self, instrument: str, prices: List[float], start: int = 0) -> None:
        """Seed a series with synthetic sequential timestamps."""
        for i, price in enumerate(prices, start=start):
            self.append(f"t{i:06d}", instrument, price)

    def get_history(self, instrument: str, count: int) -> List[HistoricalPoint]:
        if count <= 0:
            return []
        series = self._series.get(instrument)
        if not series:
            return []
        return list(series)[-count:]

    def latest_price(self, instrument: str) -> Optional[float]:
        series = self._series.get(instrument)
        return series[-1].price if series else None

    def clear(self) -> None:
        self._series.clear()
        self.portfolio_values.clear()

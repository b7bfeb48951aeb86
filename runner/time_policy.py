"""
cascade-trader Runner: Time Policy

Peak-liquidity hours (UTC) scale the loop interval. Ranges are
half-open [start, end); start > end wraps past midnight (22-6).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

DEFAULT_PEAK_HOURS: List[Tuple[int, int]] = [(13, 21)]


def hour_in_range(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    # Overnight range
    return hour >= start or hour < end


@dataclass
class TimePolicy:
    """Peak/off-peak interval scaling."""
    peak_hours: List[Tuple[int, int]] = field(default_factory=lambda: list(DEFAULT_PEAK_HOURS))
    peak_multiplier: float = 1.0
    off_peak_multiplier: float = 1.0

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "TimePolicy":
        cfg = cfg or {}
        hours = [
            (int(period["start"]), int(period["end"]))
            for period in cfg.get("peak_hours") or []
        ]
        return cls(
            peak_hours=hours or list(DEFAULT_PEAK_HOURS),
            peak_multiplier=float(cfg.get("peak_multiplier", 1.0)),
            off_peak_multiplier=float(cfg.get("off_peak_multiplier", 1.0)),
        )

    def is_peak(self, now: Optional[datetime] = None) -> bool:
        hour = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).hour
        return any(hour_in_range(hour, start, end) for start, end in self.peak_hours)

    def describe(self, now: Optional[datetime] = None) -> str:
        now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        return f"{'PEAK' if self.is_peak(now) else 'OFF-PEAK'} ({now.hour}:00 UTC)"

    def adjusted_interval(self, base_interval: float, now: Optional[datetime] = None) -> float:
        multiplier = self.peak_multiplier if self.is_peak(now) else self.off_peak_multiplier
        adjusted = max(1.0, round(base_interval * multiplier))
        logger.debug(
            f"Loop interval adjusted: base={base_interval}s multiplier={multiplier} "
            f"adjusted={adjusted}s period={self.describe(now)}"
        )
        return adjusted

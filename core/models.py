"""
cascade-trader Core: Domain Records

Market snapshot, historical points, trading instructions and agent state.
These are plain dataclasses shared by strategies, the risk gate and the
collaborator adapters.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

Action = Literal["buy", "sell", "hold"]
VALID_ACTIONS = ("buy", "sell", "hold")


@dataclass(frozen=True)
class Holding:
    """One instrument held in the portfolio"""
    instrument: str
    symbol: str
    amount: float
    price: float
    value: float


@dataclass(frozen=True)
class MarketSnapshot:
    """
    Portfolio and prices for a single cycle.

    Created once per cycle by the data collaborator and never mutated.
    Holdings keep the order reported by the venue.
    """
    total_value: float
    holdings: Tuple[Holding, ...]
    prices: Dict[str, float]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # Accept lists from callers; store a tuple so the order is fixed
        if not isinstance(self.holdings, tuple):
            object.__setattr__(self, "holdings", tuple(self.holdings))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))

    def holding(self, instrument: str) -> Optional[Holding]:
        for h in self.holdings:
            if h.instrument == instrument:
                return h
        return None

    def balance_of(self, instrument: str) -> float:
        """Amount held of an instrument (0 when absent)"""
        h = self.holding(instrument)
        return h.amount if h else 0.0

    def value_of(self, instrument: str) -> float:
        """USD value held of an instrument (0 when absent)"""
        h = self.holding(instrument)
        return h.value if h else 0.0

    def price_of(self, instrument: str) -> Optional[float]:
        """Price from the price map, falling back to the holding's own price."""
        price = self.prices.get(instrument)
        if price:
            return float(price)
        h = self.holding(instrument)
        if h and h.price:
            return float(h.price)
        return None

    def allocation_of(self, instrument: str) -> float:
        if self.total_value <= 0:
            return 0.0
        return self.value_of(instrument) / self.total_value

    def holdings_consistent(self, tolerance: float = 0.01) -> bool:
        """Sum of holding values matches total value within a relative tolerance."""
        held = sum(h.value for h in self.holdings)
        if self.total_value == 0:
            return abs(held) <= tolerance
        return abs(held - self.total_value) / self.total_value <= tolerance


@dataclass(frozen=True)
class HistoricalPoint:
    """(timestamp, price) pair for one instrument"""
    timestamp: str
    price: float


@dataclass
class TradingInstruction:
    """
    Candidate or accepted trading instruction.

    amount is expressed in units of the source instrument. bypass_risk marks
    instructions that must only go through the minimal solvency check.
    """
    action: Action
    source: Optional[str]
    destination: Optional[str]
    amount: float
    reason: str
    confidence: float
    bypass_risk: bool = False
    strategy: str = ""

    @property
    def is_hold(self) -> bool:
        return self.action == "hold"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingInstruction":
        return cls(
            action=data["action"],
            source=data.get("source"),
            destination=data.get("destination"),
            amount=float(data.get("amount") or 0.0),
            reason=str(data.get("reason", "")),
            confidence=float(data.get("confidence", 0.5)),
            bypass_risk=bool(data.get("bypass_risk", False)),
            strategy=str(data.get("strategy", "")),
        )


@dataclass
class AgentState:
    """
    Cumulative agent state supplied by the state store.

    daily_pnl_pct is in percentage points (-6.0 means down 6% today).
    """
    total_trades: int = 0
    total_pnl: float = 0.0
    daily_pnl_pct: float = 0.0
    last_trade_time: Optional[str] = None
    is_active: bool = True
    risk_level: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentState":
        return cls(
            total_trades=int(data.get("total_trades", 0)),
            total_pnl=float(data.get("total_pnl", 0.0)),
            daily_pnl_pct=float(data.get("daily_pnl_pct", 0.0)),
            last_trade_time=data.get("last_trade_time"),
            is_active=bool(data.get("is_active", True)),
            risk_level=str(data.get("risk_level", "medium")),
        )


@dataclass(frozen=True)
class TokenCandidate:
    """Instrument returned by the token-discovery collaborator"""
    instrument: str
    symbol: str
    name: str = ""
    price: float = 0.0
    market_cap: float = 0.0
    price_change_24h: float = 0.0
    price_change_1h: float = 0.0
    volume: float = 0.0


@dataclass(frozen=True)
class DiscoveryFilters:
    """Filters passed to the token-discovery collaborator"""
    min_market_cap_usd: float = 0.0
    min_volume_usd: float = 1_000_000.0
    selection_method: str = "top_volume"
    losers_only: bool = False


@dataclass
class ExecutionResult:
    """Outcome reported by the execution collaborator"""
    success: bool
    trade_id: Optional[str] = None
    from_amount: float = 0.0
    to_amount: float = 0.0
    price: float = 0.0
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def build_snapshot(
    holdings: List[Dict[str, Any]],
    prices: Optional[Dict[str, float]] = None,
    timestamp: Optional[datetime] = None,
    total_value: Optional[float] = None,
) -> MarketSnapshot:
    """
    Build a MarketSnapshot from plain holding dicts.

    Each dict needs instrument and amount; price defaults to the price map,
    value to amount * price, symbol to the instrument id.
    """
    prices = dict(prices or {})
    built = []
    for item in holdings:
        instrument = item["instrument"]
        amount = float(item.get("amount", 0.0))
        price = float(item.get("price") or prices.get(instrument) or 0.0)
        value = float(item["value"]) if item.get("value") is not None else amount * price
        built.append(Holding(
            instrument=instrument,
            symbol=item.get("symbol") or instrument,
            amount=amount,
            price=price,
            value=value,
        ))
        prices.setdefault(instrument, price)
    total = float(total_value) if total_value is not None else sum(h.value for h in built)
    return MarketSnapshot(
        total_value=total,
        holdings=tuple(built),
        prices=prices,
        timestamp=timestamp or datetime.now(timezone.utc),
    )

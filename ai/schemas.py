"""
Advisory schemas and data structures.

Defines the contract between the orchestrator and the advisory layer.
All inputs/outputs are strongly typed for safety and auditability.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from core.models import AgentState, MarketSnapshot

# Objectives the advisory model can be asked to pursue
Objective = Literal["maximize_profit", "maximize_loss"]
VALID_OBJECTIVES = ("maximize_profit", "maximize_loss")


@dataclass
class InstrumentInsight:
    """Per-instrument digest of recent price action."""
    instrument: str
    symbol: str
    price: Optional[float]
    points: int                          # History depth used
    sma_short: Optional[float] = None
    sma_long: Optional[float] = None
    change_pct: Optional[float] = None   # Oldest point -> current price
    volatility: Optional[float] = None   # Coefficient of variation
    allocation: float = 0.0              # Share of portfolio value
    target_allocation: Optional[float] = None


@dataclass
class MarketInsights:
    """Market-insight digest handed to the advisory model."""
    generated_at: str
    instruments: List[InstrumentInsight] = field(default_factory=list)
    stable_allocation: float = 0.0
    notes: List[str] = field(default_factory=list)


@dataclass
class AdvisoryContext:
    """Complete input payload for an advisory decision."""
    snapshot: MarketSnapshot
    agent_state: AgentState
    risk_limits: Dict[str, Any]
    objective: Objective
    market_insights: Optional[MarketInsights] = None
    stable_instrument: str = ""
    symbols: Dict[str, str] = field(default_factory=dict)


@dataclass
class AdvisoryOutcome:
    """Audit record of the last advisory call."""
    decision: Optional[Dict[str, Any]]
    latency_ms: Optional[float] = None
    model_used: Optional[str] = None
    error: Optional[str] = None  # If fallback was triggered

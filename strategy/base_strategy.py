"""
Base Evaluator Interface for the Decision Cascade

Defines the pure interface that all signal evaluators implement.
Evaluators only read the context they are handed; they never call the venue
and never mutate the parameter store.

Architecture:
- BaseEvaluator: Abstract base class with evaluate() interface
- EvaluationContext: Immutable context passed to evaluators
- TradingInstruction: Output from evaluators (defined in core/models.py)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from core.history import HistoryProvider
from core.models import AgentState, HistoricalPoint, MarketSnapshot, TradingInstruction
from core.params import StrategyParameters

import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """
    Immutable context passed to evaluators.

    Attributes:
        snapshot: Market snapshot for this cycle
        params: Parameter snapshot taken at cycle start
        history: Read access to historical price series
        agent_state: Agent state (optional, advisory mode only)
        timestamp: Current cycle timestamp
    """
    snapshot: MarketSnapshot
    params: StrategyParameters
    history: Optional[HistoryProvider] = None
    agent_state: Optional[AgentState] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not isinstance(self.snapshot, MarketSnapshot):
            raise TypeError(f"snapshot must be MarketSnapshot, got {type(self.snapshot)}")
        if not isinstance(self.params, StrategyParameters):
            raise TypeError(f"params must be StrategyParameters, got {type(self.params)}")

    @property
    def stable_balance(self) -> float:
        return self.snapshot.balance_of(self.params.stable_instrument)

    def recent_prices(self, instrument: str, count: int) -> list:
        """Last `count` prices for an instrument, oldest first."""
        if self.history is None or count <= 0:
            return []
        points = self.history.get_history(instrument, count)
        return [p.price for p in points if isinstance(p, HistoricalPoint) and p.price is not None]


class BaseEvaluator(ABC):
    """
    Abstract base class for all signal evaluators.

    All evaluators MUST:
    1. Inherit from this class
    2. Implement evaluate()
    3. Return a single TradingInstruction or None
    4. NOT call the venue directly

    run() is the public entry point; it wraps evaluate() so a fault in one
    evaluator is logged and treated as "no signal".
    """

    name: str = "base"

    def __init__(self, name: Optional[str] = None):
        if name:
            self.name = name

    @abstractmethod
    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        """
        Produce at most one candidate instruction.

        Args:
            context: Immutable context with snapshot, parameters and history

        Returns:
            TradingInstruction or None when the trigger condition is not met
        """
        pass

    @staticmethod
    def buy_amount(context: EvaluationContext, fraction: float) -> Optional[float]:
        """
        Stable-funded buy size: fraction of the stable balance capped at the
        max position share of the portfolio. None when below the minimum trade.
        """
        params = context.params
        stable_balance = context.stable_balance
        if stable_balance < params.min_trade_amount:
            return None
        amount = min(stable_balance * fraction, context.snapshot.total_value * params.max_position_size)
        if amount < params.min_trade_amount:
            return None
        return amount

    @staticmethod
    def sell_amount(context: EvaluationContext, instrument: str, fraction: float,
                    price: float) -> Optional[float]:
        """Fraction of the holding, when the whole holding is worth at least the minimum trade."""
        balance = context.snapshot.balance_of(instrument)
        if balance <= 0 or balance * price < context.params.min_trade_amount:
            return None
        return min(balance * fraction, balance)

    def validate_instruction(self, instruction: Optional[TradingInstruction]) -> Optional[TradingInstruction]:
        """Drop malformed output and tag the instruction with the evaluator name."""
        if instruction is None:
            return None

        if instruction.action not in ("buy", "sell", "hold"):
            logger.warning(f"[{self.name}] Invalid action '{instruction.action}'")
            return None

        if not instruction.is_hold and not instruction.amount > 0:
            logger.warning(f"[{self.name}] Non-positive amount {instruction.amount} for {instruction.action}")
            return None

        if not 0.0 <= instruction.confidence <= 1.0:
            logger.warning(
                f"[{self.name}] Invalid confidence {instruction.confidence}, must be in [0.0, 1.0]"
            )
            return None

        if not instruction.strategy:
            instruction.strategy = self.name
        return instruction

    def run(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        """
        Execute evaluator with error handling and validation.

        Returns:
            Validated instruction or None on no signal or error
        """
        try:
            instruction = self.validate_instruction(self.evaluate(context))
        except Exception as e:
            logger.error(f"[{self.name}] Error evaluating signal: {e}", exc_info=True)
            return None

        if instruction is not None:
            logger.info(
                f"[{self.name}] Signal: {instruction.action} amount={instruction.amount:.6f} "
                f"confidence={instruction.confidence:.2f} ({instruction.reason})"
            )
        else:
            logger.debug(f"[{self.name}] No signal")
        return instruction

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"

"""
Evaluator Registry for the Decision Cascade

Holds the ordered list of regular signal evaluators. Order is priority:
the orchestrator walks the list and stops at the first evaluator that
produces an instruction.

Evaluators can be disabled by name from app.yaml (strategies.disabled);
the order itself is fixed.
"""

from typing import Dict, Iterable, List, Optional, Type
import logging

from strategy.base_strategy import BaseEvaluator, EvaluationContext
from strategy.breakout import BreakoutEvaluator
from strategy.mean_reversion import MeanReversionEvaluator
from strategy.momentum import MomentumEvaluator
from strategy.rebalancer import Rebalancer
from strategy.trend_following import TrendFollowingEvaluator
from core.models import TradingInstruction

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """
    Central registry for the cascade evaluators.

    Responsibilities:
    1. Instantiate evaluators in priority order
    2. Track disabled evaluators
    3. Run the cascade with early exit
    """

    # Map evaluator name to class, in cascade priority order
    STRATEGY_CLASSES: Dict[str, Type[BaseEvaluator]] = {
        "rebalancer": Rebalancer,
        "trend_following": TrendFollowingEvaluator,
        "breakout": BreakoutEvaluator,
        "mean_reversion": MeanReversionEvaluator,
        "momentum": MomentumEvaluator,
    }

    def __init__(self, disabled: Optional[Iterable[str]] = None):
        self.disabled = set(disabled or [])
        unknown = self.disabled - set(self.STRATEGY_CLASSES)
        if unknown:
            logger.warning(f"Unknown evaluator name(s) in disabled list: {sorted(unknown)}")

        self.strategies: Dict[str, BaseEvaluator] = {
            name: cls(name=name) for name, cls in self.STRATEGY_CLASSES.items()
        }
        logger.info(
            f"Strategy registry initialized: {len(self.strategies)} evaluators, "
            f"{len(self.get_enabled_strategies())} enabled"
        )

    def get_enabled_strategies(self) -> List[BaseEvaluator]:
        return [s for name, s in self.strategies.items() if name not in self.disabled]

    def get_strategy(self, name: str) -> Optional[BaseEvaluator]:
        return self.strategies.get(name)

    def list_strategies(self) -> Dict[str, Dict[str, object]]:
        return {
            name: {"enabled": name not in self.disabled, "type": s.__class__.__name__, "priority": i}
            for i, (name, s) in enumerate(self.strategies.items())
        }

    def first_signal(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        """Run enabled evaluators in priority order; the first instruction wins."""
        for strategy in self.get_enabled_strategies():
            instruction = strategy.run(context)
            if instruction is not None:
                return instruction
        return None

    def __repr__(self) -> str:
        return (
            f"StrategyRegistry({len(self.strategies)} evaluators, "
            f"{len(self.get_enabled_strategies())} enabled)"
        )

"""
Strategy Orchestrator

Turns one market snapshot into at most one candidate instruction.

Dispatch:
1. ADVISORY     - delegate to the advisory service, result returned verbatim
2. LOSS_SEEKING - loss-seeking evaluator; falls through to the cascade when idle
3. CASCADE      - rebalancer, trend following, breakout, mean reversion, momentum
then the guaranteed rotation fallback and, as the absolute last resort, the
guaranteed discovery fallback.

Before dispatch, the snapshot's prices are written through to the history
store so later cycles see this cycle's observations.
"""

from enum import Enum
from typing import Any, Dict, Optional
import logging

from ai.advisor import AdvisoryService
from ai.schemas import AdvisoryContext
from ai.snapshot_builder import build_market_insights
from core.history import HistoryProvider
from core.models import AgentState, MarketSnapshot, TradingInstruction
from core.params import ParameterStore, StrategyParameters
from strategy.base_strategy import EvaluationContext
from strategy.discovery import DiscoveryFallback
from strategy.loss_seeking import LossSeekingEvaluator
from strategy.registry import StrategyRegistry
from strategy.rotation import RotationFallback

logger = logging.getLogger(__name__)


class DecisionMode(Enum):
    ADVISORY = "advisory"
    LOSS_SEEKING = "loss_seeking"
    CASCADE = "cascade"


def resolve_decision_mode(params: StrategyParameters) -> DecisionMode:
    if params.advisory_enabled:
        return DecisionMode.ADVISORY
    if params.loss_seeking_enabled:
        return DecisionMode.LOSS_SEEKING
    return DecisionMode.CASCADE


class Orchestrator:
    """Fixed-priority dispatcher over evaluators and fallbacks."""

    def __init__(
        self,
        param_store: ParameterStore,
        history: Optional[HistoryProvider] = None,
        registry: Optional[StrategyRegistry] = None,
        rotation: Optional[RotationFallback] = None,
        discovery: Optional[DiscoveryFallback] = None,
        loss_seeking: Optional[LossSeekingEvaluator] = None,
        advisor: Optional[AdvisoryService] = None,
    ):
        self.param_store = param_store
        self.history = history
        self.registry = registry or StrategyRegistry()
        self.rotation = rotation or RotationFallback()
        self.discovery = discovery or DiscoveryFallback()
        self.loss_seeking = loss_seeking or LossSeekingEvaluator()
        self.advisor = advisor
        self.last_mode: Optional[DecisionMode] = None
        logger.info(f"Strategy orchestrator initialized ({self.registry!r})")

    def decide(
        self,
        snapshot: MarketSnapshot,
        params: Optional[StrategyParameters] = None,
        agent_state: Optional[AgentState] = None,
    ) -> Optional[TradingInstruction]:
        """
        Produce at most one candidate instruction for this cycle.

        Args:
            snapshot: Market snapshot of the cycle
            params: Parameter snapshot taken at cycle start (store read if omitted)
            agent_state: Agent state (only consulted in advisory mode)

        Returns:
            The first non-null candidate, or None
        """
        params = params or self.param_store.get()
        agent_state = agent_state or AgentState()

        self._write_through(snapshot)

        mode = resolve_decision_mode(params)
        self.last_mode = mode
        context = EvaluationContext(
            snapshot=snapshot,
            params=params,
            history=self.history,
            agent_state=agent_state,
            timestamp=snapshot.timestamp,
        )

        if mode is DecisionMode.ADVISORY:
            return self._advisory_decision(context)

        if mode is DecisionMode.LOSS_SEEKING:
            instruction = self.loss_seeking.run(context)
            if instruction is not None:
                instruction.bypass_risk = True
                return self._chosen(instruction, mode)
            logger.info("Loss-seeking produced nothing; continuing with the cascade")

        instruction = self.registry.first_signal(context)
        if instruction is not None:
            return self._chosen(instruction, mode)

        if not params.guaranteed_fallback_enabled:
            logger.info("No trading decision made - holding current positions")
            return None

        instruction = self.rotation.run(context)
        if instruction is not None:
            return self._chosen(instruction, mode)

        if params.discovery_enabled:
            instruction = self.discovery.run(context)
            if instruction is not None:
                return self._chosen(instruction, mode)

        logger.info("No trading decision made - no tradable balance for fallbacks")
        return None

    def _advisory_decision(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        params = context.params
        if self.advisor is None:
            logger.error("Advisory mode enabled but no advisory service configured")
            return None

        advisory_context = AdvisoryContext(
            snapshot=context.snapshot,
            agent_state=context.agent_state or AgentState(),
            risk_limits=params.risk_limits(),
            objective=params.advisory_objective,
            market_insights=build_market_insights(context.snapshot, params, self.history),
            stable_instrument=params.stable_instrument,
            symbols=dict(params.instrument_symbols),
        )
        instruction = self.advisor.get_decision(advisory_context)
        if instruction is not None:
            logger.info(
                "DECISION mode=advisory strategy=%s action=%s amount=%s confidence=%.2f",
                instruction.strategy, instruction.action, instruction.amount, instruction.confidence,
            )
        return instruction

    def _chosen(self, instruction: TradingInstruction, mode: DecisionMode) -> TradingInstruction:
        logger.info(
            "DECISION mode=%s strategy=%s action=%s amount=%.6f confidence=%.2f bypass=%s reason=%s",
            mode.value, instruction.strategy, instruction.action, instruction.amount,
            instruction.confidence, instruction.bypass_risk, instruction.reason,
        )
        return instruction

    def _write_through(self, snapshot: MarketSnapshot) -> None:
        """Persist this cycle's prices; failures never abort the cycle."""
        if self.history is None:
            return

        prices: Dict[str, float] = {k: v for k, v in snapshot.prices.items() if v and v > 0}
        for holding in snapshot.holdings:
            if holding.instrument not in prices and holding.price and holding.price > 0:
                prices[holding.instrument] = holding.price

        for instrument, price in prices.items():
            try:
                self.history.append(snapshot.timestamp, instrument, float(price), snapshot.total_value)
            except Exception as e:
                logger.error(f"Error saving market data for {instrument}: {e}")

    def reset_fallbacks(self) -> None:
        self.rotation.reset_state()
        self.discovery.reset_state()
        self.loss_seeking.reset_state()

    def status(self) -> Dict[str, Any]:
        return {
            "last_mode": self.last_mode.value if self.last_mode else None,
            "strategies": self.registry.list_strategies(),
            "rotation": self.rotation.get_state(),
            "discovery": self.discovery.get_state(),
        }

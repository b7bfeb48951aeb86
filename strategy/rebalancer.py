"""
Rebalancer

Highest-priority evaluator: pulls the portfolio back toward its target
allocation whenever an instrument drifts past the rebalance threshold.
Instruments are enumerated in target-map order and the first one that can
be traded wins.
"""

from typing import Optional
import logging

from core.models import TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)


class Rebalancer(BaseEvaluator):
    name = "rebalancer"

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        snapshot = context.snapshot
        params = context.params
        total = snapshot.total_value
        if total <= 0:
            return None

        stable = params.stable_instrument
        for instrument, target in params.target_allocations.items():
            # The stable instrument is the funding leg of every rebalance
            if instrument == stable:
                continue

            current = snapshot.allocation_of(instrument)
            deviation = current - target
            if abs(deviation) <= params.rebalance_threshold:
                continue

            symbol = params.symbol(instrument)
            if deviation > 0:
                price = snapshot.price_of(instrument)
                if not price:
                    logger.debug(f"Rebalance skipped for {symbol}: no price")
                    continue
                excess_value = deviation * total
                if excess_value < params.min_trade_amount:
                    continue
                return TradingInstruction(
                    action="sell",
                    source=instrument,
                    destination=stable,
                    amount=excess_value / price,
                    reason=f"Rebalancing: {symbol} overweight by {deviation * 100:.2f}%",
                    confidence=params.rebalance_confidence,
                )

            deficit_value = -deviation * total
            if deficit_value < params.min_trade_amount:
                continue
            if context.stable_balance < deficit_value:
                logger.debug(
                    f"Rebalance buy skipped for {symbol}: stable balance "
                    f"{context.stable_balance:.2f} < {deficit_value:.2f}"
                )
                continue
            return TradingInstruction(
                action="buy",
                source=stable,
                destination=instrument,
                amount=deficit_value,
                reason=f"Rebalancing: {symbol} underweight by {-deviation * 100:.2f}%",
                confidence=params.rebalance_confidence,
            )

        return None

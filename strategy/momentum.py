"""
Momentum Fallback

Last evaluator of the regular cascade: when the portfolio sits mostly in
the stable instrument, deploy a small slice into the primary instrument.
"""

from typing import Optional

from core.models import TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext

MOMENTUM_CONFIDENCE = 0.6


class MomentumEvaluator(BaseEvaluator):
    name = "momentum"

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        snapshot = context.snapshot
        params = context.params
        stable = params.stable_instrument
        primary = params.primary_instrument

        if snapshot.holding(stable) is None or not snapshot.price_of(primary):
            return None
        if snapshot.total_value <= 0:
            return None

        stable_balance = context.stable_balance
        stable_allocation = snapshot.allocation_of(stable)
        if stable_allocation <= params.momentum_stable_allocation_trigger:
            return None
        if stable_balance <= params.min_trade_amount:
            return None

        amount = min(stable_balance * params.momentum_buy_fraction,
                     snapshot.total_value * params.max_position_size)
        if amount < params.min_trade_amount:
            return None

        return TradingInstruction(
            action="buy",
            source=stable,
            destination=primary,
            amount=amount,
            reason=(
                f"Momentum strategy: High {params.symbol(stable)} allocation "
                f"({stable_allocation * 100:.1f}%), buying {params.symbol(primary)}"
            ),
            confidence=MOMENTUM_CONFIDENCE,
        )

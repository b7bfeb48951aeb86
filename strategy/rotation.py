"""
Guaranteed Rotation Fallback

Forced low-conviction swap that keeps the agent active when no signal fires.
Direction alternates between calls (the first trade buys) and the notional
cycles through a small fixed set of USD amounts.

Order of attempts:
1. primary pair (stable <-> primary instrument)
2. secondary pair (stable <-> secondary instrument)
3. last resort: sell any non-stable holding worth at least the notional
"""

from typing import Any, Dict, Optional
import logging

from core.models import MarketSnapshot, TradingInstruction
from core.params import StrategyParameters
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)

ROTATION_CONFIDENCE = 0.1
LAST_RESORT_CONFIDENCE = 0.05


class RotationFallback(BaseEvaluator):
    name = "rotation"

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.last_direction = "sell"
        self.trade_counter = 0
        logger.info("Rotation fallback initialized")

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        snapshot = context.snapshot
        params = context.params

        self.trade_counter += 1
        should_buy = self.last_direction == "sell"
        notionals = params.rotation_notionals or [params.min_trade_amount]
        notional = float(notionals[self.trade_counter % len(notionals)])

        for instrument, label in (
            (params.primary_instrument, "Guaranteed trade"),
            (params.secondary_instrument, "Fallback guaranteed trade"),
        ):
            instruction = self._pair_trade(snapshot, params, instrument, should_buy, notional, label)
            if instruction is not None:
                return instruction

        return self._last_resort(snapshot, params, notional)

    def _pair_trade(self, snapshot: MarketSnapshot, params: StrategyParameters, instrument: str,
                    should_buy: bool, notional: float, label: str) -> Optional[TradingInstruction]:
        price = snapshot.price_of(instrument)
        if not instrument or not price:
            return None
        symbol = params.symbol(instrument)

        if should_buy:
            if snapshot.balance_of(params.stable_instrument) < notional:
                return None
            self.last_direction = "buy"
            return TradingInstruction(
                action="buy",
                source=params.stable_instrument,
                destination=instrument,
                amount=notional,
                reason=f"Rotation #{self.trade_counter}: {label} - buying ${notional:.0f} {symbol}",
                confidence=ROTATION_CONFIDENCE,
            )

        balance = snapshot.balance_of(instrument)
        if balance <= 0 or balance * price < notional:
            return None
        self.last_direction = "sell"
        return TradingInstruction(
            action="sell",
            source=instrument,
            destination=params.stable_instrument,
            amount=notional / price,
            reason=f"Rotation #{self.trade_counter}: {label} - selling ${notional:.0f} worth of {symbol}",
            confidence=ROTATION_CONFIDENCE,
        )

    def _last_resort(self, snapshot: MarketSnapshot, params: StrategyParameters,
                     notional: float) -> Optional[TradingInstruction]:
        candidates = [
            h for h in snapshot.holdings
            if h.amount > 0 and h.value >= notional and h.instrument != params.stable_instrument
        ]
        if candidates:
            holding = candidates[self.trade_counter % len(candidates)]
            price = snapshot.price_of(holding.instrument)
            if price:
                self.last_direction = "sell"
                return TradingInstruction(
                    action="sell",
                    source=holding.instrument,
                    destination=params.stable_instrument,
                    amount=notional / price,
                    reason=(
                        f"Rotation #{self.trade_counter}: Emergency guaranteed trade - "
                        f"selling ${notional:.0f} worth of {holding.symbol}"
                    ),
                    confidence=LAST_RESORT_CONFIDENCE,
                )

        logger.warning(
            f"Could not generate rotation trade: insufficient balances "
            f"(notional=${notional:.2f}, portfolio=${snapshot.total_value:.2f}, holdings={len(snapshot.holdings)})"
        )
        return None

    def reset_state(self) -> None:
        self.last_direction = "sell"
        self.trade_counter = 0
        logger.info("Rotation fallback state reset")

    def get_state(self) -> Dict[str, Any]:
        return {"last_direction": self.last_direction, "trade_counter": self.trade_counter}

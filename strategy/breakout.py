"""
Breakout Evaluator

Looks for consolidation (coefficient of variation below the volatility
threshold) followed by a close outside the recent range widened by the
confirmation factor. Downside breakouts sell a larger share of the holding.
"""

from typing import Optional
import logging

from core.indicators import clamp, coefficient_of_variation
from core.models import TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.7
MAX_CONFIDENCE = 0.9


def breakout_confidence(distance: float, range_size: float) -> float:
    """0.7 + 2 * strength, clamped to [0.7, 0.9]; a flat range saturates."""
    if range_size <= 0:
        return MAX_CONFIDENCE
    strength = distance / range_size
    return clamp(MIN_CONFIDENCE + strength * 2, MIN_CONFIDENCE, MAX_CONFIDENCE)


class BreakoutEvaluator(BaseEvaluator):
    name = "breakout"

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        params = context.params
        lookback = params.breakout_lookback
        factor = params.breakout_confirmation_factor

        for instrument in params.watchlist:
            symbol = params.symbol(instrument)
            prices = context.recent_prices(instrument, lookback)
            if len(prices) < lookback or not prices:
                logger.debug(f"Insufficient history for breakout on {symbol}: {len(prices)}/{lookback}")
                continue

            current = context.snapshot.price_of(instrument)
            if not current:
                logger.warning(f"Current price not available for {symbol}")
                continue

            volatility = coefficient_of_variation(prices)
            if volatility is None or volatility >= params.breakout_volatility_threshold:
                logger.debug(f"{symbol} not consolidating (volatility={volatility})")
                continue

            window = prices[-min(params.breakout_range_window, len(prices)):]
            recent_high = max(window)
            recent_low = min(window)
            range_size = recent_high - recent_low
            upper = recent_high * (1 + factor)
            lower = recent_low * (1 - factor)

            logger.debug(
                f"Breakout {symbol}: price={current:.4f} range={recent_low:.4f}-{recent_high:.4f} "
                f"levels={lower:.4f}/{upper:.4f} volatility={volatility * 100:.2f}%"
            )

            if current > upper:
                amount = self.buy_amount(context, params.breakout_buy_fraction)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="buy",
                    source=params.stable_instrument,
                    destination=instrument,
                    amount=amount,
                    reason=(
                        f"Breakout: {symbol} broke above {upper:.4f} "
                        f"(range: {recent_low:.4f}-{recent_high:.4f}, volatility: {volatility * 100:.2f}%)"
                    ),
                    confidence=breakout_confidence(current - upper, range_size),
                )

            if current < lower:
                amount = self.sell_amount(context, instrument, params.breakout_sell_fraction, current)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="sell",
                    source=instrument,
                    destination=params.stable_instrument,
                    amount=amount,
                    reason=(
                        f"Breakout: {symbol} broke below {lower:.4f} "
                        f"(range: {recent_low:.4f}-{recent_high:.4f}, volatility: {volatility * 100:.2f}%)"
                    ),
                    confidence=breakout_confidence(lower - current, range_size),
                )

        return None

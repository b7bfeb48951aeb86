"""
Mean-Reversion Evaluator

Buys watchlist instruments trading well below their simple moving average
and sells those trading well above it. Confidence grows with the size of
the deviation and saturates at 0.9.
"""

from typing import Optional
import logging

from core.indicators import deviation_from, sma
from core.models import TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.9


def reversion_confidence(deviation: float) -> float:
    return min(MAX_CONFIDENCE, 0.5 + abs(deviation) * 2)


class MeanReversionEvaluator(BaseEvaluator):
    name = "mean_reversion"

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        params = context.params
        lookback = params.mean_reversion_lookback
        threshold = params.mean_reversion_threshold

        for instrument in params.watchlist:
            symbol = params.symbol(instrument)
            prices = context.recent_prices(instrument, lookback)
            if len(prices) < lookback:
                logger.debug(f"Insufficient history for {symbol}: {len(prices)}/{lookback}")
                continue

            current = context.snapshot.price_of(instrument)
            if not current:
                logger.warning(f"Current price not available for {symbol}")
                continue

            average = sma(prices)
            deviation = deviation_from(current, average)
            if deviation is None:
                continue

            logger.debug(
                f"Mean reversion {symbol}: price={current:.4f} sma={average:.4f} "
                f"deviation={deviation * 100:.2f}% threshold={threshold * 100:.2f}%"
            )

            if deviation < -threshold:
                amount = self.buy_amount(context, params.mean_reversion_buy_fraction)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="buy",
                    source=params.stable_instrument,
                    destination=instrument,
                    amount=amount,
                    reason=f"Mean Reversion: {symbol} is {abs(deviation) * 100:.2f}% below SMA({lookback})",
                    confidence=reversion_confidence(deviation),
                )

            if deviation > threshold:
                amount = self.sell_amount(context, instrument, params.mean_reversion_sell_fraction, current)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="sell",
                    source=instrument,
                    destination=params.stable_instrument,
                    amount=amount,
                    reason=f"Mean Reversion: {symbol} is {deviation * 100:.2f}% above SMA({lookback})",
                    confidence=reversion_confidence(deviation),
                )

        return None

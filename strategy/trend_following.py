"""
Trend-Following Evaluator

Golden/death cross detection between a short and a long SMA. Both averages
are computed twice, with and without the newest point, so a crossover is a
change between the previous observation and the current one.
"""

from typing import Optional
import logging

from core.indicators import sma
from core.models import TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)

TREND_CONFIDENCE = 0.75


class TrendFollowingEvaluator(BaseEvaluator):
    name = "trend_following"

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        params = context.params
        short = params.trend_short_window
        long = params.trend_long_window

        for instrument in params.watchlist:
            symbol = params.symbol(instrument)
            # One extra point gives a full previous long window when available
            prices = context.recent_prices(instrument, long + 1)
            if len(prices) < long:
                logger.debug(f"Insufficient history for trend on {symbol}: {len(prices)}/{long}")
                continue

            current = context.snapshot.price_of(instrument)
            if not current:
                logger.warning(f"Current price not available for {symbol}")
                continue

            short_sma = sma(prices[-short:])
            long_sma = sma(prices[-long:])
            previous = prices[:-1]
            prev_short_sma = sma(previous[-short:])
            prev_long_sma = sma(previous[-long:])
            if None in (short_sma, long_sma, prev_short_sma, prev_long_sma):
                continue

            logger.debug(
                f"Trend {symbol}: short={short_sma:.4f} long={long_sma:.4f} "
                f"prev_short={prev_short_sma:.4f} prev_long={prev_long_sma:.4f}"
            )

            if prev_short_sma <= prev_long_sma and short_sma > long_sma:
                amount = self.buy_amount(context, params.trend_buy_fraction)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="buy",
                    source=params.stable_instrument,
                    destination=instrument,
                    amount=amount,
                    reason=(
                        f"Trend Following: Golden Cross detected for {symbol} "
                        f"(Short SMA: {short_sma:.2f}, Long SMA: {long_sma:.2f})"
                    ),
                    confidence=TREND_CONFIDENCE,
                )

            if prev_short_sma >= prev_long_sma and short_sma < long_sma:
                amount = self.sell_amount(context, instrument, params.trend_sell_fraction, current)
                if amount is None:
                    continue
                return TradingInstruction(
                    action="sell",
                    source=instrument,
                    destination=params.stable_instrument,
                    amount=amount,
                    reason=(
                        f"Trend Following: Death Cross detected for {symbol} "
                        f"(Short SMA: {short_sma:.2f}, Long SMA: {long_sma:.2f})"
                    ),
                    confidence=TREND_CONFIDENCE,
                )

        return None

"""
Loss-Seeking Evaluator

Adversarial mode used in competitions that reward the largest drawdown.
Converts the stable balance into the worst-performing liquid instrument
until it reaches the configured target allocation. When discovery has no
candidate (or fails) the primary instrument is used instead.
"""

import time
from typing import Callable, Optional
import logging

from core.models import DiscoveryFilters, TokenCandidate, TradingInstruction
from strategy.base_strategy import BaseEvaluator, EvaluationContext
from strategy.discovery import TokenDiscoverer

logger = logging.getLogger(__name__)

SELECTION_CACHE_SECONDS = 600
LOSS_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.9


class LossSeekingEvaluator(BaseEvaluator):
    name = "loss_seeking"

    def __init__(self, discoverer: Optional[TokenDiscoverer] = None,
                 cache_seconds: float = SELECTION_CACHE_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 name: Optional[str] = None):
        super().__init__(name)
        self.discoverer = discoverer
        self.cache_seconds = cache_seconds
        self._clock = clock
        self._cached: Optional[TokenCandidate] = None
        self._cached_at = 0.0

    def evaluate(self, context: EvaluationContext) -> Optional[TradingInstruction]:
        params = context.params
        try:
            candidate = self._select_loser(context)
        except Exception as e:
            logger.error(f"Loser selection failed, falling back to primary instrument: {e}")
            candidate = None

        if candidate is None:
            logger.warning("No losing candidate found; using primary instrument")
            return self._build(context, params.primary_instrument,
                               params.symbol(params.primary_instrument),
                               FALLBACK_CONFIDENCE, note="fallback")

        return self._build(context, candidate.instrument, candidate.symbol, LOSS_CONFIDENCE,
                           note=f"{candidate.price_change_24h:.2f}% 24h")

    def _build(self, context: EvaluationContext, instrument: str, symbol: str,
               confidence: float, note: str) -> Optional[TradingInstruction]:
        params = context.params
        snapshot = context.snapshot
        if snapshot.total_value <= 0:
            return None

        current = snapshot.allocation_of(instrument)
        target = params.loss_seeking_target_allocation
        logger.info(
            f"Loss-seeking {symbol}: allocation={current * 100:.1f}% target={target * 100:.1f}%"
        )
        if current >= target:
            # Already concentrated; let the cascade keep the agent active
            return None

        stable_balance = context.stable_balance
        deficit_value = (target - current) * snapshot.total_value
        amount = min(deficit_value, stable_balance * params.loss_seeking_stable_fraction)
        if amount < params.min_trade_amount or stable_balance < amount:
            return None

        return TradingInstruction(
            action="buy",
            source=params.stable_instrument,
            destination=instrument,
            amount=amount,
            reason=f"Loss-seeking: converting ${amount:.0f} to {symbol} ({note})",
            confidence=confidence,
            bypass_risk=True,
        )

    def _select_loser(self, context: EvaluationContext) -> Optional[TokenCandidate]:
        now = self._clock()
        if self._cached is not None and (now - self._cached_at) < self.cache_seconds:
            return self._cached
        if self.discoverer is None:
            return None

        params = context.params
        filters = DiscoveryFilters(
            min_market_cap_usd=params.loss_seeking_min_market_cap_usd,
            min_volume_usd=params.discovery_min_volume_usd,
            selection_method=params.loss_seeking_selection_method,
            losers_only=True,
        )
        candidate = self.discoverer.discover_candidate(filters)
        if candidate is not None:
            self._cached = candidate
            self._cached_at = now
        return candidate

    def reset_state(self) -> None:
        self._cached = None
        self._cached_at = 0.0
        logger.info("Loss-seeking state reset")

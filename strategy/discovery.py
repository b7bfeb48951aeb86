"""
Guaranteed Discovery Fallback

Absolute last resort of the cascade. Asks the token-discovery collaborator
for a liquid candidate and buys a fixed notional of it from the stable
balance; when the stable balance is short, it first sells part of the
largest eligible holding to fund the purchase.

Output is marked bypass_risk so only the minimal solvency checks apply.
"""

import time
from typing import Any, Callable, Dict, Optional, Protocol
import logging

from core.models import DiscoveryFilters, TokenCandidate, TradingInstruction
from core.params import StrategyParameters
from strategy.base_strategy import BaseEvaluator, EvaluationContext

logger = logging.getLogger(__name__)

DISCOVERY_CONFIDENCE = 0.01
SELECTION_CACHE_SECONDS = 300
FUNDING_BUFFER = 1.1
FUNDING_MAX_SHARE = 0.1


class TokenDiscoverer(Protocol):
    def discover_candidate(self, filters: DiscoveryFilters) -> Optional[TokenCandidate]:
        ...


class DiscoveryFallback(BaseEvaluator):
    name = "discovery"

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
        snapshot = context.snapshot
        params = context.params
        amount = params.discovery_trade_amount_usd

        candidate = self._select_candidate(params)
        if candidate is None:
            logger.warning("No discovery candidate found; skipping discovery trade")
            return None

        logger.info(
            f"Discovery candidate {candidate.symbol}: 24h={candidate.price_change_24h:.2f}% "
            f"mcap=${candidate.market_cap / 1e6:.1f}M volume=${candidate.volume / 1e6:.1f}M"
        )

        stable_balance = context.stable_balance
        if stable_balance >= amount:
            return TradingInstruction(
                action="buy",
                source=params.stable_instrument,
                destination=candidate.instrument,
                amount=amount,
                reason=f"Discovery: buying ${amount:.0f} of {candidate.symbol} ({candidate.price_change_24h:.2f}% 24h)",
                confidence=DISCOVERY_CONFIDENCE,
                bypass_risk=True,
            )

        excluded = set(params.discovery_excluded_instruments)
        eligible = [
            h for h in snapshot.holdings
            if h.amount > 0 and h.value >= amount
            and h.instrument != params.stable_instrument
            and h.instrument not in excluded
        ]
        if not eligible:
            logger.warning(
                f"Insufficient funds for discovery trade (amount=${amount:.2f}, "
                f"stable={stable_balance:.2f}, portfolio=${snapshot.total_value:.2f})"
            )
            return None

        funding = max(eligible, key=lambda h: h.value)
        price = snapshot.price_of(funding.instrument)
        if not price:
            return None
        sell_usd = min(amount * FUNDING_BUFFER, funding.value * FUNDING_MAX_SHARE)
        return TradingInstruction(
            action="sell",
            source=funding.instrument,
            destination=params.stable_instrument,
            amount=sell_usd / price,
            reason=f"Discovery prep: selling ${sell_usd:.0f} of {funding.symbol} to fund {candidate.symbol} purchase",
            confidence=DISCOVERY_CONFIDENCE,
            bypass_risk=True,
        )

    def _select_candidate(self, params: StrategyParameters) -> Optional[TokenCandidate]:
        now = self._clock()
        if self._cached is not None and (now - self._cached_at) < self.cache_seconds:
            logger.debug("Using cached discovery candidate")
            return self._cached
        if self.discoverer is None:
            return None

        filters = DiscoveryFilters(
            min_market_cap_usd=params.discovery_min_market_cap_usd,
            min_volume_usd=params.discovery_min_volume_usd,
            selection_method=params.discovery_selection_method,
        )
        candidate = self.discoverer.discover_candidate(filters)
        if candidate is not None and candidate.instrument in params.discovery_excluded_instruments:
            logger.info(f"Discovery candidate {candidate.symbol} is excluded")
            candidate = None
        if candidate is not None:
            self._cached = candidate
            self._cached_at = now
        return candidate

    def reset_state(self) -> None:
        self._cached = None
        self._cached_at = 0.0
        clear = getattr(self.discoverer, "clear_cache", None)
        if callable(clear):
            clear()
        logger.info("Discovery fallback state reset")

    def get_state(self) -> Dict[str, Any]:
        return {
            "cached_candidate": self._cached.symbol if self._cached else None,
            "cache_age_seconds": round(self._clock() - self._cached_at, 1) if self._cached else None,
        }

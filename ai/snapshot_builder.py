"""
Snapshot Builder - Construct market context for the advisory model.

Builds:
- Market-insight digest (per-instrument SMAs, change, volatility, allocation)
- Model request dict (portfolio, prices, agent state, risk limits, insights)
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ai.schemas import AdvisoryContext, InstrumentInsight, MarketInsights
from core.history import HistoryProvider
from core.indicators import coefficient_of_variation, sma
from core.models import MarketSnapshot
from core.params import StrategyParameters

logger = logging.getLogger(__name__)


# ─── Market insights ───────────────────────────────────────────────────────

def build_market_insights(
    snapshot: MarketSnapshot,
    params: StrategyParameters,
    history: Optional[HistoryProvider] = None,
) -> MarketInsights:
    """
    Digest recent price action for each watchlist instrument.

    Missing history only shortens the digest; it never fails.
    """
    insights = MarketInsights(
        generated_at=datetime.now(timezone.utc).isoformat(),
        stable_allocation=round(snapshot.allocation_of(params.stable_instrument), 4),
    )

    for instrument in params.watchlist:
        prices = []
        if history is not None:
            try:
                prices = [p.price for p in history.get_history(instrument, params.trend_long_window)]
            except Exception as e:
                logger.warning(f"History unavailable for {params.symbol(instrument)}: {e}")
                insights.notes.append(f"history unavailable for {params.symbol(instrument)}")

        current = snapshot.price_of(instrument)
        change_pct = None
        if prices and current and prices[0]:
            change_pct = round((current - prices[0]) / prices[0] * 100, 4)
        volatility = coefficient_of_variation(prices)

        insights.instruments.append(InstrumentInsight(
            instrument=instrument,
            symbol=params.symbol(instrument),
            price=current,
            points=len(prices),
            sma_short=sma(prices[-params.trend_short_window:]),
            sma_long=sma(prices),
            change_pct=change_pct,
            volatility=round(volatility, 6) if volatility is not None else None,
            allocation=round(snapshot.allocation_of(instrument), 4),
            target_allocation=params.target_allocations.get(instrument),
        ))

    return insights


# ─── Model request ─────────────────────────────────────────────────────────

def build_advisory_request(context: AdvisoryContext) -> Dict[str, Any]:
    """Serialise an AdvisoryContext into the dict the model client formats."""
    snapshot = context.snapshot
    return {
        "objective": context.objective,
        "stable_instrument": context.stable_instrument,
        "portfolio": {
            "total_value": snapshot.total_value,
            "holdings": [
                {
                    "instrument": h.instrument,
                    "symbol": h.symbol,
                    "amount": h.amount,
                    "price": h.price,
                    "value": h.value,
                }
                for h in snapshot.holdings
            ],
        },
        "prices": dict(snapshot.prices),
        "symbols": dict(context.symbols),
        "agent_state": context.agent_state.to_dict(),
        "risk_limits": dict(context.risk_limits),
        "market_insights": asdict(context.market_insights) if context.market_insights else None,
        "timestamp": snapshot.timestamp.isoformat(),
    }

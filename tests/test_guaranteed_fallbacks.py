"""
Tests for the guaranteed fallbacks.

Coverage:
- Rotation direction alternation and notional cycling
- Rotation secondary pair and last-resort sell
- Discovery buy, funding sell, candidate cache, exclusions
"""

import pytest

from core.params import StrategyParameters, USDC, WBTC, WETH
from strategy.base_strategy import EvaluationContext
from strategy.discovery import DiscoveryFallback
from strategy.rotation import RotationFallback
from tests.helpers import FakeDiscoverer, FixedClock, candidate, make_snapshot


def _ctx(values, prices=None, params=None):
    return EvaluationContext(snapshot=make_snapshot(values, prices=prices),
                             params=params or StrategyParameters())


class TestRotation:
    def test_first_trade_buys_then_alternates(self, balanced_values):
        rotation = RotationFallback()
        ctx = _ctx(balanced_values)

        first = rotation.run(ctx)
        second = rotation.run(ctx)
        third = rotation.run(ctx)

        assert first.action == "buy"
        assert first.source == USDC and first.destination == WETH
        assert first.amount == pytest.approx(18.0)
        assert second.action == "sell"
        assert second.source == WETH
        assert second.amount == pytest.approx(26.0 / 2000.0)
        assert third.action == "buy"
        assert third.amount == pytest.approx(34.0)
        assert first.confidence == 0.1
        assert first.bypass_risk is False

    def test_notionals_wrap_around(self, balanced_values):
        rotation = RotationFallback()
        ctx = _ctx(balanced_values)
        amounts = []
        for _ in range(5):
            instruction = rotation.run(ctx)
            price = 1.0 if instruction.action == "buy" else 2000.0
            amounts.append(round(instruction.amount * price, 6))

        assert amounts == [18.0, 26.0, 34.0, 42.0, 10.0]

    def test_secondary_pair_used_when_primary_unpriced(self):
        rotation = RotationFallback()
        ctx = _ctx({USDC: 100.0, WBTC: 1000.0}, prices={WETH: 0.0})

        instruction = rotation.run(ctx)

        assert instruction.destination == WBTC
        assert "Fallback guaranteed trade" in instruction.reason

    def test_last_resort_sells_other_holding(self):
        rotation = RotationFallback()
        rotation.last_direction = "buy"
        ctx = _ctx({USDC: 5.0, "0xOTHER": 500.0})

        instruction = rotation.run(ctx)

        assert instruction.action == "sell"
        assert instruction.source == "0xOTHER"
        assert instruction.amount == pytest.approx(18.0)
        assert instruction.confidence == 0.05

    def test_nothing_tradable_returns_none(self):
        rotation = RotationFallback()
        assert rotation.run(_ctx({USDC: 5.0})) is None

    def test_reset_state(self, balanced_values):
        rotation = RotationFallback()
        rotation.run(_ctx(balanced_values))
        rotation.reset_state()

        assert rotation.get_state() == {"last_direction": "sell", "trade_counter": 0}


class TestDiscoveryFallback:
    def test_buys_candidate_with_stable(self, balanced_values):
        discoverer = FakeDiscoverer(candidate("0xNEW", "NEW"))
        fallback = DiscoveryFallback(discoverer)

        instruction = fallback.run(_ctx(balanced_values))

        assert instruction.action == "buy"
        assert instruction.source == USDC
        assert instruction.destination == "0xNEW"
        assert instruction.amount == 25.0
        assert instruction.confidence == 0.01
        assert instruction.bypass_risk is True

        filters = discoverer.calls[0]
        assert filters.min_market_cap_usd == 5_000_000.0
        assert filters.min_volume_usd == 1_000_000.0
        assert filters.selection_method == "top_volume"
        assert filters.losers_only is False

    def test_short_stable_sells_largest_holding_first(self):
        fallback = DiscoveryFallback(FakeDiscoverer(candidate()))

        instruction = fallback.run(_ctx({USDC: 10.0, WETH: 3500.0, WBTC: 2500.0}))

        assert instruction.action == "sell"
        assert instruction.source == WETH
        assert instruction.destination == USDC
        assert instruction.amount == pytest.approx(27.5 / 2000.0)
        assert instruction.bypass_risk is True

    def test_candidate_is_cached(self, balanced_values):
        clock = FixedClock()
        discoverer = FakeDiscoverer(candidate())
        fallback = DiscoveryFallback(discoverer, clock=clock)
        ctx = _ctx(balanced_values)

        fallback.run(ctx)
        clock.advance(299)
        fallback.run(ctx)
        assert len(discoverer.calls) == 1

        clock.advance(2)
        fallback.run(ctx)
        assert len(discoverer.calls) == 2

    def test_excluded_candidate_is_ignored(self, balanced_values):
        params = StrategyParameters(discovery_excluded_instruments=["0xLOSER"])
        fallback = DiscoveryFallback(FakeDiscoverer(candidate("0xLOSER")))

        assert fallback.run(_ctx(balanced_values, params=params)) is None

    def test_no_discoverer_or_no_candidate(self, balanced_values):
        assert DiscoveryFallback().run(_ctx(balanced_values)) is None
        assert DiscoveryFallback(FakeDiscoverer(None)).run(_ctx(balanced_values)) is None

    def test_discoverer_error_gives_no_signal(self, balanced_values):
        fallback = DiscoveryFallback(FakeDiscoverer(error=RuntimeError("rate limited")))
        assert fallback.run(_ctx(balanced_values)) is None

    def test_reset_clears_cache_and_discoverer(self, balanced_values):
        discoverer = FakeDiscoverer(candidate())
        fallback = DiscoveryFallback(discoverer)
        fallback.run(_ctx(balanced_values))

        fallback.reset_state()

        assert discoverer.cleared == 1
        assert fallback.get_state()["cached_candidate"] is None

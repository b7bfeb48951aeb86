"""
Tests for the history-based evaluators and the momentum fallback.

Coverage:
- Mean reversion (SMA deviation, confidence scaling)
- Trend following (golden/death cross on the newest point)
- Breakout (consolidation + range break, confidence clamp)
- Momentum (stable allocation trigger)
- Insufficient history never signals
"""

import pytest

from core.history import InMemoryHistory
from core.params import StrategyParameters, USDC, WBTC, WETH
from strategy.base_strategy import EvaluationContext
from strategy.breakout import BreakoutEvaluator, breakout_confidence
from strategy.mean_reversion import MeanReversionEvaluator, reversion_confidence
from strategy.momentum import MomentumEvaluator
from strategy.trend_following import TrendFollowingEvaluator
from tests.helpers import make_snapshot


def _context(values, history, params=None, prices=None):
    return EvaluationContext(
        snapshot=make_snapshot(values, prices=prices),
        params=params or StrategyParameters(),
        history=history,
    )


def _history(prices, instrument=WETH):
    history = InMemoryHistory()
    history.extend(instrument, prices)
    return history


class TestMeanReversion:
    def test_price_below_sma_buys(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 20), prices={WETH: 95.0})

        instruction = MeanReversionEvaluator().run(ctx)

        assert instruction.action == "buy"
        assert instruction.source == USDC
        assert instruction.destination == WETH
        # 20% of the $4,000 stable balance
        assert instruction.amount == pytest.approx(800.0)
        assert instruction.confidence == pytest.approx(0.6)
        assert "below SMA(20)" in instruction.reason

    def test_price_above_sma_sells_fraction_of_holding(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 20), prices={WETH: 110.0})

        instruction = MeanReversionEvaluator().run(ctx)

        assert instruction.action == "sell"
        assert instruction.source == WETH
        assert instruction.amount == pytest.approx(3500.0 / 110.0 * 0.3)
        assert instruction.confidence == pytest.approx(0.7)

    def test_flat_series_gives_no_signal(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 20), prices={WETH: 100.0})
        assert MeanReversionEvaluator().run(ctx) is None

    def test_short_history_gives_no_signal(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 19), prices={WETH: 50.0})
        assert MeanReversionEvaluator().run(ctx) is None

    def test_buy_needs_minimum_stable_balance(self):
        values = {USDC: 5.0, WETH: 3500.0, WBTC: 2500.0}
        ctx = _context(values, _history([100.0] * 20), prices={WETH: 90.0})
        assert MeanReversionEvaluator().run(ctx) is None

    def test_confidence_saturates(self):
        assert reversion_confidence(-0.5) == 0.9
        assert reversion_confidence(0.03) == pytest.approx(0.56)


class TestTrendFollowing:
    def test_golden_cross_on_newest_point_buys(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 50 + [200.0]), prices={WETH: 200.0})

        instruction = TrendFollowingEvaluator().run(ctx)

        assert instruction.action == "buy"
        assert instruction.destination == WETH
        assert instruction.confidence == 0.75
        assert instruction.amount == pytest.approx(1000.0)
        assert "Golden Cross" in instruction.reason

    def test_death_cross_on_newest_point_sells(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 50 + [50.0]), prices={WETH: 50.0})

        instruction = TrendFollowingEvaluator().run(ctx)

        assert instruction.action == "sell"
        assert instruction.source == WETH
        assert instruction.amount == pytest.approx(3500.0 / 50.0 * 0.4)
        assert "Death Cross" in instruction.reason

    def test_equal_averages_give_no_crossover(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 60), prices={WETH: 100.0})
        assert TrendFollowingEvaluator().run(ctx) is None

    def test_existing_uptrend_is_not_a_new_cross(self, balanced_values):
        prices = [100.0] * 40 + [120.0] * 11
        ctx = _context(balanced_values, _history(prices), prices={WETH: 120.0})
        assert TrendFollowingEvaluator().run(ctx) is None

    def test_insufficient_history_gives_no_signal(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0] * 20 + [200.0]), prices={WETH: 200.0})
        assert TrendFollowingEvaluator().run(ctx) is None


class TestBreakout:
    def test_upside_break_of_tight_range_buys(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0, 101.0] * 10), prices={WETH: 103.0})

        instruction = BreakoutEvaluator().run(ctx)

        assert instruction.action == "buy"
        assert instruction.destination == WETH
        assert instruction.amount == pytest.approx(1200.0)
        assert 0.7 <= instruction.confidence <= 0.9
        assert "broke above" in instruction.reason

    def test_downside_break_sells_half(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0, 101.0] * 10), prices={WETH: 97.0})

        instruction = BreakoutEvaluator().run(ctx)

        assert instruction.action == "sell"
        assert instruction.amount == pytest.approx(3500.0 / 97.0 * 0.5)
        assert "broke below" in instruction.reason

    def test_price_inside_confirmation_band_gives_no_signal(self, balanced_values):
        ctx = _context(balanced_values, _history([100.0, 101.0] * 10), prices={WETH: 101.4})
        assert BreakoutEvaluator().run(ctx) is None

    def test_volatile_series_is_not_consolidating(self, balanced_values):
        ctx = _context(balanced_values, _history([90.0, 110.0] * 10), prices={WETH: 150.0})
        assert BreakoutEvaluator().run(ctx) is None

    def test_confidence_scaling(self):
        assert breakout_confidence(0.05, 1.0) == pytest.approx(0.8)
        assert breakout_confidence(5.0, 1.0) == 0.9
        assert breakout_confidence(0.0, 1.0) == 0.7
        assert breakout_confidence(1.0, 0.0) == 0.9


class TestMomentum:
    def test_high_stable_allocation_buys_primary(self):
        ctx = _context({USDC: 6000.0, WETH: 2000.0, WBTC: 2000.0}, None)

        instruction = MomentumEvaluator().run(ctx)

        assert instruction.action == "buy"
        assert instruction.source == USDC
        assert instruction.destination == WETH
        assert instruction.amount == pytest.approx(600.0)
        assert instruction.confidence == 0.6

    def test_stable_at_trigger_gives_no_signal(self):
        ctx = _context({USDC: 5000.0, WETH: 2500.0, WBTC: 2500.0}, None)
        assert MomentumEvaluator().run(ctx) is None

    def test_no_stable_holding_gives_no_signal(self):
        ctx = _context({WETH: 5000.0, WBTC: 5000.0}, None)
        assert MomentumEvaluator().run(ctx) is None


def test_flat_market_produces_no_history_signal():
    """20 points at 100 with the current price at 100: nothing fires."""
    history = InMemoryHistory()
    for instrument in (WETH, WBTC):
        history.extend(instrument, [100.0] * 60)
    ctx = _context(
        {USDC: 4000.0, WETH: 3500.0, WBTC: 2500.0}, history,
        prices={WETH: 100.0, WBTC: 100.0},
    )

    assert MeanReversionEvaluator().run(ctx) is None
    assert TrendFollowingEvaluator().run(ctx) is None


def test_evaluator_fault_is_contained(balanced_values):
    class Exploding:
        def get_history(self, instrument, count):
            raise RuntimeError("db locked")

        def append(self, *args):
            pass

    ctx = _context(balanced_values, Exploding(), prices={WETH: 95.0})
    assert MeanReversionEvaluator().run(ctx) is None

"""Tests for the SQLite price-history store."""

from datetime import datetime, timedelta, timezone

import pytest

from core.params import StrategyParameters, USDC, WBTC, WETH
from infra.history_store import SqliteHistoryStore
from strategy.base_strategy import EvaluationContext
from strategy.mean_reversion import MeanReversionEvaluator
from tests.helpers import make_snapshot

START = datetime(2026, 1, 5, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return SqliteHistoryStore(str(tmp_path / "db" / "market_data.db"))


def _seed(store, instrument, prices):
    for i, price in enumerate(prices):
        store.append(START + timedelta(minutes=5 * i), instrument, price, 10_000.0)


def test_history_is_oldest_first_and_bounded(store):
    _seed(store, WETH, [100.0, 101.0, 102.0, 103.0])

    points = store.get_history(WETH, 3)

    assert [p.price for p in points] == [101.0, 102.0, 103.0]
    assert points[-1].timestamp == (START + timedelta(minutes=15)).isoformat()


def test_short_history_returns_what_exists(store):
    _seed(store, WETH, [100.0, 101.0])
    assert len(store.get_history(WETH, 20)) == 2
    assert store.get_history(WBTC, 20) == []
    assert store.get_history(WETH, 0) == []


def test_same_timestamp_replaces_row(store):
    store.append(START, WETH, 100.0)
    store.append(START, WETH, 105.0)

    assert store.count(WETH) == 1
    assert store.latest_price(WETH) == 105.0


def test_instruments_are_independent(store):
    _seed(store, WETH, [100.0] * 3)
    _seed(store, WBTC, [50_000.0] * 5)

    assert store.count(WETH) == 3
    assert store.count() == 8
    assert store.latest_price("0xNONE") is None


def test_prune_removes_old_rows(store):
    _seed(store, WETH, [100.0] * 4)

    assert store.prune(days_to_keep=30) == 0
    assert store.prune(days_to_keep=30, now=datetime.now(timezone.utc) + timedelta(days=31)) == 4
    assert store.count() == 0


def test_store_feeds_evaluators(store):
    _seed(store, WETH, [100.0] * 20)
    ctx = EvaluationContext(
        snapshot=make_snapshot({USDC: 4000.0, WETH: 3500.0}, prices={WETH: 95.0}),
        params=StrategyParameters(),
        history=store,
    )

    instruction = MeanReversionEvaluator().run(ctx)

    assert instruction.action == "buy"
    assert instruction.destination == WETH

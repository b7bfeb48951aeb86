"""
Tests for the JSON agent-state store.

Coverage:
- Defaults and corrupt files
- Atomic save/load round trip
- Daily PnL baseline and UTC rollover
- Execution bookkeeping and event trimming
- Pause requests from another thread survive concurrent bookkeeping
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.models import AgentState, ExecutionResult, TradingInstruction
from core.params import USDC, WETH
from infra.state_store import MAX_EVENTS, StateStore

DAY = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state" / "agent.json"))


def _instruction():
    return TradingInstruction(action="buy", source=USDC, destination=WETH, amount=50.0,
                              reason="test", confidence=0.7, strategy="momentum")


def test_defaults_when_file_missing(store):
    state = store.load_agent_state()

    assert state == AgentState()
    assert store.state_file.parent.exists()


def test_corrupt_file_falls_back_to_defaults(store):
    store.state_file.write_text("{not json")
    assert store.load()["total_trades"] == 0


def test_non_dict_file_falls_back_to_defaults(store):
    store.state_file.write_text(json.dumps([1, 2, 3]))
    assert store.load()["is_active"] is True


def test_agent_state_persists(store):
    store.save_agent_state(AgentState(total_trades=7, risk_level="high"))

    reloaded = StateStore(str(store.state_file)).load_agent_state()

    assert reloaded.total_trades == 7
    assert reloaded.risk_level == "high"
    assert not list(store.state_file.parent.glob("*.tmp"))


def test_pause_and_resume(store):
    assert store.set_active(False).is_active is False
    assert store.load_agent_state().is_active is False
    assert store.set_active(True).is_active is True

    events = [e["event"] for e in store.recent_events()]
    assert events == ["paused", "resumed"]


class TestPortfolioValue:
    def test_first_value_sets_baseline(self, store):
        state = store.update_portfolio_value(10_000.0, now=DAY, reference_value=10_000.0)

        assert state.daily_pnl_pct == 0.0
        assert state.total_pnl == 0.0

    def test_daily_pnl_against_day_start(self, store):
        store.update_portfolio_value(10_000.0, now=DAY)
        state = store.update_portfolio_value(9_400.0, now=DAY + timedelta(hours=3), reference_value=12_000.0)

        assert state.daily_pnl_pct == pytest.approx(-6.0)
        assert state.total_pnl == pytest.approx(-2_600.0)

    def test_utc_rollover_resets_baseline(self, store):
        store.update_portfolio_value(10_000.0, now=DAY)
        store.update_portfolio_value(9_000.0, now=DAY + timedelta(hours=10))

        state = store.update_portfolio_value(9_000.0, now=DAY + timedelta(days=1))

        assert state.daily_pnl_pct == 0.0
        assert store.load()["day_start_date"] == "2026-01-06"


class TestExecutions:
    def test_success_counts_as_trade(self, store):
        result = ExecutionResult(success=True, trade_id="tx-9")

        state = store.record_execution(_instruction(), result, now=DAY)

        assert state.total_trades == 1
        assert state.last_trade_time == DAY.isoformat()
        event = store.recent_events(1)[0]
        assert event["event"] == "trade"
        assert event["trade_id"] == "tx-9"
        assert event["strategy"] == "momentum"

    def test_failure_is_not_a_trade(self, store):
        state = store.record_execution(_instruction(), ExecutionResult(success=False, error="slippage"))

        assert state.total_trades == 0
        assert store.load()["failed_executions"] == 1
        assert store.recent_events(1)[0]["error"] == "slippage"

    def test_events_are_trimmed(self, store):
        for _ in range(MAX_EVENTS + 5):
            store.record_execution(_instruction(), ExecutionResult(success=True))

        assert len(store.load()["events"]) == MAX_EVENTS
        assert store.load_agent_state().total_trades == MAX_EVENTS + 5


def test_pause_during_bookkeeping_is_not_lost(store, monkeypatch):
    """A pause from the control thread waits for the loop's update, then lands."""
    original_load = store.load
    pauser = threading.Thread(target=store.set_active, args=(False,))
    calls = []

    def load_then_pause():
        state = original_load()
        calls.append(state)
        if len(calls) == 1:
            pauser.start()
            pauser.join(timeout=0.2)
        return state

    monkeypatch.setattr(store, "load", load_then_pause)

    store.update_portfolio_value(10_000.0, now=DAY)
    pauser.join(timeout=5)

    assert not pauser.is_alive()
    monkeypatch.undo()
    state = store.load_agent_state()
    assert state.is_active is False
    assert state.daily_pnl_pct == 0.0
    assert store.load()["last_portfolio_value"] == 10_000.0

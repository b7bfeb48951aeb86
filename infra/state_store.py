"""
cascade-trader Infrastructure: State Store

Persistent agent state with atomic writes.

Daily PnL is measured against the first portfolio value seen on the current
UTC date; total PnL against the configured reference value.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pathlib import Path
import logging

from core.models import AgentState, ExecutionResult, TradingInstruction

logger = logging.getLogger(__name__)


DEFAULT_STATE = {
    "total_trades": 0,
    "total_pnl": 0.0,
    "daily_pnl_pct": 0.0,
    "last_trade_time": None,
    "is_active": True,
    "risk_level": "medium",
    "day_start_value": None,  # First portfolio value of the UTC day
    "day_start_date": None,
    "last_portfolio_value": None,
    "failed_executions": 0,
    "events": [],  # Recent events log
}

MAX_EVENTS = 100


class StateStore:
    """
    Persistent state storage using JSON file.

    Features:
    - Atomic writes (temp file + rename)
    - Defaults merged on load
    - Daily PnL baseline reset on UTC date rollover
    - Read-modify-write updates serialized across threads (loop and control server)
    """

    def __init__(self, state_file: Optional[str] = None):
        """
        Initialize state store.

        Args:
            state_file: Path to state JSON file (default: data/.agent_state.json)
        """
        if state_file:
            self.state_file = Path(state_file)
        else:
            state_file = os.getenv("STATE_FILE", "data/.agent_state.json")
            self.state_file = Path(state_file)

        # Ensure directory exists
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        self._state: Optional[Dict[str, Any]] = None
        # Re-entrant so update methods can call load()/save() while holding it
        self._lock = threading.RLock()
        logger.info(f"Initialized StateStore at {self.state_file}")

    def load(self) -> Dict[str, Any]:
        """
        Load state from file.

        Returns:
            State dict with defaults merged
        """
        if not self.state_file.exists():
            logger.debug("No state file found, using defaults")
            return json.loads(json.dumps(DEFAULT_STATE))

        try:
            with self._lock, open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            if isinstance(data, dict):
                state = {**json.loads(json.dumps(DEFAULT_STATE)), **data}
                self._state = state
                logger.debug("Loaded state from file")
                return state

            logger.warning("Invalid state file format, using defaults")
            return json.loads(json.dumps(DEFAULT_STATE))

        except Exception as e:
            logger.error(f"Failed to load state: {e}")
            return json.loads(json.dumps(DEFAULT_STATE))

    def save(self, state: Dict[str, Any]) -> None:
        """
        Save state to file atomically.

        Args:
            state: State dict to save
        """
        try:
            with self._lock:
                temp_fd, temp_path = tempfile.mkstemp(
                    dir=self.state_file.parent,
                    prefix=".agent_state_",
                    suffix=".json.tmp"
                )

                with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                    json.dump(state, f, indent=2)

                # Atomic rename
                os.replace(temp_path, self.state_file)

            self._state = state
            logger.debug("Saved state to file")

        except Exception as e:
            logger.error(f"Failed to save state: {e}")

    # ------------------------------------------------------------------ #
    # Agent state
    # ------------------------------------------------------------------ #

    def load_agent_state(self) -> AgentState:
        return AgentState.from_dict(self.load())

    def save_agent_state(self, agent_state: AgentState) -> None:
        with self._lock:
            state = self.load()
            state.update(agent_state.to_dict())
            self.save(state)

    def set_active(self, active: bool) -> AgentState:
        with self._lock:
            state = self.load()
            state["is_active"] = bool(active)
            self._append_event(state, "resumed" if active else "paused")
            self.save(state)
        logger.info(f"Agent {'resumed' if active else 'paused'}")
        return AgentState.from_dict(state)

    def update_portfolio_value(
        self,
        total_value: float,
        now: Optional[datetime] = None,
        reference_value: Optional[float] = None,
    ) -> AgentState:
        """
        Refresh PnL fields from the current portfolio value.

        Args:
            total_value: Portfolio value of this cycle
            now: Clock override
            reference_value: Starting value used for total PnL

        Returns:
            Updated AgentState
        """
        now = now or datetime.now(timezone.utc)
        today = now.date().isoformat()
        with self._lock:
            state = self.load()

            if state.get("day_start_date") != today or not state.get("day_start_value"):
                logger.info(
                    f"Resetting daily PnL baseline (last: {state.get('day_start_date')}, "
                    f"value=${total_value:.2f})"
                )
                state["day_start_date"] = today
                state["day_start_value"] = float(total_value)

            day_start = float(state["day_start_value"] or 0.0)
            if day_start > 0:
                state["daily_pnl_pct"] = (float(total_value) - day_start) / day_start * 100
            else:
                state["daily_pnl_pct"] = 0.0

            if reference_value is not None:
                state["total_pnl"] = float(total_value) - float(reference_value)
            state["last_portfolio_value"] = float(total_value)

            self.save(state)
        return AgentState.from_dict(state)

    def record_execution(
        self,
        instruction: TradingInstruction,
        result: ExecutionResult,
        now: Optional[datetime] = None,
    ) -> AgentState:
        """
        Record the outcome of an executed instruction.

        Only successful executions count as trades.
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            state = self.load()

            if result.success:
                state["total_trades"] = int(state.get("total_trades", 0)) + 1
                state["last_trade_time"] = now.isoformat()
            else:
                state["failed_executions"] = int(state.get("failed_executions", 0)) + 1

            self._append_event(
                state,
                "trade" if result.success else "execution_failed",
                at=now,
                action=instruction.action,
                source=instruction.source,
                destination=instruction.destination,
                amount=instruction.amount,
                strategy=instruction.strategy,
                trade_id=result.trade_id,
                error=result.error,
            )
            self.save(state)
        return AgentState.from_dict(state)

    def recent_events(self, limit: int = 20) -> list:
        return self.load().get("events", [])[-limit:]

    @staticmethod
    def _append_event(state: Dict[str, Any], event: str, at: Optional[datetime] = None, **kwargs) -> None:
        at = at or datetime.now(timezone.utc)
        state.setdefault("events", []).append({"at": at.isoformat(), "event": event, **kwargs})
        # Trim events (keep last 100)
        if len(state["events"]) > MAX_EVENTS:
            state["events"] = state["events"][-MAX_EVENTS:]

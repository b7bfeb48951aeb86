"""
Trading Cycle Pipeline - Shared Core Logic

One cycle of the agent, reused by the live loop (runner/main_loop.py) and the
control server's manual command path.

Flow:
1. Pause check
2. Fetch market snapshot
3. Portfolio value bookkeeping (daily/total PnL)
4. Stop check (loss or drawdown limits)
5. Decide (orchestrator)
6. Risk validation
7. Execution (delegated to the venue)
8. Record (trade window, agent state, trade journal)
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol
import logging

from core.exceptions import CriticalDataUnavailable, ExecutionFailed, TradeRejected
from core.models import ExecutionResult, MarketSnapshot, TradingInstruction
from core.params import ParameterStore
from core.risk import RiskCheckResult, RiskGate
from infra.metrics import CycleStats, MetricsRecorder
from infra.state_store import StateStore
from strategy.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class Venue(Protocol):
    def fetch_snapshot(self, extra_instruments=()) -> MarketSnapshot: ...

    def execute(self, instruction: TradingInstruction) -> ExecutionResult: ...


@dataclass
class CycleResult:
    """Result of a trading cycle execution"""
    success: bool
    status: str
    instruction: Optional[TradingInstruction] = None
    risk_result: Optional[RiskCheckResult] = None
    execution: Optional[ExecutionResult] = None
    no_trade_reason: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def executed(self) -> bool:
        return self.execution is not None and self.execution.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "instruction": self.instruction.to_dict() if self.instruction else None,
            "approved": self.risk_result.approved if self.risk_result else None,
            "reject_reason": (
                self.risk_result.reason if self.risk_result and not self.risk_result.approved else None
            ),
            "executed": self.executed,
            "trade_id": self.execution.trade_id if self.execution else None,
            "no_trade_reason": self.no_trade_reason,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 4),
        }


class TradingCyclePipeline:
    """
    Reusable trading cycle pipeline.

    Cycles never overlap: run_cycle() and process_external_instruction() hold
    the same lock, so a manual command from the control server waits for an
    in-flight cycle. Parameters and the active flag are read once at the top
    of the cycle.
    """

    def __init__(self,
                 param_store: ParameterStore,
                 orchestrator: Orchestrator,
                 risk_gate: RiskGate,
                 venue: Venue,
                 state_store: StateStore,
                 trade_log=None,
                 metrics: Optional[MetricsRecorder] = None):
        self.param_store = param_store
        self.orchestrator = orchestrator
        self.risk_gate = risk_gate
        self.venue = venue
        self.state_store = state_store
        self.trade_log = trade_log
        self.metrics = metrics or MetricsRecorder(enabled=False)
        self.last_result: Optional[CycleResult] = None
        self.last_snapshot: Optional[MarketSnapshot] = None
        self.cycle_count = 0
        self._cycle_lock = threading.Lock()

        logger.info("Initialized TradingCyclePipeline")

    def run_cycle(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Execute one trading cycle.

        Never raises: collaborator failures come back as a failed CycleResult.
        """
        with self._cycle_lock:
            return self._run_cycle_locked(now)

    def _run_cycle_locked(self, now: Optional[datetime]) -> CycleResult:
        started = time.monotonic()
        now = now or datetime.now(timezone.utc)
        self.cycle_count += 1

        try:
            result = self._run(now)
        except CriticalDataUnavailable as e:
            logger.error(f"Cycle {self.cycle_count} aborted: {e}")
            result = CycleResult(success=False, status="data_unavailable", error=str(e))
        except ExecutionFailed as e:
            logger.error(f"Cycle {self.cycle_count} execution failed: {e}")
            result = CycleResult(success=False, status="execution_failed", error=str(e))
        except Exception as e:
            logger.error(f"Cycle {self.cycle_count} failed: {e}", exc_info=True)
            result = CycleResult(success=False, status="error", error=str(e))

        result.started_at = now
        result.duration_seconds = time.monotonic() - started
        self.last_result = result
        self.metrics.record_cycle(CycleStats(
            status=result.status,
            strategy=result.instruction.strategy if result.instruction else None,
            approved=bool(result.risk_result and result.risk_result.approved),
            executed=result.executed,
            duration_seconds=result.duration_seconds,
        ))
        logger.info(
            f"Cycle {self.cycle_count} complete: status={result.status} "
            f"duration={result.duration_seconds:.2f}s"
        )
        return result

    def _run(self, now: datetime) -> CycleResult:
        # Step 1: one parameter snapshot for the whole cycle
        params = self.param_store.get()
        agent_state = self.state_store.load_agent_state()
        if not agent_state.is_active:
            logger.info("Agent paused - skipping cycle")
            return CycleResult(success=True, status="paused", no_trade_reason="paused")

        # Step 2: market snapshot
        extra = set(params.watchlist) | set(params.target_allocations)
        snapshot = self.venue.fetch_snapshot(extra_instruments=sorted(extra))
        self.last_snapshot = snapshot
        self.metrics.set_portfolio_value(snapshot.total_value)

        # Step 3: PnL bookkeeping
        agent_state = self.state_store.update_portfolio_value(
            snapshot.total_value, now=now, reference_value=params.reference_portfolio_value,
        )
        logger.info(
            f"Portfolio value=${snapshot.total_value:.2f} daily_pnl={agent_state.daily_pnl_pct:.2f}% "
            f"total_pnl=${agent_state.total_pnl:.2f}"
        )

        # Step 4: stop check (minimal-risk modes keep trading through limits)
        minimal = params.degraded_risk_mode or params.loss_seeking_enabled
        if not minimal and self.risk_gate.should_stop_trading(agent_state, snapshot, params):
            logger.warning("Risk limits breached - no trading this cycle")
            return CycleResult(success=True, status="stopped", no_trade_reason="risk_limits")

        # Step 5: decide
        instruction = self.orchestrator.decide(snapshot, params=params, agent_state=agent_state)
        if instruction is None or instruction.is_hold:
            return CycleResult(
                success=True, status="no_trade", instruction=instruction,
                no_trade_reason="hold" if instruction is not None else "no_signal",
            )
        self.metrics.record_decision(instruction.strategy)

        # Step 6: validate
        risk_result = self.risk_gate.validate(instruction, snapshot, agent_state, params=params, now=now)
        if not risk_result.approved:
            self.metrics.record_rejection(risk_result.reason or "unknown")
            return CycleResult(
                success=True, status="rejected", instruction=instruction,
                risk_result=risk_result, no_trade_reason=risk_result.reason,
            )

        # Steps 7-8: execute and record
        execution = self._execute(instruction, now)
        return CycleResult(
            success=execution.success,
            status="executed" if execution.success else "execution_failed",
            instruction=instruction,
            risk_result=risk_result,
            execution=execution,
            error=execution.error,
        )

    def _execute(self, instruction: TradingInstruction, now: datetime,
                 manual: bool = False) -> ExecutionResult:
        try:
            result = self.venue.execute(instruction)
        except ExecutionFailed:
            self.metrics.record_execution(False)
            raise
        except Exception as e:
            self.metrics.record_execution(False)
            raise ExecutionFailed(str(e), e) from e

        self.metrics.record_execution(result.success)
        if result.success:
            self.risk_gate.record_trade(instruction.amount, at=now)
        self.state_store.record_execution(instruction, result, now=now)
        if self.trade_log is not None:
            self.trade_log.record(instruction, result, executed_at=now, manual=manual)
        return result

    def process_external_instruction(self, instruction: TradingInstruction,
                                     now: Optional[datetime] = None) -> ExecutionResult:
        """
        Validate and execute a manually submitted instruction.

        Raises:
            TradeRejected: the risk gate refused the instruction
            CriticalDataUnavailable: snapshot could not be fetched
            ExecutionFailed: venue raised during execution
        """
        if not instruction.strategy:
            instruction.strategy = "manual"
        with self._cycle_lock:
            return self._process_external_locked(instruction, now or datetime.now(timezone.utc))

    def _process_external_locked(self, instruction: TradingInstruction, now: datetime) -> ExecutionResult:
        params = self.param_store.get()
        agent_state = self.state_store.load_agent_state()

        snapshot = self.venue.fetch_snapshot(
            extra_instruments=[i for i in (instruction.source, instruction.destination) if i]
        )
        self.last_snapshot = snapshot

        risk_result = self.risk_gate.validate(instruction, snapshot, agent_state, params=params, now=now)
        if not risk_result.approved:
            self.metrics.record_rejection(risk_result.reason or "unknown")
            raise TradeRejected(risk_result.reason or "rejected", risk_result.violated_checks)

        logger.info(
            f"Manual instruction approved: {instruction.action} {instruction.amount} "
            f"{instruction.source} -> {instruction.destination}"
        )
        return self._execute(instruction, now, manual=True)

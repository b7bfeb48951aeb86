"""
cascade-trader Core: Risk Gate

Hard limits every candidate instruction must pass before execution.
Checks run in a fixed order and the first failure wins; the gate never
raises, every fault becomes a structured rejection.

Forced-activity and adversarial modes run only the minimal solvency checks
(see RiskCheckMode).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from core.models import AgentState, MarketSnapshot, TradingInstruction
from core.params import ParameterStore, StrategyParameters
from core.trade_limits import TradeFrequencyWindow

logger = logging.getLogger(__name__)

# Stable rejection reasons (surfaced to operators and asserted in tests)
REASON_HOLD = "hold instruction has nothing to execute"
REASON_INACTIVE = "agent is not active"
REASON_DAILY_LOSS = "daily loss limit exceeded"
REASON_MIN_TRADE = "trade amount below minimum threshold"
REASON_POSITION_SIZE = "trade would exceed maximum position size"
REASON_BALANCE = "insufficient balance for trade"
REASON_FREQUENCY = "trade frequency limit exceeded"
REASON_DRAWDOWN = "maximum drawdown threshold reached"
REASON_NON_POSITIVE = "trade amount must be positive"


class RiskCheckMode(Enum):
    """Which check path an instruction goes through"""
    NORMAL = "normal"
    MINIMAL_ONLY = "minimal_only"


@dataclass
class RiskCheckResult:
    """Result of risk check"""
    approved: bool
    reason: Optional[str] = None
    violated_checks: List[str] = field(default_factory=list)
    mode: RiskCheckMode = RiskCheckMode.NORMAL
    trade_value_usd: float = 0.0


def resolve_mode(instruction: TradingInstruction, params: StrategyParameters) -> RiskCheckMode:
    """Decide once per instruction whether the full check list applies."""
    if instruction.bypass_risk:
        return RiskCheckMode.MINIMAL_ONLY
    if params.degraded_risk_mode or params.loss_seeking_enabled:
        return RiskCheckMode.MINIMAL_ONLY
    if params.advisory_enabled and params.advisory_objective == "maximize_loss":
        return RiskCheckMode.MINIMAL_ONLY
    return RiskCheckMode.NORMAL


class RiskGate:
    """
    Accept/reject gate for a single trading instruction.

    Owns the trade frequency window. record_trade() is never called from
    validate(); the cycle records a trade only after the venue confirms it.
    """

    def __init__(self, param_store: ParameterStore, window: Optional[TradeFrequencyWindow] = None):
        self.param_store = param_store
        self.window = window or TradeFrequencyWindow()
        logger.info("Initialized RiskGate")

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate(
        self,
        instruction: TradingInstruction,
        snapshot: MarketSnapshot,
        agent_state: AgentState,
        params: Optional[StrategyParameters] = None,
        now: Optional[datetime] = None,
    ) -> RiskCheckResult:
        """
        Run the ordered checks for one instruction.

        Args:
            instruction: Candidate instruction
            snapshot: Market snapshot of the current cycle
            agent_state: Agent state supplied by the state store
            params: Parameter snapshot of the current cycle (store read if omitted)
            now: Clock override for the frequency window

        Returns:
            RiskCheckResult (never raises)
        """
        try:
            params = params or self.param_store.get()

            if instruction.is_hold:
                return self._reject(instruction, REASON_HOLD, "hold")

            mode = resolve_mode(instruction, params)
            if mode is RiskCheckMode.MINIMAL_ONLY:
                return self._validate_minimal(instruction, snapshot)
            return self._validate_normal(instruction, snapshot, agent_state, params, now)

        except Exception as e:
            logger.error(f"Risk check failed unexpectedly: {e}", exc_info=True)
            return self._reject(instruction, f"risk check error: {e}", "error")

    def _validate_minimal(self, instruction: TradingInstruction,
                          snapshot: MarketSnapshot) -> RiskCheckResult:
        mode = RiskCheckMode.MINIMAL_ONLY
        logger.warning(
            "RISK_BYPASS %s %s amount=%s strategy=%s (minimal checks only)",
            instruction.source, instruction.action.upper(), instruction.amount, instruction.strategy,
        )

        if not instruction.amount or instruction.amount <= 0:
            return self._reject(instruction, REASON_NON_POSITIVE, "positive_amount", mode=mode)

        holding = snapshot.holding(instruction.source) if instruction.source else None
        if holding is None or holding.amount <= 0:
            return self._reject(
                instruction, REASON_BALANCE, "source_balance", mode=mode,
                available=holding.amount if holding else 0.0,
            )

        return RiskCheckResult(approved=True, mode=mode)

    def _validate_normal(
        self,
        instruction: TradingInstruction,
        snapshot: MarketSnapshot,
        agent_state: AgentState,
        params: StrategyParameters,
        now: Optional[datetime],
    ) -> RiskCheckResult:
        # 1. Agent active
        if not agent_state.is_active:
            return self._reject(instruction, REASON_INACTIVE, "agent_active")

        # 2. Daily loss
        if self._daily_loss_exceeded(agent_state, params):
            return self._reject(
                instruction, REASON_DAILY_LOSS, "daily_loss",
                daily_pnl_pct=agent_state.daily_pnl_pct, limit=params.max_daily_loss,
            )

        # 3. Minimum trade value
        trade_value = self.trade_value_usd(instruction, snapshot, params)
        if trade_value < params.min_trade_amount:
            return self._reject(
                instruction, REASON_MIN_TRADE, "min_trade",
                trade_value=round(trade_value, 2), min_trade=params.min_trade_amount,
            )

        # 4. Post-trade position size
        position_instrument = instruction.destination if instruction.action == "buy" else instruction.source
        current_value = snapshot.value_of(position_instrument) if position_instrument else 0.0
        if instruction.action == "buy":
            new_position = current_value + trade_value
        else:
            new_position = current_value - trade_value
        max_position = snapshot.total_value * params.max_position_size
        if new_position > max_position:
            return self._reject(
                instruction, REASON_POSITION_SIZE, "position_size",
                new_position=round(new_position, 2), max_position=round(max_position, 2),
            )

        # 5. Source balance with safety buffer
        available = snapshot.balance_of(instruction.source) if instruction.source else 0.0
        required = instruction.amount * (1 + params.balance_buffer)
        if snapshot.holding(instruction.source) is None or available < required:
            return self._reject(
                instruction, REASON_BALANCE, "balance",
                required=required, available=available,
            )

        # 6. Trailing-hour frequency
        timing = self.window.check(params.max_trades_per_hour, now=now)
        if not timing.approved:
            return self._reject(
                instruction, REASON_FREQUENCY, "trade_frequency",
                recent_trades=timing.trades_in_window, limit=timing.limit,
            )

        # 7. Drawdown from the reference value
        drawdown = self.current_drawdown(snapshot, params)
        if drawdown > params.max_drawdown:
            return self._reject(
                instruction, REASON_DRAWDOWN, "max_drawdown",
                drawdown=round(drawdown, 4), limit=params.max_drawdown,
            )

        logger.info(
            f"Trade validation passed: {instruction.action} {instruction.amount:.6f} "
            f"{params.symbol(instruction.source)} -> {params.symbol(instruction.destination)} "
            f"(value=${trade_value:.2f}, confidence={instruction.confidence:.2f})"
        )
        return RiskCheckResult(approved=True, trade_value_usd=trade_value)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _reject(self, instruction: TradingInstruction, reason: str, check: str,
                mode: RiskCheckMode = RiskCheckMode.NORMAL, **details) -> RiskCheckResult:
        """Emit structured risk rejection log message and build the result."""
        logger.warning(
            "RISK_REJECT %s %s reason=%s check=%s details=%s",
            instruction.source,
            (instruction.action or "").upper(),
            reason,
            check,
            details or None,
        )
        return RiskCheckResult(approved=False, reason=reason, violated_checks=[check], mode=mode)

    @staticmethod
    def _daily_loss_exceeded(agent_state: AgentState, params: StrategyParameters) -> bool:
        # daily_pnl_pct is in percentage points
        if agent_state.daily_pnl_pct >= 0:
            return False
        return abs(agent_state.daily_pnl_pct) / 100 > params.max_daily_loss

    @staticmethod
    def trade_value_usd(instruction: TradingInstruction, snapshot: MarketSnapshot,
                        params: StrategyParameters) -> float:
        """USD value of the instruction's source amount."""
        price = snapshot.price_of(instruction.source) if instruction.source else None
        if price is None:
            # The stable instrument is valued at par when unpriced
            if instruction.source == params.stable_instrument:
                price = 1.0
            else:
                return 0.0
        return instruction.amount * price

    @staticmethod
    def current_drawdown(snapshot: MarketSnapshot, params: StrategyParameters) -> float:
        reference = params.reference_portfolio_value
        if reference <= 0:
            return 0.0
        return (reference - snapshot.total_value) / reference

    # ------------------------------------------------------------------ #
    # Trade window and status
    # ------------------------------------------------------------------ #

    def record_trade(self, amount: float, at: Optional[datetime] = None) -> None:
        """Append an executed trade to the frequency window."""
        self.window.record(amount, at=at)
        logger.debug(f"Trade recorded for frequency tracking (recent={len(self.window)})")

    def reset_trade_window(self) -> None:
        self.window.reset()

    def recent_trade_count(self, now: Optional[datetime] = None) -> int:
        return self.window.count(now)

    def should_stop_trading(self, agent_state: AgentState, snapshot: MarketSnapshot,
                            params: Optional[StrategyParameters] = None) -> bool:
        """True when the agent is paused or a loss/drawdown limit is breached."""
        params = params or self.param_store.get()
        return (
            not agent_state.is_active
            or self._daily_loss_exceeded(agent_state, params)
            or self.current_drawdown(snapshot, params) > params.max_drawdown
        )

    def risk_metrics(self, agent_state: AgentState, snapshot: MarketSnapshot,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
        params = self.param_store.get()
        return {
            "daily_pnl_pct": agent_state.daily_pnl_pct,
            "total_pnl": agent_state.total_pnl,
            "current_value": snapshot.total_value,
            "drawdown": round(self.current_drawdown(snapshot, params), 6),
            "recent_trades_count": self.recent_trade_count(now),
            "is_active": agent_state.is_active,
            "risk_level": agent_state.risk_level,
            "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        }

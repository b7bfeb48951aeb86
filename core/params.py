"""
cascade-trader Core: Parameter Store

Single mutable configuration record for strategies, risk limits and mode
flags. Readers always receive a deep copy taken under the lock, so a cycle
never observes a partially applied update from the control server.
"""

import copy
import threading
from dataclasses import dataclass, field, fields, replace, asdict
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# Common EVM token addresses
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
WBTC = "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
USDT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

DEFAULT_SYMBOLS = {USDC: "USDC", WETH: "WETH", WBTC: "WBTC", DAI: "DAI", USDT: "USDT"}

ALLOCATION_EPSILON = 1e-6


class ParameterUpdateError(ValueError):
    """Raised when a partial update names an unknown field or has a wrong type."""


@dataclass(frozen=True)
class StrategyParameters:
    """Configuration snapshot handed to evaluators and the risk gate"""

    # Allocations
    stable_instrument: str = USDC
    target_allocations: Dict[str, float] = field(
        default_factory=lambda: {USDC: 0.4, WETH: 0.35, WBTC: 0.25}
    )
    instrument_symbols: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SYMBOLS))
    watchlist: List[str] = field(default_factory=lambda: [WETH, WBTC])
    primary_instrument: str = WETH
    secondary_instrument: str = WBTC

    # Rebalancer
    rebalance_threshold: float = 0.05
    rebalance_confidence: float = 0.8

    # Mean reversion
    mean_reversion_lookback: int = 20
    mean_reversion_threshold: float = 0.02
    mean_reversion_buy_fraction: float = 0.2
    mean_reversion_sell_fraction: float = 0.3

    # Trend following
    trend_short_window: int = 10
    trend_long_window: int = 50
    trend_buy_fraction: float = 0.25
    trend_sell_fraction: float = 0.4

    # Breakout
    breakout_lookback: int = 20
    breakout_volatility_threshold: float = 0.02
    breakout_confirmation_factor: float = 0.005
    breakout_range_window: int = 20
    breakout_buy_fraction: float = 0.3
    breakout_sell_fraction: float = 0.5

    # Momentum fallback
    momentum_stable_allocation_trigger: float = 0.5
    momentum_buy_fraction: float = 0.1

    # Risk limits
    min_trade_amount: float = 10.0
    max_position_size: float = 0.5
    max_daily_loss: float = 0.05
    max_trades_per_hour: int = 60
    max_drawdown: float = 0.30
    balance_buffer: float = 0.01
    reference_portfolio_value: float = 10_000.0

    # Mode flags
    degraded_risk_mode: bool = False
    loss_seeking_enabled: bool = False
    advisory_enabled: bool = False
    guaranteed_fallback_enabled: bool = True
    discovery_enabled: bool = True

    # Loss-seeking mode
    loss_seeking_target_allocation: float = 0.9
    loss_seeking_min_market_cap_usd: float = 100_000_000.0
    loss_seeking_selection_method: str = "most_negative_change"
    loss_seeking_stable_fraction: float = 0.9

    # Advisory mode
    advisory_objective: str = "maximize_profit"

    # Guaranteed rotation
    rotation_notionals: List[float] = field(default_factory=lambda: [10.0, 18.0, 26.0, 34.0, 42.0])

    # Guaranteed discovery
    discovery_trade_amount_usd: float = 25.0
    discovery_min_market_cap_usd: float = 5_000_000.0
    discovery_min_volume_usd: float = 1_000_000.0
    discovery_selection_method: str = "top_volume"
    discovery_excluded_instruments: List[str] = field(default_factory=list)

    def symbol(self, instrument: Optional[str]) -> str:
        """Human-readable symbol for log and reason strings."""
        if not instrument:
            return "?"
        known = self.instrument_symbols.get(instrument)
        if known:
            return known
        return instrument if len(instrument) <= 10 else instrument[:8] + "..."

    def allocations_valid(self, epsilon: float = ALLOCATION_EPSILON) -> bool:
        """Target allocations sum to 1 within epsilon."""
        return abs(sum(self.target_allocations.values()) - 1.0) <= epsilon

    def risk_limits(self) -> Dict[str, Any]:
        """Risk limits as a plain dict (used by the advisory context)."""
        return {
            "min_trade_amount": self.min_trade_amount,
            "max_position_size": self.max_position_size,
            "max_daily_loss": self.max_daily_loss,
            "max_trades_per_hour": self.max_trades_per_hour,
            "max_drawdown": self.max_drawdown,
            "balance_buffer": self.balance_buffer,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_policy(cls, policy: Dict[str, Any]) -> "StrategyParameters":
        """
        Map the grouped policy.yaml tree onto a parameter record.

        Missing sections fall back to dataclass defaults.
        """
        policy = policy or {}
        values: Dict[str, Any] = {}

        def take(section: str, mapping: Dict[str, str]) -> None:
            cfg = policy.get(section) or {}
            for key, attr in mapping.items():
                if key in cfg and cfg[key] is not None:
                    values[attr] = cfg[key]

        take("allocations", {
            "stable_instrument": "stable_instrument",
            "targets": "target_allocations",
            "symbols": "instrument_symbols",
            "watchlist": "watchlist",
            "primary_instrument": "primary_instrument",
            "secondary_instrument": "secondary_instrument",
        })
        take("rebalance", {
            "threshold": "rebalance_threshold",
            "confidence": "rebalance_confidence",
        })
        take("mean_reversion", {
            "lookback": "mean_reversion_lookback",
            "threshold": "mean_reversion_threshold",
            "buy_fraction": "mean_reversion_buy_fraction",
            "sell_fraction": "mean_reversion_sell_fraction",
        })
        take("trend_following", {
            "short_window": "trend_short_window",
            "long_window": "trend_long_window",
            "buy_fraction": "trend_buy_fraction",
            "sell_fraction": "trend_sell_fraction",
        })
        take("breakout", {
            "lookback": "breakout_lookback",
            "volatility_threshold": "breakout_volatility_threshold",
            "confirmation_factor": "breakout_confirmation_factor",
            "range_window": "breakout_range_window",
            "buy_fraction": "breakout_buy_fraction",
            "sell_fraction": "breakout_sell_fraction",
        })
        take("momentum", {
            "stable_allocation_trigger": "momentum_stable_allocation_trigger",
            "buy_fraction": "momentum_buy_fraction",
        })
        take("risk", {
            "min_trade_amount": "min_trade_amount",
            "max_position_size": "max_position_size",
            "max_daily_loss": "max_daily_loss",
            "max_trades_per_hour": "max_trades_per_hour",
            "max_drawdown": "max_drawdown",
            "balance_buffer": "balance_buffer",
            "reference_portfolio_value": "reference_portfolio_value",
        })
        take("modes", {
            "degraded_risk": "degraded_risk_mode",
            "loss_seeking": "loss_seeking_enabled",
            "advisory": "advisory_enabled",
            "guaranteed_fallback": "guaranteed_fallback_enabled",
            "discovery": "discovery_enabled",
        })
        take("loss_seeking", {
            "target_allocation": "loss_seeking_target_allocation",
            "min_market_cap_usd": "loss_seeking_min_market_cap_usd",
            "selection_method": "loss_seeking_selection_method",
            "stable_fraction": "loss_seeking_stable_fraction",
        })
        take("advisory", {"objective": "advisory_objective"})
        take("rotation", {"notionals": "rotation_notionals"})
        take("discovery", {
            "trade_amount_usd": "discovery_trade_amount_usd",
            "min_market_cap_usd": "discovery_min_market_cap_usd",
            "min_volume_usd": "discovery_min_volume_usd",
            "selection_method": "discovery_selection_method",
            "excluded_instruments": "discovery_excluded_instruments",
        })

        base = cls()
        if "instrument_symbols" in values:
            merged = dict(base.instrument_symbols)
            merged.update(values["instrument_symbols"])
            values["instrument_symbols"] = merged
        return _coerce_update(base, values)


def _coerce_value(name: str, current: Any, value: Any) -> Any:
    """Type-check a single field against the current value's type."""
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise ParameterUpdateError(f"{name} must be a boolean, got {type(value).__name__}")
        return value
    if isinstance(current, int):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParameterUpdateError(f"{name} must be an integer, got {type(value).__name__}")
        if isinstance(value, float) and not value.is_integer():
            raise ParameterUpdateError(f"{name} must be an integer, got {value}")
        return int(value)
    if isinstance(current, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParameterUpdateError(f"{name} must be a number, got {type(value).__name__}")
        return float(value)
    if isinstance(current, str):
        if not isinstance(value, str):
            raise ParameterUpdateError(f"{name} must be a string, got {type(value).__name__}")
        return value
    if isinstance(current, dict):
        if not isinstance(value, dict):
            raise ParameterUpdateError(f"{name} must be a mapping, got {type(value).__name__}")
        if name == "target_allocations":
            try:
                return {str(k): float(v) for k, v in value.items()}
            except (TypeError, ValueError) as exc:
                raise ParameterUpdateError(f"{name} values must be numbers: {exc}") from exc
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(current, list):
        if not isinstance(value, (list, tuple)):
            raise ParameterUpdateError(f"{name} must be a list, got {type(value).__name__}")
        if name == "rotation_notionals":
            try:
                notionals = [float(v) for v in value]
            except (TypeError, ValueError) as exc:
                raise ParameterUpdateError(f"{name} values must be numbers: {exc}") from exc
            if not notionals:
                raise ParameterUpdateError(f"{name} must not be empty")
            return notionals
        return [str(v) for v in value]
    return value


def _coerce_update(base: StrategyParameters, updates: Dict[str, Any]) -> StrategyParameters:
    known = {f.name for f in fields(StrategyParameters)}
    unknown = sorted(set(updates) - known)
    if unknown:
        raise ParameterUpdateError(f"Unknown parameter(s): {', '.join(unknown)}")

    coerced = {
        name: _coerce_value(name, getattr(base, name), value)
        for name, value in updates.items()
    }
    return replace(base, **coerced)


class ParameterStore:
    """
    Thread-safe holder of the current StrategyParameters.

    get() returns a deep copy; update() applies a partial update atomically.
    No range validation is done here: out-of-range values are accepted and
    simply change behavior.
    """

    def __init__(self, params: Optional[StrategyParameters] = None):
        self._lock = threading.Lock()
        self._params = params or StrategyParameters()
        self._version = 0
        if not self._params.allocations_valid():
            logger.warning(
                "Target allocations sum to %.4f (expected 1.0)",
                sum(self._params.target_allocations.values()),
            )
        logger.info("Initialized ParameterStore (stable=%s)", self._params.symbol(self._params.stable_instrument))

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> StrategyParameters:
        """Atomic snapshot of the current parameters."""
        with self._lock:
            return copy.deepcopy(self._params)

    def update(self, partial: Dict[str, Any]) -> StrategyParameters:
        """
        Apply a partial update and return the new snapshot.

        Raises:
            ParameterUpdateError: unknown field or wrong type (nothing applied)
        """
        if not isinstance(partial, dict):
            raise ParameterUpdateError("Parameter update must be a mapping")

        with self._lock:
            updated = _coerce_update(self._params, copy.deepcopy(partial))
            self._params = updated
            self._version += 1
            snapshot = copy.deepcopy(updated)

        logger.info("Strategy parameters updated (version=%d): %s", self._version, sorted(partial))
        if "target_allocations" in partial and not snapshot.allocations_valid():
            logger.warning(
                "Target allocations now sum to %.4f (expected 1.0)",
                sum(snapshot.target_allocations.values()),
            )
        return snapshot

    def replace_all(self, params: StrategyParameters) -> None:
        """Swap in a full parameter record (config reload)."""
        with self._lock:
            self._params = copy.deepcopy(params)
            self._version += 1
        logger.info("Strategy parameters replaced (version=%d)", self._version)

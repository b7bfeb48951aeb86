"""
Configuration Validation Module

Validates app.yaml and policy.yaml against Pydantic schemas.
Ensures config files are correct before system startup.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError

logger = logging.getLogger(__name__)

SELECTION_METHODS = ("most_negative_change", "highest_volatility", "top_volume")
OBJECTIVES = ("maximize_profit", "maximize_loss")
PROVIDERS = ("openai", "anthropic", "mock")


# ===== Policy Schema =====
class AllocationsConfig(BaseModel):
    """Target allocations and instrument naming"""
    stable_instrument: str = Field(min_length=1, description="Stable instrument address")
    targets: Dict[str, float] = Field(description="Target weight per instrument")
    symbols: Dict[str, str] = Field(default_factory=dict, description="Display symbol per instrument")
    watchlist: List[str] = Field(default_factory=list, description="Instruments scanned by signal evaluators")
    primary_instrument: str = Field(min_length=1)
    secondary_instrument: str = Field(min_length=1)

    @field_validator("targets")
    @classmethod
    def weights_in_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v:
            raise ValueError("at least one target allocation is required")
        for instrument, weight in v.items():
            if weight < 0 or weight > 1:
                raise ValueError(f"weight for {instrument} must be within [0, 1]")
        return v


class RebalanceConfig(BaseModel):
    threshold: float = Field(gt=0, lt=1, description="Allocation drift that triggers a rebalance")
    confidence: float = Field(ge=0, le=1)


class MeanReversionConfig(BaseModel):
    lookback: int = Field(gt=0)
    threshold: float = Field(gt=0, lt=1, description="Deviation from SMA that triggers a signal")
    buy_fraction: float = Field(gt=0, le=1)
    sell_fraction: float = Field(gt=0, le=1)


class TrendFollowingConfig(BaseModel):
    short_window: int = Field(gt=0)
    long_window: int = Field(gt=0)
    buy_fraction: float = Field(gt=0, le=1)
    sell_fraction: float = Field(gt=0, le=1)


class BreakoutConfig(BaseModel):
    lookback: int = Field(gt=1)
    volatility_threshold: float = Field(gt=0)
    confirmation_factor: float = Field(ge=0)
    range_window: int = Field(gt=0)
    buy_fraction: float = Field(gt=0, le=1)
    sell_fraction: float = Field(gt=0, le=1)


class MomentumConfig(BaseModel):
    stable_allocation_trigger: float = Field(ge=0, le=1)
    buy_fraction: float = Field(gt=0, le=1)


class RiskConfig(BaseModel):
    """Risk gate limits"""
    min_trade_amount: float = Field(ge=0, description="Minimum trade value USD")
    max_position_size: float = Field(gt=0, le=1, description="Max post-trade position as fraction of portfolio")
    max_daily_loss: float = Field(gt=0, le=1, description="Daily loss limit (fraction)")
    max_trades_per_hour: int = Field(gt=0, description="Trailing-hour trade cap")
    max_drawdown: float = Field(gt=0, le=1, description="Drawdown from reference value (fraction)")
    balance_buffer: float = Field(ge=0, lt=1, description="Safety buffer over the traded amount")
    reference_portfolio_value: float = Field(gt=0, description="Starting portfolio value USD")


class ModesConfig(BaseModel):
    degraded_risk: bool = False
    loss_seeking: bool = False
    advisory: bool = False
    guaranteed_fallback: bool = True
    discovery: bool = True


class LossSeekingConfig(BaseModel):
    target_allocation: float = Field(gt=0, le=1)
    min_market_cap_usd: float = Field(ge=0)
    selection_method: str
    stable_fraction: float = Field(gt=0, le=1)

    @field_validator("selection_method")
    @classmethod
    def known_method(cls, v: str) -> str:
        if v not in ("most_negative_change", "highest_volatility"):
            raise ValueError("selection_method must be most_negative_change or highest_volatility")
        return v


class AdvisoryPolicyConfig(BaseModel):
    objective: str = "maximize_profit"

    @field_validator("objective")
    @classmethod
    def known_objective(cls, v: str) -> str:
        if v not in OBJECTIVES:
            raise ValueError(f"objective must be one of {OBJECTIVES}")
        return v


class RotationConfig(BaseModel):
    notionals: List[float] = Field(min_length=1, description="USD notionals cycled by the rotation fallback")

    @field_validator("notionals")
    @classmethod
    def positive(cls, v: List[float]) -> List[float]:
        if any(n <= 0 for n in v):
            raise ValueError("rotation notionals must be positive")
        return v


class DiscoveryPolicyConfig(BaseModel):
    trade_amount_usd: float = Field(gt=0)
    min_market_cap_usd: float = Field(ge=0)
    min_volume_usd: float = Field(ge=0)
    selection_method: str = "top_volume"
    excluded_instruments: List[str] = Field(default_factory=list)

    @field_validator("selection_method")
    @classmethod
    def known_method(cls, v: str) -> str:
        if v not in SELECTION_METHODS:
            raise ValueError(f"selection_method must be one of {SELECTION_METHODS}")
        return v


class PolicySchema(BaseModel):
    """Complete policy configuration schema"""
    allocations: AllocationsConfig
    rebalance: RebalanceConfig
    mean_reversion: MeanReversionConfig
    trend_following: TrendFollowingConfig
    breakout: BreakoutConfig
    momentum: MomentumConfig
    risk: RiskConfig
    modes: ModesConfig
    loss_seeking: LossSeekingConfig
    advisory: AdvisoryPolicyConfig = Field(default_factory=AdvisoryPolicyConfig)
    rotation: RotationConfig
    discovery: DiscoveryPolicyConfig


# ===== App Schema =====
class LoopConfig(BaseModel):
    interval_seconds: float = Field(gt=0)
    error_backoff_seconds: float = Field(default=30, ge=0)


class PeakHours(BaseModel):
    start: int = Field(ge=0, le=23)
    end: int = Field(ge=0, le=24)


class TimePolicyConfig(BaseModel):
    peak_hours: List[PeakHours] = Field(default_factory=list)
    peak_multiplier: float = Field(default=1.0, gt=0)
    off_peak_multiplier: float = Field(default=1.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "logs/cascade-trader.log"

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return v


class StateConfig(BaseModel):
    state_file: str = "data/.agent_state.json"
    history_db: str = "data/market_data.db"
    trade_log_dir: str = "data/trades"
    history_retention_days: int = Field(default=30, gt=0)


class VenueConfig(BaseModel):
    base_url: str = Field(min_length=1)
    timeout_seconds: float = Field(default=30, gt=0)
    min_request_interval_seconds: float = Field(default=1.0, ge=0)
    max_retries: int = Field(default=3, gt=0)
    chain: str = "evm"
    specific_chain: str = "eth"


class DiscoveryAppConfig(BaseModel):
    base_url: str = "https://api.coingecko.com/api/v3"
    cache_ttl_seconds: float = Field(default=300, ge=0)
    page_size: int = Field(default=100, gt=0, le=250)


class AdvisoryAppConfig(BaseModel):
    provider: str = "openai"
    model: Optional[str] = None
    timeout_seconds: float = Field(default=10, gt=0)

    @field_validator("provider")
    @classmethod
    def known_provider(cls, v: str) -> str:
        if v.lower() not in PROVIDERS:
            raise ValueError(f"provider must be one of {PROVIDERS}")
        return v


class StrategiesConfig(BaseModel):
    disabled: List[str] = Field(default_factory=list)


class ControlConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=8090, ge=0, le=65535)


class MonitoringConfig(BaseModel):
    metrics_enabled: bool = False
    metrics_port: int = Field(default=9100, gt=0, le=65535)


class AppSchema(BaseModel):
    """Complete app configuration schema"""
    loop: LoopConfig
    time_policy: TimePolicyConfig = Field(default_factory=TimePolicyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    venue: VenueConfig
    discovery: DiscoveryAppConfig = Field(default_factory=DiscoveryAppConfig)
    advisory: AdvisoryAppConfig = Field(default_factory=AdvisoryAppConfig)
    strategies: StrategiesConfig = Field(default_factory=StrategiesConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"
    problem = getattr(error, "problem", str(error))
    return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def _validate_file(config_dir: Path, filename: str, schema) -> List[str]:
    errors = []
    try:
        config = load_yaml_file(config_dir / filename)
        schema(**config)
        logger.info(f"✅ {filename} validation passed")
    except FileNotFoundError as e:
        errors.append(f"{filename}: {e}")
    except yaml.YAMLError as e:
        errors.append(f"{filename}: Invalid YAML - {e}")
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            errors.append(f"{filename}: {field}: {error['msg']}")
    except TypeError as e:
        errors.append(f"{filename}: top level must be a mapping ({e})")
    return errors


def validate_policy(config_dir: Path) -> List[str]:
    """Validate policy.yaml against schema."""
    return _validate_file(config_dir, "policy.yaml", PolicySchema)


def validate_app(config_dir: Path) -> List[str]:
    """Validate app.yaml against schema."""
    return _validate_file(config_dir, "app.yaml", AppSchema)


def validate_sanity_checks(config_dir: Path) -> List[str]:
    """
    Perform logical consistency checks on policy.yaml.

    Detects:
    - Target allocations that do not sum to 1
    - Stable instrument missing from the targets
    - Trend windows in the wrong order
    """
    errors: List[str] = []
    policy = load_yaml_file(config_dir / "policy.yaml")

    allocations = policy.get("allocations") or {}
    targets = allocations.get("targets") or {}
    total = sum(float(w) for w in targets.values())
    if abs(total - 1.0) > 1e-6:
        errors.append(f"policy.yaml: allocations.targets must sum to 1.0 (got {total:.6f})")

    stable = allocations.get("stable_instrument")
    if stable and stable not in targets:
        errors.append("policy.yaml: allocations.stable_instrument must have a target allocation")

    trend = policy.get("trend_following") or {}
    if trend.get("short_window", 0) >= trend.get("long_window", 0):
        errors.append("policy.yaml: trend_following.short_window must be below long_window")

    return errors


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Performs:
    1. Schema validation (Pydantic type checks)
    2. Sanity checks (logical consistency)

    Returns:
        List of all error messages (empty if all valid)
    """
    config_path = Path(config_dir)

    all_errors = []
    all_errors.extend(validate_app(config_path))
    all_errors.extend(validate_policy(config_path))

    # Sanity checks (only if schema validation passed)
    if not all_errors:
        all_errors.extend(validate_sanity_checks(config_path))

    if not all_errors:
        logger.info("✅ All config files validated successfully")
    else:
        logger.error(f"❌ {len(all_errors)} validation error(s) found")

    return all_errors


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"

    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ All configuration files are valid!\n")
        sys.exit(0)

"""
cascade-trader Runner: Main Loop

Drives the trading cycle on a timer.

Flow per cycle (see core/trading_cycle.py):
1. Fetch market snapshot from the venue
2. Update agent state (daily/total PnL)
3. Decide (strategy orchestrator)
4. Validate (risk gate)
5. Execute and record
"""

import os
import time
import signal
import yaml
from typing import Any, Dict, Optional
from pathlib import Path
import logging

from ai.advisor import AdvisoryService
from ai.model_client import create_model_client
from analytics.trade_log import TradeLog
from core.params import ParameterStore, StrategyParameters
from core.risk import RiskGate
from core.trading_cycle import CycleResult, TradingCyclePipeline
from infra.control_server import ControlServer
from infra.history_store import SqliteHistoryStore
from infra.metrics import MetricsRecorder
from infra.state_store import StateStore
from infra.token_discovery import CoinGeckoDiscovery
from infra.venue_client import VenueClient
from runner.time_policy import TimePolicy
from strategy.discovery import DiscoveryFallback
from strategy.loss_seeking import LossSeekingEvaluator
from strategy.orchestrator import Orchestrator
from strategy.registry import StrategyRegistry
from strategy.rotation import RotationFallback

logger = logging.getLogger(__name__)

API_KEY_ENV = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}


class TradingLoop:
    """
    Main trading loop orchestrator.

    Responsibilities:
    - Load and validate config
    - Wire collaborators
    - Run periodic cycles
    - Handle shutdown signals
    """

    def __init__(self, config_dir: str = "config", install_signal_handlers: bool = True):
        self.config_dir = Path(config_dir)
        from tools.config_validator import validate_all_configs
        validation_errors = validate_all_configs(config_dir)
        if validation_errors:
            logger.error("=" * 80)
            logger.error("CONFIGURATION VALIDATION FAILED")
            logger.error("=" * 80)
            for idx, error in enumerate(validation_errors, start=1):
                logger.error(f"{idx:>2}. {error}")
            logger.error("=" * 80)
            raise ValueError(f"Invalid configuration: {len(validation_errors)} error(s) found")

        # Load configs
        self.app_config = self._load_yaml("app.yaml")
        self.policy_config = self._load_yaml("policy.yaml")

        loop_cfg = self.app_config.get("loop") or {}
        self.loop_interval_seconds = float(loop_cfg.get("interval_seconds", 300))
        self.error_backoff_seconds = float(loop_cfg.get("error_backoff_seconds", 30))
        self.time_policy = TimePolicy.from_config(self.app_config.get("time_policy"))

        # Logging setup
        log_cfg = self.app_config.get("logging", {}) or {}
        log_file = log_cfg.get("file", "logs/cascade-trader.log")
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, log_cfg.get("level", "INFO").upper()),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
        )
        logger.info("Starting cascade-trader")

        # Parameters
        self.param_store = ParameterStore(StrategyParameters.from_policy(self.policy_config))
        params = self.param_store.get()

        # Persistence
        state_cfg = self.app_config.get("state") or {}
        self.state_store = StateStore(state_cfg.get("state_file"))
        self.history = SqliteHistoryStore(state_cfg.get("history_db", "data/market_data.db"))
        self.history_retention_days = int(state_cfg.get("history_retention_days", 30))
        self.trade_log = TradeLog(state_cfg.get("trade_log_dir", "data/trades"))

        # Venue and discovery
        venue_cfg = self.app_config.get("venue") or {}
        self.venue = VenueClient(
            base_url=venue_cfg.get("base_url"),
            timeout=float(venue_cfg.get("timeout_seconds", 30)),
            min_request_interval=float(venue_cfg.get("min_request_interval_seconds", 1.0)),
            max_retries=int(venue_cfg.get("max_retries", 3)),
            chain=venue_cfg.get("chain", "evm"),
            specific_chain=venue_cfg.get("specific_chain", "eth"),
        )
        if not self.venue.api_key:
            logger.warning("VENUE_API_KEY not set - venue requests will be rejected")

        discovery_cfg = self.app_config.get("discovery") or {}
        self.discoverer = CoinGeckoDiscovery(
            base_url=discovery_cfg.get("base_url", "https://api.coingecko.com/api/v3"),
            cache_ttl=float(discovery_cfg.get("cache_ttl_seconds", 300)),
            page_size=int(discovery_cfg.get("page_size", 100)),
            excluded=params.discovery_excluded_instruments,
        )

        # Strategies
        strategies_cfg = self.app_config.get("strategies") or {}
        self.orchestrator = Orchestrator(
            param_store=self.param_store,
            history=self.history,
            registry=StrategyRegistry(disabled=strategies_cfg.get("disabled")),
            rotation=RotationFallback(),
            discovery=DiscoveryFallback(self.discoverer),
            loss_seeking=LossSeekingEvaluator(self.discoverer),
            advisor=self._build_advisor(),
        )

        # Risk, metrics, pipeline
        self.risk_gate = RiskGate(self.param_store)
        monitoring_cfg = self.app_config.get("monitoring") or {}
        self.metrics = MetricsRecorder(
            enabled=bool(monitoring_cfg.get("metrics_enabled", False)),
            port=int(monitoring_cfg.get("metrics_port", 9100)),
        )
        self.pipeline = TradingCyclePipeline(
            param_store=self.param_store,
            orchestrator=self.orchestrator,
            risk_gate=self.risk_gate,
            venue=self.venue,
            state_store=self.state_store,
            trade_log=self.trade_log,
            metrics=self.metrics,
        )

        control_cfg = self.app_config.get("control") or {}
        self.control_server: Optional[ControlServer] = None
        if control_cfg.get("enabled", True):
            self.control_server = ControlServer(
                port=int(control_cfg.get("port", 8090)),
                pipeline=self.pipeline,
                host=control_cfg.get("host", "127.0.0.1"),
            )

        # Shutdown flag
        self._running = True
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_stop)
            signal.signal(signal.SIGTERM, self._handle_stop)

        logger.info(
            f"Initialized TradingLoop (interval={self.loop_interval_seconds}s, "
            f"params_version={self.param_store.version})"
        )

    def _build_advisor(self) -> Optional[AdvisoryService]:
        advisory_cfg = self.app_config.get("advisory") or {}
        provider = str(advisory_cfg.get("provider", "openai")).lower()
        api_key = os.getenv(API_KEY_ENV.get(provider, ""), "") if provider in API_KEY_ENV else None
        if provider in API_KEY_ENV and not api_key:
            logger.info(f"{API_KEY_ENV[provider]} not set - advisory mode unavailable")
            return None
        try:
            client = create_model_client(provider, api_key=api_key, model=advisory_cfg.get("model"))
        except ValueError as e:
            logger.error(f"Advisory client not created: {e}")
            return None
        return AdvisoryService(client, timeout_s=float(advisory_cfg.get("timeout_seconds", 10)))

    def _handle_stop(self, *_):
        """Stop after the current cycle."""
        logger.warning("=" * 80)
        logger.warning("SHUTDOWN SIGNAL RECEIVED - stopping after current cycle")
        logger.warning("=" * 80)
        self._running = False

    def _load_yaml(self, filename: str) -> dict:
        """Load YAML config file"""
        path = self.config_dir / filename
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def start_services(self) -> None:
        self.metrics.start()
        if self.control_server is not None:
            self.control_server.start()
        if self.venue.health_check():
            logger.info("Venue connection healthy")
        else:
            logger.warning("Venue health check failed - cycles will retry")

    def stop_services(self) -> None:
        if self.control_server is not None:
            self.control_server.stop()

    def run_cycle(self) -> CycleResult:
        result = self.pipeline.run_cycle()
        self._log_cycle_summary(result)
        return result

    def _log_cycle_summary(self, result: CycleResult) -> None:
        summary: Dict[str, Any] = result.to_dict()
        instruction = result.instruction
        if instruction is not None:
            params = self.param_store.get()
            summary["pair"] = f"{params.symbol(instruction.source)}->{params.symbol(instruction.destination)}"
        logger.info(
            "CYCLE_SUMMARY status=%s strategy=%s pair=%s executed=%s reason=%s",
            summary["status"],
            instruction.strategy if instruction else None,
            summary.get("pair"),
            summary["executed"],
            summary["no_trade_reason"] or summary["error"],
        )

    def run_forever(self, interval_seconds: Optional[float] = None):
        """
        Run trading loop continuously with time-aware sleep.

        Args:
            interval_seconds: Base seconds between cycle starts
        """
        configured_interval = float(interval_seconds) if interval_seconds else self.loop_interval_seconds
        configured_interval = max(configured_interval, 1.0)

        logger.info(f"Starting continuous loop (interval={configured_interval}s)")
        self.start_services()

        try:
            while self._running:
                start = time.monotonic()
                result = self.run_cycle()
                elapsed = time.monotonic() - start

                if not result.success and result.status != "execution_failed":
                    sleep_for = self.error_backoff_seconds
                    logger.warning(f"Cycle error, backing off {sleep_for:.0f}s")
                else:
                    interval = self.time_policy.adjusted_interval(configured_interval)
                    sleep_for = max(1.0, interval - elapsed)
                    logger.info(
                        f"Cycle took {elapsed:.2f}s, sleeping {sleep_for:.2f}s "
                        f"({self.time_policy.describe()})"
                    )

                self._sleep(sleep_for)

                if self.pipeline.cycle_count % 100 == 0:
                    self.history.prune(self.history_retention_days)
        finally:
            self.stop_services()

        logger.info("Trading loop stopped cleanly.")

    def _sleep(self, seconds: float) -> None:
        # Sleep in short slices so shutdown signals take effect promptly
        deadline = time.monotonic() + seconds
        while self._running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(1.0, remaining))


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="cascade-trader Trading Agent")
    parser.add_argument("--once", action="store_true", help="Run once and exit")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycles (default: app.yaml)")
    parser.add_argument("--config-dir", default="config", help="Config directory")

    args = parser.parse_args()

    # Create loop (logging configured in __init__)
    loop = TradingLoop(config_dir=args.config_dir)

    if args.once:
        loop.run_cycle()
    else:
        loop.run_forever(interval_seconds=args.interval)


if __name__ == "__main__":
    main()

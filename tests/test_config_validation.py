"""
Tests for configuration validation.

Validates that config_validator accepts the shipped configs and reports
schema, YAML and consistency errors in the edited copies.
"""
import shutil
from pathlib import Path

import pytest
import yaml

from core.params import StrategyParameters, USDC, WETH
from tools.config_validator import (
    AppSchema,
    PolicySchema,
    validate_all_configs,
    validate_app,
    validate_policy,
)

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


@pytest.fixture
def config_dir(tmp_path):
    target = tmp_path / "config"
    shutil.copytree(REPO_CONFIG, target)
    return target


def _edit(config_dir, filename, mutate):
    path = config_dir / filename
    data = yaml.safe_load(path.read_text())
    mutate(data)
    path.write_text(yaml.safe_dump(data))


def test_shipped_configs_are_valid():
    assert validate_all_configs(str(REPO_CONFIG)) == []


def test_shipped_policy_matches_parameter_defaults():
    policy = yaml.safe_load((REPO_CONFIG / "policy.yaml").read_text())

    PolicySchema(**policy)
    assert StrategyParameters.from_policy(policy) == StrategyParameters()


class TestPolicyValidation:
    def test_weight_out_of_range(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["allocations"]["targets"].update({WETH: 1.5}))

        errors = validate_policy(config_dir)

        assert any("allocations -> targets" in e for e in errors)

    def test_missing_section(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d.pop("risk"))

        errors = validate_policy(config_dir)

        assert any(e.startswith("policy.yaml: risk") for e in errors)

    def test_unknown_selection_method(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["loss_seeking"].update({"selection_method": "top_volume"}))
        assert validate_policy(config_dir)

    def test_empty_rotation_notionals(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["rotation"].update({"notionals": []}))
        assert validate_policy(config_dir)

    def test_negative_min_trade(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["risk"].update({"min_trade_amount": -1}))
        assert any("risk -> min_trade_amount" in e for e in validate_policy(config_dir))


class TestAppValidation:
    def test_unknown_provider(self, config_dir):
        _edit(config_dir, "app.yaml", lambda d: d["advisory"].update({"provider": "oracle"}))
        assert any("advisory -> provider" in e for e in validate_app(config_dir))

    def test_bad_log_level(self, config_dir):
        _edit(config_dir, "app.yaml", lambda d: d["logging"].update({"level": "LOUD"}))
        assert validate_app(config_dir)

    def test_loop_interval_required(self, config_dir):
        _edit(config_dir, "app.yaml", lambda d: d.pop("loop"))
        assert any("loop" in e for e in validate_app(config_dir))

    def test_minimal_app_config(self):
        app = AppSchema(loop={"interval_seconds": 60}, venue={"base_url": "https://venue.test"})

        assert app.control.host == "127.0.0.1"
        assert app.monitoring.metrics_enabled is False


class TestFileErrors:
    def test_missing_file(self, config_dir):
        (config_dir / "app.yaml").unlink()

        errors = validate_all_configs(str(config_dir))

        assert any("Config file not found" in e for e in errors)

    def test_malformed_yaml_reports_line(self, config_dir):
        (config_dir / "policy.yaml").write_text("risk:\n  min_trade_amount: [10\n")

        errors = validate_policy(config_dir)

        assert len(errors) == 1
        assert "Invalid YAML" in errors[0]
        assert "line" in errors[0]

    def test_top_level_list(self, config_dir):
        (config_dir / "policy.yaml").write_text("- 1\n- 2\n")
        assert "top level must be a mapping" in validate_policy(config_dir)[0]


class TestSanityChecks:
    def test_targets_must_sum_to_one(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["allocations"]["targets"].update({USDC: 0.5}))

        errors = validate_all_configs(str(config_dir))

        assert any("must sum to 1.0" in e for e in errors)

    def test_stable_needs_target(self, config_dir):
        def mutate(data):
            targets = data["allocations"]["targets"]
            targets.pop(USDC)
            targets[WETH] = 0.75

        _edit(config_dir, "policy.yaml", mutate)

        errors = validate_all_configs(str(config_dir))

        assert any("stable_instrument must have a target" in e for e in errors)

    def test_trend_windows_order(self, config_dir):
        _edit(config_dir, "policy.yaml", lambda d: d["trend_following"].update({"short_window": 60}))
        assert any("short_window" in e for e in validate_all_configs(str(config_dir)))

    def test_sanity_skipped_when_schema_fails(self, config_dir):
        def mutate(data):
            data["allocations"]["targets"][USDC] = 0.9
            data["risk"]["max_daily_loss"] = "lots"

        _edit(config_dir, "policy.yaml", mutate)

        errors = validate_all_configs(str(config_dir))

        assert errors
        assert not any("must sum to 1.0" in e for e in errors)

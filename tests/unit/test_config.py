"""Tests for config loader."""

import pytest
from decimal import Decimal

from lending_ledger import RiskLevel, build_engine, default_config, load_config, ManualClock
from lending_ledger.config import _interpolate_env


VALID_YAML = """\
engine:
  collateral_timeout: 2.5
  debt_epsilon: "0.0001"
  liquidation_discount: "0.1"

pools:
  TRAVEL_MAIN:
    display_name: "Travel Savings Pool"
    total_liquidity: "100"
    borrow_apr: "8.5"
    collateral_ratio: "1.5"
    liquidation_threshold: "1.2"

strategies:
  CONSERVATIVE:
    apy: "5.5"
    risk_level: low
    minimum_deposit: "0.1"
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML)
    return path


def test_load_valid_config(config_file):
    cfg = load_config(config_file)
    assert cfg.engine.collateral_timeout == 2.5
    assert cfg.engine.debt_epsilon == "0.0001"
    assert cfg.engine.liquidation_discount == "0.1"
    assert list(cfg.pools) == ["TRAVEL_MAIN"]
    assert cfg.pools["TRAVEL_MAIN"].borrow_apr == "8.5"
    assert cfg.pools["TRAVEL_MAIN"].minimum_deposit == "0.1"
    assert cfg.strategies["CONSERVATIVE"].risk_level == "LOW"


def test_unquoted_amounts_are_kept_exact(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "pools:\n"
        "  P:\n"
        "    total_liquidity: 100\n"
        "    borrow_apr: 8.5\n"
    )
    cfg = load_config(path)
    engine = build_engine(cfg, clock=ManualClock(0))
    assert engine.pools.get("P").borrow_apr == Decimal("8.5")


def test_env_interpolation(monkeypatch):
    monkeypatch.setenv("POOL_LIQUIDITY", "250")
    result = _interpolate_env({"pools": {"P": {"total_liquidity": "${POOL_LIQUIDITY}"}}})
    assert result["pools"]["P"]["total_liquidity"] == "250"


def test_env_interpolation_missing_var():
    result = _interpolate_env(["${SURELY_NOT_SET_LENDING_VAR}", 3])
    assert result == ["", 3]


def test_env_interpolation_in_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TRAVEL_APR", "9.25")
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace('borrow_apr: "8.5"', 'borrow_apr: "${TRAVEL_APR}"'))
    cfg = load_config(path)
    assert cfg.pools["TRAVEL_MAIN"].borrow_apr == "9.25"


def test_missing_explicit_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_default_path_loads_project_config():
    cfg = load_config()
    assert "TRAVEL_MAIN" in cfg.pools


def test_no_pools_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("strategies: {}\n")
    with pytest.raises(ValueError, match="At least one pool"):
        load_config(path)


def test_invalid_pool_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace('liquidation_threshold: "1.2"', 'liquidation_threshold: "1.8"'))
    with pytest.raises(ValueError, match="Pool 'TRAVEL_MAIN'"):
        load_config(path)


def test_unknown_risk_level_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace("risk_level: low", "risk_level: extreme"))
    with pytest.raises(ValueError, match="unknown risk level 'EXTREME'"):
        load_config(path)


def test_non_positive_timeout_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace("collateral_timeout: 2.5", "collateral_timeout: 0"))
    with pytest.raises(ValueError, match="collateral_timeout"):
        load_config(path)


def test_bad_discount_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace('liquidation_discount: "0.1"', 'liquidation_discount: "1"'))
    with pytest.raises(ValueError, match="liquidation_discount"):
        load_config(path)


def test_default_config():
    cfg = default_config()
    assert list(cfg.pools) == ["TRAVEL_MAIN", "EMERGENCY"]
    assert list(cfg.strategies) == ["CONSERVATIVE", "LIQUIDITY", "AGGRESSIVE", "TRAVEL_TOKENS"]


def test_build_engine_from_defaults():
    engine = build_engine(clock=ManualClock(0))
    emergency = engine.pools.get("EMERGENCY")
    assert emergency.total_liquidity == Decimal("50")
    assert emergency.borrow_apr == Decimal("12.0")
    assert emergency.liquidation_threshold == Decimal("1.15")
    assert engine.strategies.get("AGGRESSIVE").risk_level is RiskLevel.HIGH
    assert engine.strategies.get("TRAVEL_TOKENS").minimum_deposit == Decimal("0.01")


def test_build_engine_applies_engine_settings(config_file):
    engine = build_engine(load_config(config_file), clock=ManualClock(0))
    assert engine.collateral_timeout == 2.5
    assert engine.loans.debt_epsilon == Decimal("0.0001")
    assert engine.loans.liquidation_discount == Decimal("0.1")


def test_non_numeric_amount_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace('total_liquidity: "100"', 'total_liquidity: "lots"'))
    with pytest.raises(ValueError, match="Pool 'TRAVEL_MAIN'"):
        load_config(path)

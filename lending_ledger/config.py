"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import InvalidOperation
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .clock import Clock
from .collateral import DEFAULT_COLLATERAL_TIMEOUT, AsyncCollateralSource, CollateralSource
from .core import (
    DEBT_EPSILON,
    DEFAULT_LENDER_SHARE,
    DEFAULT_LIQUIDATION_DISCOUNT,
    DEFAULT_MINIMUM_DEPOSIT,
    LendingPool,
    RiskLevel,
    YieldStrategy,
)
from .engine import LendingEngine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    collateral_timeout: float = DEFAULT_COLLATERAL_TIMEOUT
    debt_epsilon: str = str(DEBT_EPSILON)
    liquidation_discount: str = str(DEFAULT_LIQUIDATION_DISCOUNT)


@dataclass(frozen=True)
class PoolConfig:
    display_name: str = ""
    total_liquidity: str = "0"
    borrow_apr: str = "0"
    collateral_ratio: str = "1.5"
    liquidation_threshold: str = "1.2"
    minimum_deposit: str = str(DEFAULT_MINIMUM_DEPOSIT)
    lender_share: str = str(DEFAULT_LENDER_SHARE)


@dataclass(frozen=True)
class StrategyConfig:
    display_name: str = ""
    apy: str = "0"
    risk_level: str = "LOW"
    minimum_deposit: str = "0"
    description: str = ""


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    pools: dict[str, PoolConfig] = field(default_factory=dict)
    strategies: dict[str, StrategyConfig] = field(default_factory=dict)


DEFAULT_POOLS: dict[str, PoolConfig] = {
    "TRAVEL_MAIN": PoolConfig(
        display_name="Travel Savings Pool",
        total_liquidity="100.0",
        borrow_apr="8.5",
        collateral_ratio="1.5",
        liquidation_threshold="1.2",
    ),
    "EMERGENCY": PoolConfig(
        display_name="Emergency Travel Fund",
        total_liquidity="50.0",
        borrow_apr="12.0",
        collateral_ratio="1.3",
        liquidation_threshold="1.15",
    ),
}

DEFAULT_STRATEGIES: dict[str, StrategyConfig] = {
    "CONSERVATIVE": StrategyConfig(
        display_name="Travel Safe Staking",
        apy="5.5",
        risk_level="LOW",
        minimum_deposit="0.1",
        description="Stake ETH in validated protocols while saving for travel",
    ),
    "LIQUIDITY": StrategyConfig(
        display_name="Travel Liquidity Pool",
        apy="12.0",
        risk_level="MEDIUM",
        minimum_deposit="0.5",
        description="Provide liquidity to ETH/USDC pools for higher yields",
    ),
    "AGGRESSIVE": StrategyConfig(
        display_name="Adventure Yield Farm",
        apy="25.0",
        risk_level="HIGH",
        minimum_deposit="1.0",
        description="High-risk, high-reward yield farming for adventurous travelers",
    ),
    "TRAVEL_TOKENS": StrategyConfig(
        display_name="Travel Token Rewards",
        apy="8.0",
        risk_level="LOW",
        minimum_deposit="0.01",
        description="Stake your travel tokens to earn additional rewards",
    ),
}


def default_config() -> AppConfig:
    """Two lending pools and four yield strategies of the travel savings platform."""
    return AppConfig(
        engine=EngineConfig(),
        pools=dict(DEFAULT_POOLS),
        strategies=dict(DEFAULT_STRATEGIES),
    )


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------

# Amounts are kept as strings; _to_pool and _to_strategy convert them to Decimal.


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        collateral_timeout=float(raw.get("collateral_timeout", DEFAULT_COLLATERAL_TIMEOUT)),
        debt_epsilon=str(raw.get("debt_epsilon", DEBT_EPSILON)),
        liquidation_discount=str(raw.get("liquidation_discount", DEFAULT_LIQUIDATION_DISCOUNT)),
    )


def _build_pools(raw: dict[str, Any]) -> dict[str, PoolConfig]:
    pools: dict[str, PoolConfig] = {}
    for name, cfg in raw.items():
        cfg = cfg or {}
        pools[name] = PoolConfig(
            display_name=cfg.get("display_name", ""),
            total_liquidity=str(cfg.get("total_liquidity", "0")),
            borrow_apr=str(cfg.get("borrow_apr", "0")),
            collateral_ratio=str(cfg.get("collateral_ratio", "1.5")),
            liquidation_threshold=str(cfg.get("liquidation_threshold", "1.2")),
            minimum_deposit=str(cfg.get("minimum_deposit", DEFAULT_MINIMUM_DEPOSIT)),
            lender_share=str(cfg.get("lender_share", DEFAULT_LENDER_SHARE)),
        )
    return pools


def _build_strategies(raw: dict[str, Any]) -> dict[str, StrategyConfig]:
    strategies: dict[str, StrategyConfig] = {}
    for name, cfg in raw.items():
        cfg = cfg or {}
        strategies[name] = StrategyConfig(
            display_name=cfg.get("display_name", ""),
            apy=str(cfg.get("apy", "0")),
            risk_level=str(cfg.get("risk_level", "LOW")).upper(),
            minimum_deposit=str(cfg.get("minimum_deposit", "0")),
            description=cfg.get("description", ""),
        )
    return strategies


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root; when that file does not exist the built-in defaults
            are returned. An explicit path that does not exist is an error.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
        if not config_path.exists():
            logger.info("No config.yaml found, using built-in defaults")
            cfg = default_config()
            _validate(cfg)
            return cfg
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine") or {}),
        pools=_build_pools(raw.get("pools") or {}),
        strategies=_build_strategies(raw.get("strategies") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.pools:
        raise ValueError("At least one pool must be configured")

    for name, pool in cfg.pools.items():
        try:
            _to_pool(name, pool)
        except (ValueError, InvalidOperation) as e:
            raise ValueError(f"Pool '{name}': {e}") from e

    for name, strategy in cfg.strategies.items():
        if strategy.risk_level not in RiskLevel.__members__:
            raise ValueError(
                f"Strategy '{name}' has unknown risk level '{strategy.risk_level}'"
            )
        try:
            _to_strategy(name, strategy)
        except (ValueError, InvalidOperation) as e:
            raise ValueError(f"Strategy '{name}': {e}") from e

    if cfg.engine.collateral_timeout <= 0:
        raise ValueError("engine.collateral_timeout must be positive")
    discount = float(cfg.engine.liquidation_discount)
    if not 0 <= discount < 1:
        raise ValueError("engine.liquidation_discount must be in [0, 1)")


def _to_pool(name: str, cfg: PoolConfig) -> LendingPool:
    return LendingPool(
        name=name,
        display_name=cfg.display_name,
        total_liquidity=cfg.total_liquidity,
        borrow_apr=cfg.borrow_apr,
        collateral_ratio=cfg.collateral_ratio,
        liquidation_threshold=cfg.liquidation_threshold,
        minimum_deposit=cfg.minimum_deposit,
        lender_share=cfg.lender_share,
    )


def _to_strategy(name: str, cfg: StrategyConfig) -> YieldStrategy:
    return YieldStrategy(
        name=name,
        display_name=cfg.display_name,
        apy=cfg.apy,
        risk_level=RiskLevel(cfg.risk_level),
        minimum_deposit=cfg.minimum_deposit,
        description=cfg.description,
    )


def build_engine(
    config: Optional[AppConfig] = None,
    clock: Optional[Clock] = None,
    collateral_source: Optional[CollateralSource] = None,
    async_collateral_source: Optional[AsyncCollateralSource] = None,
) -> LendingEngine:
    """Create a LendingEngine with every configured pool and strategy registered."""
    config = config or default_config()
    engine = LendingEngine(
        clock=clock,
        collateral_source=collateral_source,
        async_collateral_source=async_collateral_source,
        collateral_timeout=config.engine.collateral_timeout,
        debt_epsilon=config.engine.debt_epsilon,
        liquidation_discount=config.engine.liquidation_discount,
    )
    for name, pool in config.pools.items():
        engine.register_pool(_to_pool(name, pool))
    for name, strategy in config.strategies.items():
        engine.register_strategy(_to_strategy(name, strategy))
    logger.info(
        "Engine ready: %d pools, %d strategies", len(config.pools), len(config.strategies)
    )
    return engine

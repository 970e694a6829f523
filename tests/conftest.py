"""
conftest.py - Shared pytest fixtures for lending ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- A manual clock pinned to a fixed start time
- A pool registry with the travel pool registered
- Loan, deposit and yield ledgers wired to that registry and clock
- A fully configured engine with a static collateral source
"""

from decimal import Decimal

import pytest

from lending_ledger import (
    YieldStrategy,
    RiskLevel,
    ManualClock,
    LendingPoolRegistry,
    LoanLedger,
    LendingLedger,
    YieldStrategyRegistry,
    YieldPositionLedger,
    StaticCollateralSource,
    build_engine,
    default_config,
)

from lending_fixtures import T0, travel_pool, conservative_strategy


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def pools():
    registry = LendingPoolRegistry()
    registry.register_pool(travel_pool())
    return registry


@pytest.fixture
def loans(pools, clock):
    return LoanLedger(pools, clock)


@pytest.fixture
def deposits(pools, clock):
    return LendingLedger(pools, clock)


@pytest.fixture
def strategies():
    registry = YieldStrategyRegistry()
    registry.register(conservative_strategy())
    registry.register(YieldStrategy("LIQUIDITY", Decimal("12.0"), RiskLevel.MEDIUM, Decimal("0.5")))
    registry.register(YieldStrategy("AGGRESSIVE", Decimal("25.0"), RiskLevel.HIGH, Decimal("1.0")))
    registry.register(YieldStrategy("TRAVEL_TOKENS", Decimal("8.0"), RiskLevel.LOW, Decimal("0.01")))
    return registry


@pytest.fixture
def yields(strategies, clock):
    return YieldPositionLedger(strategies, clock)


@pytest.fixture
def collateral_source():
    return StaticCollateralSource({
        ("alice", "vault-1"): Decimal("16"),
        ("bob", "vault-1"): Decimal("0"),
        ("carol", "vault-2"): Decimal("3"),
    })


@pytest.fixture
def engine(clock, collateral_source):
    """Engine with the default pools (TRAVEL_MAIN, EMERGENCY) and four strategies."""
    return build_engine(default_config(), clock=clock, collateral_source=collateral_source)

"""
lending_fixtures.py - Test helpers shared by every test module

Constants and factory functions (fixtures live in conftest.py).
"""

from decimal import Decimal

from lending_ledger import SECONDS_PER_YEAR, LendingPool, RiskLevel, YieldStrategy


T0 = 1_700_000_000
YEAR = SECONDS_PER_YEAR
HALF_YEAR = SECONDS_PER_YEAR // 2


def travel_pool(**overrides) -> LendingPool:
    """The main travel pool: 100 liquidity, 8.5% APR, 1.5 collateral ratio, 1.2 threshold."""
    params = dict(
        name="TRAVEL_MAIN",
        display_name="Travel Savings Pool",
        total_liquidity=Decimal("100"),
        borrow_apr=Decimal("8.5"),
        collateral_ratio=Decimal("1.5"),
        liquidation_threshold=Decimal("1.2"),
    )
    params.update(overrides)
    return LendingPool(**params)


def conservative_strategy(**overrides) -> YieldStrategy:
    params = dict(
        name="CONSERVATIVE",
        apy=Decimal("5.5"),
        risk_level=RiskLevel.LOW,
        minimum_deposit=Decimal("0.1"),
    )
    params.update(overrides)
    return YieldStrategy(**params)

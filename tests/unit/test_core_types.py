"""
test_core_types.py - Unit tests for core entities and the error taxonomy

Tests:
- LendingPool parameter validation and derived properties
- Decimal coercion of numeric fields
- YieldStrategy risk level coercion
- Immutability of entities
- Exception hierarchy
"""

import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal

from lending_ledger import (
    LendingPool, LoanPosition, YieldStrategy, RiskLevel, HealthStatus, CloseReason,
    to_decimal,
    LendingError, PoolNotFound, DuplicatePool, InsufficientCollateral,
    InsufficientLiquidity, BelowMinimumAmount, BelowMinimum, BelowMinimumDeposit,
    LoanNotFound, LoanClosed, LoanNotLiquidatable, StrategyNotFound, DuplicateStrategy,
    PositionNotFound, PositionClosed, NothingToClaim, InvalidTimeRange,
    CollateralUnavailable, CollateralNotFound,
)
from lending_fixtures import travel_pool, conservative_strategy


# ============================================================================
# LENDING POOL
# ============================================================================

class TestLendingPool:

    def test_defaults(self):
        pool = travel_pool()
        assert pool.total_borrowed == Decimal("0")
        assert pool.minimum_deposit == Decimal("0.1")
        assert pool.lender_share == Decimal("0.8")

    def test_numeric_fields_become_decimal(self):
        """Floats are converted through str() so 8.5 is exactly Decimal('8.5')."""
        pool = LendingPool("P", 100, 8.5, 1.5, 1.2)
        assert pool.total_liquidity == Decimal("100")
        assert pool.borrow_apr == Decimal("8.5")
        assert pool.liquidation_threshold == Decimal("1.2")
        assert isinstance(pool.collateral_ratio, Decimal)

    def test_available_liquidity(self):
        pool = travel_pool(total_borrowed=Decimal("30"))
        assert pool.available_liquidity == Decimal("70")

    def test_utilization(self):
        pool = travel_pool(total_borrowed=Decimal("25"))
        assert pool.utilization == Decimal("0.25")

    def test_utilization_of_empty_pool_is_zero(self):
        pool = travel_pool(total_liquidity=Decimal("0"))
        assert pool.utilization == Decimal("0")

    def test_lend_rate_is_share_of_borrow_apr(self):
        """Lenders earn 80% of the borrow APR by default: 8.5 * 0.8 = 6.8."""
        assert travel_pool().lend_rate == Decimal("6.8")

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="name"):
            travel_pool(name="")

    def test_negative_liquidity_rejected(self):
        with pytest.raises(ValueError, match="total_liquidity"):
            travel_pool(total_liquidity=Decimal("-1"))

    def test_borrowed_above_liquidity_rejected(self):
        with pytest.raises(ValueError, match="exceed"):
            travel_pool(total_borrowed=Decimal("101"))

    def test_non_positive_collateral_ratio_rejected(self):
        with pytest.raises(ValueError, match="collateral_ratio"):
            travel_pool(collateral_ratio=Decimal("0"), liquidation_threshold=Decimal("0"))

    def test_threshold_above_collateral_ratio_rejected(self):
        with pytest.raises(ValueError, match="liquidation_threshold"):
            travel_pool(liquidation_threshold=Decimal("1.6"))

    def test_lender_share_bounds(self):
        with pytest.raises(ValueError, match="lender_share"):
            travel_pool(lender_share=Decimal("0"))
        with pytest.raises(ValueError, match="lender_share"):
            travel_pool(lender_share=Decimal("1.01"))

    def test_pool_is_frozen(self):
        pool = travel_pool()
        with pytest.raises(FrozenInstanceError):
            pool.total_borrowed = Decimal("5")


# ============================================================================
# LOANS AND STRATEGIES
# ============================================================================

class TestLoanPosition:

    def test_defaults(self):
        loan = LoanPosition(
            id=1, borrower="alice", pool_name="TRAVEL_MAIN",
            collateral_value_at_origination="16", principal="10",
            interest_rate="8.5", start_time=0, last_payment_time=0,
        )
        assert loan.active is True
        assert loan.closed_reason is None
        assert loan.vault_id is None
        assert loan.principal == Decimal("10")


class TestYieldStrategy:

    def test_risk_level_from_string(self):
        strategy = conservative_strategy(risk_level="medium")
        assert strategy.risk_level is RiskLevel.MEDIUM

    def test_unknown_risk_level_rejected(self):
        with pytest.raises(ValueError):
            conservative_strategy(risk_level="EXTREME")

    def test_negative_apy_rejected(self):
        with pytest.raises(ValueError, match="apy"):
            conservative_strategy(apy=Decimal("-1"))

    def test_negative_minimum_rejected(self):
        with pytest.raises(ValueError, match="minimum_deposit"):
            conservative_strategy(minimum_deposit=Decimal("-0.1"))


class TestEnums:

    def test_enums_compare_to_strings(self):
        assert HealthStatus.AT_RISK == "AT_RISK"
        assert RiskLevel.HIGH == "HIGH"
        assert CloseReason.LIQUIDATED.value == "LIQUIDATED"


class TestToDecimal:

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal_passthrough(self):
        value = Decimal("1.5")
        assert to_decimal(value) is value


# ============================================================================
# EXCEPTIONS
# ============================================================================

class TestExceptionHierarchy:

    @pytest.mark.parametrize("exc", [
        PoolNotFound, DuplicatePool, InsufficientCollateral, InsufficientLiquidity,
        BelowMinimum, BelowMinimumDeposit, LoanNotFound, LoanClosed,
        LoanNotLiquidatable, StrategyNotFound, DuplicateStrategy, PositionNotFound,
        PositionClosed, NothingToClaim, InvalidTimeRange, CollateralUnavailable,
        CollateralNotFound,
    ])
    def test_every_error_is_a_lending_error(self, exc):
        assert issubclass(exc, LendingError)

    def test_minimum_errors_share_a_base(self):
        assert issubclass(BelowMinimum, BelowMinimumAmount)
        assert issubclass(BelowMinimumDeposit, BelowMinimumAmount)

    def test_invalid_time_range_is_value_error(self):
        assert issubclass(InvalidTimeRange, ValueError)

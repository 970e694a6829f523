"""
lending_ledger - Collateralized lending and yield accounting engine

Pools of liquidity, loans against savings-vault collateral, lender deposits
and yield positions, as a deterministic state machine. Collateral values come
from outside (a vault valuation source); time comes from an injected clock.

Usage:
    from decimal import Decimal
    from lending_ledger import LendingEngine, LendingPool, ManualClock

    engine = LendingEngine(clock=ManualClock(0))
    engine.register_pool(LendingPool(
        "TRAVEL_MAIN", total_liquidity=100, borrow_apr=8.5,
        collateral_ratio=1.5, liquidation_threshold=1.2,
    ))

    loan = engine.borrow("alice", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
    engine.health(loan.id, Decimal("16")).status   # HealthStatus.HEALTHY
    engine.repay(loan.id, Decimal("10"))
"""

# Core types
from .core import (
    SECONDS_PER_YEAR,
    DEBT_EPSILON,
    QUANTITY_EPSILON,
    DEFAULT_MINIMUM_DEPOSIT,
    DEFAULT_LENDER_SHARE,
    DEFAULT_LIQUIDATION_DISCOUNT,
    AT_RISK_BUFFER,
    to_decimal,
    # Enums
    RiskLevel,
    HealthStatus,
    CloseReason,
    # Entities
    LendingPool,
    LoanPosition,
    LendingPosition,
    YieldStrategy,
    YieldPosition,
    # Results
    RepayResult,
    LoanHealth,
    LiquidationResult,
    WithdrawalResult,
    ClaimResult,
    PoolStats,
    # Exceptions
    LendingError,
    PoolNotFound,
    DuplicatePool,
    InsufficientCollateral,
    InsufficientLiquidity,
    BelowMinimumAmount,
    BelowMinimum,
    BelowMinimumDeposit,
    LoanNotFound,
    LoanClosed,
    LoanNotLiquidatable,
    StrategyNotFound,
    DuplicateStrategy,
    PositionNotFound,
    PositionClosed,
    NothingToClaim,
    InvalidTimeRange,
    CollateralUnavailable,
    CollateralNotFound,
)

# Clock
from .clock import Clock, SystemClock, ManualClock

# Interest accrual
from .interest import accrued, year_fraction

# Pools
from .pools import LendingPoolRegistry

# Health
from .health import HealthEvaluator, classify_ratio, collateral_ratio

# Loans
from .loans import (
    LoanLedger,
    RepaymentPlan,
    calculate_total_debt,
    calculate_repayment,
    calculate_liquidation,
)

# Lender deposits
from .deposits import LendingLedger, LendingPositionView, earned_interest

# Yield
from .yields import (
    YieldStrategyRegistry,
    YieldPositionLedger,
    YieldPositionView,
    YieldStats,
    CompoundResult,
)

# Collateral valuation
from .collateral import (
    CollateralSource,
    AsyncCollateralSource,
    StaticCollateralSource,
    ThreadedCollateralSource,
    fetch_collateral_value,
    afetch_collateral_value,
)

# Engine
from .engine import LendingEngine, LedgerEvent, EngineOverview

# Configuration
from .config import AppConfig, load_config, default_config, build_engine
from .logging_setup import configure_logging

__all__ = [
    # Core
    'SECONDS_PER_YEAR', 'DEBT_EPSILON', 'QUANTITY_EPSILON',
    'DEFAULT_MINIMUM_DEPOSIT', 'DEFAULT_LENDER_SHARE', 'DEFAULT_LIQUIDATION_DISCOUNT',
    'AT_RISK_BUFFER', 'to_decimal',
    'RiskLevel', 'HealthStatus', 'CloseReason',
    'LendingPool', 'LoanPosition', 'LendingPosition', 'YieldStrategy', 'YieldPosition',
    'RepayResult', 'LoanHealth', 'LiquidationResult', 'WithdrawalResult',
    'ClaimResult', 'PoolStats',
    'LendingError', 'PoolNotFound', 'DuplicatePool', 'InsufficientCollateral',
    'InsufficientLiquidity', 'BelowMinimumAmount', 'BelowMinimum', 'BelowMinimumDeposit',
    'LoanNotFound', 'LoanClosed', 'LoanNotLiquidatable', 'StrategyNotFound',
    'DuplicateStrategy', 'PositionNotFound', 'PositionClosed', 'NothingToClaim',
    'InvalidTimeRange', 'CollateralUnavailable', 'CollateralNotFound',
    # Clock
    'Clock', 'SystemClock', 'ManualClock',
    # Interest
    'accrued', 'year_fraction',
    # Pools
    'LendingPoolRegistry',
    # Health
    'HealthEvaluator', 'classify_ratio', 'collateral_ratio',
    # Loans
    'LoanLedger', 'RepaymentPlan',
    'calculate_total_debt', 'calculate_repayment', 'calculate_liquidation',
    # Deposits
    'LendingLedger', 'LendingPositionView', 'earned_interest',
    # Yield
    'YieldStrategyRegistry', 'YieldPositionLedger', 'YieldPositionView',
    'YieldStats', 'CompoundResult',
    # Collateral
    'CollateralSource', 'AsyncCollateralSource', 'StaticCollateralSource',
    'ThreadedCollateralSource', 'fetch_collateral_value', 'afetch_collateral_value',
    # Engine
    'LendingEngine', 'LedgerEvent', 'EngineOverview',
    # Configuration
    'AppConfig', 'load_config', 'default_config', 'build_engine', 'configure_logging',
]

__version__ = '1.0.0'

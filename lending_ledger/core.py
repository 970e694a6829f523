"""
Core types for the lending ledger.

This module provides the foundational data structures shared by every
component of the engine:
1. Decimal context and constants
2. Exceptions: LendingError and the domain-specific error taxonomy
3. Enums: RiskLevel, HealthStatus, CloseReason
4. Immutable entities: LendingPool, LoanPosition, LendingPosition,
   YieldStrategy, YieldPosition
5. Immutable operation results: RepayResult, LoanHealth, LiquidationResult, ...

Entities are frozen. Components never mutate an entity in place; they store
a new instance built with dataclasses.replace(), so a snapshot handed to a
caller never changes underneath it.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from decimal import (
    Context, Decimal, DefaultContext, ROUND_HALF_EVEN, getcontext, localcontext,
)
from enum import Enum
from functools import wraps
from typing import Any, Optional


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All amounts are Decimal. Decimal contexts are per thread, so the engine
# carries its own context and every arithmetic entry point runs inside it
# (see lending_precision). The importing thread and DefaultContext, which
# seeds threads started later, get the same settings.
#
# Context parameters:
#   - prec=50: Precision sufficient for accrual and re-basing
#   - rounding=ROUND_HALF_EVEN: Banker's rounding (unbiased)
#
_LENDING_DECIMAL_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

for _context in (getcontext(), DefaultContext):
    _context.prec = _LENDING_DECIMAL_CONTEXT.prec
    _context.rounding = _LENDING_DECIMAL_CONTEXT.rounding


def lending_precision(func):
    """Run func under the lending Decimal context, whatever the calling thread's context."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        with localcontext(_LENDING_DECIMAL_CONTEXT):
            return func(*args, **kwargs)

    return wrapper


# ============================================================================
# CONSTANTS
# ============================================================================

SECONDS_PER_YEAR = 365 * 24 * 3600

# Remaining debt at or below this amount closes a loan on repayment.
DEBT_EPSILON = Decimal("0.001")

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Pool defaults
DEFAULT_MINIMUM_DEPOSIT = Decimal("0.1")
DEFAULT_LENDER_SHARE = Decimal("0.8")

# Liquidator receives collateral * (1 - discount)
DEFAULT_LIQUIDATION_DISCOUNT = Decimal("0.05")

# A loan is AT_RISK while its ratio is within this multiple of the threshold.
AT_RISK_BUFFER = Decimal("1.1")


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str/Decimal to Decimal via str() to avoid float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-ledger errors."""
    pass


class PoolNotFound(LendingError):
    """Raised when an operation names a pool that was never registered."""
    pass


class DuplicatePool(LendingError):
    """Raised when registering a pool whose name is already taken."""
    pass


class InsufficientCollateral(LendingError):
    """Raised when collateral / requested amount is below the pool's collateral ratio."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when a change would push total borrowed above total liquidity."""
    pass


class BelowMinimumAmount(LendingError):
    """Common base for minimum-amount violations."""
    pass


class BelowMinimum(BelowMinimumAmount):
    """Raised when a lending deposit is below the pool minimum."""
    pass


class BelowMinimumDeposit(BelowMinimumAmount):
    """Raised when a yield enrolment is below the strategy minimum deposit."""
    pass


class LoanNotFound(LendingError):
    """Raised when a loan id was never issued."""
    pass


class LoanClosed(LendingError):
    """Raised when operating on a repaid or liquidated loan."""
    pass


class LoanNotLiquidatable(LendingError):
    """Raised when liquidating a loan whose ratio is at or above the liquidation threshold."""
    pass


class StrategyNotFound(LendingError):
    """Raised when an operation names an unregistered yield strategy."""
    pass


class DuplicateStrategy(LendingError):
    """Raised when registering a strategy whose name is already taken."""
    pass


class PositionNotFound(LendingError):
    """Raised for unknown (or emergency-withdrawn) lending/yield position ids."""
    pass


class PositionClosed(LendingError):
    """Raised when withdrawing a lending position that was already withdrawn."""
    pass


class NothingToClaim(LendingError):
    """Raised when a yield claim finds zero accrued yield."""
    pass


class InvalidTimeRange(LendingError, ValueError):
    """Raised when an accrual window ends before it starts."""
    pass


class CollateralUnavailable(LendingError):
    """Raised when the collateral valuation source fails or times out."""
    pass


class CollateralNotFound(LendingError):
    """Raised when the valuation source reports no contribution for the user."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class RiskLevel(str, Enum):
    """Risk classification of a yield strategy."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class HealthStatus(str, Enum):
    """Health classification of a loan."""
    HEALTHY = "HEALTHY"
    AT_RISK = "AT_RISK"
    LIQUIDATABLE = "LIQUIDATABLE"


class CloseReason(str, Enum):
    """Why a loan became inactive."""
    REPAID = "REPAID"
    LIQUIDATED = "LIQUIDATED"


def _coerce_decimals(obj: Any) -> None:
    """Convert every field annotated as Decimal (or Optional Decimal) in place."""
    for f in fields(obj):
        if "Decimal" not in str(f.type):
            continue
        value = getattr(obj, f.name)
        if value is not None and not isinstance(value, Decimal):
            object.__setattr__(obj, f.name, to_decimal(value))


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendingPool:
    """
    A named bucket of liquidity with fixed risk parameters.

    Invariant: 0 <= total_borrowed <= total_liquidity. Maintained by
    LendingPoolRegistry; this class only validates parameters.
    """
    name: str
    total_liquidity: Decimal
    borrow_apr: Decimal              # Percent, e.g. 8.5
    collateral_ratio: Decimal        # Required collateral/debt at origination, e.g. 1.5
    liquidation_threshold: Decimal   # Ratio below which a loan is liquidatable, e.g. 1.2
    total_borrowed: Decimal = Decimal("0")
    display_name: str = ""
    minimum_deposit: Decimal = DEFAULT_MINIMUM_DEPOSIT
    lender_share: Decimal = DEFAULT_LENDER_SHARE

    def __post_init__(self):
        _coerce_decimals(self)
        if not self.name:
            raise ValueError("pool name must be non-empty")
        if self.total_liquidity < 0:
            raise ValueError("total_liquidity must be non-negative")
        if self.total_borrowed < 0:
            raise ValueError("total_borrowed must be non-negative")
        if self.total_borrowed > self.total_liquidity:
            raise ValueError("total_borrowed cannot exceed total_liquidity")
        if self.borrow_apr < 0:
            raise ValueError("borrow_apr must be non-negative")
        if self.collateral_ratio <= 0:
            raise ValueError("collateral_ratio must be positive")
        if self.liquidation_threshold <= 0:
            raise ValueError("liquidation_threshold must be positive")
        if self.liquidation_threshold > self.collateral_ratio:
            raise ValueError("liquidation_threshold cannot exceed collateral_ratio")
        if self.minimum_deposit < 0:
            raise ValueError("minimum_deposit must be non-negative")
        if not (Decimal("0") < self.lender_share <= Decimal("1")):
            raise ValueError("lender_share must be in (0, 1]")

    @property
    def available_liquidity(self) -> Decimal:
        return self.total_liquidity - self.total_borrowed

    @property
    def utilization(self) -> Decimal:
        if self.total_liquidity <= 0:
            return Decimal("0")
        return self.total_borrowed / self.total_liquidity

    @property
    def lend_rate(self) -> Decimal:
        """Annual rate paid to lenders, in percent."""
        return self.borrow_apr * self.lender_share


@dataclass(frozen=True, slots=True)
class LoanPosition:
    """
    A borrow against externally-valued collateral.

    interest_rate is snapshotted from the pool at origination and never
    changes. principal is the outstanding, un-accrued amount; accrual always
    runs from start_time, which repayments reset.
    """
    id: int
    borrower: str
    pool_name: str
    collateral_value_at_origination: Decimal
    principal: Decimal
    interest_rate: Decimal
    start_time: int
    last_payment_time: int
    active: bool = True
    vault_id: Optional[str] = None
    closed_reason: Optional[CloseReason] = None

    def __post_init__(self):
        _coerce_decimals(self)


@dataclass(frozen=True, slots=True)
class LendingPosition:
    """A lender's deposit into a pool, earning pool.lend_rate at deposit time."""
    id: int
    lender: str
    pool_name: str
    amount: Decimal
    interest_rate: Decimal
    start_time: int
    active: bool = True
    withdrawn_at: Optional[int] = None

    def __post_init__(self):
        _coerce_decimals(self)


@dataclass(frozen=True, slots=True)
class YieldStrategy:
    """Static yield strategy parameters. Immutable after registration."""
    name: str
    apy: Decimal
    risk_level: RiskLevel
    minimum_deposit: Decimal
    display_name: str = ""
    description: str = ""

    def __post_init__(self):
        _coerce_decimals(self)
        if not isinstance(self.risk_level, RiskLevel):
            object.__setattr__(self, 'risk_level', RiskLevel(str(self.risk_level).upper()))
        if not self.name:
            raise ValueError("strategy name must be non-empty")
        if self.apy < 0:
            raise ValueError("apy must be non-negative")
        if self.minimum_deposit < 0:
            raise ValueError("minimum_deposit must be non-negative")


@dataclass(frozen=True, slots=True)
class YieldPosition:
    """Principal enrolled in a strategy. Accrual runs from last_claim_time."""
    id: int
    user: str
    strategy_name: str
    principal: Decimal
    start_time: int
    last_claim_time: int
    earned_claimed: Decimal = Decimal("0")
    vault_id: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class RepayResult:
    loan_id: int
    repaid: Decimal
    remaining_debt: Decimal
    closed: bool


@dataclass(frozen=True, slots=True)
class LoanHealth:
    """Outcome of a health evaluation. ratio is Decimal('Infinity') for zero debt."""
    loan_id: int
    principal: Decimal
    accrued_interest: Decimal
    total_debt: Decimal
    collateral_value: Decimal
    ratio: Decimal
    liquidation_threshold: Decimal
    status: HealthStatus


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    loan_id: int
    liquidator: str
    debt_cleared: Decimal
    collateral_seized: Decimal
    collateral_received: Decimal
    liquidator_reward: Decimal


@dataclass(frozen=True, slots=True)
class WithdrawalResult:
    position_id: int
    principal: Decimal
    interest: Decimal
    total: Decimal


@dataclass(frozen=True, slots=True)
class ClaimResult:
    position_id: int
    amount: Decimal
    new_total_earned: Decimal
    strategy_name: str


@dataclass(frozen=True, slots=True)
class PoolStats:
    name: str
    display_name: str
    total_liquidity: Decimal
    total_borrowed: Decimal
    available_liquidity: Decimal
    utilization: Decimal
    borrow_apr: Decimal
    lend_rate: Decimal

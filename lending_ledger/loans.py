"""
loans.py - Collateralized loans against savings-vault valuations

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take a loan snapshot and every other input explicitly
   - Never touch the ledger, the pools or the clock
   - Used by LoanLedger and directly testable

2. LoanLedger:
   - Owns the loan arena (id -> LoanPosition) and nothing else
   - Reads pool parameters from LendingPoolRegistry, moves pool totals
     only through it
   - Each mutation computes its full plan first, then applies it, so a
     rejected operation leaves no trace

Interest-accounting contract:
    total_debt = principal + accrued(principal, rate, start_time, now)

    A repayment re-bases the loan: principal becomes
    principal * (1 - repaid / total_debt) and the accrual clock restarts.
    The reported remaining debt is total_debt - repaid. Pool total_borrowed
    always equals the sum of active principals, so it moves by the principal
    retired, never by interest.

Locking:
    repay and liquidate take the loan lock, then the pool lock. borrow takes
    the pool lock only (the loan does not exist yet). A repay racing a
    liquidate on the same loan is serialized; the loser sees LoanClosed.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging
import threading

from .clock import Clock
from .core import (
    DEBT_EPSILON, DEFAULT_LIQUIDATION_DISCOUNT,
    CloseReason, HealthStatus,
    LoanPosition, LoanHealth, RepayResult, LiquidationResult,
    InsufficientCollateral, InsufficientLiquidity,
    LoanNotFound, LoanClosed, LoanNotLiquidatable,
    lending_precision, to_decimal,
)
from .health import HealthEvaluator
from .interest import accrued
from .pools import LendingPoolRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class RepaymentPlan:
    """Everything a repayment will change, computed before anything changes."""
    accrued_interest: Decimal
    total_debt: Decimal
    actual_repayment: Decimal
    remaining_debt: Decimal
    new_principal: Decimal
    principal_retired: Decimal
    closes: bool


@lending_precision
def calculate_total_debt(loan: LoanPosition, now: int) -> Tuple[Decimal, Decimal]:
    """
    Interest accrued since start_time and the resulting total debt.

    Returns:
        (accrued_interest, principal + accrued_interest)
    """
    interest = accrued(loan.principal, loan.interest_rate, loan.start_time, now)
    return interest, loan.principal + interest


@lending_precision
def calculate_repayment(
    loan: LoanPosition,
    amount: Any,
    now: int,
    debt_epsilon: Decimal = DEBT_EPSILON,
) -> RepaymentPlan:
    """
    Plan a (partial or full) repayment.

    Overpayment is capped at total debt. If what remains is at or below
    debt_epsilon the loan closes and its whole principal is retired.

    Args:
        loan: Active loan snapshot
        amount: Amount offered
        now: Repayment time
        debt_epsilon: Closing tolerance

    Returns:
        RepaymentPlan

    Example:
        principal 10 at 8.5% after one year, repay 10.85:
        total_debt=10.85, actual=10.85, remaining=0, closes=True
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError(f"repayment amount must be positive, got {amount}")

    interest, total_debt = calculate_total_debt(loan, now)
    actual = min(amount, total_debt)
    remaining = total_debt - actual

    if remaining <= debt_epsilon:
        return RepaymentPlan(
            accrued_interest=interest,
            total_debt=total_debt,
            actual_repayment=actual,
            remaining_debt=remaining,
            new_principal=Decimal("0"),
            principal_retired=loan.principal,
            closes=True,
        )

    new_principal = loan.principal * (Decimal("1") - actual / total_debt)
    return RepaymentPlan(
        accrued_interest=interest,
        total_debt=total_debt,
        actual_repayment=actual,
        remaining_debt=remaining,
        new_principal=new_principal,
        principal_retired=loan.principal - new_principal,
        closes=False,
    )


@lending_precision
def calculate_liquidation(
    current_collateral_value: Decimal,
    total_debt: Decimal,
    liquidation_discount: Decimal = DEFAULT_LIQUIDATION_DISCOUNT,
) -> Tuple[Decimal, Decimal]:
    """
    Collateral received by a liquidator and the resulting reward.

    The liquidator pays off total_debt and receives
    collateral * (1 - liquidation_discount). The reward may be negative.

    Returns:
        (collateral_received, liquidator_reward)
    """
    received = current_collateral_value * (Decimal("1") - liquidation_discount)
    return received, received - total_debt


# ============================================================================
# LOAN LEDGER
# ============================================================================

class LoanLedger:
    """
    Arena of loan positions keyed by monotonic ids.

    Example:
        loans = LoanLedger(pools, clock)
        loan = loans.borrow("alice", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
        loans.repay(loan.id, Decimal("5"))
    """

    def __init__(
        self,
        pools: LendingPoolRegistry,
        clock: Clock,
        evaluator: Optional[HealthEvaluator] = None,
        debt_epsilon: Any = DEBT_EPSILON,
        liquidation_discount: Any = DEFAULT_LIQUIDATION_DISCOUNT,
    ):
        self.pools = pools
        self.clock = clock
        self.evaluator = evaluator or HealthEvaluator()
        self.debt_epsilon = to_decimal(debt_epsilon)
        self.liquidation_discount = to_decimal(liquidation_discount)
        if not (Decimal("0") <= self.liquidation_discount < Decimal("1")):
            raise ValueError("liquidation_discount must be in [0, 1)")

        self._loans: Dict[int, LoanPosition] = {}
        self._loan_locks: Dict[int, threading.RLock] = {}
        self._ids_lock = threading.Lock()
        self._next_id = 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, loan_id: int) -> LoanPosition:
        """Return a loan snapshot, active or closed."""
        try:
            return self._loans[loan_id]
        except KeyError:
            raise LoanNotFound(f"Loan {loan_id} not found") from None

    def _require_active(self, loan_id: int) -> LoanPosition:
        loan = self.get(loan_id)
        if not loan.active:
            raise LoanClosed(f"Loan {loan_id} is closed ({loan.closed_reason.value})")
        return loan

    def _lock_for(self, loan_id: int) -> threading.RLock:
        try:
            return self._loan_locks[loan_id]
        except KeyError:
            raise LoanNotFound(f"Loan {loan_id} not found") from None

    @lending_precision
    def total_debt(self, loan_id: int, now: Optional[int] = None) -> Decimal:
        loan = self._require_active(loan_id)
        _, debt = calculate_total_debt(loan, self.clock.now() if now is None else now)
        return debt

    def loans_for(self, borrower: str, active_only: bool = True) -> List[LoanPosition]:
        return [
            loan for loan_id, loan in sorted(self._loans.items())
            if loan.borrower == borrower and (loan.active or not active_only)
        ]

    def active_count(self) -> int:
        return sum(1 for loan in self._loans.values() if loan.active)

    @lending_precision
    def outstanding_principal(self, pool_name: Optional[str] = None) -> Decimal:
        """Sum of active principals, optionally restricted to one pool."""
        return sum(
            (loan.principal for loan in self._loans.values()
             if loan.active and (pool_name is None or loan.pool_name == pool_name)),
            Decimal("0"),
        )

    # ------------------------------------------------------------------
    # Borrow
    # ------------------------------------------------------------------

    @lending_precision
    def borrow(
        self,
        borrower: str,
        pool_name: str,
        collateral_value: Any,
        requested_amount: Any,
        vault_id: Optional[str] = None,
    ) -> LoanPosition:
        """
        Open a loan against a collateral valuation.

        Args:
            borrower: Borrower identity
            pool_name: Pool to borrow from
            collateral_value: Current value of the borrower's collateral
            requested_amount: Amount to borrow
            vault_id: Vault backing the collateral, if known

        Returns:
            The new active LoanPosition

        Raises:
            ValueError: If requested_amount is not positive
            PoolNotFound: If the pool is not registered
            InsufficientCollateral: If collateral / amount < pool.collateral_ratio
            InsufficientLiquidity: If amount exceeds the pool's available liquidity
        """
        collateral = to_decimal(collateral_value)
        amount = to_decimal(requested_amount)
        if amount <= 0:
            raise ValueError(f"requested_amount must be positive, got {amount}")

        with self.pools.lock(pool_name) as pool:
            if collateral <= 0 or collateral / amount < pool.collateral_ratio:
                logger.warning(
                    "Rejected borrow by %s on %s: collateral %s for %s (need ratio %s)",
                    borrower, pool_name, collateral, amount, pool.collateral_ratio,
                )
                raise InsufficientCollateral(
                    f"Insufficient collateral. Need {amount * pool.collateral_ratio}, "
                    f"have {collateral}"
                )
            if amount > pool.available_liquidity:
                logger.warning(
                    "Rejected borrow by %s on %s: %s requested, %s available",
                    borrower, pool_name, amount, pool.available_liquidity,
                )
                raise InsufficientLiquidity(
                    f"Insufficient pool liquidity. Available: {pool.available_liquidity}"
                )

            now = self.clock.now()
            self.pools.adjust_borrowed(pool_name, amount)
            with self._ids_lock:
                loan_id = self._next_id
                self._next_id += 1
                loan = LoanPosition(
                    id=loan_id,
                    borrower=borrower,
                    pool_name=pool_name,
                    collateral_value_at_origination=collateral,
                    principal=amount,
                    interest_rate=pool.borrow_apr,
                    start_time=now,
                    last_payment_time=now,
                    vault_id=vault_id,
                )
                self._loans[loan_id] = loan
                self._loan_locks[loan_id] = threading.RLock()

        logger.info(
            "Loan %d opened: %s borrowed %s from %s at %s%% APR",
            loan.id, borrower, amount, pool_name, loan.interest_rate,
        )
        return loan

    # ------------------------------------------------------------------
    # Repay
    # ------------------------------------------------------------------

    @lending_precision
    def repay(self, loan_id: int, amount: Any) -> RepayResult:
        """
        Repay part or all of a loan's debt.

        Raises:
            LoanNotFound: If the loan id was never issued
            LoanClosed: If the loan is already repaid or liquidated
            ValueError: If amount is not positive
        """
        with self._lock_for(loan_id):
            loan = self._require_active(loan_id)
            with self.pools.lock(loan.pool_name):
                now = self.clock.now()
                plan = calculate_repayment(loan, amount, now, self.debt_epsilon)
                self.pools.adjust_borrowed(loan.pool_name, -plan.principal_retired)
                if plan.closes:
                    updated = replace(
                        loan,
                        principal=Decimal("0"),
                        start_time=now,
                        last_payment_time=now,
                        active=False,
                        closed_reason=CloseReason.REPAID,
                    )
                else:
                    updated = replace(
                        loan,
                        principal=plan.new_principal,
                        start_time=now,
                        last_payment_time=now,
                    )
                self._loans[loan_id] = updated

        if plan.closes:
            logger.info("Loan %d fully repaid (%s) and closed", loan_id, plan.actual_repayment)
        else:
            logger.info(
                "Loan %d partially repaid: %s paid, %s remaining",
                loan_id, plan.actual_repayment, plan.remaining_debt,
            )
        return RepayResult(
            loan_id=loan_id,
            repaid=plan.actual_repayment,
            remaining_debt=plan.remaining_debt,
            closed=plan.closes,
        )

    # ------------------------------------------------------------------
    # Health & liquidation
    # ------------------------------------------------------------------

    @lending_precision
    def health(self, loan_id: int, current_collateral_value: Any) -> LoanHealth:
        """
        Evaluate an active loan against a current collateral valuation.

        Raises:
            LoanNotFound, LoanClosed
        """
        loan = self._require_active(loan_id)
        pool = self.pools.get(loan.pool_name)
        return self.evaluator.evaluate(
            loan, pool.liquidation_threshold, current_collateral_value, self.clock.now()
        )

    @lending_precision
    def liquidate(
        self,
        loan_id: int,
        liquidator: str,
        current_collateral_value: Any,
    ) -> LiquidationResult:
        """
        Force-close a loan whose ratio is below its pool's liquidation threshold.

        The liquidator pays off the total debt and receives the collateral at
        a discount: received = collateral * (1 - liquidation_discount). The
        pool's total_borrowed drops by the outstanding principal.

        Raises:
            LoanNotFound, LoanClosed
            LoanNotLiquidatable: If the loan is HEALTHY or AT_RISK
        """
        with self._lock_for(loan_id):
            loan = self._require_active(loan_id)
            with self.pools.lock(loan.pool_name) as pool:
                now = self.clock.now()
                health = self.evaluator.evaluate(
                    loan, pool.liquidation_threshold, current_collateral_value, now
                )
                if health.status is not HealthStatus.LIQUIDATABLE:
                    logger.warning(
                        "Rejected liquidation of loan %d by %s: status %s (ratio %s)",
                        loan_id, liquidator, health.status.value, health.ratio,
                    )
                    raise LoanNotLiquidatable(
                        f"Loan {loan_id} is not eligible for liquidation "
                        f"({health.status.value}, ratio {health.ratio})"
                    )
                received, reward = calculate_liquidation(
                    health.collateral_value, health.total_debt, self.liquidation_discount
                )
                self.pools.adjust_borrowed(loan.pool_name, -loan.principal)
                self._loans[loan_id] = replace(
                    loan,
                    active=False,
                    closed_reason=CloseReason.LIQUIDATED,
                )

        logger.info(
            "Loan %d liquidated by %s: debt %s cleared, reward %s",
            loan_id, liquidator, health.total_debt, reward,
        )
        return LiquidationResult(
            loan_id=loan_id,
            liquidator=liquidator,
            debt_cleared=health.total_debt,
            collateral_seized=health.collateral_value,
            collateral_received=received,
            liquidator_reward=reward,
        )

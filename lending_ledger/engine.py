"""
engine.py - The lending engine aggregate

LendingEngine owns one of each store (pools, loans, lender deposits,
strategies, yield positions) and the clock they share. There is no module
level state: two engines never see each other's pools or loans.

Key responsibilities:
    - Single entry point for callers (a service layer, a CLI)
    - Fetches collateral valuations from the configured source for
      vault-backed operations (blocking and async)
    - Records every successful mutation in an append-only audit trail;
      rejected operations leave no entry
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging
import threading

from .clock import Clock, SystemClock
from .collateral import (
    DEFAULT_COLLATERAL_TIMEOUT,
    AsyncCollateralSource, CollateralSource,
    afetch_collateral_value, fetch_collateral_value,
)
from .core import (
    DEBT_EPSILON, DEFAULT_LIQUIDATION_DISCOUNT,
    ClaimResult, LendingError, LendingPool, LendingPosition, LiquidationResult,
    LoanHealth, LoanPosition, PoolStats, RepayResult, WithdrawalResult,
    YieldPosition, YieldStrategy,
)
from .deposits import LendingLedger
from .health import HealthEvaluator
from .loans import LoanLedger
from .pools import LendingPoolRegistry
from .yields import CompoundResult, YieldPositionLedger, YieldStrategyRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """One audit-trail entry. details holds the operation's inputs and outcome."""
    sequence: int
    timestamp: int
    kind: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EngineOverview:
    pools: Tuple[PoolStats, ...]
    active_loans: int
    lending_positions: int
    yield_positions: int


class LendingEngine:
    """
    Aggregate store for pools, loans, deposits and yield positions.

    Example:
        engine = LendingEngine(clock=ManualClock(0))
        engine.register_pool(LendingPool("TRAVEL_MAIN", 100, 8.5, 1.5, 1.2))
        loan = engine.borrow("alice", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
        engine.repay(loan.id, Decimal("10"))
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        collateral_source: Optional[CollateralSource] = None,
        async_collateral_source: Optional[AsyncCollateralSource] = None,
        collateral_timeout: float = DEFAULT_COLLATERAL_TIMEOUT,
        debt_epsilon: Any = DEBT_EPSILON,
        liquidation_discount: Any = DEFAULT_LIQUIDATION_DISCOUNT,
        evaluator: Optional[HealthEvaluator] = None,
    ):
        self.clock = clock or SystemClock()
        self.collateral_source = collateral_source
        self.async_collateral_source = async_collateral_source
        self.collateral_timeout = collateral_timeout

        self.pools = LendingPoolRegistry()
        self.loans = LoanLedger(
            self.pools, self.clock,
            evaluator=evaluator,
            debt_epsilon=debt_epsilon,
            liquidation_discount=liquidation_discount,
        )
        self.deposits = LendingLedger(self.pools, self.clock)
        self.strategies = YieldStrategyRegistry()
        self.yields = YieldPositionLedger(self.strategies, self.clock)

        self._events: List[LedgerEvent] = []
        self._events_lock = threading.Lock()

    # ========================================================================
    # AUDIT TRAIL
    # ========================================================================

    @property
    def events(self) -> List[LedgerEvent]:
        """Copy of the audit trail, oldest first."""
        with self._events_lock:
            return list(self._events)

    def _record(self, kind: str, **details: Any) -> LedgerEvent:
        with self._events_lock:
            event = LedgerEvent(
                sequence=len(self._events) + 1,
                timestamp=self.clock.now(),
                kind=kind,
                details=details,
            )
            self._events.append(event)
        logger.debug("Event %d %s %s", event.sequence, kind, details)
        return event

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_pool(self, pool: LendingPool) -> LendingPool:
        self.pools.register_pool(pool)
        self._record("pool_registered", pool=pool.name, total_liquidity=pool.total_liquidity)
        return pool

    def register_strategy(self, strategy: YieldStrategy) -> YieldStrategy:
        self.strategies.register(strategy)
        self._record("strategy_registered", strategy=strategy.name, apy=strategy.apy)
        return strategy

    # ========================================================================
    # LOANS
    # ========================================================================

    def borrow(
        self,
        borrower: str,
        pool_name: str,
        collateral_value: Any,
        requested_amount: Any,
        vault_id: Optional[str] = None,
    ) -> LoanPosition:
        loan = self.loans.borrow(borrower, pool_name, collateral_value, requested_amount, vault_id)
        self._record(
            "loan_opened", loan_id=loan.id, borrower=borrower, pool=pool_name,
            principal=loan.principal, collateral=loan.collateral_value_at_origination,
        )
        return loan

    def repay(self, loan_id: int, amount: Any) -> RepayResult:
        result = self.loans.repay(loan_id, amount)
        self._record(
            "loan_repaid", loan_id=loan_id, repaid=result.repaid,
            remaining_debt=result.remaining_debt, closed=result.closed,
        )
        return result

    def health(self, loan_id: int, current_collateral_value: Any) -> LoanHealth:
        return self.loans.health(loan_id, current_collateral_value)

    def liquidate(self, loan_id: int, liquidator: str, current_collateral_value: Any) -> LiquidationResult:
        result = self.loans.liquidate(loan_id, liquidator, current_collateral_value)
        self._record(
            "loan_liquidated", loan_id=loan_id, liquidator=liquidator,
            debt_cleared=result.debt_cleared, liquidator_reward=result.liquidator_reward,
        )
        return result

    # ------------------------------------------------------------------------
    # Vault-backed (valuation fetched from the configured source)
    # ------------------------------------------------------------------------

    def _source(self) -> CollateralSource:
        if self.collateral_source is None:
            raise LendingError("No collateral source configured")
        return self.collateral_source

    def _async_source(self) -> AsyncCollateralSource:
        if self.async_collateral_source is None:
            raise LendingError("No async collateral source configured")
        return self.async_collateral_source

    def borrow_against_vault(
        self,
        borrower: str,
        vault_id: str,
        pool_name: str,
        requested_amount: Any,
    ) -> LoanPosition:
        """
        Borrow against the borrower's contribution to a vault.

        Raises:
            CollateralUnavailable: If the valuation source fails
            CollateralNotFound: If the borrower has no contribution in the vault
            plus everything LoanLedger.borrow raises
        """
        value = fetch_collateral_value(self._source(), borrower, vault_id)
        return self.borrow(borrower, pool_name, value, requested_amount, vault_id=vault_id)

    async def aborrow_against_vault(
        self,
        borrower: str,
        vault_id: str,
        pool_name: str,
        requested_amount: Any,
    ) -> LoanPosition:
        """Async variant of borrow_against_vault, bounded by collateral_timeout."""
        value = await afetch_collateral_value(
            self._async_source(), borrower, vault_id, self.collateral_timeout
        )
        return self.borrow(borrower, pool_name, value, requested_amount, vault_id=vault_id)

    def _vault_of(self, loan_id: int, vault_id: Optional[str]) -> str:
        vault = vault_id or self.loans.get(loan_id).vault_id
        if vault is None:
            raise ValueError(f"Loan {loan_id} has no vault; pass vault_id")
        return vault

    def loan_health_from_vault(self, loan_id: int, vault_id: Optional[str] = None) -> LoanHealth:
        loan = self.loans.get(loan_id)
        value = fetch_collateral_value(self._source(), loan.borrower, self._vault_of(loan_id, vault_id))
        return self.health(loan_id, value)

    def liquidate_from_vault(
        self,
        loan_id: int,
        liquidator: str,
        vault_id: Optional[str] = None,
    ) -> LiquidationResult:
        loan = self.loans.get(loan_id)
        value = fetch_collateral_value(self._source(), loan.borrower, self._vault_of(loan_id, vault_id))
        return self.liquidate(loan_id, liquidator, value)

    # ========================================================================
    # LENDING
    # ========================================================================

    def deposit(self, lender: str, pool_name: str, amount: Any) -> LendingPosition:
        position = self.deposits.deposit(lender, pool_name, amount)
        self._record(
            "liquidity_deposited", position_id=position.id, lender=lender,
            pool=pool_name, amount=position.amount,
        )
        return position

    def withdraw(self, position_id: int) -> WithdrawalResult:
        result = self.deposits.withdraw(position_id)
        self._record(
            "liquidity_withdrawn", position_id=position_id,
            principal=result.principal, interest=result.interest,
        )
        return result

    # ========================================================================
    # YIELD
    # ========================================================================

    def enroll(
        self,
        user: str,
        strategy_name: str,
        principal: Any,
        vault_id: Optional[str] = None,
    ) -> YieldPosition:
        position = self.yields.enroll(user, strategy_name, principal, vault_id)
        self._record(
            "yield_enrolled", position_id=position.id, user=user,
            strategy=strategy_name, principal=position.principal,
        )
        return position

    def enroll_vault(self, user: str, vault_id: str, strategy_name: str) -> YieldPosition:
        """Enroll the user's whole vault contribution in a strategy."""
        self.strategies.get(strategy_name)
        value = fetch_collateral_value(self._source(), user, vault_id)
        return self.enroll(user, strategy_name, value, vault_id=vault_id)

    async def aenroll_vault(self, user: str, vault_id: str, strategy_name: str) -> YieldPosition:
        self.strategies.get(strategy_name)
        value = await afetch_collateral_value(
            self._async_source(), user, vault_id, self.collateral_timeout
        )
        return self.enroll(user, strategy_name, value, vault_id=vault_id)

    def claim(self, position_id: int) -> ClaimResult:
        result = self.yields.claim(position_id)
        self._record(
            "yield_claimed", position_id=position_id,
            amount=result.amount, total_earned=result.new_total_earned,
        )
        return result

    def compound(self, position_id: int, target_strategy: Optional[str] = None) -> CompoundResult:
        result = self.yields.compound(position_id, target_strategy)
        self._record(
            "yield_compounded", position_id=position_id, amount=result.claim.amount,
            into_position=result.position.id,
        )
        return result

    def emergency_withdraw(self, position_id: int) -> Decimal:
        principal = self.yields.emergency_withdraw(position_id)
        self._record("yield_emergency_withdrawn", position_id=position_id, principal=principal)
        return principal

    # ========================================================================
    # REPORTING
    # ========================================================================

    def overview(self) -> EngineOverview:
        return EngineOverview(
            pools=tuple(self.pools.all_stats()),
            active_loans=self.loans.active_count(),
            lending_positions=self.deposits.active_count(),
            yield_positions=self.yields.active_count(),
        )

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Check pool bounds and that each pool's total_borrowed equals the sum of
        its active loan principals.

        Returns:
            Dict with 'valid' (bool) and 'discrepancies' (list of dicts)
        """
        discrepancies: List[Dict[str, Any]] = []
        bounds = self.pools.verify_invariants()
        discrepancies.extend(bounds['violations'])
        for name in self.pools.names():
            borrowed = self.pools.get(name).total_borrowed
            outstanding = self.loans.outstanding_principal(name)
            if abs(borrowed - outstanding) > Decimal("1e-9"):
                discrepancies.append({
                    'pool': name,
                    'total_borrowed': borrowed,
                    'outstanding_principal': outstanding,
                })
        return {'valid': len(discrepancies) == 0, 'discrepancies': discrepancies}

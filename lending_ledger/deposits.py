"""
deposits.py - Lender positions

A lender deposits into a pool and earns the pool's lend rate
(borrow_apr * lender_share) frozen at deposit time. Earnings are read-only
accruals; nothing here touches a deposit's amount.

Withdrawal:
    A lender may exit while the pool has enough unborrowed liquidity to
    return the deposit. The pool's total_liquidity drops by the deposit
    amount; earned interest is reported for settlement outside the pool.
    The position is kept, marked inactive.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import threading

from .clock import Clock
from .core import (
    LendingPosition, WithdrawalResult,
    BelowMinimum, InsufficientLiquidity, PositionClosed, PositionNotFound,
    lending_precision, to_decimal,
)
from .interest import accrued
from .pools import LendingPoolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LendingPositionView:
    """A lending position with its earnings at a point in time."""
    position: LendingPosition
    earned_interest: Decimal
    total_value: Decimal


@lending_precision
def earned_interest(position: LendingPosition, now: int) -> Decimal:
    """Interest earned by a position; frozen at withdrawal for inactive positions."""
    end = position.withdrawn_at if position.withdrawn_at is not None else now
    return accrued(position.amount, position.interest_rate, position.start_time, end)


class LendingLedger:
    """Arena of lending positions keyed by monotonic ids."""

    def __init__(self, pools: LendingPoolRegistry, clock: Clock):
        self.pools = pools
        self.clock = clock
        self._positions: Dict[int, LendingPosition] = {}
        self._ids_lock = threading.Lock()
        self._next_id = 1

    def get(self, position_id: int) -> LendingPosition:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(f"Lending position {position_id} not found") from None

    def deposit(self, lender: str, pool_name: str, amount: Any) -> LendingPosition:
        """
        Deposit liquidity into a pool.

        Args:
            lender: Lender identity
            pool_name: Pool to lend to
            amount: Deposit amount

        Returns:
            The new LendingPosition

        Raises:
            PoolNotFound: If the pool is not registered
            BelowMinimum: If amount is below the pool's minimum deposit
        """
        amount = to_decimal(amount)
        with self.pools.lock(pool_name) as pool:
            if amount < pool.minimum_deposit or amount <= 0:
                logger.warning(
                    "Rejected deposit by %s on %s: %s below minimum %s",
                    lender, pool_name, amount, pool.minimum_deposit,
                )
                raise BelowMinimum(
                    f"Minimum lending amount is {pool.minimum_deposit}, got {amount}"
                )
            now = self.clock.now()
            self.pools.adjust_liquidity(pool_name, amount)
            with self._ids_lock:
                position = LendingPosition(
                    id=self._next_id,
                    lender=lender,
                    pool_name=pool_name,
                    amount=amount,
                    interest_rate=pool.lend_rate,
                    start_time=now,
                )
                self._positions[position.id] = position
                self._next_id += 1

        logger.info(
            "Lending position %d: %s deposited %s into %s at %s%%",
            position.id, lender, amount, pool_name, position.interest_rate,
        )
        return position

    def earned_interest(self, position_id: int, now: Optional[int] = None) -> Decimal:
        position = self.get(position_id)
        return earned_interest(position, self.clock.now() if now is None else now)

    @lending_precision
    def positions_for(self, lender: str) -> List[LendingPositionView]:
        """Active positions of a lender with current earnings."""
        now = self.clock.now()
        views = []
        for position_id, position in sorted(self._positions.items()):
            if position.lender != lender or not position.active:
                continue
            earned = earned_interest(position, now)
            views.append(LendingPositionView(
                position=position,
                earned_interest=earned,
                total_value=position.amount + earned,
            ))
        return views

    def active_count(self) -> int:
        return sum(1 for p in self._positions.values() if p.active)

    @lending_precision
    def withdraw(self, position_id: int) -> WithdrawalResult:
        """
        Withdraw a lending position in full.

        Raises:
            PositionNotFound: If the id was never issued
            PositionClosed: If the position was already withdrawn
            InsufficientLiquidity: If the pool cannot return the deposit
                because too much of it is currently borrowed
        """
        position = self.get(position_id)
        with self.pools.lock(position.pool_name) as pool:
            # Re-read under the pool lock: a concurrent withdrawal may have won.
            position = self._positions[position_id]
            if not position.active:
                raise PositionClosed(f"Lending position {position_id} already withdrawn")
            if position.amount > pool.available_liquidity:
                logger.warning(
                    "Rejected withdrawal of position %d: %s requested, %s available",
                    position_id, position.amount, pool.available_liquidity,
                )
                raise InsufficientLiquidity(
                    f"Pool {pool.name} has {pool.available_liquidity} available, "
                    f"withdrawal needs {position.amount}"
                )
            now = self.clock.now()
            interest = earned_interest(position, now)
            self.pools.adjust_liquidity(position.pool_name, -position.amount)
            self._positions[position_id] = replace(position, active=False, withdrawn_at=now)

        logger.info(
            "Lending position %d withdrawn: principal %s, interest %s",
            position_id, position.amount, interest,
        )
        return WithdrawalResult(
            position_id=position_id,
            principal=position.amount,
            interest=interest,
            total=position.amount + interest,
        )

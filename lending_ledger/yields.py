"""
yields.py - Yield strategies and per-user yield positions

A user enrolls principal (usually a snapshot of a vault contribution) in a
named strategy. Yield accrues as simple interest at the strategy APY from
the last claim:

    accrued_yield = accrued(principal, strategy.apy, last_claim_time, now)

claim() moves the accrual into earned_claimed and restarts the window, so two
claims half a year apart each pay half a year of yield. emergency_withdraw()
returns the principal and forfeits whatever has not been claimed.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import threading

from .clock import Clock
from .core import (
    YieldStrategy, YieldPosition, ClaimResult,
    BelowMinimumDeposit, DuplicateStrategy, NothingToClaim,
    PositionNotFound, StrategyNotFound,
    lending_precision, to_decimal,
)
from .interest import accrued

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True, slots=True)
class YieldPositionView:
    position: YieldPosition
    strategy: YieldStrategy
    current_yield: Decimal
    total_value: Decimal


@dataclass(frozen=True, slots=True)
class YieldStats:
    total_principal: Decimal
    total_yield: Decimal
    total_value: Decimal
    active_positions: int
    average_apy: Decimal


@dataclass(frozen=True, slots=True)
class CompoundResult:
    """The claim, and the position that received the claimed amount."""
    claim: ClaimResult
    position: YieldPosition


# =============================================================================
# STRATEGY REGISTRY
# =============================================================================

class YieldStrategyRegistry:
    """Named strategies, immutable once registered."""

    def __init__(self):
        self._strategies: Dict[str, YieldStrategy] = {}
        self._lock = threading.Lock()

    def register(self, strategy: YieldStrategy) -> YieldStrategy:
        with self._lock:
            if strategy.name in self._strategies:
                raise DuplicateStrategy(f"Strategy {strategy.name} already registered")
            self._strategies[strategy.name] = strategy
        logger.info(
            "Registered strategy %s: apy=%s%% risk=%s minimum=%s",
            strategy.name, strategy.apy, strategy.risk_level.value, strategy.minimum_deposit,
        )
        return strategy

    def get(self, name: str) -> YieldStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise StrategyNotFound(f"Strategy {name} not found") from None

    def available(self) -> List[YieldStrategy]:
        return list(self._strategies.values())

    def __contains__(self, name: str) -> bool:
        return name in self._strategies


# =============================================================================
# POSITION LEDGER
# =============================================================================

class YieldPositionLedger:
    """
    Arena of yield positions keyed by monotonic ids.

    Example:
        yields = YieldPositionLedger(strategies, clock)
        position = yields.enroll("alice", "CONSERVATIVE", Decimal("1.0"))
        clock.advance(SECONDS_PER_YEAR // 2)
        yields.claim(position.id).amount  # Decimal("0.0275")
    """

    def __init__(self, strategies: YieldStrategyRegistry, clock: Clock):
        self.strategies = strategies
        self.clock = clock
        self._positions: Dict[int, YieldPosition] = {}
        self._position_locks: Dict[int, threading.RLock] = {}
        self._ids_lock = threading.Lock()
        self._next_id = 1

    def get(self, position_id: int) -> YieldPosition:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(f"Yield position {position_id} not found") from None

    def _lock_for(self, position_id: int) -> threading.RLock:
        try:
            return self._position_locks[position_id]
        except KeyError:
            raise PositionNotFound(f"Yield position {position_id} not found") from None

    def enroll(
        self,
        user: str,
        strategy_name: str,
        principal: Any,
        vault_id: Optional[str] = None,
    ) -> YieldPosition:
        """
        Enroll principal in a strategy.

        Raises:
            StrategyNotFound: If the strategy is not registered
            BelowMinimumDeposit: If principal is below the strategy minimum
        """
        strategy = self.strategies.get(strategy_name)
        principal = to_decimal(principal)
        if principal <= 0 or principal < strategy.minimum_deposit:
            logger.warning(
                "Rejected enrolment of %s in %s: %s below minimum %s",
                user, strategy_name, principal, strategy.minimum_deposit,
            )
            raise BelowMinimumDeposit(
                f"Minimum deposit of {strategy.minimum_deposit} required for "
                f"{strategy.display_name or strategy.name}, got {principal}"
            )

        now = self.clock.now()
        with self._ids_lock:
            position = YieldPosition(
                id=self._next_id,
                user=user,
                strategy_name=strategy_name,
                principal=principal,
                start_time=now,
                last_claim_time=now,
                vault_id=vault_id,
            )
            self._positions[position.id] = position
            self._position_locks[position.id] = threading.RLock()
            self._next_id += 1

        logger.info(
            "Yield position %d: %s enrolled %s in %s at %s%%",
            position.id, user, principal, strategy_name, strategy.apy,
        )
        return position

    def accrued_yield(self, position_id: int, now: Optional[int] = None) -> Decimal:
        position = self.get(position_id)
        return self._accrued(position, self.clock.now() if now is None else now)

    @lending_precision
    def _accrued(self, position: YieldPosition, now: int) -> Decimal:
        strategy = self.strategies.get(position.strategy_name)
        return accrued(position.principal, strategy.apy, position.last_claim_time, now)

    @lending_precision
    def claim(self, position_id: int) -> ClaimResult:
        """
        Claim accrued yield and restart the accrual window at now.

        Raises:
            PositionNotFound: If the position does not exist
            NothingToClaim: If nothing has accrued since the last claim
        """
        with self._lock_for(position_id):
            position = self.get(position_id)
            now = self.clock.now()
            amount = self._accrued(position, now)
            if amount == 0:
                raise NothingToClaim(f"No yield to claim on position {position_id}")
            updated = replace(
                position,
                earned_claimed=position.earned_claimed + amount,
                last_claim_time=now,
            )
            self._positions[position_id] = updated

        logger.info("Claimed %s from yield position %d (%s)", amount, position_id, position.strategy_name)
        return ClaimResult(
            position_id=position_id,
            amount=amount,
            new_total_earned=updated.earned_claimed,
            strategy_name=position.strategy_name,
        )

    @lending_precision
    def compound(self, position_id: int, target_strategy: Optional[str] = None) -> CompoundResult:
        """
        Claim yield and put it back to work.

        With no target (or the position's own strategy) the claimed amount is
        added to this position's principal. With another target it is enrolled
        there as a new position, subject to that strategy's minimum deposit.

        Raises:
            PositionNotFound, NothingToClaim
            StrategyNotFound: If target_strategy is not registered
            BelowMinimumDeposit: If the claim is too small for target_strategy
        """
        with self._lock_for(position_id):
            position = self.get(position_id)
            same_strategy = target_strategy in (None, position.strategy_name)

            if not same_strategy:
                target = self.strategies.get(target_strategy)
                pending = self._accrued(position, self.clock.now())
                if pending > 0 and pending < target.minimum_deposit:
                    raise BelowMinimumDeposit(
                        f"Claimable {pending} is below the {target.name} minimum "
                        f"of {target.minimum_deposit}"
                    )

            claim = self.claim(position_id)
            if same_strategy:
                claimed = self._positions[position_id]
                updated = replace(claimed, principal=claimed.principal + claim.amount)
                self._positions[position_id] = updated
                logger.info("Compounded %s into yield position %d", claim.amount, position_id)
                return CompoundResult(claim=claim, position=updated)

        new_position = self.enroll(position.user, target_strategy, claim.amount, position.vault_id)
        return CompoundResult(claim=claim, position=new_position)

    def emergency_withdraw(self, position_id: int) -> Decimal:
        """
        Remove a position and return its principal. Unclaimed yield is forfeited.

        Raises:
            PositionNotFound: If the position does not exist
        """
        with self._lock_for(position_id):
            position = self.get(position_id)
            forfeited = self._accrued(position, self.clock.now())
            del self._positions[position_id]
            del self._position_locks[position_id]

        logger.warning(
            "Emergency withdrawal from yield position %d (%s): principal %s, forfeited %s",
            position_id, position.strategy_name, position.principal, forfeited,
        )
        return position.principal

    @lending_precision
    def positions_for(self, user: str) -> List[YieldPositionView]:
        now = self.clock.now()
        views = []
        for position_id, position in sorted(self._positions.items()):
            if position.user != user:
                continue
            current = self._accrued(position, now)
            views.append(YieldPositionView(
                position=position,
                strategy=self.strategies.get(position.strategy_name),
                current_yield=current,
                total_value=position.principal + current,
            ))
        return views

    @lending_precision
    def total_stats(self, user: str) -> YieldStats:
        views = self.positions_for(user)
        total_principal = sum((v.position.principal for v in views), Decimal("0"))
        total_yield = sum((v.current_yield for v in views), Decimal("0"))
        if views:
            average_apy = sum((v.strategy.apy for v in views), Decimal("0")) / len(views)
        else:
            average_apy = Decimal("0")
        return YieldStats(
            total_principal=total_principal,
            total_yield=total_yield,
            total_value=total_principal + total_yield,
            active_positions=len(views),
            average_apy=average_apy,
        )

    def active_count(self) -> int:
        return len(self._positions)

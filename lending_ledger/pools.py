"""
pools.py - Lending pool registry

Holds every LendingPool by name and is the only place pool totals change.

Locking:
    Each pool has its own re-entrant lock. adjust_liquidity/adjust_borrowed
    take it for a single check-then-write; callers that need several steps to
    be atomic (borrow, repay, liquidate, withdraw) hold lock(name) around the
    whole sequence. Pools never share a lock, so operations on different pools
    never block each other.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Iterator, List
import logging
import threading

from .core import (
    QUANTITY_EPSILON,
    LendingPool, PoolStats,
    DuplicatePool, PoolNotFound, InsufficientLiquidity,
    lending_precision, to_decimal,
)

logger = logging.getLogger(__name__)

# Parameters reconfigure() may change. Totals are only moved by adjustments.
_RECONFIGURABLE = (
    'display_name', 'borrow_apr', 'collateral_ratio', 'liquidation_threshold',
    'minimum_deposit', 'lender_share',
)


class LendingPoolRegistry:
    """
    Named pools with per-pool serialized mutation.

    Invariant (checked on every write): 0 <= total_borrowed <= total_liquidity.

    Example:
        pools = LendingPoolRegistry()
        pools.register_pool(LendingPool("TRAVEL_MAIN", 100, 8.5, 1.5, 1.2))
        with pools.lock("TRAVEL_MAIN"):
            pools.adjust_borrowed("TRAVEL_MAIN", Decimal("10"))
    """

    def __init__(self):
        self._pools: Dict[str, LendingPool] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def register_pool(self, pool: LendingPool) -> LendingPool:
        """
        Register a new pool.

        Raises:
            DuplicatePool: If a pool with the same name exists
        """
        with self._registry_lock:
            if pool.name in self._pools:
                raise DuplicatePool(f"Pool {pool.name} already registered")
            self._pools[pool.name] = pool
            self._locks[pool.name] = threading.RLock()
        logger.info(
            "Registered pool %s: liquidity=%s apr=%s%% collateral_ratio=%s",
            pool.name, pool.total_liquidity, pool.borrow_apr, pool.collateral_ratio,
        )
        return pool

    def get(self, name: str) -> LendingPool:
        """
        Return the current snapshot of a pool.

        Raises:
            PoolNotFound: If the pool is not registered
        """
        try:
            return self._pools[name]
        except KeyError:
            raise PoolNotFound(f"Pool {name} not found") from None

    def names(self) -> List[str]:
        return list(self._pools)

    def __contains__(self, name: str) -> bool:
        return name in self._pools

    @contextmanager
    def lock(self, name: str) -> Iterator[LendingPool]:
        """Exclusive critical section for one pool. Yields the pool snapshot at entry."""
        try:
            pool_lock = self._locks[name]
        except KeyError:
            raise PoolNotFound(f"Pool {name} not found") from None
        with pool_lock:
            yield self._pools[name]

    @lending_precision
    def adjust_liquidity(self, name: str, delta: Any) -> LendingPool:
        """
        Add delta (may be negative) to a pool's total liquidity.

        Raises:
            PoolNotFound: If the pool is not registered
            InsufficientLiquidity: If liquidity would drop below borrowed or below zero
        """
        delta = to_decimal(delta)
        with self.lock(name) as pool:
            new_liquidity = pool.total_liquidity + delta
            if new_liquidity < 0 or new_liquidity < pool.total_borrowed:
                logger.warning(
                    "Rejected liquidity change on %s: %s + %s below borrowed %s",
                    name, pool.total_liquidity, delta, pool.total_borrowed,
                )
                raise InsufficientLiquidity(
                    f"Pool {name}: liquidity {pool.total_liquidity} + {delta} "
                    f"would fall below borrowed {pool.total_borrowed}"
                )
            updated = replace(pool, total_liquidity=new_liquidity)
            self._pools[name] = updated
            return updated

    @lending_precision
    def adjust_borrowed(self, name: str, delta: Any) -> LendingPool:
        """
        Add delta (may be negative) to a pool's total borrowed.

        Raises:
            PoolNotFound: If the pool is not registered
            InsufficientLiquidity: If borrowed would exceed liquidity
            ValueError: If borrowed would become negative
        """
        delta = to_decimal(delta)
        with self.lock(name) as pool:
            new_borrowed = pool.total_borrowed + delta
            if new_borrowed > pool.total_liquidity:
                logger.warning(
                    "Rejected borrow change on %s: %s + %s exceeds liquidity %s",
                    name, pool.total_borrowed, delta, pool.total_liquidity,
                )
                raise InsufficientLiquidity(
                    f"Pool {name}: available {pool.available_liquidity}, requested {delta}"
                )
            if Decimal("0") > new_borrowed > -QUANTITY_EPSILON:
                new_borrowed = Decimal("0")
            if new_borrowed < 0:
                raise ValueError(
                    f"Pool {name}: borrowed {pool.total_borrowed} + {delta} would be negative"
                )
            updated = replace(pool, total_borrowed=new_borrowed)
            self._pools[name] = updated
            return updated

    def reconfigure(self, name: str, **params: Any) -> LendingPool:
        """
        Replace risk parameters of a pool. Totals are untouched.

        Validation is the same as for a newly constructed pool.

        Raises:
            PoolNotFound: If the pool is not registered
            ValueError: If a parameter is unknown or invalid
        """
        unknown = set(params) - set(_RECONFIGURABLE)
        if unknown:
            raise ValueError(f"Cannot reconfigure {sorted(unknown)}")
        with self.lock(name) as pool:
            updated = replace(pool, **params)
            self._pools[name] = updated
        logger.info("Reconfigured pool %s: %s", name, params)
        return updated

    @lending_precision
    def stats(self, name: str) -> PoolStats:
        pool = self.get(name)
        return PoolStats(
            name=pool.name,
            display_name=pool.display_name or pool.name,
            total_liquidity=pool.total_liquidity,
            total_borrowed=pool.total_borrowed,
            available_liquidity=pool.available_liquidity,
            utilization=pool.utilization,
            borrow_apr=pool.borrow_apr,
            lend_rate=pool.lend_rate,
        )

    def all_stats(self) -> List[PoolStats]:
        return [self.stats(name) for name in self.names()]

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Verify that 0 <= total_borrowed <= total_liquidity holds for every pool.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every pool satisfies the invariant
            - 'available': Dict[str, Decimal] - available liquidity per pool
            - 'violations': List[Dict] - pool, total_borrowed, total_liquidity

        Example:
            result = pools.verify_invariants()
            assert result['valid'], result['violations']
        """
        available = {}
        violations = []
        for name, pool in self._pools.items():
            available[name] = pool.available_liquidity
            if not (Decimal("0") <= pool.total_borrowed <= pool.total_liquidity):
                violations.append({
                    'pool': name,
                    'total_borrowed': pool.total_borrowed,
                    'total_liquidity': pool.total_liquidity,
                })
        return {
            'valid': len(violations) == 0,
            'available': available,
            'violations': violations,
        }

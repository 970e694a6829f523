"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every effect of O is applied
        O fails ⟹ no effect of O is applied (pools, positions, audit trail)

Every mutation computes its full outcome before changing anything.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from lending_ledger import (
    LendingError, ManualClock, build_engine, default_config,
    InsufficientCollateral, InsufficientLiquidity, BelowMinimum,
    BelowMinimumDeposit, LoanClosed, LoanNotLiquidatable, NothingToClaim,
    PoolNotFound, CollateralNotFound, PositionClosed,
)
from lending_fixtures import T0, HALF_YEAR


def snapshot(engine, loan_ids=(), lending_ids=(), yield_ids=()):
    """Everything an operation could change, as comparable values."""
    return (
        tuple(engine.pools.get(name) for name in engine.pools.names()),
        tuple(engine.loans.get(i) for i in loan_ids),
        tuple(engine.deposits.get(i) for i in lending_ids),
        tuple(engine.yields.get(i) for i in yield_ids),
        len(engine.events),
    )


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(
        st.decimals(min_value=Decimal("0.01"), max_value=Decimal("200"), places=2),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("300"), places=2),
    )
    @settings(max_examples=100, deadline=None)
    def test_borrow_all_or_nothing(self, amount, collateral):
        """
        PROPERTY: A borrow either opens a loan and moves total_borrowed by
        exactly the amount, or changes nothing.
        """
        engine = build_engine(default_config(), clock=ManualClock(T0))
        engine.borrow("seed", "TRAVEL_MAIN", Decimal("60"), Decimal("40"))
        before = snapshot(engine, loan_ids=[1])

        try:
            loan = engine.borrow("alice", "TRAVEL_MAIN", collateral, amount)
        except LendingError:
            assert snapshot(engine, loan_ids=[1]) == before
            assert engine.loans.active_count() == 1
            return

        assert collateral / amount >= Decimal("1.5")
        assert engine.pools.get("TRAVEL_MAIN").total_borrowed == Decimal("40") + amount
        assert engine.loans.get(loan.id).principal == amount
        assert len(engine.events) == before[-1] + 1

    @given(st.decimals(min_value=Decimal("0"), max_value=Decimal("20"), places=2))
    @settings(max_examples=100, deadline=None)
    def test_liquidate_all_or_nothing(self, collateral):
        """
        PROPERTY: A liquidation of a non-LIQUIDATABLE loan leaves the loan,
        the pool and the audit trail untouched.
        """
        engine = build_engine(default_config(), clock=ManualClock(T0))
        loan = engine.borrow("alice", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
        before = snapshot(engine, loan_ids=[loan.id])

        try:
            engine.liquidate(loan.id, "dave", collateral)
        except LoanNotLiquidatable:
            assert collateral >= Decimal("12")
            assert snapshot(engine, loan_ids=[loan.id]) == before
            return

        assert collateral < Decimal("12")
        assert not engine.loans.get(loan.id).active
        assert engine.pools.get("TRAVEL_MAIN").total_borrowed == Decimal("0")


class TestRejectedOperations:
    """Each rejected operation leaves the whole engine as it was."""

    @pytest.fixture
    def populated(self, engine, clock):
        loan = engine.borrow("alice", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
        closed = engine.borrow("bob", "TRAVEL_MAIN", Decimal("16"), Decimal("10"))
        engine.repay(closed.id, Decimal("10"))
        lending = engine.deposit("lena", "TRAVEL_MAIN", Decimal("5"))
        position = engine.enroll("alice", "CONSERVATIVE", Decimal("1.0"))
        clock.advance(HALF_YEAR)
        ids = dict(loan_ids=[loan.id, closed.id], lending_ids=[lending.id], yield_ids=[position.id])
        return engine, ids, loan, closed, lending, position

    def test_insufficient_collateral(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(InsufficientCollateral):
            engine.borrow("carol", "TRAVEL_MAIN", Decimal("14"), Decimal("10"))
        assert snapshot(engine, **ids) == before

    def test_insufficient_liquidity(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(InsufficientLiquidity):
            engine.borrow("carol", "TRAVEL_MAIN", Decimal("1000"), Decimal("96"))
        assert snapshot(engine, **ids) == before

    def test_unknown_pool(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(PoolNotFound):
            engine.borrow("carol", "NOWHERE", Decimal("16"), Decimal("10"))
        assert snapshot(engine, **ids) == before

    def test_repay_closed_loan(self, populated):
        engine, ids, loan, closed, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(LoanClosed):
            engine.repay(closed.id, Decimal("1"))
        assert snapshot(engine, **ids) == before

    def test_non_positive_repay(self, populated):
        engine, ids, loan, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(ValueError):
            engine.repay(loan.id, Decimal("-1"))
        assert snapshot(engine, **ids) == before

    def test_liquidate_healthy(self, populated):
        engine, ids, loan, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(LoanNotLiquidatable):
            engine.liquidate(loan.id, "dave", Decimal("16"))
        assert snapshot(engine, **ids) == before

    def test_deposit_below_minimum(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(BelowMinimum):
            engine.deposit("lena", "TRAVEL_MAIN", Decimal("0.01"))
        assert snapshot(engine, **ids) == before

    def test_withdraw_twice(self, populated):
        engine, ids, loan, closed, lending, position = populated
        engine.withdraw(lending.id)
        before = snapshot(engine, **ids)
        with pytest.raises(PositionClosed):
            engine.withdraw(lending.id)
        assert snapshot(engine, **ids) == before

    def test_enroll_below_minimum(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(BelowMinimumDeposit):
            engine.enroll("alice", "AGGRESSIVE", Decimal("0.5"))
        assert snapshot(engine, **ids) == before
        assert engine.yields.active_count() == 1

    def test_compound_below_target_minimum(self, populated):
        engine, ids, loan, closed, lending, position = populated
        before = snapshot(engine, **ids)
        with pytest.raises(BelowMinimumDeposit):
            engine.compound(position.id, "AGGRESSIVE")
        assert snapshot(engine, **ids) == before

    def test_claim_nothing(self, populated):
        engine, ids, loan, closed, lending, position = populated
        engine.claim(position.id)
        before = snapshot(engine, **ids)
        with pytest.raises(NothingToClaim):
            engine.claim(position.id)
        assert snapshot(engine, **ids) == before

    def test_vault_not_found(self, populated):
        engine, ids, *_ = populated
        before = snapshot(engine, **ids)
        with pytest.raises(CollateralNotFound):
            engine.borrow_against_vault("mallory", "vault-1", "TRAVEL_MAIN", Decimal("1"))
        assert snapshot(engine, **ids) == before

"""
health.py - Loan health evaluation

Pure functions deriving a loan's collateral ratio and liquidation state from
its current debt and an externally supplied collateral valuation.

    ratio = collateral_value / total_debt

    HEALTHY       ratio >  threshold * 1.1
    AT_RISK       threshold <= ratio <= threshold * 1.1
    LIQUIDATABLE  ratio <  threshold

The evaluator never owns a loan; it reads the snapshot it is given.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any

from .core import (
    AT_RISK_BUFFER, QUANTITY_EPSILON,
    HealthStatus, LoanHealth, LoanPosition,
    lending_precision, to_decimal,
)
from .interest import accrued


def classify_ratio(ratio: Decimal, liquidation_threshold: Decimal) -> HealthStatus:
    """Map a collateral ratio onto HEALTHY / AT_RISK / LIQUIDATABLE."""
    if ratio < liquidation_threshold:
        return HealthStatus.LIQUIDATABLE
    if ratio > liquidation_threshold * AT_RISK_BUFFER:
        return HealthStatus.HEALTHY
    return HealthStatus.AT_RISK


@lending_precision
def collateral_ratio(collateral_value: Decimal, total_debt: Decimal) -> Decimal:
    """collateral / debt, or Infinity when there is no debt."""
    if total_debt < QUANTITY_EPSILON:
        return Decimal("Infinity")
    return collateral_value / total_debt


class HealthEvaluator:
    """
    Computes LoanHealth for loan snapshots. Holds no state.
    """

    @lending_precision
    def evaluate(
        self,
        loan: LoanPosition,
        liquidation_threshold: Any,
        current_collateral_value: Any,
        now: int,
    ) -> LoanHealth:
        """
        Evaluate a loan against a current collateral valuation.

        Args:
            loan: Loan snapshot (active)
            liquidation_threshold: Threshold of the loan's pool
            current_collateral_value: Valuation from the collateral source
            now: Evaluation time (Unix seconds)

        Returns:
            LoanHealth with debt breakdown, ratio and status

        Raises:
            ValueError: If the collateral value is negative
            InvalidTimeRange: If now is before the loan's start_time
        """
        threshold = to_decimal(liquidation_threshold)
        collateral = to_decimal(current_collateral_value)
        if collateral < 0:
            raise ValueError(f"collateral value must be non-negative, got {collateral}")

        interest = accrued(loan.principal, loan.interest_rate, loan.start_time, now)
        total_debt = loan.principal + interest
        ratio = collateral_ratio(collateral, total_debt)

        return LoanHealth(
            loan_id=loan.id,
            principal=loan.principal,
            accrued_interest=interest,
            total_debt=total_debt,
            collateral_value=collateral,
            ratio=ratio,
            liquidation_threshold=threshold,
            status=classify_ratio(ratio, threshold),
        )

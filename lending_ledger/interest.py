"""
interest.py - Simple interest accrual

The single source of truth for time-proportional growth. Loan debt and yield
earnings both use accrued(); they differ only in which side of the book the
result lands on.

    accrued = principal * (rate / 100) * (elapsed_seconds / SECONDS_PER_YEAR)

No compounding. Pure functions only.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any

from .core import SECONDS_PER_YEAR, InvalidTimeRange, lending_precision, to_decimal


_SECONDS_PER_YEAR = Decimal(SECONDS_PER_YEAR)
_HUNDRED = Decimal("100")


@lending_precision
def year_fraction(start_time: int, end_time: int) -> Decimal:
    """
    Fraction of a 365-day year between two Unix timestamps.

    Raises:
        InvalidTimeRange: If end_time is before start_time
    """
    if end_time < start_time:
        raise InvalidTimeRange(
            f"Accrual window ends before it starts: {end_time} < {start_time}"
        )
    return Decimal(end_time - start_time) / _SECONDS_PER_YEAR


@lending_precision
def accrued(
    principal: Any,
    annual_rate_percent: Any,
    start_time: int,
    now: int,
) -> Decimal:
    """
    Simple interest owed (or earned) on principal between start_time and now.

    Args:
        principal: Amount the rate applies to
        annual_rate_percent: Annual rate in percent (8.5 means 8.5%)
        start_time: Start of the accrual window (Unix seconds)
        now: End of the accrual window (Unix seconds)

    Returns:
        Accrued amount, never negative. Zero when start_time == now.

    Raises:
        InvalidTimeRange: If now < start_time
        ValueError: If principal or rate is negative

    Example:
        accrued(10, 8.5, t, t + SECONDS_PER_YEAR)  # Decimal("0.85")
    """
    principal = to_decimal(principal)
    rate = to_decimal(annual_rate_percent)
    if principal < 0:
        raise ValueError(f"principal must be non-negative, got {principal}")
    if rate < 0:
        raise ValueError(f"annual_rate_percent must be non-negative, got {rate}")

    fraction = year_fraction(start_time, now)
    if fraction == 0 or principal == 0 or rate == 0:
        return Decimal("0")
    return principal * (rate / _HUNDRED) * fraction

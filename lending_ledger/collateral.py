"""
collateral.py - Collateral valuation sources

The engine never looks up vault balances itself. A valuation source answers
"what is this user's contribution to this vault worth right now":

- a Decimal: the ETH-equivalent value (may legitimately be zero)
- None: the user has no contribution in that vault

Any exception from a source, and a timeout on the async path, surfaces as
CollateralUnavailable. A failing source is never read as zero collateral.

Classes:
- CollateralSource: Protocol for blocking sources
- AsyncCollateralSource: Protocol for async sources
- StaticCollateralSource: In-memory valuations
- ThreadedCollateralSource: Runs a blocking source off the event loop
"""

from __future__ import annotations
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from .core import CollateralNotFound, CollateralUnavailable, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_COLLATERAL_TIMEOUT = 10.0


@runtime_checkable
class CollateralSource(Protocol):
    """Blocking valuation of a user's vault contribution."""

    def get_collateral_value(self, user: str, vault_id: str) -> Optional[Decimal]:
        ...


@runtime_checkable
class AsyncCollateralSource(Protocol):
    """Async valuation of a user's vault contribution."""

    async def get_collateral_value(self, user: str, vault_id: str) -> Optional[Decimal]:
        ...


class StaticCollateralSource:
    """
    Valuations held in memory, keyed by (user, vault_id).

    Example:
        source = StaticCollateralSource({("alice", "vault-1"): Decimal("16")})
        source.get_collateral_value("alice", "vault-1")  # Decimal("16")
        source.get_collateral_value("bob", "vault-1")    # None
    """

    def __init__(self, values: Optional[Dict[Tuple[str, str], Any]] = None):
        self.values: Dict[Tuple[str, str], Decimal] = {
            key: to_decimal(value) for key, value in (values or {}).items()
        }

    def get_collateral_value(self, user: str, vault_id: str) -> Optional[Decimal]:
        return self.values.get((user, vault_id))

    def set_value(self, user: str, vault_id: str, value: Any) -> None:
        self.values[(user, vault_id)] = to_decimal(value)

    def remove(self, user: str, vault_id: str) -> None:
        self.values.pop((user, vault_id), None)

    def __repr__(self):
        return f"StaticCollateralSource({len(self.values)} valuations)"


class ThreadedCollateralSource:
    """Adapts a blocking CollateralSource to the async protocol via a worker thread."""

    def __init__(self, source: CollateralSource):
        self.source = source

    async def get_collateral_value(self, user: str, vault_id: str) -> Optional[Decimal]:
        return await asyncio.to_thread(self.source.get_collateral_value, user, vault_id)


def _checked(value: Optional[Any], user: str, vault_id: str) -> Decimal:
    if value is None:
        raise CollateralNotFound(f"No contribution found for {user} in vault {vault_id}")
    value = to_decimal(value)
    if value < 0:
        raise CollateralUnavailable(
            f"Source returned a negative valuation for {user} in vault {vault_id}: {value}"
        )
    return value


def fetch_collateral_value(source: CollateralSource, user: str, vault_id: str) -> Decimal:
    """
    Value a user's vault contribution through a blocking source.

    Raises:
        CollateralUnavailable: If the source raises or returns garbage
        CollateralNotFound: If the source reports no contribution
    """
    try:
        value = source.get_collateral_value(user, vault_id)
    except Exception as e:
        logger.error("Collateral valuation failed for %s/%s: %s", user, vault_id, e)
        raise CollateralUnavailable(
            f"Collateral valuation unavailable for {user} in vault {vault_id}: {e}"
        ) from e
    return _checked(value, user, vault_id)


async def afetch_collateral_value(
    source: AsyncCollateralSource,
    user: str,
    vault_id: str,
    timeout: float = DEFAULT_COLLATERAL_TIMEOUT,
) -> Decimal:
    """
    Value a user's vault contribution through an async source, with a timeout.

    Raises:
        CollateralUnavailable: If the source raises or does not answer in time
        CollateralNotFound: If the source reports no contribution
    """
    try:
        value = await asyncio.wait_for(source.get_collateral_value(user, vault_id), timeout)
    except asyncio.TimeoutError as e:
        logger.error("Collateral valuation timed out for %s/%s after %ss", user, vault_id, timeout)
        raise CollateralUnavailable(
            f"Collateral valuation for {user} in vault {vault_id} timed out after {timeout}s"
        ) from e
    except Exception as e:
        logger.error("Collateral valuation failed for %s/%s: %s", user, vault_id, e)
        raise CollateralUnavailable(
            f"Collateral valuation unavailable for {user} in vault {vault_id}: {e}"
        ) from e
    return _checked(value, user, vault_id)

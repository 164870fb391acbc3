"""Per-wallet cumulative trading totals.

The merge rules live in two pure functions so they can be checked without a
store:

- ``seed_user_stats``: first sale seen for a wallet; the role's totals are
  seeded from the sale and ``first_seen = last_activity = timestamp``.
- ``merge_user_stats``: add the amount to the role's volume, count one item,
  ``last_activity = max(last_activity, timestamp)``. ``first_seen`` is never
  changed after creation.

``UserStatAggregator`` applies them through the repository's
read-modify-write, which fails with ``ConcurrentUpdateError`` if another
writer touched the row in between.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING

from seaport_indexer.storage.repos import UserDTO, UserRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class SaleRole(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"


def seed_user_stats(address: str, role: SaleRole, amount: int, timestamp: int) -> UserDTO:
    is_seller = role is SaleRole.SELLER
    return UserDTO(
        address=address.lower(),
        total_volume_sold=amount if is_seller else 0,
        total_items_sold=1 if is_seller else 0,
        total_volume_bought=0 if is_seller else amount,
        total_items_bought=0 if is_seller else 1,
        first_seen=timestamp,
        last_activity=timestamp,
    )


def merge_user_stats(current: UserDTO, role: SaleRole, amount: int, timestamp: int) -> UserDTO:
    last_activity = max(current.last_activity, timestamp)
    if role is SaleRole.SELLER:
        return replace(
            current,
            total_volume_sold=current.total_volume_sold + amount,
            total_items_sold=current.total_items_sold + 1,
            last_activity=last_activity,
        )
    return replace(
        current,
        total_volume_bought=current.total_volume_bought + amount,
        total_items_bought=current.total_items_bought + 1,
        last_activity=last_activity,
    )


def apply_sale_side_to(
    current: UserDTO | None,
    *,
    address: str,
    role: SaleRole,
    amount: int,
    timestamp: int,
) -> UserDTO:
    """Seed or merge, depending on whether the wallet has a row yet."""
    if amount < 0:
        raise ValueError("amount must be non-negative")
    if current is None:
        return seed_user_stats(address, role, amount, timestamp)
    return merge_user_stats(current, role, amount, timestamp)


class UserStatAggregator:
    """Maintains the users table from sale effects."""

    async def apply_sale_side(
        self,
        session: AsyncSession,
        *,
        address: str,
        role: SaleRole,
        amount: int,
        timestamp: int,
    ) -> UserDTO:
        repo = UserRepository(session)
        updated = await repo.read_modify_write(
            address,
            lambda current: apply_sale_side_to(
                current,
                address=address,
                role=role,
                amount=amount,
                timestamp=timestamp,
            ),
        )
        logger.debug(
            "User %s updated as %s: +%d (sold=%d bought=%d)",
            updated.address,
            role.value,
            amount,
            updated.total_volume_sold,
            updated.total_volume_bought,
        )
        return updated

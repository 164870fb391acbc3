"""Exactly-once application of at-least-once deliveries.

Every applied event leaves a row in ``processed_events`` written in the
same transaction as its effects. A redelivered event finds the row and is
skipped; two workers racing on the same event collide on a primary key and
the loser rolls back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from seaport_indexer.storage.repos import DuplicateKeyError, ProcessedEventRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from seaport_indexer.storage.database import SessionScope

logger = logging.getLogger(__name__)

UnitOfWork = Callable[["AsyncSession"], Awaitable[object]]


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class IdempotencyGuard:
    """Runs a unit of work at most once per (transaction_hash, log_index)."""

    def __init__(self, scope: SessionScope) -> None:
        self._scope = scope

    async def run(
        self,
        key: tuple[str, int],
        *,
        event_name: str,
        block_number: int,
        unit: UnitOfWork,
    ) -> ApplyOutcome:
        """Apply ``unit`` inside one transaction unless ``key`` was already applied.

        Args:
            key: (transaction_hash, log_index) of the event.
            event_name: Stored on the ledger row.
            block_number: Stored on the ledger row.
            unit: Coroutine function receiving the transaction's session.

        Returns:
            APPLIED if the unit ran and committed, DUPLICATE otherwise.

        Raises:
            Any exception from ``unit`` other than DuplicateKeyError, after
            the transaction has been rolled back.
        """
        transaction_hash, log_index = key
        try:
            async with self._scope() as session:
                ledger = ProcessedEventRepository(session)
                if await ledger.exists(transaction_hash, log_index):
                    logger.debug("Event %s-%d already applied", transaction_hash, log_index)
                    return ApplyOutcome.DUPLICATE
                await unit(session)
                await ledger.insert(
                    transaction_hash,
                    log_index,
                    event_name=event_name,
                    block_number=block_number,
                )
        except DuplicateKeyError as e:
            logger.debug("Event %s-%d lost a duplicate race on %s", transaction_hash, log_index, e.table)
            return ApplyOutcome.DUPLICATE
        return ApplyOutcome.APPLIED

"""Recorders that turn decoded events into marketplace rows.

Each recorder writes only its own table. The sale recorder additionally
drives the aggregates a sale affects; all writes share the caller's session
and therefore its transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from seaport_indexer.ingestor.daily import DailyMetricsAggregator
from seaport_indexer.ingestor.models import (
    NATIVE_CURRENCY_SYMBOL,
    PLATFORM_NAME,
    ZERO_ADDRESS,
    BlockContext,
    OrderCancelled,
    OrderFulfilled,
    OrderValidated,
    SaleLegs,
)
from seaport_indexer.ingestor.user_stats import SaleRole, UserStatAggregator
from seaport_indexer.ingestor.volume import VolumeWindowTracker
from seaport_indexer.storage.models import OfferStatus
from seaport_indexer.storage.repos import (
    CancellationDTO,
    CancellationRepository,
    OfferDTO,
    OfferRepository,
    SaleDTO,
    SaleRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class SaleRecorder:
    """Records a fulfilled order as a Sale and applies its aggregate effects."""

    def __init__(
        self,
        *,
        user_stats: UserStatAggregator | None = None,
        volume: VolumeWindowTracker | None = None,
        daily: DailyMetricsAggregator | None = None,
    ) -> None:
        self.user_stats = user_stats or UserStatAggregator()
        self.volume = volume or VolumeWindowTracker()
        self.daily = daily or DailyMetricsAggregator()

    async def record(
        self,
        session: AsyncSession,
        event: OrderFulfilled,
        legs: SaleLegs,
        context: BlockContext,
    ) -> SaleDTO:
        """Insert the sale, then update both wallets, the collection and daily rollups.

        Raises:
            DuplicateKeyError: If a sale with the same key already exists. No
                aggregate is touched in that case.
        """
        sale = await SaleRepository(session).insert(
            SaleDTO(
                transaction_hash=context.transaction_hash,
                log_index=context.log_index,
                order_hash=event.order_hash,
                collection_address=legs.asset.collection_address,
                token_id=legs.asset.token_id,
                seller=event.offerer,
                buyer=event.recipient,
                price=legs.payment.amount,
                currency_symbol=legs.payment.currency_symbol,
                currency_address=legs.payment.currency_address,
                platform_name=PLATFORM_NAME,
                block_number=context.block_number,
                timestamp=context.block_timestamp,
                gas_used=context.gas_used,
                gas_price=context.gas_price,
            )
        )

        await self.user_stats.apply_sale_side(
            session,
            address=sale.seller,
            role=SaleRole.SELLER,
            amount=sale.price,
            timestamp=sale.timestamp,
        )
        await self.user_stats.apply_sale_side(
            session,
            address=sale.buyer,
            role=SaleRole.BUYER,
            amount=sale.price,
            timestamp=sale.timestamp,
        )
        await self.volume.apply_sale(
            session,
            collection_address=sale.collection_address,
            amount=sale.price,
            timestamp=sale.timestamp,
        )
        await self.daily.apply_sale(session, sale)

        logger.info(
            "Recorded sale %s: %s #%s %s -> %s for %d %s",
            sale.event_id,
            sale.collection_address,
            sale.token_id,
            sale.seller,
            sale.buyer,
            sale.price,
            sale.currency_symbol,
        )
        return sale


class OfferRecorder:
    """Records a validated order as an active Offer.

    The event carries no item data, so collection, token, price and expiry
    are left at their placeholder values for later enrichment.
    """

    async def record(self, session: AsyncSession, event: OrderValidated, context: BlockContext) -> OfferDTO:
        offer = await OfferRepository(session).insert(
            OfferDTO(
                transaction_hash=context.transaction_hash,
                log_index=context.log_index,
                collection_address=ZERO_ADDRESS,
                token_id=None,
                offerer=event.offerer,
                recipient=None,
                price=0,
                currency_symbol=NATIVE_CURRENCY_SYMBOL,
                currency_address=ZERO_ADDRESS,
                platform_name=PLATFORM_NAME,
                expiration_time=None,
                status=OfferStatus.ACTIVE.value,
                block_number=context.block_number,
                timestamp=context.block_timestamp,
            )
        )
        logger.debug("Recorded offer %s-%d by %s", offer.transaction_hash, offer.log_index, offer.offerer)
        return offer


class CancellationRecorder:
    """Records an order cancellation. Offer rows are not touched."""

    async def record(
        self,
        session: AsyncSession,
        event: OrderCancelled,
        context: BlockContext,
    ) -> CancellationDTO:
        cancellation = await CancellationRepository(session).insert(
            CancellationDTO(
                transaction_hash=context.transaction_hash,
                log_index=context.log_index,
                order_hash=event.order_hash,
                offerer=event.offerer,
                timestamp=context.block_timestamp,
                block_number=context.block_number,
            )
        )
        logger.debug("Recorded cancellation of %s by %s", cancellation.order_hash, cancellation.offerer)
        return cancellation

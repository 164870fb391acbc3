"""Per-day collection and wallet rollups keyed by UTC calendar day."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from seaport_indexer.ingestor.user_stats import SaleRole
from seaport_indexer.storage.repos import (
    DailyCollectionMetricsDTO,
    DailyMetricsRepository,
    DailyUserMetricsDTO,
    SaleDTO,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def utc_day(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, UTC).strftime("%Y-%m-%d")


def _fold_collection_day(
    current: DailyCollectionMetricsDTO | None,
    sale: SaleDTO,
    day: str,
    *,
    new_buyer: bool,
    new_seller: bool,
) -> DailyCollectionMetricsDTO:
    if current is None:
        return DailyCollectionMetricsDTO(
            collection_address=sale.collection_address.lower(),
            day=day,
            volume=sale.price,
            sales=1,
            unique_buyers=1 if new_buyer else 0,
            unique_sellers=1 if new_seller else 0,
            avg_price=sale.price,
            min_price=sale.price,
            max_price=sale.price,
        )
    volume = current.volume + sale.price
    sales = current.sales + 1
    return replace(
        current,
        volume=volume,
        sales=sales,
        unique_buyers=current.unique_buyers + (1 if new_buyer else 0),
        unique_sellers=current.unique_sellers + (1 if new_seller else 0),
        avg_price=volume // sales,
        min_price=sale.price if current.min_price is None else min(current.min_price, sale.price),
        max_price=sale.price if current.max_price is None else max(current.max_price, sale.price),
    )


def _fold_user_day(
    current: DailyUserMetricsDTO | None,
    address: str,
    day: str,
    role: SaleRole,
    amount: int,
) -> DailyUserMetricsDTO:
    base = current or DailyUserMetricsDTO(
        address=address.lower(),
        day=day,
        volume_sold=0,
        volume_bought=0,
        items_sold=0,
        items_bought=0,
    )
    if role is SaleRole.SELLER:
        return replace(base, volume_sold=base.volume_sold + amount, items_sold=base.items_sold + 1)
    return replace(base, volume_bought=base.volume_bought + amount, items_bought=base.items_bought + 1)


class DailyMetricsAggregator:
    """Maintains daily_collection_metrics and daily_user_metrics from sales."""

    async def apply_sale(self, session: AsyncSession, sale: SaleDTO) -> DailyCollectionMetricsDTO:
        repo = DailyMetricsRepository(session)
        day = utc_day(sale.timestamp)

        new_seller = await repo.add_participant(sale.collection_address, day, sale.seller, SaleRole.SELLER.value)
        new_buyer = await repo.add_participant(sale.collection_address, day, sale.buyer, SaleRole.BUYER.value)

        collection_day = _fold_collection_day(
            await repo.get_collection_day(sale.collection_address, day),
            sale,
            day,
            new_buyer=new_buyer,
            new_seller=new_seller,
        )
        await repo.save_collection_day(collection_day)

        for address, role in ((sale.seller, SaleRole.SELLER), (sale.buyer, SaleRole.BUYER)):
            user_day = _fold_user_day(await repo.get_user_day(address, day), address, day, role, sale.price)
            await repo.save_user_day(user_day)

        logger.debug(
            "Daily metrics %s/%s: volume=%d sales=%d",
            collection_day.collection_address,
            day,
            collection_day.volume,
            collection_day.sales,
        )
        return collection_day

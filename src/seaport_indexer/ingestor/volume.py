"""Rolling collection volume windows for surge detection.

Sales are accumulated into per-collection time buckets:
  key   = (collection_address, bucket_start)
  value = bucket_volume / bucket_sales partial sums, plus ``as_of`` (the
          latest sale timestamp folded into the bucket)

A window total covers the sales with ``as_of - window <= timestamp <= as_of``.
Buckets lying wholly inside that range contribute their partial sums. A bucket
that straddles the lower edge, or holds sales newer than ``as_of``, is resolved
from its Sale rows, so totals are exact for any bucket size.

The aggregation clock is event time: the latest sale timestamp seen for the
collection. Replaying the same events therefore yields the same numbers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from seaport_indexer.storage.repos import (
    CollectionDTO,
    CollectionRepository,
    SaleRepository,
    VolumeSnapshotDTO,
    VolumeSnapshotRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

WINDOW_1H = 60 * 60
WINDOW_24H = 24 * WINDOW_1H
WINDOW_7D = 7 * WINDOW_24H
WINDOWS = (WINDOW_1H, WINDOW_24H, WINDOW_7D)


@dataclass(frozen=True)
class VolumeWindowConfig:
    bucket_seconds: int = 60

    def __post_init__(self) -> None:
        if self.bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")


@dataclass(frozen=True)
class WindowTotals:
    as_of: int
    volume_1h: int = 0
    sales_1h: int = 0
    volume_24h: int = 0
    sales_24h: int = 0
    volume_7d: int = 0
    sales_7d: int = 0

    @staticmethod
    def _avg(volume: int, sales: int) -> int | None:
        return volume // sales if sales else None

    @property
    def avg_price_1h(self) -> int | None:
        return self._avg(self.volume_1h, self.sales_1h)

    @property
    def avg_price_24h(self) -> int | None:
        return self._avg(self.volume_24h, self.sales_24h)


def _inside(bucket: VolumeSnapshotDTO, *, lower: int, as_of: int) -> bool:
    return bucket.bucket_start >= lower and bucket.as_of <= as_of


def straddling_buckets(
    buckets: Iterable[VolumeSnapshotDTO], *, as_of: int, bucket_seconds: int
) -> list[int]:
    """Starts of buckets that overlap some window without lying inside it."""
    starts = []
    for bucket in buckets:
        if bucket.bucket_start > as_of:
            continue
        for window in WINDOWS:
            lower = as_of - window
            overlaps = bucket.bucket_start + bucket_seconds - 1 >= lower
            if overlaps and not _inside(bucket, lower=lower, as_of=as_of):
                starts.append(bucket.bucket_start)
                break
    return starts


def compute_window_totals(
    buckets: Iterable[VolumeSnapshotDTO],
    *,
    as_of: int,
    edge_sales: Iterable[tuple[int, int]] = (),
    bucket_seconds: int = 1,
) -> WindowTotals:
    """Sum the 1h/24h/7d windows ending at ``as_of``.

    Args:
        buckets: Snapshots of one collection.
        as_of: Inclusive upper end of every window.
        edge_sales: ``(timestamp, amount)`` of the sales in straddling
            buckets. Sales of buckets counted whole are ignored, so passing
            extra sales is harmless.
        bucket_seconds: Bucket width the snapshots were written with.
    """
    buckets = list(buckets)
    sums = {window: [0, 0] for window in WINDOWS}
    by_start = {bucket.bucket_start: bucket for bucket in buckets}
    for window, acc in sums.items():
        lower = as_of - window
        for bucket in buckets:
            if _inside(bucket, lower=lower, as_of=as_of):
                acc[0] += bucket.bucket_volume
                acc[1] += bucket.bucket_sales
        for timestamp, amount in edge_sales:
            if not lower <= timestamp <= as_of:
                continue
            bucket = by_start.get((timestamp // bucket_seconds) * bucket_seconds)
            if bucket is not None and _inside(bucket, lower=lower, as_of=as_of):
                continue
            acc[0] += amount
            acc[1] += 1
    return WindowTotals(
        as_of=as_of,
        volume_1h=sums[WINDOW_1H][0],
        sales_1h=sums[WINDOW_1H][1],
        volume_24h=sums[WINDOW_24H][0],
        sales_24h=sums[WINDOW_24H][1],
        volume_7d=sums[WINDOW_7D][0],
        sales_7d=sums[WINDOW_7D][1],
    )


class VolumeWindowTracker:
    """Maintains collections and collection_volume_snapshots from sale effects."""

    def __init__(self, *, config: VolumeWindowConfig | None = None) -> None:
        self._config = config or VolumeWindowConfig()

    @property
    def bucket_seconds(self) -> int:
        return self._config.bucket_seconds

    def bucket_start(self, timestamp: int) -> int:
        return (timestamp // self._config.bucket_seconds) * self._config.bucket_seconds

    async def apply_sale(
        self,
        session: AsyncSession,
        *,
        collection_address: str,
        amount: int,
        timestamp: int,
    ) -> CollectionDTO:
        """Fold one sale into the collection's bucket, windows and totals."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        collection_address = collection_address.lower()
        collections = CollectionRepository(session)
        snapshots = VolumeSnapshotRepository(session)

        existing = await collections.get(collection_address)
        as_of = max(existing.last_sale_at, timestamp) if existing else timestamp

        bucket = self.bucket_start(timestamp)
        previous = await snapshots.get(collection_address, bucket)
        snapshot_as_of = max(previous.as_of, timestamp) if previous else timestamp
        await snapshots.add_to_bucket(collection_address, bucket, amount=amount, as_of=snapshot_as_of)

        bucket_view = await self.window_totals(session, collection_address, as_of=snapshot_as_of)
        await snapshots.set_rolling(
            collection_address,
            bucket,
            volume_1h=bucket_view.volume_1h,
            volume_24h=bucket_view.volume_24h,
            sales_1h=bucket_view.sales_1h,
            sales_24h=bucket_view.sales_24h,
            avg_price_1h=bucket_view.avg_price_1h,
            avg_price_24h=bucket_view.avg_price_24h,
            as_of=snapshot_as_of,
        )

        totals = await self.window_totals(session, collection_address, as_of=as_of)

        def merge(current: CollectionDTO | None) -> CollectionDTO:
            if current is None:
                return CollectionDTO(
                    address=collection_address,
                    total_volume=amount,
                    total_sales=1,
                    volume_24h=totals.volume_24h,
                    volume_7d=totals.volume_7d,
                    sales_24h=totals.sales_24h,
                    sales_7d=totals.sales_7d,
                    last_sale_at=as_of,
                    created_at=timestamp,
                    updated_at=as_of,
                )
            return replace(
                current,
                total_volume=current.total_volume + amount,
                total_sales=current.total_sales + 1,
                volume_24h=totals.volume_24h,
                volume_7d=totals.volume_7d,
                sales_24h=totals.sales_24h,
                sales_7d=totals.sales_7d,
                last_sale_at=as_of,
                updated_at=as_of,
            )

        updated = await collections.read_modify_write(collection_address, merge)
        logger.debug(
            "Collection %s: total=%d sales=%d vol24h=%d vol7d=%d (as_of=%d)",
            collection_address,
            updated.total_volume,
            updated.total_sales,
            updated.volume_24h,
            updated.volume_7d,
            as_of,
        )
        return updated

    async def window_totals(
        self,
        session: AsyncSession,
        collection_address: str,
        *,
        as_of: int,
    ) -> WindowTotals:
        """Exact 1h/24h/7d totals for an arbitrary ``as_of``.

        Straddling buckets are read back from the sales table, which the sale
        recorder writes before calling ``apply_sale``.
        """
        collection_address = collection_address.lower()
        buckets = await VolumeSnapshotRepository(session).list_range(
            collection_address, start=self.bucket_start(as_of - WINDOW_7D), end=as_of
        )
        edge_sales: list[tuple[int, int]] = []
        sales = SaleRepository(session)
        for start in straddling_buckets(buckets, as_of=as_of, bucket_seconds=self.bucket_seconds):
            rows = await sales.list_by_collection(
                collection_address, since=start, until=start + self.bucket_seconds - 1
            )
            edge_sales.extend((sale.timestamp, sale.price) for sale in rows)
        return compute_window_totals(
            buckets, as_of=as_of, edge_sales=edge_sales, bucket_seconds=self.bucket_seconds
        )

    async def snapshot_history(
        self,
        session: AsyncSession,
        collection_address: str,
        *,
        since: int,
        until: int,
    ) -> list[VolumeSnapshotDTO]:
        """Snapshots whose bucket starts in ``[since, until]``, oldest first."""
        return await VolumeSnapshotRepository(session).list_range(
            collection_address, start=self.bucket_start(since), end=until
        )

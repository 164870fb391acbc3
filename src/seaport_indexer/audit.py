"""Reconcile derived aggregates against the Sale rows they were built from.

Sales are the source of truth. Every aggregate (user totals, collection
totals, rolling windows) must be reproducible by a full recomputation; a
mismatch means a unit of work was applied twice, partially, or not at all.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from seaport_indexer.ingestor.volume import (
    WINDOW_1H,
    WINDOW_7D,
    WINDOW_24H,
    VolumeWindowConfig,
    VolumeWindowTracker,
    WindowTotals,
)
from seaport_indexer.storage.repos import CollectionRepository, SaleDTO, SaleRepository, UserRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mismatch:
    entity: str
    key: str
    field: str
    expected: int | None
    actual: int | None

    def __str__(self) -> str:
        return f"{self.entity}[{self.key}].{self.field}: expected {self.expected}, found {self.actual}"


class AggregateInvariantViolation(Exception):
    """Raised when a stored aggregate differs from its recomputation."""

    def __init__(self, mismatches: list[Mismatch]) -> None:
        preview = "; ".join(str(m) for m in mismatches[:5])
        more = f" (+{len(mismatches) - 5} more)" if len(mismatches) > 5 else ""
        super().__init__(f"{len(mismatches)} aggregate mismatch(es): {preview}{more}")
        self.mismatches = mismatches


@dataclass
class AuditReport:
    users_checked: int = 0
    collections_checked: int = 0
    windows_checked: int = 0
    mismatches: list[Mismatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


def _compare(entity: str, key: str, expected: dict[str, int | None], actual: dict[str, int | None]) -> list[Mismatch]:
    return [
        Mismatch(entity=entity, key=key, field=name, expected=value, actual=actual.get(name))
        for name, value in expected.items()
        if actual.get(name) != value
    ]


async def reconcile_user_totals(session: AsyncSession, *, sales: list[SaleDTO] | None = None) -> int:
    """Check every users row against the sales it took part in.

    Returns:
        Number of wallets checked.

    Raises:
        AggregateInvariantViolation: On any mismatch, including wallets that
            appear in sales but have no row and vice versa.
    """
    sales = sales if sales is not None else await SaleRepository(session).list_all()
    expected: dict[str, dict[str, int | None]] = defaultdict(
        lambda: {
            "total_volume_sold": 0,
            "total_items_sold": 0,
            "total_volume_bought": 0,
            "total_items_bought": 0,
            "last_activity": 0,
        }
    )
    earliest: dict[str, int] = {}
    for sale in sales:
        for address, prefix in ((sale.seller, "sold"), (sale.buyer, "bought")):
            row = expected[address]
            row[f"total_volume_{prefix}"] = (row[f"total_volume_{prefix}"] or 0) + sale.price
            row[f"total_items_{prefix}"] = (row[f"total_items_{prefix}"] or 0) + 1
            row["last_activity"] = max(row["last_activity"] or 0, sale.timestamp)
            earliest[address] = min(earliest.get(address, sale.timestamp), sale.timestamp)

    mismatches: list[Mismatch] = []
    users = {u.address: u for u in await UserRepository(session).list_all()}
    for address, fields_ in expected.items():
        user = users.pop(address, None)
        if user is None:
            mismatches.append(Mismatch("users", address, "row", 1, None))
            continue
        actual = {name: getattr(user, name) for name in fields_}
        mismatches.extend(_compare("users", address, fields_, actual))
        # first_seen is the timestamp of whichever sale created the row, which
        # depends on application order; only its bounds are checkable.
        if not (earliest[address] <= user.first_seen <= (fields_["last_activity"] or 0)):
            mismatches.append(Mismatch("users", address, "first_seen", earliest[address], user.first_seen))
    for address in users:
        mismatches.append(Mismatch("users", address, "row", None, 1))

    if mismatches:
        raise AggregateInvariantViolation(mismatches)
    return len(expected)


async def reconcile_collection_totals(session: AsyncSession, *, sales: list[SaleDTO] | None = None) -> int:
    """Check collection total_volume/total_sales/last_sale_at against sales.

    Returns:
        Number of collections checked.

    Raises:
        AggregateInvariantViolation: On any mismatch.
    """
    sales = sales if sales is not None else await SaleRepository(session).list_all()
    expected: dict[str, dict[str, int | None]] = {}
    for sale in sales:
        row = expected.setdefault(sale.collection_address, {"total_volume": 0, "total_sales": 0, "last_sale_at": 0})
        row["total_volume"] = (row["total_volume"] or 0) + sale.price
        row["total_sales"] = (row["total_sales"] or 0) + 1
        row["last_sale_at"] = max(row["last_sale_at"] or 0, sale.timestamp)

    mismatches: list[Mismatch] = []
    collections = {c.address: c for c in await CollectionRepository(session).list_all()}
    for address, fields_ in expected.items():
        collection = collections.pop(address, None)
        if collection is None:
            mismatches.append(Mismatch("collections", address, "row", 1, None))
            continue
        actual = {name: getattr(collection, name) for name in fields_}
        mismatches.extend(_compare("collections", address, fields_, actual))
    for address in collections:
        mismatches.append(Mismatch("collections", address, "row", None, 1))

    if mismatches:
        raise AggregateInvariantViolation(mismatches)
    return len(expected)


def expected_window_totals(
    sales: list[SaleDTO],
    collection_address: str,
    *,
    as_of: int,
) -> WindowTotals:
    """Sum the sales with ``as_of - window <= timestamp <= as_of`` per window."""
    sums = {WINDOW_1H: [0, 0], WINDOW_24H: [0, 0], WINDOW_7D: [0, 0]}
    collection_address = collection_address.lower()
    for sale in sales:
        if sale.collection_address != collection_address:
            continue
        if sale.timestamp > as_of:
            continue
        for window, acc in sums.items():
            if sale.timestamp >= as_of - window:
                acc[0] += sale.price
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


async def reconcile_windows(
    session: AsyncSession,
    collection_address: str,
    *,
    as_of: int | None = None,
    bucket_seconds: int = 60,
    sales: list[SaleDTO] | None = None,
) -> WindowTotals:
    """Check a collection's window totals against a recomputation from sales.

    With ``as_of`` omitted the collection's own clock (last_sale_at) is used
    and the windows stored on the collection row are checked as well.

    Raises:
        AggregateInvariantViolation: On any mismatch.
        KeyError: If the collection has no row and ``as_of`` is omitted.
    """
    collection_address = collection_address.lower()
    collection = await CollectionRepository(session).get(collection_address)
    if as_of is None:
        if collection is None:
            raise KeyError(f"Collection {collection_address} not found")
        as_of = collection.last_sale_at

    if sales is None:
        sales = await SaleRepository(session).list_by_collection(collection_address)
    expected = expected_window_totals(sales, collection_address, as_of=as_of)
    tracker = VolumeWindowTracker(config=VolumeWindowConfig(bucket_seconds=bucket_seconds))
    actual = await tracker.window_totals(session, collection_address, as_of=as_of)

    window_fields = ("volume_1h", "sales_1h", "volume_24h", "sales_24h", "volume_7d", "sales_7d")
    mismatches = _compare(
        "collection_volume_snapshots",
        f"{collection_address}@{as_of}",
        {name: getattr(expected, name) for name in window_fields},
        {name: getattr(actual, name) for name in window_fields},
    )
    if collection is not None and as_of == collection.last_sale_at:
        stored_fields = ("volume_24h", "sales_24h", "volume_7d", "sales_7d")
        mismatches.extend(
            _compare(
                "collections",
                collection_address,
                {name: getattr(expected, name) for name in stored_fields},
                {name: getattr(collection, name) for name in stored_fields},
            )
        )

    if mismatches:
        raise AggregateInvariantViolation(mismatches)
    return expected


async def run_audit(session: AsyncSession, *, bucket_seconds: int = 60) -> AuditReport:
    """Run every reconciliation and collect the mismatches instead of raising."""
    report = AuditReport()
    sales = await SaleRepository(session).list_all()

    try:
        report.users_checked = await reconcile_user_totals(session, sales=sales)
    except AggregateInvariantViolation as e:
        report.mismatches.extend(e.mismatches)

    try:
        report.collections_checked = await reconcile_collection_totals(session, sales=sales)
    except AggregateInvariantViolation as e:
        report.mismatches.extend(e.mismatches)

    for collection in await CollectionRepository(session).list_all():
        try:
            await reconcile_windows(session, collection.address, bucket_seconds=bucket_seconds, sales=sales)
        except AggregateInvariantViolation as e:
            report.mismatches.extend(e.mismatches)
        report.windows_checked += 1

    if report.ok:
        logger.info(
            "Audit passed: %d users, %d collections, %d window sets",
            report.users_checked,
            report.collections_checked,
            report.windows_checked,
        )
    else:
        logger.error("Audit found %d mismatch(es)", len(report.mismatches))
        for mismatch in report.mismatches:
            logger.error("  %s", mismatch)
    return report

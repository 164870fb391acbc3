"""Repository pattern implementations for data access.

This module provides data access abstractions for marketplace records,
their derived aggregates, and ingestion bookkeeping. Repositories never
commit; the caller owns the transaction scope.

Aggregate tables (users, collections) are updated through
``read_modify_write``: the caller supplies the merge function, the
repository loads the current row, applies it and flushes under an
optimistic version check.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, fields
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from seaport_indexer.storage.models import (
    CancellationModel,
    CollectionModel,
    DailyCollectionMetricsModel,
    DailyCollectionParticipantModel,
    DailyUserMetricsModel,
    EventProcessingErrorModel,
    IngestionCursorModel,
    OfferModel,
    OfferStatus,
    ProcessedEventModel,
    SaleModel,
    UserModel,
    VolumeSnapshotModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class DuplicateKeyError(Exception):
    """Raised when a record keyed by (transaction_hash, log_index) already exists."""

    def __init__(self, table: str, key: tuple[object, ...]) -> None:
        super().__init__(f"{table} already contains {key!r}")
        self.table = table
        self.key = key


class ConcurrentUpdateError(Exception):
    """Raised when an aggregate row changed underneath a read-modify-write."""


class InvalidOfferTransition(Exception):
    """Raised when an offer status change is not active -> terminal."""


# ============================================================================
# Sales
# ============================================================================


@dataclass
class SaleDTO:
    """Data transfer object for sales."""

    transaction_hash: str
    log_index: int
    order_hash: str
    collection_address: str
    token_id: str
    seller: str
    buyer: str
    price: int
    currency_symbol: str
    currency_address: str
    platform_name: str
    block_number: int
    timestamp: int
    gas_used: int
    gas_price: int

    @property
    def event_id(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"

    @classmethod
    def from_model(cls, model: SaleModel) -> SaleDTO:
        return cls(
            transaction_hash=model.transaction_hash,
            log_index=model.log_index,
            order_hash=model.order_hash,
            collection_address=model.collection_address,
            token_id=model.token_id,
            seller=model.seller,
            buyer=model.buyer,
            price=model.price,
            currency_symbol=model.currency_symbol,
            currency_address=model.currency_address,
            platform_name=model.platform_name,
            block_number=model.block_number,
            timestamp=model.timestamp,
            gas_used=model.gas_used,
            gas_price=model.gas_price,
        )


class SaleRepository:
    """Repository for sales."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, transaction_hash: str, log_index: int) -> SaleDTO | None:
        model = await self.session.get(SaleModel, (transaction_hash.lower(), log_index))
        return SaleDTO.from_model(model) if model else None

    async def insert(self, dto: SaleDTO) -> SaleDTO:
        """Insert a sale.

        Raises:
            DuplicateKeyError: If (transaction_hash, log_index) already exists.
        """
        key = (dto.transaction_hash.lower(), dto.log_index)
        if await self.session.get(SaleModel, key) is not None:
            raise DuplicateKeyError("sales", key)
        model = SaleModel(
            transaction_hash=key[0],
            log_index=dto.log_index,
            order_hash=dto.order_hash.lower(),
            collection_address=dto.collection_address.lower(),
            token_id=dto.token_id,
            seller=dto.seller.lower(),
            buyer=dto.buyer.lower(),
            price=dto.price,
            currency_symbol=dto.currency_symbol,
            currency_address=dto.currency_address.lower(),
            platform_name=dto.platform_name,
            block_number=dto.block_number,
            timestamp=dto.timestamp,
            gas_used=dto.gas_used,
            gas_price=dto.gas_price,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError("sales", key) from e
        return SaleDTO.from_model(model)

    async def list_all(self) -> list[SaleDTO]:
        result = await self.session.execute(
            select(SaleModel).order_by(SaleModel.block_number.asc(), SaleModel.log_index.asc())
        )
        return [SaleDTO.from_model(m) for m in result.scalars().all()]

    async def list_by_collection(
        self,
        collection_address: str,
        *,
        since: int | None = None,
        until: int | None = None,
    ) -> list[SaleDTO]:
        stmt = select(SaleModel).where(SaleModel.collection_address == collection_address.lower())
        if since is not None:
            stmt = stmt.where(SaleModel.timestamp >= since)
        if until is not None:
            stmt = stmt.where(SaleModel.timestamp <= until)
        result = await self.session.execute(stmt.order_by(SaleModel.timestamp.asc()))
        return [SaleDTO.from_model(m) for m in result.scalars().all()]

    async def list_by_wallet(self, address: str, *, limit: int = 100) -> list[SaleDTO]:
        address = address.lower()
        result = await self.session.execute(
            select(SaleModel)
            .where((SaleModel.seller == address) | (SaleModel.buyer == address))
            .order_by(SaleModel.timestamp.desc())
            .limit(limit)
        )
        return [SaleDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Offers
# ============================================================================


@dataclass
class OfferDTO:
    """Data transfer object for offers."""

    transaction_hash: str
    log_index: int
    collection_address: str
    token_id: str | None
    offerer: str
    recipient: str | None
    price: int
    currency_symbol: str
    currency_address: str
    platform_name: str
    expiration_time: int | None
    status: str
    block_number: int
    timestamp: int

    @classmethod
    def from_model(cls, model: OfferModel) -> OfferDTO:
        return cls(
            transaction_hash=model.transaction_hash,
            log_index=model.log_index,
            collection_address=model.collection_address,
            token_id=model.token_id,
            offerer=model.offerer,
            recipient=model.recipient,
            price=model.price,
            currency_symbol=model.currency_symbol,
            currency_address=model.currency_address,
            platform_name=model.platform_name,
            expiration_time=model.expiration_time,
            status=model.status,
            block_number=model.block_number,
            timestamp=model.timestamp,
        )


class OfferRepository:
    """Repository for offers and their forward-only status machine."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, transaction_hash: str, log_index: int) -> OfferDTO | None:
        model = await self.session.get(OfferModel, (transaction_hash.lower(), log_index))
        return OfferDTO.from_model(model) if model else None

    async def insert(self, dto: OfferDTO) -> OfferDTO:
        """Insert an offer.

        Raises:
            DuplicateKeyError: If (transaction_hash, log_index) already exists.
        """
        if OfferStatus(dto.status) is not OfferStatus.ACTIVE:
            raise InvalidOfferTransition(f"Offers are created active, got {dto.status!r}")
        key = (dto.transaction_hash.lower(), dto.log_index)
        if await self.session.get(OfferModel, key) is not None:
            raise DuplicateKeyError("offers", key)
        model = OfferModel(
            transaction_hash=key[0],
            log_index=dto.log_index,
            collection_address=dto.collection_address.lower(),
            token_id=dto.token_id,
            offerer=dto.offerer.lower(),
            recipient=dto.recipient.lower() if dto.recipient else None,
            price=dto.price,
            currency_symbol=dto.currency_symbol,
            currency_address=dto.currency_address.lower(),
            platform_name=dto.platform_name,
            expiration_time=dto.expiration_time,
            status=dto.status,
            block_number=dto.block_number,
            timestamp=dto.timestamp,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError("offers", key) from e
        return OfferDTO.from_model(model)

    async def update_status(
        self,
        transaction_hash: str,
        log_index: int,
        new_status: OfferStatus | str,
    ) -> OfferDTO:
        """Move an offer to a terminal status.

        Raises:
            ValueError: If ``new_status`` is not a known status.
            KeyError: If the offer does not exist.
            InvalidOfferTransition: If the move is not active -> terminal.
        """
        target = OfferStatus(new_status)
        model = await self.session.get(OfferModel, (transaction_hash.lower(), log_index))
        if model is None:
            raise KeyError(f"Offer {transaction_hash}-{log_index} not found")
        if not OfferStatus(model.status).can_transition_to(target):
            raise InvalidOfferTransition(
                f"Offer {transaction_hash}-{log_index}: {model.status} -> {target.value} not allowed"
            )
        model.status = target.value
        model.updated_at = datetime.now(UTC)
        await self.session.flush()
        return OfferDTO.from_model(model)

    async def expire_due(self, *, as_of: int) -> int:
        """Mark active offers whose expiration_time has passed as expired."""
        result = await self.session.execute(
            update(OfferModel)
            .where(
                (OfferModel.status == OfferStatus.ACTIVE.value)
                & OfferModel.expiration_time.is_not(None)
                & (OfferModel.expiration_time <= as_of)
            )
            .values(status=OfferStatus.EXPIRED.value, updated_at=datetime.now(UTC))
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def list_by_offerer(
        self,
        offerer: str,
        *,
        status: OfferStatus | str | None = None,
    ) -> list[OfferDTO]:
        stmt = select(OfferModel).where(OfferModel.offerer == offerer.lower())
        if status is not None:
            stmt = stmt.where(OfferModel.status == OfferStatus(status).value)
        result = await self.session.execute(stmt.order_by(OfferModel.timestamp.asc()))
        return [OfferDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Cancellations
# ============================================================================


@dataclass
class CancellationDTO:
    transaction_hash: str
    log_index: int
    order_hash: str
    offerer: str
    timestamp: int
    block_number: int

    @classmethod
    def from_model(cls, model: CancellationModel) -> CancellationDTO:
        return cls(
            transaction_hash=model.transaction_hash,
            log_index=model.log_index,
            order_hash=model.order_hash,
            offerer=model.offerer,
            timestamp=model.timestamp,
            block_number=model.block_number,
        )


class CancellationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, transaction_hash: str, log_index: int) -> CancellationDTO | None:
        model = await self.session.get(CancellationModel, (transaction_hash.lower(), log_index))
        return CancellationDTO.from_model(model) if model else None

    async def insert(self, dto: CancellationDTO) -> CancellationDTO:
        key = (dto.transaction_hash.lower(), dto.log_index)
        if await self.session.get(CancellationModel, key) is not None:
            raise DuplicateKeyError("cancellations", key)
        model = CancellationModel(
            transaction_hash=key[0],
            log_index=dto.log_index,
            order_hash=dto.order_hash.lower(),
            offerer=dto.offerer.lower(),
            timestamp=dto.timestamp,
            block_number=dto.block_number,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError("cancellations", key) from e
        return CancellationDTO.from_model(model)

    async def list_by_order_hash(self, order_hash: str) -> list[CancellationDTO]:
        result = await self.session.execute(
            select(CancellationModel).where(CancellationModel.order_hash == order_hash.lower())
        )
        return [CancellationDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Users
# ============================================================================


@dataclass(frozen=True)
class UserDTO:
    """Cumulative trading totals for one wallet."""

    address: str
    total_volume_sold: int
    total_items_sold: int
    total_volume_bought: int
    total_items_bought: int
    first_seen: int
    last_activity: int

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            address=model.address,
            total_volume_sold=model.total_volume_sold,
            total_items_sold=model.total_items_sold,
            total_volume_bought=model.total_volume_bought,
            total_items_bought=model.total_items_bought,
            first_seen=model.first_seen,
            last_activity=model.last_activity,
        )


def _copy_fields(dto: object, model: object, *, skip: tuple[str, ...]) -> None:
    for f in fields(dto):  # type: ignore[arg-type]
        if f.name in skip:
            continue
        setattr(model, f.name, getattr(dto, f.name))


class UserRepository:
    """Repository for per-wallet totals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> UserDTO | None:
        model = await self.session.get(UserModel, address.lower())
        return UserDTO.from_model(model) if model else None

    async def list_all(self) -> list[UserDTO]:
        result = await self.session.execute(select(UserModel).order_by(UserModel.address.asc()))
        return [UserDTO.from_model(m) for m in result.scalars().all()]

    async def read_modify_write(
        self,
        address: str,
        merge: Callable[[UserDTO | None], UserDTO],
    ) -> UserDTO:
        """Apply ``merge`` to the current row (or None) and persist the result.

        Raises:
            ConcurrentUpdateError: If another writer created or updated the
                row between our read and our flush.
        """
        address = address.lower()
        model = await self.session.get(UserModel, address)
        updated = merge(UserDTO.from_model(model) if model else None)
        if updated.address != address:
            raise ValueError(f"merge returned {updated.address}, expected {address}")

        if model is None:
            model = UserModel(address=address)
            _copy_fields(updated, model, skip=("address",))
            self.session.add(model)
        else:
            _copy_fields(updated, model, skip=("address",))

        try:
            await self.session.flush()
        except (IntegrityError, StaleDataError) as e:
            raise ConcurrentUpdateError(f"users/{address} changed concurrently") from e
        return updated


# ============================================================================
# Collections and volume snapshots
# ============================================================================


@dataclass(frozen=True)
class CollectionDTO:
    address: str
    total_volume: int
    total_sales: int
    volume_24h: int
    volume_7d: int
    sales_24h: int
    sales_7d: int
    last_sale_at: int
    created_at: int
    updated_at: int
    name: str = ""
    symbol: str = ""

    @classmethod
    def from_model(cls, model: CollectionModel) -> CollectionDTO:
        return cls(
            address=model.address,
            total_volume=model.total_volume,
            total_sales=model.total_sales,
            volume_24h=model.volume_24h,
            volume_7d=model.volume_7d,
            sales_24h=model.sales_24h,
            sales_7d=model.sales_7d,
            last_sale_at=model.last_sale_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            name=model.name,
            symbol=model.symbol,
        )


class CollectionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> CollectionDTO | None:
        model = await self.session.get(CollectionModel, address.lower())
        return CollectionDTO.from_model(model) if model else None

    async def list_all(self) -> list[CollectionDTO]:
        result = await self.session.execute(select(CollectionModel).order_by(CollectionModel.address.asc()))
        return [CollectionDTO.from_model(m) for m in result.scalars().all()]

    async def read_modify_write(
        self,
        address: str,
        merge: Callable[[CollectionDTO | None], CollectionDTO],
    ) -> CollectionDTO:
        """Same contract as ``UserRepository.read_modify_write``."""
        address = address.lower()
        model = await self.session.get(CollectionModel, address)
        updated = merge(CollectionDTO.from_model(model) if model else None)
        if updated.address != address:
            raise ValueError(f"merge returned {updated.address}, expected {address}")

        if model is None:
            model = CollectionModel(address=address)
            _copy_fields(updated, model, skip=("address",))
            self.session.add(model)
        else:
            # name/symbol belong to external enrichment.
            _copy_fields(updated, model, skip=("address", "name", "symbol"))

        try:
            await self.session.flush()
        except (IntegrityError, StaleDataError) as e:
            raise ConcurrentUpdateError(f"collections/{address} changed concurrently") from e
        return updated


@dataclass
class VolumeSnapshotDTO:
    collection_address: str
    bucket_start: int
    bucket_volume: int
    bucket_sales: int
    volume_1h: int
    volume_24h: int
    sales_1h: int
    sales_24h: int
    avg_price_1h: int | None
    avg_price_24h: int | None
    as_of: int

    @classmethod
    def from_model(cls, model: VolumeSnapshotModel) -> VolumeSnapshotDTO:
        return cls(
            collection_address=model.collection_address,
            bucket_start=model.bucket_start,
            bucket_volume=model.bucket_volume,
            bucket_sales=model.bucket_sales,
            volume_1h=model.volume_1h,
            volume_24h=model.volume_24h,
            sales_1h=model.sales_1h,
            sales_24h=model.sales_24h,
            avg_price_1h=model.avg_price_1h,
            avg_price_24h=model.avg_price_24h,
            as_of=model.as_of,
        )


class VolumeSnapshotRepository:
    """Repository for per-bucket collection volume snapshots (never deleted)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, collection_address: str, bucket_start: int) -> VolumeSnapshotDTO | None:
        model = await self.session.get(VolumeSnapshotModel, (collection_address.lower(), bucket_start))
        return VolumeSnapshotDTO.from_model(model) if model else None

    async def add_to_bucket(
        self,
        collection_address: str,
        bucket_start: int,
        *,
        amount: int,
        as_of: int,
    ) -> VolumeSnapshotDTO:
        """Add one sale's amount to the bucket's partial sums, creating it if needed."""
        key = (collection_address.lower(), bucket_start)
        model = await self.session.get(VolumeSnapshotModel, key)
        if model is None:
            model = VolumeSnapshotModel(
                collection_address=key[0],
                bucket_start=bucket_start,
                bucket_volume=amount,
                bucket_sales=1,
                volume_1h=0,
                volume_24h=0,
                sales_1h=0,
                sales_24h=0,
                as_of=as_of,
            )
            self.session.add(model)
        else:
            model.bucket_volume = model.bucket_volume + amount
            model.bucket_sales = model.bucket_sales + 1
        await self.session.flush()
        return VolumeSnapshotDTO.from_model(model)

    async def set_rolling(
        self,
        collection_address: str,
        bucket_start: int,
        *,
        volume_1h: int,
        volume_24h: int,
        sales_1h: int,
        sales_24h: int,
        avg_price_1h: int | None,
        avg_price_24h: int | None,
        as_of: int,
    ) -> VolumeSnapshotDTO:
        model = await self.session.get(VolumeSnapshotModel, (collection_address.lower(), bucket_start))
        if model is None:
            raise KeyError(f"No snapshot for {collection_address} at {bucket_start}")
        model.volume_1h = volume_1h
        model.volume_24h = volume_24h
        model.sales_1h = sales_1h
        model.sales_24h = sales_24h
        model.avg_price_1h = avg_price_1h
        model.avg_price_24h = avg_price_24h
        model.as_of = as_of
        await self.session.flush()
        return VolumeSnapshotDTO.from_model(model)

    async def list_range(self, collection_address: str, *, start: int, end: int) -> list[VolumeSnapshotDTO]:
        result = await self.session.execute(
            select(VolumeSnapshotModel)
            .where(
                (VolumeSnapshotModel.collection_address == collection_address.lower())
                & (VolumeSnapshotModel.bucket_start >= start)
                & (VolumeSnapshotModel.bucket_start <= end)
            )
            .order_by(VolumeSnapshotModel.bucket_start.asc())
        )
        return [VolumeSnapshotDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Daily metrics
# ============================================================================


@dataclass
class DailyCollectionMetricsDTO:
    collection_address: str
    day: str
    volume: int
    sales: int
    unique_buyers: int
    unique_sellers: int
    avg_price: int | None
    min_price: int | None
    max_price: int | None

    @classmethod
    def from_model(cls, model: DailyCollectionMetricsModel) -> DailyCollectionMetricsDTO:
        return cls(
            collection_address=model.collection_address,
            day=model.day,
            volume=model.volume,
            sales=model.sales,
            unique_buyers=model.unique_buyers,
            unique_sellers=model.unique_sellers,
            avg_price=model.avg_price,
            min_price=model.min_price,
            max_price=model.max_price,
        )


@dataclass
class DailyUserMetricsDTO:
    address: str
    day: str
    volume_sold: int
    volume_bought: int
    items_sold: int
    items_bought: int

    @classmethod
    def from_model(cls, model: DailyUserMetricsModel) -> DailyUserMetricsDTO:
        return cls(
            address=model.address,
            day=model.day,
            volume_sold=model.volume_sold,
            volume_bought=model.volume_bought,
            items_sold=model.items_sold,
            items_bought=model.items_bought,
        )


class DailyMetricsRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_collection_day(self, collection_address: str, day: str) -> DailyCollectionMetricsDTO | None:
        model = await self.session.get(DailyCollectionMetricsModel, (collection_address.lower(), day))
        return DailyCollectionMetricsDTO.from_model(model) if model else None

    async def get_user_day(self, address: str, day: str) -> DailyUserMetricsDTO | None:
        model = await self.session.get(DailyUserMetricsModel, (address.lower(), day))
        return DailyUserMetricsDTO.from_model(model) if model else None

    async def add_participant(self, collection_address: str, day: str, address: str, role: str) -> bool:
        """Record a wallet as buyer/seller for a collection-day; False if already present."""
        key = (collection_address.lower(), day, address.lower(), role)
        if await self.session.get(DailyCollectionParticipantModel, key) is not None:
            return False
        self.session.add(
            DailyCollectionParticipantModel(
                collection_address=key[0],
                day=day,
                address=key[2],
                role=role,
            )
        )
        await self.session.flush()
        return True

    async def save_collection_day(self, dto: DailyCollectionMetricsDTO) -> None:
        key = (dto.collection_address.lower(), dto.day)
        model = await self.session.get(DailyCollectionMetricsModel, key)
        if model is None:
            model = DailyCollectionMetricsModel(collection_address=key[0], day=dto.day)
            self.session.add(model)
        _copy_fields(dto, model, skip=("collection_address", "day"))
        await self.session.flush()

    async def save_user_day(self, dto: DailyUserMetricsDTO) -> None:
        key = (dto.address.lower(), dto.day)
        model = await self.session.get(DailyUserMetricsModel, key)
        if model is None:
            model = DailyUserMetricsModel(address=key[0], day=dto.day)
            self.session.add(model)
        _copy_fields(dto, model, skip=("address", "day"))
        await self.session.flush()


# ============================================================================
# Ingestion bookkeeping
# ============================================================================


class ProcessedEventRepository:
    """Ledger of applied events, keyed by (transaction_hash, log_index)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, transaction_hash: str, log_index: int) -> bool:
        model = await self.session.get(ProcessedEventModel, (transaction_hash.lower(), log_index))
        return model is not None

    async def insert(
        self,
        transaction_hash: str,
        log_index: int,
        *,
        event_name: str,
        block_number: int,
    ) -> None:
        key = (transaction_hash.lower(), log_index)
        self.session.add(
            ProcessedEventModel(
                transaction_hash=key[0],
                log_index=log_index,
                event_name=event_name,
                block_number=block_number,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError("processed_events", key) from e

    async def count(self) -> int:
        result = await self.session.execute(select(sa.func.count()).select_from(ProcessedEventModel))
        return int(result.scalar_one())


class IngestionCursorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, source: str) -> int | None:
        model = await self.session.get(IngestionCursorModel, source)
        return model.last_block if model else None

    async def set(self, source: str, last_block: int) -> None:
        model = await self.session.get(IngestionCursorModel, source)
        now = datetime.now(UTC)
        if model is None:
            self.session.add(IngestionCursorModel(source=source, last_block=last_block, updated_at=now))
        else:
            if last_block < model.last_block:
                raise ValueError(f"Cursor for {source} cannot move backwards ({model.last_block} -> {last_block})")
            model.last_block = last_block
            model.updated_at = now
        await self.session.flush()


@dataclass
class EventProcessingErrorDTO:
    transaction_hash: str
    log_index: int
    event_name: str
    stage: str
    error_type: str
    message: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: EventProcessingErrorModel) -> EventProcessingErrorDTO:
        return cls(
            transaction_hash=model.transaction_hash,
            log_index=model.log_index,
            event_name=model.event_name,
            stage=model.stage,
            error_type=model.error_type,
            message=model.message,
            created_at=model.created_at,
        )


class EventProcessingErrorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, errors: list[EventProcessingErrorDTO]) -> None:
        """Record errors; a (transaction, log index, stage) already on file is kept as is."""
        if not errors:
            return
        rows = [
            {
                "transaction_hash": e.transaction_hash.lower(),
                "log_index": e.log_index,
                "event_name": e.event_name,
                "stage": e.stage,
                "error_type": e.error_type,
                "message": e.message,
                "created_at": e.created_at or datetime.now(UTC),
            }
            for e in errors
        ]
        bind = self.session.get_bind()
        insert = pg_insert if bind.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(EventProcessingErrorModel).values(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=["transaction_hash", "log_index", "stage"])
        await self.session.execute(stmt)
        await self.session.flush()

    async def list_recent(self, *, limit: int = 100) -> list[EventProcessingErrorDTO]:
        result = await self.session.execute(
            select(EventProcessingErrorModel).order_by(EventProcessingErrorModel.id.desc()).limit(limit)
        )
        return [EventProcessingErrorDTO.from_model(m) for m in result.scalars().all()]

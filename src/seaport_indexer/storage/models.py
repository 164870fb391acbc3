"""SQLAlchemy models for persistent storage.

This module defines the database schema for marketplace records (sales,
offers, cancellations), the aggregates derived from them (users, collections,
volume snapshots, daily metrics), and the ingestion bookkeeping tables
(processed events, cursors, processing errors).

Block timestamps are stored as integer unix seconds, exactly as emitted by
the chain. Token amounts use the ``Uint256`` type.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from seaport_indexer.storage.types import Uint256


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OfferStatus(str, Enum):
    """Offer lifecycle. Offers start active; every other status is terminal."""

    ACTIVE = "active"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not OfferStatus.ACTIVE

    def can_transition_to(self, new: OfferStatus) -> bool:
        return self is OfferStatus.ACTIVE and new.is_terminal


class SaleModel(Base):
    """One fulfilled Seaport order (immutable once written)."""

    __tablename__ = "sales"

    transaction_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    order_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    collection_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)  # "" when unclassified
    seller: Mapped[str] = mapped_column(String(42), nullable=False)
    buyer: Mapped[str] = mapped_column(String(42), nullable=False)

    price: Mapped[int] = mapped_column(Uint256, nullable=False)
    currency_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    currency_address: Mapped[str] = mapped_column(String(42), nullable=False)
    platform_name: Mapped[str] = mapped_column(String(32), nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_used: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_price: Mapped[int] = mapped_column(Uint256, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_sales_collection_ts", "collection_address", "timestamp"),
        Index("idx_sales_seller_ts", "seller", "timestamp"),
        Index("idx_sales_buyer_ts", "buyer", "timestamp"),
        Index("idx_sales_order_hash", "order_hash"),
    )


class OfferModel(Base):
    """Order validated on-chain. Price/asset fields await off-chain enrichment."""

    __tablename__ = "offers"

    transaction_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    collection_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    offerer: Mapped[str] = mapped_column(String(42), nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(42), nullable=True)  # None = collection-wide

    price: Mapped[int] = mapped_column(Uint256, nullable=False)
    currency_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    currency_address: Mapped[str] = mapped_column(String(42), nullable=False)
    platform_name: Mapped[str] = mapped_column(String(32), nullable=False)
    expiration_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # active|accepted|cancelled|expired

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_offers_offerer_ts", "offerer", "timestamp"),
        Index("idx_offers_status_expiration", "status", "expiration_time"),
    )


class CancellationModel(Base):
    """Order cancelled on-chain (immutable)."""

    __tablename__ = "cancellations"

    transaction_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    order_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    offerer: Mapped[str] = mapped_column(String(42), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_cancellations_order_hash", "order_hash"),
        Index("idx_cancellations_offerer_ts", "offerer", "timestamp"),
    )


class UserModel(Base):
    """Cumulative per-wallet trading totals."""

    __tablename__ = "users"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)

    total_volume_sold: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    total_items_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_volume_bought: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    total_items_bought: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_seen: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_activity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CollectionModel(Base):
    """Derived per-collection totals and rolling windows.

    name/symbol/floor/owners/supply are sourced externally and are not
    maintained by ingestion.
    """

    __tablename__ = "collections"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    symbol: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    total_volume: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    total_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    volume_24h: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    volume_7d: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    sales_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sales_7d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_sale_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class VolumeSnapshotModel(Base):
    """Per-bucket partial sums plus rolling windows as of the bucket's latest sale."""

    __tablename__ = "collection_volume_snapshots"

    collection_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    bucket_start: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    bucket_volume: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    bucket_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    volume_1h: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    volume_24h: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    sales_1h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sales_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_price_1h: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    avg_price_24h: Mapped[int | None] = mapped_column(Uint256, nullable=True)

    as_of: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_volume_snapshots_bucket", "bucket_start"),)


class DailyCollectionMetricsModel(Base):
    __tablename__ = "daily_collection_metrics"

    collection_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)  # YYYY-MM-DD (UTC)

    volume: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_buyers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_sellers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_price: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    min_price: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    max_price: Mapped[int | None] = mapped_column(Uint256, nullable=True)


class DailyCollectionParticipantModel(Base):
    """Distinct (collection, day, wallet, role) rows backing the unique counts."""

    __tablename__ = "daily_collection_participants"

    collection_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)
    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    role: Mapped[str] = mapped_column(String(8), primary_key=True)  # seller|buyer


class DailyUserMetricsModel(Base):
    __tablename__ = "daily_user_metrics"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    day: Mapped[str] = mapped_column(String(10), primary_key=True)

    volume_sold: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    volume_bought: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    items_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_bought: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ProcessedEventModel(Base):
    """Idempotency ledger: one row per applied (transaction_hash, log_index)."""

    __tablename__ = "processed_events"

    transaction_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    event_name: Mapped[str] = mapped_column(String(40), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_processed_events_block", "block_number"),)


class IngestionCursorModel(Base):
    """Last fully applied block per log source."""

    __tablename__ = "ingestion_cursors"

    source: Mapped[str] = mapped_column(String(80), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class EventProcessingErrorModel(Base):
    """Events that were skipped or failed, for later inspection."""

    __tablename__ = "event_processing_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    event_name: Mapped[str] = mapped_column(String(80), nullable=False)
    stage: Mapped[str] = mapped_column(String(40), nullable=False)
    error_type: Mapped[str] = mapped_column(String(80), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", "stage", name="uq_event_processing_errors_key"),
    )

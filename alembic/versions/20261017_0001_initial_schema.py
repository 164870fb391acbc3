"""Initial schema: marketplace records, aggregates and ingestion bookkeeping.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uint256() -> sa.Numeric:
    return sa.Numeric(78, 0)


def upgrade() -> None:
    op.create_table(
        "sales",
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("order_hash", sa.String(66), nullable=False),
        sa.Column("collection_address", sa.String(42), nullable=False),
        sa.Column("token_id", sa.String(80), nullable=False),
        sa.Column("seller", sa.String(42), nullable=False),
        sa.Column("buyer", sa.String(42), nullable=False),
        sa.Column("price", _uint256(), nullable=False),
        sa.Column("currency_symbol", sa.String(16), nullable=False),
        sa.Column("currency_address", sa.String(42), nullable=False),
        sa.Column("platform_name", sa.String(32), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("gas_used", sa.BigInteger(), nullable=False),
        sa.Column("gas_price", _uint256(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_hash", "log_index"),
    )
    op.create_index("idx_sales_collection_ts", "sales", ["collection_address", "timestamp"])
    op.create_index("idx_sales_seller_ts", "sales", ["seller", "timestamp"])
    op.create_index("idx_sales_buyer_ts", "sales", ["buyer", "timestamp"])
    op.create_index("idx_sales_order_hash", "sales", ["order_hash"])

    op.create_table(
        "offers",
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("collection_address", sa.String(42), nullable=False),
        sa.Column("token_id", sa.String(80), nullable=True),
        sa.Column("offerer", sa.String(42), nullable=False),
        sa.Column("recipient", sa.String(42), nullable=True),
        sa.Column("price", _uint256(), nullable=False),
        sa.Column("currency_symbol", sa.String(16), nullable=False),
        sa.Column("currency_address", sa.String(42), nullable=False),
        sa.Column("platform_name", sa.String(32), nullable=False),
        sa.Column("expiration_time", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_hash", "log_index"),
    )
    op.create_index("idx_offers_offerer_ts", "offers", ["offerer", "timestamp"])
    op.create_index("idx_offers_status_expiration", "offers", ["status", "expiration_time"])

    op.create_table(
        "cancellations",
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("order_hash", sa.String(66), nullable=False),
        sa.Column("offerer", sa.String(42), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_hash", "log_index"),
    )
    op.create_index("idx_cancellations_order_hash", "cancellations", ["order_hash"])
    op.create_index("idx_cancellations_offerer_ts", "cancellations", ["offerer", "timestamp"])

    op.create_table(
        "users",
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("total_volume_sold", _uint256(), nullable=False),
        sa.Column("total_items_sold", sa.Integer(), nullable=False),
        sa.Column("total_volume_bought", _uint256(), nullable=False),
        sa.Column("total_items_bought", sa.Integer(), nullable=False),
        sa.Column("first_seen", sa.BigInteger(), nullable=False),
        sa.Column("last_activity", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    op.create_table(
        "collections",
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("total_volume", _uint256(), nullable=False),
        sa.Column("total_sales", sa.Integer(), nullable=False),
        sa.Column("volume_24h", _uint256(), nullable=False),
        sa.Column("volume_7d", _uint256(), nullable=False),
        sa.Column("sales_24h", sa.Integer(), nullable=False),
        sa.Column("sales_7d", sa.Integer(), nullable=False),
        sa.Column("last_sale_at", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    op.create_table(
        "collection_volume_snapshots",
        sa.Column("collection_address", sa.String(42), nullable=False),
        sa.Column("bucket_start", sa.BigInteger(), nullable=False),
        sa.Column("bucket_volume", _uint256(), nullable=False),
        sa.Column("bucket_sales", sa.Integer(), nullable=False),
        sa.Column("volume_1h", _uint256(), nullable=False),
        sa.Column("volume_24h", _uint256(), nullable=False),
        sa.Column("sales_1h", sa.Integer(), nullable=False),
        sa.Column("sales_24h", sa.Integer(), nullable=False),
        sa.Column("avg_price_1h", _uint256(), nullable=True),
        sa.Column("avg_price_24h", _uint256(), nullable=True),
        sa.Column("as_of", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("collection_address", "bucket_start"),
    )
    op.create_index("idx_volume_snapshots_bucket", "collection_volume_snapshots", ["bucket_start"])

    op.create_table(
        "daily_collection_metrics",
        sa.Column("collection_address", sa.String(42), nullable=False),
        sa.Column("day", sa.String(10), nullable=False),
        sa.Column("volume", _uint256(), nullable=False),
        sa.Column("sales", sa.Integer(), nullable=False),
        sa.Column("unique_buyers", sa.Integer(), nullable=False),
        sa.Column("unique_sellers", sa.Integer(), nullable=False),
        sa.Column("avg_price", _uint256(), nullable=True),
        sa.Column("min_price", _uint256(), nullable=True),
        sa.Column("max_price", _uint256(), nullable=True),
        sa.PrimaryKeyConstraint("collection_address", "day"),
    )

    op.create_table(
        "daily_collection_participants",
        sa.Column("collection_address", sa.String(42), nullable=False),
        sa.Column("day", sa.String(10), nullable=False),
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("role", sa.String(8), nullable=False),
        sa.PrimaryKeyConstraint("collection_address", "day", "address", "role"),
    )

    op.create_table(
        "daily_user_metrics",
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("day", sa.String(10), nullable=False),
        sa.Column("volume_sold", _uint256(), nullable=False),
        sa.Column("volume_bought", _uint256(), nullable=False),
        sa.Column("items_sold", sa.Integer(), nullable=False),
        sa.Column("items_bought", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("address", "day"),
    )

    op.create_table(
        "processed_events",
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("event_name", sa.String(40), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("transaction_hash", "log_index"),
    )
    op.create_index("idx_processed_events_block", "processed_events", ["block_number"])

    op.create_table(
        "ingestion_cursors",
        sa.Column("source", sa.String(80), nullable=False),
        sa.Column("last_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("source"),
    )

    op.create_table(
        "event_processing_errors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("event_name", sa.String(80), nullable=False),
        sa.Column("stage", sa.String(40), nullable=False),
        sa.Column("error_type", sa.String(80), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "transaction_hash", "log_index", "stage", name="uq_event_processing_errors_key"
        ),
    )


def downgrade() -> None:
    op.drop_table("event_processing_errors")
    op.drop_table("ingestion_cursors")
    op.drop_index("idx_processed_events_block", table_name="processed_events")
    op.drop_table("processed_events")
    op.drop_table("daily_user_metrics")
    op.drop_table("daily_collection_participants")
    op.drop_table("daily_collection_metrics")
    op.drop_index("idx_volume_snapshots_bucket", table_name="collection_volume_snapshots")
    op.drop_table("collection_volume_snapshots")
    op.drop_table("collections")
    op.drop_table("users")
    op.drop_index("idx_cancellations_offerer_ts", table_name="cancellations")
    op.drop_index("idx_cancellations_order_hash", table_name="cancellations")
    op.drop_table("cancellations")
    op.drop_index("idx_offers_status_expiration", table_name="offers")
    op.drop_index("idx_offers_offerer_ts", table_name="offers")
    op.drop_table("offers")
    op.drop_index("idx_sales_order_hash", table_name="sales")
    op.drop_index("idx_sales_buyer_ts", table_name="sales")
    op.drop_index("idx_sales_seller_ts", table_name="sales")
    op.drop_index("idx_sales_collection_ts", table_name="sales")
    op.drop_table("sales")

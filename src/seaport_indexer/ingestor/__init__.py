"""Ingestion layer - Seaport event decoding, recording and aggregation."""

from seaport_indexer.ingestor.decoder import DecodeError, decode_event
from seaport_indexer.ingestor.idempotency import ApplyOutcome, IdempotencyGuard
from seaport_indexer.ingestor.locks import KeyLockError, LocalKeyLocks, RedisKeyLocks
from seaport_indexer.ingestor.models import (
    BlockContext,
    ConsiderationItem,
    ItemType,
    OfferItem,
    OrderCancelled,
    OrderFulfilled,
    OrderValidated,
    RawEvent,
)
from seaport_indexer.ingestor.processor import (
    EventProcessor,
    IngestionObserver,
    IngestionStats,
    ProcessOutcome,
    ProcessorConfig,
    TransactionFailure,
)

__all__ = [
    "ApplyOutcome",
    "BlockContext",
    "ConsiderationItem",
    "DecodeError",
    "EventProcessor",
    "IdempotencyGuard",
    "IngestionObserver",
    "IngestionStats",
    "ItemType",
    "KeyLockError",
    "LocalKeyLocks",
    "OfferItem",
    "OrderCancelled",
    "OrderFulfilled",
    "OrderValidated",
    "ProcessOutcome",
    "ProcessorConfig",
    "RawEvent",
    "RedisKeyLocks",
    "TransactionFailure",
    "decode_event",
]

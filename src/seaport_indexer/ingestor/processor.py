"""Per-event processing: decode, classify, lock, apply.

Each raw event goes through:
  1. decode (pure; malformed events are recorded and skipped)
  2. classify the legs of a fulfillment (pure; gaps are reported, not fatal)
  3. lock the aggregate keys the event touches
  4. apply the recorder inside one idempotent transaction

Optimistic version conflicts are retried from scratch with exponential
backoff. Any other store failure surfaces as ``TransactionFailure`` and the
caller redelivers the same event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from seaport_indexer.ingestor.classifier import classify_items
from seaport_indexer.ingestor.decoder import DecodeError, decode_event
from seaport_indexer.ingestor.idempotency import ApplyOutcome, IdempotencyGuard
from seaport_indexer.ingestor.locks import KeyLockError, KeyLocks, LocalKeyLocks
from seaport_indexer.ingestor.models import (
    DecodedEvent,
    OrderCancelled,
    OrderFulfilled,
    OrderValidated,
    RawEvent,
    SaleLegs,
)
from seaport_indexer.ingestor.recorders import CancellationRecorder, OfferRecorder, SaleRecorder
from seaport_indexer.storage.repos import (
    ConcurrentUpdateError,
    EventProcessingErrorDTO,
    EventProcessingErrorRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from seaport_indexer.storage.database import SessionScope

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONFLICT_RETRIES = 3
DEFAULT_CONFLICT_RETRY_DELAY = 0.05


class ProcessOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


class TransactionFailure(Exception):
    """Raised when an event's transaction could not be committed.

    Nothing from the event was persisted; the same event must be delivered
    again.
    """

    def __init__(self, message: str, *, event_id: str) -> None:
        super().__init__(message)
        self.event_id = event_id


@dataclass
class IngestionStats:
    """Counters for processed events."""

    events_processed: int = 0
    sales_recorded: int = 0
    offers_recorded: int = 0
    cancellations_recorded: int = 0
    decode_errors: int = 0
    classification_gaps: int = 0
    duplicates_skipped: int = 0
    transaction_failures: int = 0
    conflict_retries: int = 0
    last_event_id: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IngestionObserver:
    """Hook points for an external metrics/alerting collaborator.

    Every method is a no-op; subclass and override what you need.
    """

    def on_decode_error(self, raw: RawEvent, error: DecodeError) -> None:
        pass

    def on_classification_gap(self, raw: RawEvent, legs: SaleLegs) -> None:
        pass

    def on_duplicate(self, raw: RawEvent) -> None:
        pass

    def on_transaction_failure(self, raw: RawEvent, error: BaseException) -> None:
        pass

    def on_applied(self, raw: RawEvent, event: DecodedEvent) -> None:
        pass


@dataclass(frozen=True)
class ProcessorConfig:
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES
    conflict_retry_delay: float = DEFAULT_CONFLICT_RETRY_DELAY


@dataclass
class _Plan:
    keys: tuple[str, ...]
    unit: Callable[[AsyncSession], Awaitable[object]]
    counter: str


class EventProcessor:
    """Applies raw events to the store, exactly once each."""

    def __init__(
        self,
        scope: SessionScope,
        *,
        locks: KeyLocks | None = None,
        sale_recorder: SaleRecorder | None = None,
        offer_recorder: OfferRecorder | None = None,
        cancellation_recorder: CancellationRecorder | None = None,
        observer: IngestionObserver | None = None,
        config: ProcessorConfig | None = None,
    ) -> None:
        self._scope = scope
        self._guard = IdempotencyGuard(scope)
        self._locks = locks or LocalKeyLocks()
        self._sales = sale_recorder or SaleRecorder()
        self._offers = offer_recorder or OfferRecorder()
        self._cancellations = cancellation_recorder or CancellationRecorder()
        self._observer = observer or IngestionObserver()
        self._config = config or ProcessorConfig()
        self._planners: dict[type, Callable[[Any, RawEvent], _Plan]] = {
            OrderFulfilled: self._plan_sale,
            OrderValidated: self._plan_offer,
            OrderCancelled: self._plan_cancellation,
        }
        self.stats = IngestionStats()

    async def process(self, raw: RawEvent) -> ProcessOutcome:
        """Process one raw event.

        Returns:
            APPLIED if its effects were committed, DUPLICATE if it had already
            been applied, SKIPPED if it could not be decoded.

        Raises:
            TransactionFailure: If the transaction could not be committed.
        """
        event_id = raw.context.event_id
        self.stats.events_processed += 1
        self.stats.last_event_id = event_id

        try:
            event = decode_event(raw)
        except DecodeError as e:
            await self._handle_decode_error(raw, e)
            return ProcessOutcome.SKIPPED

        plan = self._planners[type(event)](event, raw)
        outcome = await self._apply(raw, event, plan)

        if outcome is ApplyOutcome.DUPLICATE:
            self.stats.duplicates_skipped += 1
            self._observer.on_duplicate(raw)
            logger.debug("Skipped duplicate %s %s", event.name, event_id)
            return ProcessOutcome.DUPLICATE

        setattr(self.stats, plan.counter, getattr(self.stats, plan.counter) + 1)
        self._observer.on_applied(raw, event)
        return ProcessOutcome.APPLIED

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan_sale(self, event: OrderFulfilled, raw: RawEvent) -> _Plan:
        legs = classify_items(event.offer_items, event.consideration_items)
        if legs.has_gap:
            self.stats.classification_gaps += 1
            self._observer.on_classification_gap(raw, legs)
            logger.info(
                "Classification gap in %s (asset_found=%s payment_found=%s); recording sentinel values",
                raw.context.event_id,
                legs.asset_found,
                legs.payment_found,
            )
        context = raw.context

        async def unit(session: AsyncSession) -> object:
            return await self._sales.record(session, event, legs, context)

        return _Plan(
            keys=(event.offerer, event.recipient, legs.asset.collection_address),
            unit=unit,
            counter="sales_recorded",
        )

    def _plan_offer(self, event: OrderValidated, raw: RawEvent) -> _Plan:
        context = raw.context

        async def unit(session: AsyncSession) -> object:
            return await self._offers.record(session, event, context)

        return _Plan(keys=(), unit=unit, counter="offers_recorded")

    def _plan_cancellation(self, event: OrderCancelled, raw: RawEvent) -> _Plan:
        context = raw.context

        async def unit(session: AsyncSession) -> object:
            return await self._cancellations.record(session, event, context)

        return _Plan(keys=(), unit=unit, counter="cancellations_recorded")

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    async def _apply(self, raw: RawEvent, event: DecodedEvent, plan: _Plan) -> ApplyOutcome:
        context = raw.context
        attempt = 0
        while True:
            try:
                async with self._locks.hold(plan.keys):
                    return await self._guard.run(
                        context.key,
                        event_name=event.name,
                        block_number=context.block_number,
                        unit=plan.unit,
                    )
            except ConcurrentUpdateError as e:
                if attempt >= self._config.max_conflict_retries:
                    raise self._failure(raw, e, f"conflict retries exhausted after {attempt + 1} attempts") from e
                attempt += 1
                self.stats.conflict_retries += 1
                delay = self._config.conflict_retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Concurrent update on %s (attempt %d/%d), retrying in %.2fs: %s",
                    context.event_id,
                    attempt,
                    self._config.max_conflict_retries,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
            except (SQLAlchemyError, KeyLockError, RedisError) as e:
                raise self._failure(raw, e, str(e)) from e

    def _failure(self, raw: RawEvent, error: BaseException, detail: str) -> TransactionFailure:
        event_id = raw.context.event_id
        self.stats.transaction_failures += 1
        self.stats.last_error = f"{type(error).__name__}: {detail}"
        self._observer.on_transaction_failure(raw, error)
        logger.error("Transaction failed for %s %s: %s", raw.name, event_id, detail)
        return TransactionFailure(f"{raw.name} {event_id}: {detail}", event_id=event_id)

    async def _handle_decode_error(self, raw: RawEvent, error: DecodeError) -> None:
        self.stats.decode_errors += 1
        self.stats.last_error = str(error)
        self._observer.on_decode_error(raw, error)
        logger.warning("Skipping undecodable event %s: %s", raw.context.event_id, error)
        try:
            async with self._scope() as session:
                await EventProcessingErrorRepository(session).insert_many(
                    [
                        EventProcessingErrorDTO(
                            transaction_hash=raw.context.transaction_hash,
                            log_index=raw.context.log_index,
                            event_name=raw.name,
                            stage="decode",
                            error_type=type(error).__name__,
                            message=str(error),
                            created_at=datetime.now(UTC),
                        )
                    ]
                )
        except SQLAlchemyError as e:
            raise self._failure(raw, e, f"could not record decode error: {e}") from e

"""Main ingestion loop for the Seaport indexer.

This module provides the IngestionPipeline class that wires the log source,
the event processor and the store together and advances a persistent block
cursor.

Pipeline flow:
    Seaport logs (≤ safe head) → EventProcessor (one transaction per event)
    → cursor advance → offer expiry
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from seaport_indexer.chain.client import ChainClientError, FlowEvmClient
from seaport_indexer.chain.log_source import SeaportLogSource
from seaport_indexer.config import Settings, get_settings
from seaport_indexer.ingestor.locks import KeyLocks, LocalKeyLocks, RedisKeyLocks
from seaport_indexer.ingestor.processor import (
    EventProcessor,
    IngestionObserver,
    IngestionStats,
    ProcessOutcome,
    ProcessorConfig,
    TransactionFailure,
)
from seaport_indexer.ingestor.recorders import SaleRecorder
from seaport_indexer.ingestor.volume import VolumeWindowConfig, VolumeWindowTracker
from seaport_indexer.storage.database import DatabaseManager
from seaport_indexer.storage.repos import IngestionCursorRepository, OfferRepository

if TYPE_CHECKING:
    from seaport_indexer.ingestor.models import RawEvent

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    batches_processed: int = 0
    events_fetched: int = 0
    redeliveries: int = 0
    offers_expired: int = 0
    errors: int = 0
    last_block: int | None = None
    last_batch_time: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one cursor step."""

    from_block: int
    to_block: int
    applied: int = 0
    duplicates: int = 0
    skipped: int = 0

    @property
    def events(self) -> int:
        return self.applied + self.duplicates + self.skipped


class PipelineStopped(Exception):
    """Raised inside a batch when stop() interrupts a redelivery wait."""


class IngestionPipeline:
    """Cursor-driven ingestion of Seaport events.

    Events are applied strictly in (block, log index) order. A batch's cursor
    is persisted only after every event in it was applied (or found to be a
    duplicate, or skipped as undecodable); an event whose transaction fails
    is redelivered with backoff until it succeeds or the pipeline stops.

    Example:
        ```python
        from seaport_indexer.config import get_settings
        from seaport_indexer.pipeline import IngestionPipeline

        pipeline = IngestionPipeline(get_settings())
        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        log_source: SeaportLogSource | None = None,
        db_manager: DatabaseManager | None = None,
        locks: KeyLocks | None = None,
        observer: IngestionObserver | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            log_source: Pre-built log source; built from settings.chain if omitted.
            db_manager: Pre-built database manager; built from settings.database if omitted.
            locks: Key lock implementation; chosen by settings.ingestion.lock_backend if omitted.
            observer: Hooks for an external metrics collaborator.
        """
        self._settings = settings or get_settings()
        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._log_source = log_source
        self._db_manager = db_manager
        self._owns_db_manager = db_manager is None
        self._locks = locks
        self._observer = observer

        self._redis: Redis | None = None
        self._chain_client: FlowEvmClient | None = None
        self._processor: EventProcessor | None = None

        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def ingestion_stats(self) -> IngestionStats | None:
        """Per-event counters, once the processor exists."""
        return self._processor.stats if self._processor else None

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def cursor_source(self) -> str:
        chain = self._settings.chain
        return f"seaport:{chain.chain_id}:{chain.seaport_address.lower()}"

    async def start(self) -> None:
        """Start the pipeline and its background ingestion loop.

        Raises:
            RuntimeError: If pipeline is already running.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")

        try:
            await self.initialize()
            self._loop_task = asyncio.create_task(self._ingest_loop())
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully (cursor source %s)", self.cursor_source)
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        The event in flight finishes (or rolls back); no partial event is
        ever committed.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def initialize(self) -> None:
        """Build every component that was not injected."""
        settings = self._settings
        self._stop_event = asyncio.Event()

        needs_redis = settings.ingestion.lock_backend == "redis" and self._locks is None
        if needs_redis or self._log_source is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
            )

        if self._log_source is None:
            logger.debug("Initializing Flow EVM client...")
            self._chain_client = FlowEvmClient(
                settings.chain.rpc_url,
                fallback_rpc_url=settings.chain.fallback_rpc_url,
                redis=self._redis,
                max_requests_per_second=settings.chain.max_requests_per_second,
            )
            self._log_source = SeaportLogSource(
                self._chain_client,
                contract_address=settings.chain.seaport_address,
                confirmations=settings.chain.confirmations,
            )

        if self._locks is None:
            if settings.ingestion.lock_backend == "redis":
                if self._redis is None:
                    raise RuntimeError("Redis lock backend requires a Redis connection")
                self._locks = RedisKeyLocks(self._redis, timeout=settings.ingestion.lock_timeout_seconds)
            else:
                self._locks = LocalKeyLocks()

        volume = VolumeWindowTracker(config=VolumeWindowConfig(bucket_seconds=settings.ingestion.bucket_seconds))
        self._processor = EventProcessor(
            self._db_manager.get_async_session,
            locks=self._locks,
            sale_recorder=SaleRecorder(volume=volume),
            observer=self._observer,
            config=ProcessorConfig(
                max_conflict_retries=settings.ingestion.max_conflict_retries,
                conflict_retry_delay=settings.ingestion.conflict_retry_delay_seconds,
            ),
        )

    async def _cleanup(self) -> None:
        """Clean up resources this pipeline created."""
        if self._chain_client:
            await self._chain_client.aclose()
            self._chain_client = None
            self._log_source = None

        if self._db_manager and self._owns_db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def load_cursor(self) -> int:
        """Last fully applied block, or ``start_block - 1`` when none is stored."""
        if self._db_manager is None:
            raise RuntimeError("Pipeline is not initialized")
        async with self._db_manager.get_async_session() as session:
            stored = await IngestionCursorRepository(session).get(self.cursor_source)
        return stored if stored is not None else self._settings.chain.start_block - 1

    async def run_once(self) -> BatchResult | None:
        """Apply the next batch of blocks up to the safe head.

        Returns:
            The batch applied, or None if the cursor is already at the safe head.

        Raises:
            PipelineStopped: If stop() was requested while an event was
                waiting to be redelivered; the cursor is left unchanged.
        """
        if self._log_source is None or self._processor is None or self._db_manager is None:
            raise RuntimeError("Pipeline is not initialized")

        safe_head = await self._log_source.safe_head()
        cursor = await self.load_cursor()
        if cursor >= safe_head:
            return None

        from_block = cursor + 1
        to_block = min(safe_head, cursor + self._settings.chain.batch_size)
        events = await self._log_source.fetch_events(from_block, to_block)
        self._stats.events_fetched += len(events)

        counts = {outcome: 0 for outcome in ProcessOutcome}
        for raw in events:
            counts[await self._process_with_redelivery(raw)] += 1

        async with self._db_manager.get_async_session() as session:
            await IngestionCursorRepository(session).set(self.cursor_source, to_block)
            if events:
                expired = await OfferRepository(session).expire_due(as_of=events[-1].context.block_timestamp)
                self._stats.offers_expired += expired

        result = BatchResult(
            from_block=from_block,
            to_block=to_block,
            applied=counts[ProcessOutcome.APPLIED],
            duplicates=counts[ProcessOutcome.DUPLICATE],
            skipped=counts[ProcessOutcome.SKIPPED],
        )
        self._stats.batches_processed += 1
        self._stats.last_block = to_block
        self._stats.last_batch_time = datetime.now(UTC)
        logger.info(
            "Applied blocks %d-%d: %d events (%d applied, %d duplicate, %d skipped)",
            from_block,
            to_block,
            result.events,
            result.applied,
            result.duplicates,
            result.skipped,
        )
        return result

    async def _process_with_redelivery(self, raw: RawEvent) -> ProcessOutcome:
        if self._processor is None:
            raise RuntimeError("Pipeline is not initialized")
        delay = self._settings.ingestion.redelivery_backoff_seconds
        while True:
            try:
                return await self._processor.process(raw)
            except TransactionFailure as e:
                self._stats.redeliveries += 1
                self._stats.last_error = str(e)
                logger.warning("Redelivering %s in %.1fs: %s", e.event_id, delay, e)
                if await self._wait_for_stop(delay):
                    raise PipelineStopped(f"Stopped while redelivering {e.event_id}") from e
                delay = min(delay * 2, self._settings.ingestion.max_redelivery_backoff_seconds)

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if stop was requested meanwhile."""
        if self._stop_event is None:
            await asyncio.sleep(timeout)
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _ingest_loop(self) -> None:
        poll_interval = self._settings.chain.poll_interval_seconds
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                result = await self.run_once()
            except PipelineStopped:
                return
            except ChainClientError as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Chain access failed, retrying in %.1fs: %s", poll_interval, e)
                result = None
            except SQLAlchemyError as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error("Cursor update failed, retrying batch in %.1fs: %s", poll_interval, e)
                result = None
            if result is None and await self._wait_for_stop(poll_interval):
                return

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = IngestionPipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._loop_task:
                await self._loop_task
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> IngestionPipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

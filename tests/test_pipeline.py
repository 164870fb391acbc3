"""Tests for the main ingestion pipeline."""

from __future__ import annotations

import asyncio

import pytest
from conftest import BASE_TS, SELLER, fulfilled_event, validated_event

from seaport_indexer.config import ChainSettings, DatabaseSettings, IngestionSettings, Settings
from seaport_indexer.ingestor.models import RawEvent
from seaport_indexer.ingestor.processor import ProcessOutcome, TransactionFailure
from seaport_indexer.pipeline import IngestionPipeline, PipelineState, PipelineStopped
from seaport_indexer.storage.database import DatabaseManager
from seaport_indexer.storage.models import OfferStatus
from seaport_indexer.storage.repos import IngestionCursorRepository, OfferDTO, OfferRepository, SaleRepository

START_BLOCK = 100


class FakeLogSource:
    """In-memory log source returning pre-built events by block range."""

    def __init__(self, head: int, events: list[RawEvent]) -> None:
        self.head = head
        self.events = events
        self.calls: list[tuple[int, int]] = []

    async def safe_head(self) -> int:
        return self.head

    async def fetch_events(self, from_block: int, to_block: int) -> list[RawEvent]:
        self.calls.append((from_block, to_block))
        return [e for e in self.events if from_block <= e.context.block_number <= to_block]


@pytest.fixture
def settings(database_url: str) -> Settings:
    """Create settings for testing."""
    return Settings(
        database=DatabaseSettings(DATABASE_URL=database_url),
        chain=ChainSettings(CHAIN_START_BLOCK=START_BLOCK, CHAIN_BATCH_SIZE=10, CHAIN_POLL_INTERVAL_SECONDS=0.01),
        ingestion=IngestionSettings(
            INGEST_REDELIVERY_BACKOFF_SECONDS=0.01,
            INGEST_MAX_REDELIVERY_BACKOFF_SECONDS=0.02,
            INGEST_CONFLICT_RETRY_DELAY_SECONDS=0,
        ),
    )


@pytest.fixture
async def db_manager(database_url: str):
    manager = DatabaseManager(database_url)
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


def _pipeline(settings: Settings, db_manager: DatabaseManager, source: FakeLogSource) -> IngestionPipeline:
    return IngestionPipeline(settings, log_source=source, db_manager=db_manager)  # type: ignore[arg-type]


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, settings: Settings) -> None:
        """Pipeline should start in stopped state."""
        pipeline = IngestionPipeline(settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running
        assert pipeline.ingestion_stats is None

    def test_cursor_source_names_chain_and_contract(self, settings: Settings) -> None:
        pipeline = IngestionPipeline(settings)
        assert pipeline.cursor_source == "seaport:747:0x0000000000000068f116a894984e2db1123eb395"

    @pytest.mark.asyncio
    async def test_run_once_requires_initialize(self, settings: Settings) -> None:
        with pytest.raises(RuntimeError):
            await IngestionPipeline(settings).run_once()

    @pytest.mark.asyncio
    async def test_load_cursor_requires_initialize(self, settings: Settings) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            await IngestionPipeline(settings).load_cursor()

    @pytest.mark.asyncio
    async def test_redelivery_requires_initialize(self, settings: Settings) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            await IngestionPipeline(settings)._process_with_redelivery(validated_event(1, block=101))

    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings: Settings, db_manager: DatabaseManager) -> None:
        source = FakeLogSource(head=105, events=[fulfilled_event(1, block=101)])
        pipeline = _pipeline(settings, db_manager, source)

        await pipeline.start()
        assert pipeline.is_running
        with pytest.raises(RuntimeError):
            await pipeline.start()

        for _ in range(200):
            if pipeline.stats.last_block == 105:
                break
            await asyncio.sleep(0.01)
        await pipeline.stop()

        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.stats.last_block == 105
        assert pipeline.ingestion_stats is not None
        assert pipeline.ingestion_stats.sales_recorded == 1


class TestRunOnce:
    """Tests for cursor-driven batches."""

    @pytest.mark.asyncio
    async def test_batches_advance_cursor(self, settings: Settings, db_manager: DatabaseManager) -> None:
        events = [
            fulfilled_event(1, block=100, timestamp=BASE_TS),
            validated_event(2, block=105, timestamp=BASE_TS + 10),
            fulfilled_event(3, block=112, timestamp=BASE_TS + 20),
        ]
        source = FakeLogSource(head=115, events=events)
        pipeline = _pipeline(settings, db_manager, source)
        await pipeline.initialize()

        assert await pipeline.load_cursor() == START_BLOCK - 1

        first = await pipeline.run_once()
        assert first is not None
        assert (first.from_block, first.to_block) == (100, 109)
        assert first.applied == 2
        assert await pipeline.load_cursor() == 109

        second = await pipeline.run_once()
        assert second is not None
        assert (second.from_block, second.to_block) == (110, 115)
        assert second.applied == 1

        assert await pipeline.run_once() is None
        assert source.calls == [(100, 109), (110, 115)]
        assert pipeline.stats.batches_processed == 2
        assert pipeline.stats.events_fetched == 3

    @pytest.mark.asyncio
    async def test_replaying_a_batch_is_harmless(self, settings: Settings, db_manager: DatabaseManager) -> None:
        """A crash between applying events and saving the cursor replays the batch."""
        events = [fulfilled_event(1, block=100, price=5), fulfilled_event(2, block=101, price=7)]
        source = FakeLogSource(head=101, events=events)
        pipeline = _pipeline(settings, db_manager, source)
        await pipeline.initialize()
        for raw in events:
            await pipeline._processor.process(raw)  # type: ignore[union-attr]

        result = await pipeline.run_once()
        assert result is not None
        assert result.duplicates == 2
        assert result.applied == 0
        async with db_manager.get_async_session() as session:
            assert len(await SaleRepository(session).list_all()) == 2

    @pytest.mark.asyncio
    async def test_failed_event_is_redelivered(
        self, settings: Settings, db_manager: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        source = FakeLogSource(head=100, events=[fulfilled_event(1, block=100)])
        pipeline = _pipeline(settings, db_manager, source)
        await pipeline.initialize()

        processor = pipeline._processor
        assert processor is not None
        real_process = processor.process
        attempts = 0

        async def flaky(raw: RawEvent) -> ProcessOutcome:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise TransactionFailure("database unavailable", event_id=raw.context.event_id)
            return await real_process(raw)

        monkeypatch.setattr(processor, "process", flaky)

        result = await pipeline.run_once()
        assert result is not None
        assert result.applied == 1
        assert attempts == 3
        assert pipeline.stats.redeliveries == 2

    @pytest.mark.asyncio
    async def test_stop_during_redelivery_keeps_cursor(
        self, settings: Settings, db_manager: DatabaseManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        source = FakeLogSource(head=100, events=[fulfilled_event(1, block=100)])
        pipeline = _pipeline(settings, db_manager, source)
        await pipeline.initialize()

        async def always_fail(raw: RawEvent) -> ProcessOutcome:
            pipeline._stop_event.set()  # type: ignore[union-attr]
            raise TransactionFailure("database unavailable", event_id=raw.context.event_id)

        monkeypatch.setattr(pipeline._processor, "process", always_fail)

        with pytest.raises(PipelineStopped):
            await pipeline.run_once()
        assert await pipeline.load_cursor() == START_BLOCK - 1

    @pytest.mark.asyncio
    async def test_batch_expires_due_offers(self, settings: Settings, db_manager: DatabaseManager) -> None:
        async with db_manager.get_async_session() as session:
            await OfferRepository(session).insert(
                OfferDTO(
                    transaction_hash="0x" + "9" * 64,
                    log_index=0,
                    collection_address="0x" + "c" * 40,
                    token_id="1",
                    offerer=SELLER,
                    recipient=None,
                    price=1,
                    currency_symbol="FLOW",
                    currency_address="0x" + "0" * 40,
                    platform_name="Seaport",
                    expiration_time=BASE_TS + 50,
                    status=OfferStatus.ACTIVE.value,
                    block_number=90,
                    timestamp=BASE_TS,
                )
            )

        source = FakeLogSource(head=100, events=[fulfilled_event(1, block=100, timestamp=BASE_TS + 60)])
        pipeline = _pipeline(settings, db_manager, source)
        await pipeline.initialize()
        await pipeline.run_once()

        assert pipeline.stats.offers_expired == 1
        async with db_manager.get_async_session() as session:
            offer = await OfferRepository(session).get("0x" + "9" * 64, 0)
            cursor = await IngestionCursorRepository(session).get(pipeline.cursor_source)
        assert offer is not None and offer.status == OfferStatus.EXPIRED.value
        assert cursor == 100

"""Storage layer - Database schemas and repositories."""

from seaport_indexer.storage.database import (
    DatabaseManager,
    SessionScope,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
    session_scope,
)
from seaport_indexer.storage.models import (
    Base,
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
from seaport_indexer.storage.repos import (
    CancellationDTO,
    CancellationRepository,
    CollectionDTO,
    CollectionRepository,
    ConcurrentUpdateError,
    DailyCollectionMetricsDTO,
    DailyMetricsRepository,
    DailyUserMetricsDTO,
    DuplicateKeyError,
    EventProcessingErrorDTO,
    EventProcessingErrorRepository,
    IngestionCursorRepository,
    InvalidOfferTransition,
    OfferDTO,
    OfferRepository,
    ProcessedEventRepository,
    SaleDTO,
    SaleRepository,
    UserDTO,
    UserRepository,
    VolumeSnapshotDTO,
    VolumeSnapshotRepository,
)
from seaport_indexer.storage.types import Uint256

__all__ = [
    "Base",
    "CancellationDTO",
    "CancellationModel",
    "CancellationRepository",
    "CollectionDTO",
    "CollectionModel",
    "CollectionRepository",
    "ConcurrentUpdateError",
    "DailyCollectionMetricsDTO",
    "DailyCollectionMetricsModel",
    "DailyCollectionParticipantModel",
    "DailyMetricsRepository",
    "DailyUserMetricsDTO",
    "DailyUserMetricsModel",
    "DatabaseManager",
    "DuplicateKeyError",
    "EventProcessingErrorDTO",
    "EventProcessingErrorModel",
    "EventProcessingErrorRepository",
    "IngestionCursorModel",
    "IngestionCursorRepository",
    "InvalidOfferTransition",
    "OfferDTO",
    "OfferModel",
    "OfferRepository",
    "OfferStatus",
    "ProcessedEventModel",
    "ProcessedEventRepository",
    "SaleDTO",
    "SaleModel",
    "SaleRepository",
    "SessionScope",
    "Uint256",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "VolumeSnapshotDTO",
    "VolumeSnapshotModel",
    "VolumeSnapshotRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "session_scope",
]

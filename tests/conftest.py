"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from seaport_indexer.ingestor.models import BlockContext, ItemType, RawEvent
from seaport_indexer.storage.database import session_scope
from seaport_indexer.storage.models import Base

SELLER = "0x" + "a" * 40
BUYER = "0x" + "b" * 40
COLLECTION = "0x" + "c" * 40
ERC20_TOKEN = "0x" + "e" * 40
ZONE = "0x" + "0" * 40
BASE_TS = 1_700_000_000


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def order_hash(n: int) -> str:
    return "0x" + f"{n + 0xABC:064x}"


def offer_item(item_type: ItemType, token: str, identifier: int = 0, amount: int = 1) -> dict[str, Any]:
    return {"itemType": int(item_type), "token": token, "identifier": identifier, "amount": amount}


def consideration_item(
    item_type: ItemType,
    token: str,
    amount: int,
    recipient: str,
    identifier: int = 0,
) -> dict[str, Any]:
    return {
        "itemType": int(item_type),
        "token": token,
        "identifier": identifier,
        "amount": amount,
        "recipient": recipient,
    }


def make_context(n: int, *, timestamp: int = BASE_TS, block: int | None = None, log_index: int = 0) -> BlockContext:
    return BlockContext(
        block_number=block if block is not None else 100 + n,
        block_timestamp=timestamp,
        transaction_hash=tx_hash(n),
        log_index=log_index,
        gas_used=21_000,
        gas_price=1_000_000_000,
    )


def fulfilled_event(
    n: int,
    *,
    price: int = 10**18,
    timestamp: int = BASE_TS,
    seller: str = SELLER,
    buyer: str = BUYER,
    collection: str = COLLECTION,
    token_id: int = 1,
    offer: Sequence[dict[str, Any]] | None = None,
    consideration: Sequence[dict[str, Any]] | None = None,
    block: int | None = None,
    log_index: int = 0,
) -> RawEvent:
    """OrderFulfilled raw event selling one ERC721 for native currency."""
    if offer is None:
        offer = [offer_item(ItemType.ERC721, collection, token_id)]
    if consideration is None:
        consideration = [consideration_item(ItemType.NATIVE, ZONE, price, seller)]
    return RawEvent(
        name="OrderFulfilled",
        args={
            "orderHash": order_hash(n),
            "offerer": seller,
            "zone": ZONE,
            "recipient": buyer,
            "offer": list(offer),
            "consideration": list(consideration),
        },
        context=make_context(n, timestamp=timestamp, block=block, log_index=log_index),
    )


def validated_event(n: int, *, offerer: str = SELLER, timestamp: int = BASE_TS, block: int | None = None) -> RawEvent:
    return RawEvent(
        name="OrderValidated",
        args={"orderHash": order_hash(n), "offerer": offerer, "zone": ZONE},
        context=make_context(n, timestamp=timestamp, block=block),
    )


def cancelled_event(n: int, *, offerer: str = SELLER, timestamp: int = BASE_TS, block: int | None = None) -> RawEvent:
    return RawEvent(
        name="OrderCancelled",
        args={"orderHash": order_hash(n), "offerer": offerer, "zone": ZONE},
        context=make_context(n, timestamp=timestamp, block=block),
    )


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite so independent sessions see the same data."""
    return f"sqlite+aiosqlite:///{tmp_path / 'seaport.db'}"


@pytest.fixture
async def async_engine(database_url: str):
    """Create an async SQLite engine with the full schema."""
    engine = create_async_engine(database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture
def scope(session_factory):
    """Transactional scope: commit on success, roll back on error."""
    return session_scope(session_factory)


@pytest.fixture
async def async_session(session_factory) -> AsyncSession:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session

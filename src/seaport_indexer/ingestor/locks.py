"""Per-key locks serializing updates to shared aggregate rows.

A sale touches three aggregate keys (seller, buyer, collection). Keys are
de-duplicated and acquired in sorted order so two units sharing keys can
never wait on each other in a cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_PREFIX = "seaport:lock:"


class KeyLockError(Exception):
    """Raised when a key lock cannot be acquired in time."""


class KeyLocks(Protocol):
    def hold(self, keys: Iterable[str]) -> AbstractAsyncContextManager[None]: ...


def _ordered(keys: Iterable[str]) -> list[str]:
    return sorted({k.lower() for k in keys if k})


class LocalKeyLocks:
    """In-process locks for a single worker.

    A key's lock lives only while some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def _hold_one(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for key in _ordered(keys):
                await stack.enter_async_context(self._hold_one(key))
            yield


class RedisKeyLocks:
    """Redis-backed locks shared by every worker pointing at the same server.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        locks = RedisKeyLocks(redis, timeout=10.0)
        async with locks.hold(["0xseller", "0xbuyer", "0xcollection"]):
            ...
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        timeout: float = 10.0,
        blocking_timeout: float = 5.0,
        prefix: str = DEFAULT_LOCK_PREFIX,
    ) -> None:
        self._redis = redis
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout
        self._prefix = prefix

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        acquired = []
        try:
            for key in _ordered(keys):
                lock = self._redis.lock(
                    f"{self._prefix}{key}",
                    timeout=self._timeout,
                    blocking_timeout=self._blocking_timeout,
                )
                if not await lock.acquire():
                    raise KeyLockError(f"Timed out acquiring lock for {key}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                try:
                    await lock.release()
                except LockError as e:
                    # Lock expired while held.
                    logger.warning("Failed to release lock %s: %s", lock.name, e)

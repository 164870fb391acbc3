"""Tests for per-key aggregate locks."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockError

from seaport_indexer.ingestor.locks import KeyLockError, LocalKeyLocks, RedisKeyLocks, _ordered


def _fake_redis(*, acquire_results: dict[str, bool] | None = None) -> tuple[MagicMock, dict[str, AsyncMock]]:
    acquire_results = acquire_results or {}
    locks: dict[str, AsyncMock] = {}

    def lock(name: str, **kwargs: object) -> AsyncMock:
        mock = AsyncMock()
        mock.name = name
        mock.acquire.return_value = acquire_results.get(name, True)
        locks[name] = mock
        return mock

    redis = MagicMock()
    redis.lock.side_effect = lock
    return redis, locks


def test_ordered_keys() -> None:
    assert _ordered(["0xB", "0xa", "0xb", ""]) == ["0xa", "0xb"]


class TestLocalKeyLocks:
    """Tests for LocalKeyLocks."""

    @pytest.mark.asyncio
    async def test_shared_key_serializes(self) -> None:
        locks = LocalKeyLocks()
        order: list[str] = []

        async def worker(name: str, keys: list[str]) -> None:
            async with locks.hold(keys):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first", ["0xa", "0xc"]), worker("second", ["0xc", "0xb"]))
        assert order in (
            ["first-in", "first-out", "second-in", "second-out"],
            ["second-in", "second-out", "first-in", "first-out"],
        )

    @pytest.mark.asyncio
    async def test_overlapping_keys_in_opposite_order_do_not_deadlock(self) -> None:
        locks = LocalKeyLocks()

        async def worker(keys: list[str]) -> None:
            for _ in range(20):
                async with locks.hold(keys):
                    await asyncio.sleep(0)

        await asyncio.wait_for(asyncio.gather(worker(["0xa", "0xb"]), worker(["0xb", "0xa"])), timeout=5)

    @pytest.mark.asyncio
    async def test_duplicate_keys_do_not_self_deadlock(self) -> None:
        """Seller and buyer may be the same wallet."""
        locks = LocalKeyLocks()
        async with locks.hold(["0xa", "0xA", "0xc"]):
            pass

    @pytest.mark.asyncio
    async def test_released_keys_are_forgotten(self) -> None:
        locks = LocalKeyLocks()
        for i in range(50):
            async with locks.hold([f"0x{i:040x}", "0xc"]):
                assert set(locks._locks) == {f"0x{i:040x}", "0xc"}
        assert locks._locks == {}
        assert locks._users == {}

    @pytest.mark.asyncio
    async def test_waiting_task_keeps_lock_alive(self) -> None:
        locks = LocalKeyLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first() -> None:
            async with locks.hold(["0xa"]):
                entered.set()
                await release.wait()

        async def second() -> None:
            await entered.wait()
            async with locks.hold(["0xa"]):
                pass

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await entered.wait()
        for _ in range(100):
            if locks._users.get("0xa") == 2:
                break
            await asyncio.sleep(0)
        assert locks._users == {"0xa": 2}
        release.set()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=5)
        assert locks._locks == {}

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_forgotten(self) -> None:
        locks = LocalKeyLocks()
        async with locks.hold(["0xa"]):
            waiter = asyncio.create_task(locks.hold(["0xa"]).__aenter__())
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter
        assert locks._locks == {}


class TestRedisKeyLocks:
    """Tests for RedisKeyLocks with a fake client."""

    @pytest.mark.asyncio
    async def test_acquires_in_order_and_releases_in_reverse(self) -> None:
        redis, created = _fake_redis()
        locks = RedisKeyLocks(redis, prefix="t:")
        async with locks.hold(["0xc", "0xa", "0xb"]):
            names = [call.args[0] for call in redis.lock.call_args_list]
            assert names == ["t:0xa", "t:0xb", "t:0xc"]
        for lock in created.values():
            lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_raises_and_releases_acquired(self) -> None:
        redis, created = _fake_redis(acquire_results={"t:0xb": False})
        locks = RedisKeyLocks(redis, prefix="t:")
        with pytest.raises(KeyLockError):
            async with locks.hold(["0xa", "0xb"]):
                pytest.fail("body must not run")
        created["t:0xa"].release.assert_awaited_once()
        created["t:0xb"].release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_release_error_is_logged(self) -> None:
        redis, created = _fake_redis()
        locks = RedisKeyLocks(redis, prefix="t:")
        async with locks.hold(["0xa"]):
            created["t:0xa"].release.side_effect = LockError("expired")

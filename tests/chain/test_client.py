"""Tests for the Flow EVM RPC client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from web3.exceptions import Web3Exception

from seaport_indexer.chain.client import FlowEvmClient, RateLimiter, RPCError


@pytest.fixture
def redis() -> AsyncMock:
    mock = AsyncMock()
    mock.get.return_value = None
    return mock


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire_within_budget(self) -> None:
        limiter = RateLimiter.create(5)
        for _ in range(5):
            await limiter.acquire()
        assert limiter.tokens < 1


class TestFlowEvmClient:
    @pytest.mark.asyncio
    async def test_block_is_cached(self, redis: AsyncMock) -> None:
        client = FlowEvmClient("https://rpc.example", redis=redis, retry_delay_seconds=0)
        block = {"number": 7, "hash": b"\x01" * 32, "timestamp": 1_700_000_000}
        with patch.object(client, "_call", AsyncMock(return_value=block)) as call:
            result = await client.get_block(7)

        assert result == {"number": 7, "hash": "0x" + "01" * 32, "timestamp": 1_700_000_000}
        call.assert_awaited_once()
        key, value = redis.set.await_args.args
        assert key == "flowevm:block:7"
        assert json.loads(value) == result

    @pytest.mark.asyncio
    async def test_cache_hit_skips_rpc(self, redis: AsyncMock) -> None:
        redis.get.return_value = json.dumps({"number": 7, "hash": "0x01", "timestamp": 5}).encode()
        client = FlowEvmClient("https://rpc.example", redis=redis)
        with patch.object(client, "_call", AsyncMock()) as call:
            assert (await client.get_block(7))["timestamp"] == 5
        call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_errors_fall_through(self, redis: AsyncMock) -> None:
        redis.get.side_effect = RedisConnectionError("down")
        redis.set.side_effect = RedisConnectionError("down")
        client = FlowEvmClient("https://rpc.example", redis=redis)
        with patch.object(client, "_call", AsyncMock(return_value=12)):
            assert await client.get_block_number() == 12
            block = {"number": 12, "hash": b"\x02" * 32, "timestamp": 9}
            with patch.object(client, "_call", AsyncMock(return_value=block)):
                assert (await client.get_block(12))["timestamp"] == 9

    @pytest.mark.asyncio
    async def test_failover_to_fallback(self) -> None:
        client = FlowEvmClient(
            "https://primary.example",
            fallback_rpc_url="https://fallback.example",
            max_retries=2,
            retry_delay_seconds=0,
        )
        calls: list[object] = []

        async def call(w3: object, func_name: str, *args: object) -> int:
            calls.append(w3)
            if w3 is client._w3:
                raise Web3Exception("primary down")
            return 99

        with patch.object(client, "_call", side_effect=call):
            assert await client.get_block_number() == 99
        assert calls.count(client._w3) == 2
        assert calls[-1] is client._w3_fallback
        assert client._primary_healthy is False

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self) -> None:
        client = FlowEvmClient("https://primary.example", max_retries=1, retry_delay_seconds=0)
        with patch.object(client, "_call", AsyncMock(side_effect=Web3Exception("boom"))):
            with pytest.raises(RPCError):
                await client.get_block_number()
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_receipt_fields(self) -> None:
        client = FlowEvmClient("https://rpc.example")
        receipt = {"transactionHash": b"\xab" * 32, "blockNumber": 3, "gasUsed": 21_000}
        with patch.object(client, "_call", AsyncMock(return_value=receipt)):
            result = await client.get_transaction_receipt("0x" + "AB" * 32)
        assert result == {
            "transactionHash": "0x" + "ab" * 32,
            "blockNumber": 3,
            "gasUsed": 21_000,
            "effectiveGasPrice": 0,
        }

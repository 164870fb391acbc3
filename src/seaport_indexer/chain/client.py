"""Flow EVM JSON-RPC client with failover, rate limiting and caching.

This module provides the read-only RPC access the log source needs:
- Retry logic with exponential backoff
- Failover to a secondary RPC URL
- Rate limiting to respect provider limits
- Redis caching of immutable blocks and receipts
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_PRIMARY_RECOVERY_SECONDS = 60.0


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """Raised when an RPC call fails on every endpoint."""


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.max_tokens, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            await asyncio.sleep((tokens - self.tokens) / self.refill_rate)


class FlowEvmClient:
    """Flow EVM client used by the Seaport log source.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        client = FlowEvmClient(
            rpc_url="https://mainnet.evm.nodes.onflow.org",
            redis=redis,
        )
        head = await client.get_block_number()
        logs = await client.get_logs({"fromBlock": head - 10, "toBlock": head})
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            rpc_url: Primary RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching.
            cache_ttl_seconds: Cache TTL for blocks and receipts.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum attempts per endpoint.
            retry_delay_seconds: Initial delay between attempts.
        """
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = DEFAULT_PRIMARY_RECOVERY_SECONDS

        self._cache_prefix = "flowevm:"

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return client

    async def _get_cached(self, key: str) -> dict[str, Any] | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            logger.warning("Cache get failed: %s", e)
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return dict(json.loads(value))

    async def _set_cached(self, key: str, value: dict[str, Any]) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=self._cache_ttl)
        except RedisError as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call(self, w3: AsyncWeb3[AsyncHTTPProvider], func_name: str, *args: Any) -> Any:
        attr = getattr(w3.eth, func_name)
        # Properties such as block_number return an awaitable directly.
        if callable(attr):
            return await attr(*args)
        return await attr

    async def _attempts(self, w3: AsyncWeb3[AsyncHTTPProvider], label: str, func_name: str, *args: Any) -> Any:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                return await self._call(w3, func_name, *args)
            except Web3Exception as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise RPCError(f"{label} RPC {func_name} failed: {last_error}")

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Raises:
            RPCError: If all retries on every endpoint fail.
        """
        await self._rate_limiter.acquire()
        last_error: Exception | None = None

        if self._should_try_primary():
            try:
                result = await self._attempts(self._w3, "Primary", func_name, *args)
                self._primary_healthy = True
                return result
            except RPCError as e:
                last_error = e
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            try:
                result = await self._attempts(self._w3_fallback, "Fallback", func_name, *args)
                logger.info("Fallback RPC succeeded for %s", func_name)
                return result
            except RPCError as e:
                last_error = e

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def get_block_number(self) -> int:
        return int(await self._execute_with_retry("block_number"))

    async def get_block(self, block_number: int) -> dict[str, Any]:
        """Get a block's number, hash and timestamp.

        Args:
            block_number: Block number.

        Returns:
            Dictionary with ``number``, ``hash`` and ``timestamp`` (unix seconds).
        """
        cache_key = f"{self._cache_prefix}block:{block_number}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        block = await self._execute_with_retry("get_block", block_number)
        block_dict = {
            "number": int(block["number"]),
            "hash": _hex(block["hash"]),
            "timestamp": int(block["timestamp"]),
        }
        await self._set_cached(cache_key, block_dict)
        return block_dict

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via ``eth_getLogs`` with retry/failover semantics."""
        logs = await self._execute_with_retry("get_logs", filter_params)
        return [dict(log) for log in logs]

    async def get_transaction(self, transaction_hash: str) -> dict[str, Any]:
        tx = await self._execute_with_retry("get_transaction", transaction_hash)
        return dict(tx)

    async def get_transaction_receipt(self, transaction_hash: str) -> dict[str, Any]:
        """Get gas usage fields of a transaction receipt.

        Returns:
            Dictionary with ``transactionHash``, ``blockNumber``, ``gasUsed``
            and ``effectiveGasPrice`` (0 when the node omits it).
        """
        cache_key = f"{self._cache_prefix}receipt:{transaction_hash.lower()}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        receipt = await self._execute_with_retry("get_transaction_receipt", transaction_hash)
        receipt_dict = {
            "transactionHash": _hex(receipt["transactionHash"]).lower(),
            "blockNumber": int(receipt["blockNumber"]),
            "gasUsed": int(receipt["gasUsed"]),
            "effectiveGasPrice": int(receipt.get("effectiveGasPrice") or 0),
        }
        await self._set_cached(cache_key, receipt_dict)
        return receipt_dict

    async def health_check(self) -> bool:
        """Check if the client can reach any RPC endpoint."""
        try:
            await self.get_block_number()
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result

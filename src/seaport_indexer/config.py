"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Seaport indexer, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ADDRESS_HEX_LENGTH = 42


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )
    pool_size: int = Field(default=5, alias="DATABASE_POOL_SIZE", ge=1)
    max_overflow: int = Field(default=10, alias="DATABASE_MAX_OVERFLOW", ge=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """Flow EVM RPC and Seaport contract settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str = Field(
        default="https://mainnet.evm.nodes.onflow.org",
        alias="CHAIN_RPC_URL",
        description="Primary Flow EVM RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_FALLBACK_RPC_URL",
        description="Fallback Flow EVM RPC endpoint",
    )
    chain_id: int = Field(default=747, alias="CHAIN_ID", description="Flow EVM mainnet")
    seaport_address: str = Field(
        default="0x0000000000000068F116a894984e2DB1123eB395",
        alias="CHAIN_SEAPORT_ADDRESS",
        description="Seaport contract address",
    )
    start_block: int = Field(
        default=8_500_000,
        alias="CHAIN_START_BLOCK",
        description="First block to index when no cursor exists",
        ge=0,
    )
    confirmations: int = Field(
        default=3,
        alias="CHAIN_CONFIRMATIONS",
        description="Blocks behind head treated as final",
        ge=0,
    )
    batch_size: int = Field(
        default=500,
        alias="CHAIN_BATCH_SIZE",
        description="Maximum blocks per eth_getLogs request",
        ge=1,
        le=10_000,
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        alias="CHAIN_POLL_INTERVAL_SECONDS",
        description="Sleep between polls when caught up with the safe head",
        gt=0,
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="CHAIN_MAX_REQUESTS_PER_SECOND",
        gt=0,
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("seaport_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if len(v) != _ADDRESS_HEX_LENGTH or not v.startswith("0x"):
            raise ValueError("CHAIN_SEAPORT_ADDRESS must be a 0x-prefixed 20-byte address")
        int(v[2:], 16)
        return v


class IngestionSettings(BaseSettings):
    """Event processing settings."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    bucket_seconds: int = Field(
        default=60,
        alias="INGEST_BUCKET_SECONDS",
        description="Volume snapshot bucket width",
        ge=1,
        le=3600,
    )
    max_conflict_retries: int = Field(
        default=3,
        alias="INGEST_MAX_CONFLICT_RETRIES",
        description="Retries after an optimistic version conflict",
        ge=0,
    )
    conflict_retry_delay_seconds: float = Field(
        default=0.05,
        alias="INGEST_CONFLICT_RETRY_DELAY_SECONDS",
        ge=0,
    )
    lock_backend: Literal["local", "redis"] = Field(
        default="local",
        alias="INGEST_LOCK_BACKEND",
        description="Key lock implementation: in-process or Redis (multi-worker)",
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        alias="INGEST_LOCK_TIMEOUT_SECONDS",
        gt=0,
    )
    redelivery_backoff_seconds: float = Field(
        default=1.0,
        alias="INGEST_REDELIVERY_BACKOFF_SECONDS",
        description="Initial delay before redelivering an event whose transaction failed",
        gt=0,
    )
    max_redelivery_backoff_seconds: float = Field(
        default=30.0,
        alias="INGEST_MAX_REDELIVERY_BACKOFF_SECONDS",
        gt=0,
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from seaport_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.chain.start_block)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings must be given the same env_file, otherwise it
    # only reads from the process environment.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingestion: IngestionSettings = Field(
        default_factory=lambda: IngestionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "chain": {
                "rpc_url": self._redact_url(self.chain.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.chain.fallback_rpc_url) if self.chain.fallback_rpc_url else "(not set)"
                ),
                "chain_id": str(self.chain.chain_id),
                "seaport_address": self.chain.seaport_address,
                "start_block": str(self.chain.start_block),
                "confirmations": str(self.chain.confirmations),
                "batch_size": str(self.chain.batch_size),
            },
            "ingestion": {
                "bucket_seconds": str(self.ingestion.bucket_seconds),
                "max_conflict_retries": str(self.ingestion.max_conflict_retries),
                "lock_backend": self.ingestion.lock_backend,
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (tests and reloads)."""
    get_settings.cache_clear()

"""Tests for configuration loading and validation."""

import logging

import pytest
from pydantic import ValidationError

from seaport_indexer.config import (
    ChainSettings,
    DatabaseSettings,
    IngestionSettings,
    RedisSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Run without a .env file and with a known database URL."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://indexer:s3cret@db:5432/seaport")
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestDefaults:
    def test_chain_defaults(self) -> None:
        chain = ChainSettings()
        assert chain.chain_id == 747
        assert chain.rpc_url == "https://mainnet.evm.nodes.onflow.org"
        assert chain.fallback_rpc_url is None
        assert chain.confirmations == 3
        assert chain.batch_size == 500

    def test_ingestion_defaults(self) -> None:
        ingestion = IngestionSettings()
        assert ingestion.bucket_seconds == 60
        assert ingestion.lock_backend == "local"
        assert ingestion.max_conflict_retries == 3

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHAIN_START_BLOCK", "123")
        monkeypatch.setenv("INGEST_LOCK_BACKEND", "redis")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        settings = Settings()
        assert settings.chain.start_block == 123
        assert settings.ingestion.lock_backend == "redis"
        assert settings.get_logging_level() == logging.DEBUG

    def test_env_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.delenv("DATABASE_URL")
        (tmp_path / ".env").write_text("DATABASE_URL=sqlite+aiosqlite:///local.db\nCHAIN_BATCH_SIZE=50\n")
        settings = Settings()
        assert settings.database.url == "sqlite+aiosqlite:///local.db"
        assert settings.chain.batch_size == 50


class TestValidation:
    def test_database_url_scheme(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(DATABASE_URL="mysql://localhost/db")

    def test_database_url_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL")
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_redis_url_scheme(self) -> None:
        with pytest.raises(ValidationError):
            RedisSettings(REDIS_URL="http://localhost:6379")

    def test_rpc_url_scheme(self) -> None:
        with pytest.raises(ValidationError):
            ChainSettings(CHAIN_RPC_URL="ws://node")

    @pytest.mark.parametrize("address", ["0x1234", "0x" + "g" * 40, "1" * 42])
    def test_seaport_address(self, address: str) -> None:
        with pytest.raises(ValidationError):
            ChainSettings(CHAIN_SEAPORT_ADDRESS=address)

    def test_batch_size_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ChainSettings(CHAIN_BATCH_SIZE=0)

    def test_bucket_seconds_bounds(self) -> None:
        with pytest.raises(ValidationError):
            IngestionSettings(INGEST_BUCKET_SECONDS=0)

    def test_lock_backend_choices(self) -> None:
        with pytest.raises(ValidationError):
            IngestionSettings(INGEST_LOCK_BACKEND="zookeeper")


class TestSettings:
    def test_redacted_summary_hides_password(self) -> None:
        summary = Settings().redacted_summary()
        assert summary["database_url"] == "postgresql+asyncpg://indexer:***@db:5432/seaport"
        assert "s3cret" not in str(summary)

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
        clear_settings_cache()
        assert get_settings() is not None

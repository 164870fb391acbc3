"""Alembic migration environment configuration.

The target database comes from the application's ``DATABASE_URL`` (validated
by ``DatabaseSettings``) unless ``SQLALCHEMY_DATABASE_URL`` overrides it.
Migrations run through the async engine: asyncpg for PostgreSQL, aiosqlite
for local SQLite files.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from seaport_indexer.config import DatabaseSettings
from seaport_indexer.storage.database import async_database_url
from seaport_indexer.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

target_metadata = Base.metadata


def _get_database_url() -> str | None:
    override = os.environ.get("SQLALCHEMY_DATABASE_URL")
    if override:
        return async_database_url(os.path.expandvars(override))
    if os.environ.get("DATABASE_URL"):
        return async_database_url(DatabaseSettings().url)
    return None


database_url = _get_database_url()
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)

# SQLite cannot ALTER most constraints in place; batch mode rebuilds the table.
render_as_batch = config.get_main_option("sqlalchemy.url", "").startswith("sqlite")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection: object) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=render_as_batch)

    with context.begin_transaction():
        context.run_migrations()


async def _run_migrations_online_async() -> None:
    """Run migrations in 'online' mode using an async engine."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(_do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    asyncio.run(_run_migrations_online_async())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

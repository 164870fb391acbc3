"""Command-line entry point: ``python -m seaport_indexer {run,init-db,audit}``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from seaport_indexer.audit import run_audit
from seaport_indexer.config import Settings, get_settings
from seaport_indexer.pipeline import IngestionPipeline
from seaport_indexer.storage.database import DatabaseManager

logger = logging.getLogger("seaport_indexer")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="seaport_indexer", description="Seaport marketplace indexer for Flow EVM")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Ingest Seaport events until interrupted")
    sub.add_parser("init-db", help="Create all tables (development; use alembic in production)")
    sub.add_parser("audit", help="Recompute aggregates from sales and report mismatches")
    return parser.parse_args(argv)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


async def _audit(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        async with db.get_async_session() as session:
            report = await run_audit(session, bucket_seconds=settings.ingestion.bucket_seconds)
    finally:
        await db.dispose_async()
    return 0 if report.ok else 1


async def _run(settings: Settings) -> int:
    pipeline = IngestionPipeline(settings)
    await pipeline.run()
    return 0


COMMANDS = {
    "run": _run,
    "init-db": _init_db,
    "audit": _audit,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    logger.info("Configuration: %s", settings.redacted_summary())
    try:
        return asyncio.run(COMMANDS[args.command](settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())

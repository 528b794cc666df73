"""
Rebuild the Elasticsearch movies index from Postgres.

Safe to run any number of times: each run ensures the index, re-upserts every
movie in id order and removes documents for movies that no longer exist.

Usage:
    python -m db.backfill [--batch-size 500] [--no-prune]
"""

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

from db.postgres import PostgresConfig, RecordStore, create_pool
from db.search_index import ElasticsearchConfig, SearchIndex, create_client
from db.sync import DEFAULT_BACKFILL_BATCH_SIZE, BackfillReport, SyncCoordinator
from implementation.classes.errors import RecordStoreUnavailableError, SearchIndexUnavailableError

logger = logging.getLogger(__name__)


async def run_backfill(
    batch_size: int = DEFAULT_BACKFILL_BATCH_SIZE,
    prune: bool = True,
    show_progress: bool = True,
) -> BackfillReport:
    """Open both stores from the environment, run one backfill, and close them."""
    es_config = ElasticsearchConfig.from_env()
    pool = create_pool(PostgresConfig.from_env())
    es_client = create_client(es_config)

    try:
        await pool.open()
        coordinator = SyncCoordinator(RecordStore(pool), SearchIndex(es_client, es_config.index))
        return await coordinator.backfill(batch_size=batch_size, prune=prune, show_progress=show_progress)
    finally:
        await es_client.close()
        await pool.close()


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Re-index every movie from Postgres into Elasticsearch.")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BACKFILL_BATCH_SIZE,
        help=f"Movies read from Postgres per batch (default: {DEFAULT_BACKFILL_BATCH_SIZE}).",
    )
    parser.add_argument(
        "--no-prune",
        action="store_true",
        help="Keep documents whose movie no longer exists in Postgres.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    args = build_argument_parser().parse_args(argv)

    if args.batch_size < 1:
        logger.error("--batch-size must be positive, got %d", args.batch_size)
        return 1

    logger.info("Starting Elasticsearch backfill")
    try:
        report = asyncio.run(run_backfill(batch_size=args.batch_size, prune=not args.no_prune))
    except (RecordStoreUnavailableError, SearchIndexUnavailableError) as e:
        logger.error("Backfill aborted: %s", e)
        return 1

    if report.failed_ids:
        logger.warning("Movies that failed to index: %s", report.failed_ids)
    logger.info("Done. Total movies indexed: %d", report.indexed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

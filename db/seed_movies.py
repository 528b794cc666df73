"""
Seed the Postgres movie table from a JSON file, or print table statistics.

The JSON file holds an array of objects using the same field names as the
create payload (title, description, release_date, budget, collection, cast,
is_hit). Seeding writes only to Postgres; run ``python -m db.backfill``
afterwards to project the rows into the search index.

Usage:
    python -m db.seed_movies insert data/movies_data.json [--replace | --skip-existing]
    python -m db.seed_movies stats
"""

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError
from tqdm import tqdm

from db.postgres import PostgresConfig, RecordStore, create_pool
from implementation.classes.errors import RecordStoreUnavailableError
from implementation.classes.movie import MovieCreate

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 50


def load_movies(path: Path) -> list[MovieCreate]:
    """
    Read and validate movies from a JSON array file.

    Entries that fail validation are logged and skipped.
    """
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Expected a JSON array of movies in {path}")

    movies: list[MovieCreate] = []
    for position, entry in enumerate(raw):
        try:
            movies.append(MovieCreate.model_validate(entry))
        except ValidationError as e:
            title = entry.get("title") if isinstance(entry, dict) else None
            logger.warning("Skipping movie #%d (%r): %s", position, title, e)
    return movies


async def insert_movies(
    record_store: RecordStore,
    movies: list[MovieCreate],
    replace: bool = False,
    skip_existing: bool = False,
) -> int:
    """
    Insert movies in batches of INSERT_BATCH_SIZE.

    Refuses to touch a non-empty table unless ``replace`` (clear first) or
    ``skip_existing`` (skip titles already present) is set.

    Returns:
        Number of movies inserted.
    """
    await record_store.ensure_schema()

    existing_count = await record_store.count()
    if existing_count > 0:
        if replace:
            logger.info("Clearing %d existing movies", existing_count)
            await record_store.delete_all()
        elif skip_existing:
            fresh = [movie for movie in movies if not await record_store.title_exists(movie.title)]
            logger.info("Skipping %d movies whose titles already exist", len(movies) - len(fresh))
            movies = fresh
        else:
            raise ValueError(
                f"Table already holds {existing_count} movies; pass --replace or --skip-existing"
            )

    inserted = 0
    for start in tqdm(range(0, len(movies), INSERT_BATCH_SIZE), desc="Inserting movies"):
        inserted += await record_store.bulk_insert(movies[start:start + INSERT_BATCH_SIZE])
    return inserted


async def _run(args: argparse.Namespace) -> int:
    pool = create_pool(PostgresConfig.from_env())
    await pool.open()
    try:
        record_store = RecordStore(pool)
        if args.command == "insert":
            movies = load_movies(Path(args.path))
            logger.info("Found %d valid movies in %s", len(movies), args.path)
            inserted = await insert_movies(
                record_store,
                movies,
                replace=args.replace,
                skip_existing=args.skip_existing,
            )
            logger.info("Inserted %d movies", inserted)
        else:
            for key, value in (await record_store.stats()).items():
                print(f"{key}: {value}")
        return 0
    finally:
        await pool.close()


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed or inspect the movie table.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    insert = subparsers.add_parser("insert", help="Insert movies from a JSON array file.")
    insert.add_argument("path", help="Path to the JSON data file.")
    mode = insert.add_mutually_exclusive_group()
    mode.add_argument("--replace", action="store_true", help="Delete existing movies first.")
    mode.add_argument("--skip-existing", action="store_true", help="Skip movies whose title already exists.")

    subparsers.add_parser("stats", help="Print movie table statistics.")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    args = build_argument_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except (FileNotFoundError, ValueError, RecordStoreUnavailableError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

"""
Postgres record store: the canonical system of record for movies.

This module provides the PostgresConfig / connection-pool factory and the
RecordStore class, which owns every read and write of the ``public.movie``
table. The pool is created inert (open=False); whoever owns the process
(the FastAPI lifespan or a CLI entry point) opens and closes it and hands it
to RecordStore.

Connection-level failures (refused connection, pool timeout) are raised as
RecordStoreUnavailableError so callers can tell them apart from index errors.
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from implementation.classes.errors import RecordStoreUnavailableError
from implementation.classes.movie import MovieCreate, MovieRecord, MovieUpdate
from implementation.classes.schemas import PageRequest, RecordFilters
from implementation.query_planner import parse_movie_id

logger = logging.getLogger(__name__)

MOVIE_TABLE = "public.movie"

# "cast" is a reserved word in Postgres and must stay quoted.
_MOVIE_COLUMNS = (
    'id, title, description, release_date, budget, collection, "cast", '
    "is_hit, created_at, updated_at"
)

# Whitelist of client-writable columns -> SQL assignment placeholder.
_UPDATABLE_COLUMNS: dict[str, str] = {
    "title": "title = %s",
    "description": "description = %s",
    "release_date": "release_date = %s",
    "budget": "budget = %s",
    "collection": "collection = %s",
    "cast": '"cast" = %s::text[]',
    "is_hit": "is_hit = %s",
}

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    f"""
    CREATE TABLE IF NOT EXISTS {MOVIE_TABLE} (
        id           BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
        title        TEXT NOT NULL,
        description  TEXT NOT NULL DEFAULT '',
        release_date DATE,
        budget       BIGINT CHECK (budget >= 0),
        collection   BIGINT CHECK (collection >= 0),
        "cast"       TEXT[] NOT NULL DEFAULT '{{}}',
        is_hit       BOOLEAN NOT NULL DEFAULT FALSE,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at   TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    f"CREATE INDEX IF NOT EXISTS movie_created_at_idx ON {MOVIE_TABLE} (created_at DESC, id DESC)",
    f"CREATE INDEX IF NOT EXISTS movie_release_date_idx ON {MOVIE_TABLE} (release_date)",
)


# ===============================
#         CONFIGURATION
# ===============================

@dataclass(frozen=True, slots=True)
class PostgresConfig:
    host: str = "localhost"
    port: int = 5432
    dbname: str = "movies"
    user: str = "postgres"
    password: Optional[str] = None
    min_size: int = 2
    max_size: int = 10
    statement_timeout_ms: int = 30_000

    @classmethod
    def from_env(cls) -> "PostgresConfig":
        """Build a config from POSTGRES_* environment variables."""
        return cls(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            dbname=os.getenv("POSTGRES_DB", "movies"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD") or None,
            min_size=int(os.getenv("POSTGRES_POOL_MIN", "2")),
            max_size=int(os.getenv("POSTGRES_POOL_MAX", "10")),
            statement_timeout_ms=int(os.getenv("POSTGRES_STATEMENT_TIMEOUT_MS", "30000")),
        )

    def conninfo(self) -> str:
        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password,
            options=f"-c statement_timeout={self.statement_timeout_ms}",
        )


def create_pool(config: PostgresConfig) -> AsyncConnectionPool:
    """
    Create the process-wide connection pool without opening it.

    Call ``await pool.open()`` at startup and ``await pool.close()`` at shutdown.
    """
    return AsyncConnectionPool(
        conninfo=config.conninfo(),
        min_size=config.min_size,
        max_size=config.max_size,
        max_lifetime=1800,    # Recycle connections after 30 minutes
        max_idle=300,         # Close idle connections above min_size after 5 minutes
        timeout=5.0,          # Wait up to 5s for a connection before raising PoolTimeout
        open=False,
    )


# ===============================
#       PREDICATE BUILDING
# ===============================

def build_where_clause(filters: RecordFilters) -> tuple[str, list]:
    """
    Build the WHERE body and bind values for browse filters.

    Absent filters add nothing; no filters at all yields ``TRUE``.
    Params are accumulated in placeholder order.
    """
    conditions: list[str] = []
    params: list = []

    if filters.is_hit is not None:
        conditions.append("is_hit = %s")
        params.append(filters.is_hit)

    if filters.release_from is not None:
        conditions.append("release_date >= %s")
        params.append(filters.release_from)
    if filters.release_until is not None:
        conditions.append("release_date < %s")
        params.append(filters.release_until)

    if filters.min_budget is not None and filters.max_budget is not None:
        conditions.append("budget BETWEEN %s AND %s")
        params.extend((filters.min_budget, filters.max_budget))
    elif filters.min_budget is not None:
        conditions.append("budget >= %s")
        params.append(filters.min_budget)
    elif filters.max_budget is not None:
        conditions.append("budget <= %s")
        params.append(filters.max_budget)

    where_clause = " AND ".join(conditions) if conditions else "TRUE"
    return where_clause, params


# ===============================
#          RECORD STORE
# ===============================

class RecordStore:
    """CRUD and filtered listing over the canonical movie table."""

    def __init__(self, pool: AsyncConnectionPool):
        self._pool = pool

    # ----- private base methods -----

    @asynccontextmanager
    async def _connection(self):
        try:
            async with self._pool.connection() as conn:
                yield conn
        except (OperationalError, PoolTimeout) as e:
            raise RecordStoreUnavailableError(f"Postgres unavailable: {e}") from e

    async def _fetch_all(self, query: str, params: Sequence[object] | None = None) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    async def _fetch_one(self, query: str, params: Sequence[object] | None = None) -> dict[str, Any] | None:
        async with self._connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    async def _execute_write(
        self,
        query: str,
        params: Sequence[object] | None = None,
        fetch_one: bool = False,
    ) -> dict[str, Any] | None:
        """
        Execute an INSERT/UPDATE/DELETE and commit.

        If an exception occurs the connection context manager rolls back.
        """
        async with self._connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                result = await cur.fetchone() if fetch_one else None
            await conn.commit()
            return result

    # ----- lifecycle -----

    async def ensure_schema(self) -> None:
        """Create the movie table and its indexes if they don't exist."""
        async with self._connection() as conn:
            for statement in _SCHEMA_STATEMENTS:
                await conn.execute(statement)
            await conn.commit()

    async def check(self) -> str:
        """Return 'ok' if a trivial query succeeds, otherwise the error message."""
        try:
            async with self._connection() as conn:
                await conn.execute("SELECT 1")
            return "ok"
        except Exception as e:
            return str(e)

    # ----- reads -----

    async def list_movies(self, filters: RecordFilters, page: PageRequest) -> list[MovieRecord]:
        """Filtered page of movies, newest first."""
        where_clause, params = build_where_clause(filters)
        query = (
            f"SELECT {_MOVIE_COLUMNS}\n"
            f"FROM {MOVIE_TABLE}\n"
            f"WHERE {where_clause}\n"
            "ORDER BY created_at DESC, id DESC\n"
            "LIMIT %s OFFSET %s"
        )
        params.extend((page.page_size, page.offset))
        rows = await self._fetch_all(query, params)
        return [MovieRecord.model_validate(row) for row in rows]

    async def get_movie(self, movie_id: Any) -> Optional[MovieRecord]:
        """Fetch one movie. Non-numeric ids and misses both return None."""
        parsed_id = parse_movie_id(movie_id)
        if parsed_id is None:
            return None
        row = await self._fetch_one(
            f"SELECT {_MOVIE_COLUMNS} FROM {MOVIE_TABLE} WHERE id = %s",
            (parsed_id,),
        )
        return MovieRecord.model_validate(row) if row else None

    async def iter_batches(self, batch_size: int = 500) -> AsyncIterator[list[MovieRecord]]:
        """
        Yield every movie in ascending id order, ``batch_size`` rows at a time.

        Keyset pagination (id > last seen) keeps batches stable while rows
        are being inserted or deleted concurrently.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        last_id = 0
        while True:
            rows = await self._fetch_all(
                f"SELECT {_MOVIE_COLUMNS} FROM {MOVIE_TABLE} WHERE id > %s ORDER BY id ASC LIMIT %s",
                (last_id, batch_size),
            )
            if not rows:
                return
            batch = [MovieRecord.model_validate(row) for row in rows]
            last_id = batch[-1].id
            yield batch

    async def existing_ids(self, movie_ids: Iterable[int]) -> set[int]:
        """Return the subset of ``movie_ids`` that still exist."""
        ids = list(dict.fromkeys(int(movie_id) for movie_id in movie_ids))
        if not ids:
            return set()
        rows = await self._fetch_all(
            f"SELECT id FROM {MOVIE_TABLE} WHERE id = ANY(%s::bigint[])",
            (ids,),
        )
        return {int(row["id"]) for row in rows}

    async def count(self) -> int:
        row = await self._fetch_one(f"SELECT count(*) AS total FROM {MOVIE_TABLE}")
        return int(row["total"]) if row else 0

    async def title_exists(self, title: str) -> bool:
        row = await self._fetch_one(
            f"SELECT 1 AS found FROM {MOVIE_TABLE} WHERE title = %s LIMIT 1",
            (title,),
        )
        return row is not None

    async def stats(self) -> dict[str, Any]:
        """Aggregate statistics over the whole table."""
        row = await self._fetch_one(
            f"""
            SELECT
                count(*) AS total_movies,
                count(*) FILTER (WHERE is_hit) AS hit_movies,
                avg(budget) AS avg_budget,
                avg(collection) AS avg_collection,
                min(release_date) AS earliest_release,
                max(release_date) AS latest_release
            FROM {MOVIE_TABLE}
            """
        )
        return dict(row) if row else {}

    # ----- writes -----

    async def create_movie(self, fields: MovieCreate) -> MovieRecord:
        """Insert a movie; id and timestamps are assigned by Postgres."""
        row = await self._execute_write(
            f"""
            INSERT INTO {MOVIE_TABLE}
                (title, description, release_date, budget, collection, "cast", is_hit)
            VALUES (%s, %s, %s, %s, %s, %s::text[], %s)
            RETURNING {_MOVIE_COLUMNS}
            """,
            (
                fields.title,
                fields.description,
                fields.release_date,
                fields.budget,
                fields.collection,
                list(fields.cast),
                fields.is_hit,
            ),
            fetch_one=True,
        )
        record = MovieRecord.model_validate(row)
        logger.debug("Created movie %d", record.id)
        return record

    async def update_movie(self, movie_id: int, fields: MovieUpdate) -> Optional[MovieRecord]:
        """
        Apply a partial update. Returns None when the movie doesn't exist.

        Only supplied fields are written (see MovieUpdate.changes); an update
        with nothing to change returns the current row untouched.
        """
        changes = fields.changes()
        if not changes:
            return await self.get_movie(movie_id)

        assignments: list[str] = []
        params: list = []
        for column, value in changes.items():
            assignments.append(_UPDATABLE_COLUMNS[column])
            params.append(list(value) if column == "cast" else value)
        assignments.append("updated_at = now()")
        params.append(movie_id)

        row = await self._execute_write(
            f"UPDATE {MOVIE_TABLE} SET {', '.join(assignments)} WHERE id = %s RETURNING {_MOVIE_COLUMNS}",
            params,
            fetch_one=True,
        )
        return MovieRecord.model_validate(row) if row else None

    async def delete_movie(self, movie_id: int) -> Optional[MovieRecord]:
        """Delete a movie and return the prior row, or None if it didn't exist."""
        row = await self._execute_write(
            f"DELETE FROM {MOVIE_TABLE} WHERE id = %s RETURNING {_MOVIE_COLUMNS}",
            (movie_id,),
            fetch_one=True,
        )
        return MovieRecord.model_validate(row) if row else None

    async def bulk_insert(self, movies: Sequence[MovieCreate]) -> int:
        """Insert many movies in one transaction. Returns the number inserted."""
        if not movies:
            return 0
        async with self._connection() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(
                    f"""
                    INSERT INTO {MOVIE_TABLE}
                        (title, description, release_date, budget, collection, "cast", is_hit)
                    VALUES (%s, %s, %s, %s, %s, %s::text[], %s)
                    """,
                    [
                        (m.title, m.description, m.release_date, m.budget, m.collection, list(m.cast), m.is_hit)
                        for m in movies
                    ],
                )
            await conn.commit()
        return len(movies)

    async def delete_all(self) -> None:
        await self._execute_write(f"DELETE FROM {MOVIE_TABLE}")

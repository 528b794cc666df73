"""Shared pytest fixtures for unit tests."""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
import sys

import pytest

# Ensure project root is importable when tests run from repository root.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from implementation.classes.movie import MovieCreate, MovieDocument, MovieRecord, MovieUpdate, SearchHit
from implementation.classes.schemas import PageRequest, RecordFilters, SearchPage, SearchRequest
from implementation.query_planner import SEARCH_FIELD_WEIGHTS

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _movie_row(**overrides: Any) -> dict[str, Any]:
    """Build a complete movie row as psycopg's dict_row would return it."""
    row: dict[str, Any] = {
        "id": 1,
        "title": "Inception",
        "description": "A thief who steals corporate secrets through dream-sharing.",
        "release_date": date(2010, 7, 16),
        "budget": 160_000_000,
        "collection": 836_800_000,
        "cast": ["Leonardo DiCaprio", "Joseph Gordon-Levitt", "Elliot Page"],
        "is_hit": True,
        "created_at": _EPOCH,
        "updated_at": _EPOCH,
    }
    # Apply caller-specific overrides to target scenario-specific behavior.
    row.update(overrides)
    return row


@pytest.fixture
def movie_row_factory() -> Callable[..., dict[str, Any]]:
    """Return a factory that builds a raw movie row with optional overrides."""
    return _movie_row


@pytest.fixture
def movie_record_factory() -> Callable[..., MovieRecord]:
    """Return a factory that builds a valid MovieRecord with optional overrides."""

    def _factory(**overrides: Any) -> MovieRecord:
        return MovieRecord.model_validate(_movie_row(**overrides))

    return _factory


# ---------------------------------------------------------------------------
# In-memory store doubles
# ---------------------------------------------------------------------------

class FakeRecordStore:
    """Dict-backed stand-in for db.postgres.RecordStore."""

    def __init__(self):
        self.rows: dict[int, MovieRecord] = {}
        self._next_id = 1
        self._clock = _EPOCH

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create_movie(self, fields: MovieCreate) -> MovieRecord:
        now = self._tick()
        record = MovieRecord(id=self._next_id, created_at=now, updated_at=now, **fields.model_dump())
        self._next_id += 1
        self.rows[record.id] = record
        return record

    async def get_movie(self, movie_id: Any) -> MovieRecord | None:
        try:
            return self.rows.get(int(movie_id))
        except (TypeError, ValueError):
            return None

    async def update_movie(self, movie_id: int, fields: MovieUpdate) -> MovieRecord | None:
        current = self.rows.get(movie_id)
        if current is None:
            return None
        updated = current.model_copy(update={**fields.changes(), "updated_at": self._tick()})
        self.rows[movie_id] = updated
        return updated

    async def delete_movie(self, movie_id: int) -> MovieRecord | None:
        return self.rows.pop(movie_id, None)

    async def list_movies(self, filters: RecordFilters, page: PageRequest) -> list[MovieRecord]:
        newest_first = sorted(self.rows.values(), key=lambda r: (r.created_at, r.id), reverse=True)
        return newest_first[page.offset:page.offset + page.page_size]

    async def iter_batches(self, batch_size: int = 500):
        ordered = sorted(self.rows.values(), key=lambda r: r.id)
        for start in range(0, len(ordered), batch_size):
            yield ordered[start:start + batch_size]

    async def existing_ids(self, movie_ids) -> set[int]:
        return {movie_id for movie_id in movie_ids if movie_id in self.rows}

    async def count(self) -> int:
        return len(self.rows)

    async def check(self) -> str:
        return "ok"


class FakeSearchIndex:
    """
    Dict-backed stand-in for db.search_index.SearchIndex.

    Scores a hit by summing SEARCH_FIELD_WEIGHTS of the fields containing the
    query text, which is enough to exercise ranking-order expectations.
    """

    index_name = "movies-test"

    def __init__(self):
        self.docs: dict[int, MovieDocument] = {}
        self.fail_writes = False
        self.ensure_calls = 0

    async def ensure_index(self) -> bool:
        self.ensure_calls += 1
        return self.ensure_calls == 1

    async def upsert(self, document: MovieDocument) -> None:
        if self.fail_writes:
            raise RuntimeError("index write rejected")
        self.docs[document.id] = document

    async def delete(self, movie_id: int) -> bool:
        if self.fail_writes:
            raise RuntimeError("index write rejected")
        return self.docs.pop(movie_id, None) is not None

    async def iter_ids(self):
        for doc_id in list(self.docs):
            yield doc_id

    async def count(self) -> int:
        return len(self.docs)

    async def query(self, request: SearchRequest) -> SearchPage:
        needle = request.text.lower()
        scored: list[tuple[float, MovieDocument]] = []
        for doc in self.docs.values():
            if not needle:
                scored.append((1.0, doc))
                continue
            fields = {"title": doc.title, "description": doc.description, "cast": " ".join(doc.cast)}
            score = sum(SEARCH_FIELD_WEIGHTS[name] for name, text in fields.items() if needle in text.lower())
            if score:
                scored.append((score, doc))
        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        window = scored[request.offset:request.offset + request.page_size]
        return SearchPage(
            results=[SearchHit(**doc.model_dump(), score=score) for score, doc in window],
            total=len(scored),
            page=request.page,
            page_size=request.page_size,
        )

    async def check(self) -> str:
        return "ok"


@pytest.fixture
def fake_record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def fake_search_index() -> FakeSearchIndex:
    return FakeSearchIndex()

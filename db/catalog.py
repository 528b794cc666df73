"""
MovieCatalog: the read/write facade used by the API and scripts.

Write path: validate -> RecordStore commits -> SyncCoordinator propagates.
The returned MutationOutcome always carries the committed record; whether
the index caught up is reported separately and never changes the outcome.

Read paths: full-text search goes to the SearchIndex, browse/filter goes
straight to the RecordStore. QueryPlanner normalizes raw parameters for both.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from db.postgres import RecordStore
from db.search_index import SearchIndex
from db.sync import PropagationResult, SyncCoordinator
from implementation.classes.errors import MovieValidationError
from implementation.classes.movie import MovieCreate, MovieRecord, MovieUpdate
from implementation.classes.schemas import SearchPage
from implementation.query_planner import (
    BROWSE_PAGE_SIZE,
    build_page_request,
    build_record_filters,
    build_search_request,
    parse_movie_id,
)


_PayloadT = TypeVar("_PayloadT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class MutationOutcome:
    """A committed canonical mutation plus the result of propagating it."""
    record: MovieRecord
    propagation: PropagationResult

    @property
    def index_synced(self) -> bool:
        return self.propagation.ok


@dataclass(frozen=True, slots=True)
class BrowsePage:
    records: list[MovieRecord]
    page: int
    page_size: int


def _validate(model: type[_PayloadT], payload: Union[_PayloadT, Mapping[str, Any]]) -> _PayloadT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MovieValidationError(
            f"Invalid movie payload: {e.error_count()} error(s)",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


def _require_movie_id(movie_id: Any) -> int:
    parsed = parse_movie_id(movie_id)
    if parsed is None:
        raise MovieValidationError(f"Invalid movie id: {movie_id!r}")
    return parsed


class MovieCatalog:
    def __init__(
        self,
        record_store: RecordStore,
        search_index: SearchIndex,
        sync: Optional[SyncCoordinator] = None,
    ):
        self.record_store = record_store
        self.search_index = search_index
        self.sync = sync or SyncCoordinator(record_store, search_index)

    # ===============================
    #             READS
    # ===============================

    async def search(self, q: Any = None, page: Any = None, page_size: Any = None) -> SearchPage:
        """Ranked full-text search. Raises SearchIndexUnavailableError if the index is down."""
        return await self.search_index.query(build_search_request(q, page, page_size))

    async def browse(
        self,
        is_hit: Any = None,
        year: Any = None,
        min_budget: Any = None,
        max_budget: Any = None,
        page: Any = None,
    ) -> BrowsePage:
        """Filtered listing straight from Postgres with a fixed page size."""
        filters = build_record_filters(is_hit=is_hit, year=year, min_budget=min_budget, max_budget=max_budget)
        page_request = build_page_request(page, BROWSE_PAGE_SIZE)
        records = await self.record_store.list_movies(filters, page_request)
        return BrowsePage(records=records, page=page_request.page, page_size=page_request.page_size)

    async def get(self, movie_id: Any) -> Optional[MovieRecord]:
        return await self.record_store.get_movie(movie_id)

    # ===============================
    #             WRITES
    # ===============================

    async def create(self, payload: Union[MovieCreate, Mapping[str, Any]]) -> MutationOutcome:
        fields = _validate(MovieCreate, payload)
        record = await self.record_store.create_movie(fields)
        propagation = await self.sync.propagate_upsert(record)
        return MutationOutcome(record=record, propagation=propagation)

    async def update(
        self,
        movie_id: Any,
        payload: Union[MovieUpdate, Mapping[str, Any]],
    ) -> Optional[MutationOutcome]:
        """Partial update. None when the movie doesn't exist."""
        parsed_id = _require_movie_id(movie_id)
        fields = _validate(MovieUpdate, payload)
        record = await self.record_store.update_movie(parsed_id, fields)
        if record is None:
            return None
        propagation = await self.sync.propagate_upsert(record)
        return MutationOutcome(record=record, propagation=propagation)

    async def remove(self, movie_id: Any) -> Optional[MutationOutcome]:
        """Delete a movie. None when it doesn't exist."""
        parsed_id = _require_movie_id(movie_id)
        record = await self.record_store.delete_movie(parsed_id)
        if record is None:
            return None
        propagation = await self.sync.propagate_delete(record.id)
        return MutationOutcome(record=record, propagation=propagation)

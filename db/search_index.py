"""
Elasticsearch search index: the derived, rebuildable full-text projection.

This module provides the ElasticsearchConfig / client factory and the
SearchIndex class. SearchIndex never decides what to write; db.sync is its
only writer and the Postgres record store stays the source of truth.

Writes use refresh="wait_for" so a document is searchable by the time
upsert()/delete() return (read-your-write at the propagation layer).
Transport-level failures are raised as SearchIndexUnavailableError.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from elasticsearch import AsyncElasticsearch, BadRequestError, ConnectionTimeout, NotFoundError
from elasticsearch import ConnectionError as ESConnectionError
from elasticsearch.helpers import async_scan

from implementation.classes.errors import SearchIndexUnavailableError
from implementation.classes.movie import MovieDocument, SearchHit
from implementation.classes.schemas import SearchPage, SearchRequest
from implementation.query_planner import build_index_query

logger = logging.getLogger(__name__)


def _error_message(error: Exception) -> str:
    # Transport errors keep the underlying cause in .message; str() is generic.
    return str(getattr(error, "message", None) or error)

# Elasticsearch refuses from + size beyond index.max_result_window.
MAX_RESULT_WINDOW = 10_000

INDEX_SETTINGS: dict[str, Any] = {
    "analysis": {
        "analyzer": {
            "english_custom": {
                "type": "standard",
                "stopwords": "_english_",
            },
        },
    },
}

INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "id": {"type": "long"},
        "title": {"type": "text", "analyzer": "english_custom"},
        "description": {"type": "text", "analyzer": "english_custom"},
        "cast": {"type": "text", "analyzer": "english_custom"},
        "is_hit": {"type": "boolean"},
        "release_date": {"type": "date"},
        "budget": {"type": "long"},
        "collection": {"type": "long"},
        "created_at": {"type": "date"},
        "updated_at": {"type": "date"},
    },
}


# ===============================
#         CONFIGURATION
# ===============================

@dataclass(frozen=True, slots=True)
class ElasticsearchConfig:
    node: str = "http://localhost:9200"
    index: str = "movies"
    request_timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> "ElasticsearchConfig":
        """Build a config from ES_* environment variables."""
        return cls(
            node=os.getenv("ES_NODE", "http://localhost:9200"),
            index=os.getenv("ES_MOVIES_INDEX", "movies"),
            request_timeout=float(os.getenv("ES_REQUEST_TIMEOUT", "30")),
            max_retries=int(os.getenv("ES_MAX_RETRIES", "3")),
        )


def create_client(config: ElasticsearchConfig) -> AsyncElasticsearch:
    """Create the process-wide async client. The owner must ``await client.close()``."""
    return AsyncElasticsearch(
        config.node,
        request_timeout=config.request_timeout,
        max_retries=config.max_retries,
        retry_on_timeout=True,
    )


# ===============================
#          SEARCH INDEX
# ===============================

class SearchIndex:
    """Upsert / delete / ranked query over the movies index."""

    def __init__(self, client: AsyncElasticsearch, index_name: str = "movies"):
        self._client = client
        self._index = index_name

    @property
    def index_name(self) -> str:
        return self._index

    @contextmanager
    def _translate_errors(self, action: str):
        try:
            yield
        except (ESConnectionError, ConnectionTimeout) as e:
            raise SearchIndexUnavailableError(f"Elasticsearch unavailable during {action}: {_error_message(e)}") from e

    # ----- lifecycle -----

    async def ensure_index(self) -> bool:
        """
        Create the index with its settings and mappings if it doesn't exist.

        Returns True when this call created the index, False when it already
        existed (including losing a creation race to another process).
        """
        with self._translate_errors("ensure_index"):
            if await self._client.indices.exists(index=self._index):
                return False
            try:
                await self._client.indices.create(
                    index=self._index,
                    settings=INDEX_SETTINGS,
                    mappings=INDEX_MAPPINGS,
                )
            except BadRequestError as e:
                if "resource_already_exists_exception" in str(e.message):
                    return False
                raise
        logger.info("Created Elasticsearch index '%s'", self._index)
        return True

    async def check(self) -> str:
        """Return 'ok' if the cluster answers, otherwise the error message."""
        try:
            await self._client.info()
            return "ok"
        except Exception as e:
            return _error_message(e)

    async def refresh(self) -> None:
        with self._translate_errors("refresh"):
            await self._client.indices.refresh(index=self._index)

    async def count(self) -> int:
        """Number of documents currently in the index (0 if the index is missing)."""
        with self._translate_errors("count"):
            try:
                resp = await self._client.count(index=self._index)
            except NotFoundError:
                return 0
        return int(resp["count"])

    # ----- writes -----

    async def upsert(self, document: MovieDocument) -> None:
        """Full replace of the document keyed by the movie id."""
        with self._translate_errors("upsert"):
            await self._client.index(
                index=self._index,
                id=str(document.id),
                document=document.to_source(),
                refresh="wait_for",
            )

    async def delete(self, movie_id: int) -> bool:
        """Remove a document. Returns False (not an error) when it was already absent."""
        with self._translate_errors("delete"):
            try:
                await self._client.delete(
                    index=self._index,
                    id=str(movie_id),
                    refresh="wait_for",
                )
            except NotFoundError:
                return False
        return True

    # ----- reads -----

    async def query(self, request: SearchRequest) -> SearchPage:
        """
        Run a ranked search and return one page of hits plus the total match count.

        A missing index is treated as empty rather than an error; documents
        may lag behind Postgres and callers must not assume freshness.
        """
        offset = min(request.offset, MAX_RESULT_WINDOW)
        size = max(0, min(request.page_size, MAX_RESULT_WINDOW - offset))

        with self._translate_errors("query"):
            try:
                resp = await self._client.search(
                    index=self._index,
                    query=build_index_query(request.text),
                    from_=offset,
                    size=size,
                    track_total_hits=True,
                )
            except NotFoundError:
                logger.warning("Search against missing index '%s', returning no results", self._index)
                return SearchPage(results=[], total=0, page=request.page, page_size=request.page_size)

        hits = resp["hits"]["hits"]
        results = [
            SearchHit.model_validate(
                {**(hit.get("_source") or {}), "id": int(hit["_id"]), "score": hit.get("_score")}
            )
            for hit in hits
        ]
        total = int(resp["hits"]["total"]["value"])
        return SearchPage(results=results, total=total, page=request.page, page_size=request.page_size)

    async def iter_ids(self) -> AsyncIterator[int]:
        """Stream every document id in the index (scroll, no source)."""
        with self._translate_errors("scan"):
            try:
                async for hit in async_scan(
                    self._client,
                    index=self._index,
                    query={"query": {"match_all": {}}, "_source": False},
                ):
                    yield int(hit["_id"])
            except NotFoundError:
                return

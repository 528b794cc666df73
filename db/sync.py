"""
Synchronization from the Postgres record store to the Elasticsearch index.

SyncCoordinator is the only writer of search documents. It runs after a
canonical mutation has already committed and reports the outcome as a
PropagationResult instead of raising, so an index outage can never fail or
roll back a write. Propagation is never retried inside the request; a stale
document is repaired by the next write to the same movie or by backfill().

backfill() is a full, idempotent re-projection:
  1. Ensure the index and its mappings exist.
  2. Stream every movie in id order, in fixed-size batches, upserting each.
     Per-record failures are logged and counted, never fatal.
  3. Prune documents whose movie no longer exists in Postgres.
Interrupting it at any point leaves a subset of documents refreshed and
nothing corrupted; the next run starts from scratch.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from tqdm import tqdm

from db.postgres import RecordStore
from db.search_index import SearchIndex
from implementation.classes.movie import MovieDocument, MovieRecord

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_BATCH_SIZE = 500


class SyncAction(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class PropagationResult:
    """Outcome of pushing one canonical mutation to the search index."""
    movie_id: int
    action: SyncAction
    ok: bool
    error: Optional[str] = None


@dataclass(slots=True)
class BackfillReport:
    indexed: int = 0
    failed_ids: list[int] = field(default_factory=list)
    pruned: int = 0
    index_created: bool = False

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


class SyncCoordinator:
    def __init__(self, record_store: RecordStore, search_index: SearchIndex):
        self._record_store = record_store
        self._search_index = search_index

    # ===============================
    #       WRITE-PATH PROPAGATION
    # ===============================

    async def propagate_upsert(self, record: MovieRecord) -> PropagationResult:
        """Replace the movie's search document with the committed row."""
        try:
            await self._search_index.upsert(MovieDocument.from_record(record))
        except Exception as e:
            logger.warning("Index propagation failed (upsert) for movie %d: %s", record.id, e)
            return PropagationResult(movie_id=record.id, action=SyncAction.UPSERT, ok=False, error=str(e))
        return PropagationResult(movie_id=record.id, action=SyncAction.UPSERT, ok=True)

    async def propagate_delete(self, movie_id: int) -> PropagationResult:
        """Remove the movie's search document. An already-absent document counts as success."""
        try:
            await self._search_index.delete(movie_id)
        except Exception as e:
            logger.warning("Index propagation failed (delete) for movie %d: %s", movie_id, e)
            return PropagationResult(movie_id=movie_id, action=SyncAction.DELETE, ok=False, error=str(e))
        return PropagationResult(movie_id=movie_id, action=SyncAction.DELETE, ok=True)

    # ===============================
    #            BACKFILL
    # ===============================

    async def backfill(
        self,
        batch_size: int = DEFAULT_BACKFILL_BATCH_SIZE,
        prune: bool = True,
        show_progress: bool = False,
    ) -> BackfillReport:
        """
        Rebuild the index from Postgres.

        Raises only when a store is unreachable for a whole step (ensuring
        the index, reading a batch); individual document failures end up in
        ``report.failed_ids``.
        """
        report = BackfillReport()
        report.index_created = await self._search_index.ensure_index()
        logger.info("Search index '%s' is ready", self._search_index.index_name)

        total = await self._record_store.count()
        with tqdm(total=total, desc="Indexing movies", disable=not show_progress) as progress:
            async for batch in self._record_store.iter_batches(batch_size):
                for record in batch:
                    result = await self.propagate_upsert(record)
                    if result.ok:
                        report.indexed += 1
                    else:
                        report.failed_ids.append(record.id)
                progress.update(len(batch))

        if prune:
            report.pruned = await self._prune_orphans(batch_size)

        logger.info(
            "Backfill complete: %d indexed, %d failed, %d orphans pruned",
            report.indexed, report.failed, report.pruned,
        )
        return report

    async def _prune_orphans(self, batch_size: int) -> int:
        """Delete documents whose movie no longer exists in Postgres."""
        pruned = 0
        pending: list[int] = []
        async for doc_id in self._search_index.iter_ids():
            pending.append(doc_id)
            if len(pending) >= batch_size:
                pruned += await self._prune_batch(pending)
                pending = []
        if pending:
            pruned += await self._prune_batch(pending)
        return pruned

    async def _prune_batch(self, doc_ids: list[int]) -> int:
        existing = await self._record_store.existing_ids(doc_ids)
        pruned = 0
        for doc_id in doc_ids:
            if doc_id in existing:
                continue
            result = await self.propagate_delete(doc_id)
            if result.ok:
                pruned += 1
        return pruned

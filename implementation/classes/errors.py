"""
Exception classes for the movie catalog.

RecordStore and SearchIndex failures get distinct types so callers can
always tell a canonical-store outage from a derived-index outage. Index
propagation failures are deliberately NOT exceptions: they are reported as
PropagationResult values by db.sync.
"""

from typing import Any, Optional


class MovieCatalogError(Exception):
    """Base class for every catalog error raised to callers."""


class MovieNotFoundError(MovieCatalogError):
    def __init__(self, movie_id: Any):
        self.movie_id = movie_id
        super().__init__(f"Movie not found: {movie_id}")


class MovieValidationError(MovieCatalogError):
    """Malformed input to a mutation. No store was touched."""

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        self.errors = errors or []
        super().__init__(message)


class RecordStoreUnavailableError(MovieCatalogError):
    """The canonical Postgres store could not be reached."""


class SearchIndexUnavailableError(MovieCatalogError):
    """The Elasticsearch index could not be reached."""

"""
Query-side value objects shared by the planner and the two stores.

QueryPlanner produces these from raw request parameters; RecordStore and
SearchIndex consume them and never see unparsed strings.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from pydantic import BaseModel

from .movie import SearchHit


@dataclass(frozen=True, slots=True)
class RecordFilters:
    """Structured browse filters. None means "no constraint"."""
    is_hit: Optional[bool] = None
    release_from: Optional[date] = None   # inclusive
    release_until: Optional[date] = None  # exclusive
    min_budget: Optional[int] = None      # inclusive
    max_budget: Optional[int] = None      # inclusive

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.is_hit,
                self.release_from,
                self.release_until,
                self.min_budget,
                self.max_budget,
            )
        )


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int = 1
    page_size: int = 25

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True, slots=True)
class SearchRequest:
    text: str
    page: int = 1
    page_size: int = 25

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class SearchPage(BaseModel):
    """One page of ranked results plus the total number of matches."""
    results: list[SearchHit]
    total: int
    page: int
    page_size: int

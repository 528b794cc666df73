"""
Query planning: raw request parameters -> typed store inputs.

Pure translation layer with no I/O. Browse requests become RecordFilters for
the Postgres record store; search requests become a SearchRequest plus an
Elasticsearch query clause for the search index.

Normalization rules:
- page / page_size: missing or unparseable -> default, below 1 -> 1,
  browse paging capped so the SQL offset fits in a BIGINT
- is_hit: "true"/"1"/"yes"/"on" and the false counterparts; anything else
  is treated as absent
- year: expands to the half-open range [year-01-01, (year+1)-01-01)
- budgets: integer numerals only; anything else is treated as absent
"""

from datetime import MINYEAR, MAXYEAR, date
from typing import Any, Optional

from implementation.classes.schemas import PageRequest, RecordFilters, SearchRequest

DEFAULT_PAGE_SIZE = 25
BROWSE_PAGE_SIZE = 25

# Postgres LIMIT/OFFSET are BIGINT; paging is clamped so the offset stays in range.
MAX_SQL_OFFSET = 2**63 - 1

# Relative field weights for full-text search. A title hit is the strongest
# signal, cast membership next, description weakest.
SEARCH_FIELD_WEIGHTS: dict[str, float] = {
    "title": 3.0,
    "cast": 2.0,
    "description": 1.5,
}

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off"})


# ===============================
#          COERCION
# ===============================

def parse_int(value: Any) -> Optional[int]:
    """Parse an integer numeral. Returns None for missing or non-integer input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def parse_bool(value: Any) -> Optional[bool]:
    """Parse a boolean flag. Returns None when the value is missing or unrecognized."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def parse_movie_id(value: Any) -> Optional[int]:
    """Parse a movie identifier. Non-numeric or non-positive ids yield None."""
    movie_id = parse_int(value)
    if movie_id is None or movie_id < 1:
        return None
    return movie_id


def normalize_page(value: Any, default: int) -> int:
    """Floor a page number / page size at 1, falling back to ``default`` when unparseable."""
    parsed = parse_int(value)
    if parsed is None:
        return default
    return max(1, parsed)


def year_to_date_range(year: int) -> tuple[date, date]:
    """
    Expand a release year to the half-open range [year-01-01, (year+1)-01-01).

    Raises:
        ValueError: if the year (or the following year) is outside date's range.
    """
    if not (MINYEAR <= year < MAXYEAR):
        raise ValueError(f"year {year} out of range [{MINYEAR}, {MAXYEAR - 1}]")
    return date(year, 1, 1), date(year + 1, 1, 1)


# ===============================
#        BROWSE PLANNING
# ===============================

def build_record_filters(
    is_hit: Any = None,
    year: Any = None,
    min_budget: Any = None,
    max_budget: Any = None,
) -> RecordFilters:
    """Translate raw browse parameters into RecordFilters, dropping anything unparseable."""
    release_from: Optional[date] = None
    release_until: Optional[date] = None

    parsed_year = parse_int(year)
    if parsed_year is not None:
        try:
            release_from, release_until = year_to_date_range(parsed_year)
        except ValueError:
            pass

    return RecordFilters(
        is_hit=parse_bool(is_hit),
        release_from=release_from,
        release_until=release_until,
        min_budget=parse_int(min_budget),
        max_budget=parse_int(max_budget),
    )


def clamp_paging(page: int, page_size: int) -> tuple[int, int]:
    """Cap page and page_size so (page - 1) * page_size fits in a BIGINT offset."""
    page_size = min(page_size, MAX_SQL_OFFSET)
    page = min(page, MAX_SQL_OFFSET // page_size + 1)
    return page, page_size


def build_page_request(page: Any = None, page_size: Any = None) -> PageRequest:
    page, page_size = clamp_paging(normalize_page(page, 1), normalize_page(page_size, DEFAULT_PAGE_SIZE))
    return PageRequest(page=page, page_size=page_size)


# ===============================
#        SEARCH PLANNING
# ===============================

def build_search_request(text: Any = None, page: Any = None, page_size: Any = None) -> SearchRequest:
    return SearchRequest(
        text=str(text or "").strip(),
        page=normalize_page(page, 1),
        page_size=normalize_page(page_size, DEFAULT_PAGE_SIZE),
    )


def weighted_search_fields() -> list[str]:
    """Field list in Elasticsearch boost syntax, e.g. ``title^3``."""
    return [f"{field}^{weight:g}" for field, weight in SEARCH_FIELD_WEIGHTS.items()]


def build_index_query(text: str) -> dict[str, Any]:
    """
    Build the Elasticsearch query clause for a search string.

    An empty string matches every document (the unranked browse fallback);
    otherwise a weighted multi_match over title, cast and description.
    """
    text = (text or "").strip()
    if not text:
        return {"match_all": {}}
    return {
        "multi_match": {
            "query": text,
            "fields": weighted_search_fields(),
        }
    }

"""
Pydantic models for movie records and their search-index projection.

MovieRecord is the canonical Postgres row. MovieDocument is the derived
Elasticsearch projection of the same row, and SearchHit is a document plus
its relevance score. MovieCreate / MovieUpdate are inbound mutation payloads.

Budget and collection are 64-bit integers in both stores. In JSON mode they
serialize as decimal strings so values above 2**53 survive any client.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, field_serializer, field_validator

# Postgres BIGINT upper bound
MAX_MONEY = 2**63 - 1

# Columns that cannot be set to NULL through a partial update.
_NON_NULLABLE_UPDATE_FIELDS = ("title", "description", "is_hit")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _clean_cast(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(name).strip() for name in value if name is not None and str(name).strip()]
    return value


# -----------------------------
#        INBOUND PAYLOADS
# -----------------------------

class MovieCreate(BaseModel):
    """Fields accepted when creating a movie. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    title: constr(strip_whitespace=True, min_length=1)
    description: str = ""
    release_date: Optional[date] = None
    budget: Optional[int] = Field(default=None, ge=0, le=MAX_MONEY)
    collection: Optional[int] = Field(default=None, ge=0, le=MAX_MONEY)
    cast: list[str] = Field(default_factory=list)
    is_hit: bool = False

    @field_validator("release_date", "budget", "collection", mode="before")
    @classmethod
    def _empty_is_null(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("cast", mode="before")
    @classmethod
    def _normalize_cast(cls, value: Any) -> Any:
        return _clean_cast(value)

    @field_validator("description", mode="before")
    @classmethod
    def _null_description(cls, value: Any) -> Any:
        return "" if value is None else value


class MovieUpdate(BaseModel):
    """
    Partial update payload.

    Only fields the caller actually supplied are written (pydantic's
    ``model_fields_set``). That rule applies to ``is_hit`` as well: an
    explicit ``false`` is written, an omitted flag leaves the row unchanged.
    Supplying null clears a nullable column (release_date, budget,
    collection); null for title/description/is_hit is ignored.
    """
    model_config = ConfigDict(extra="ignore")

    title: Optional[constr(strip_whitespace=True, min_length=1)] = None
    description: Optional[str] = None
    release_date: Optional[date] = None
    budget: Optional[int] = Field(default=None, ge=0, le=MAX_MONEY)
    collection: Optional[int] = Field(default=None, ge=0, le=MAX_MONEY)
    cast: Optional[list[str]] = None
    is_hit: Optional[bool] = None

    @field_validator("release_date", "budget", "collection", mode="before")
    @classmethod
    def _empty_is_null(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("cast", mode="before")
    @classmethod
    def _normalize_cast(cls, value: Any) -> Any:
        return _clean_cast(value)

    def changes(self) -> dict[str, Any]:
        """Return {column: value} for every supplied field that should be written."""
        supplied = self.model_dump(include=set(self.model_fields_set))
        return {
            key: value
            for key, value in supplied.items()
            if value is not None or key not in _NON_NULLABLE_UPDATE_FIELDS
        }


# -----------------------------
#       STORED MOVIE SHAPES
# -----------------------------

class _MovieFields(BaseModel):
    title: str = ""
    description: str = ""
    release_date: Optional[date] = None
    budget: Optional[int] = None
    collection: Optional[int] = None
    cast: list[str] = []
    is_hit: bool = False

    @field_serializer("budget", "collection", when_used="json-unless-none")
    def _money_as_decimal_string(self, value: int) -> str:
        return str(value)


class MovieRecord(_MovieFields):
    """Canonical movie row owned by the Postgres record store."""
    id: int
    created_at: datetime
    updated_at: datetime

    @field_validator("cast", mode="before")
    @classmethod
    def _null_cast(cls, value: Any) -> Any:
        return [] if value is None else value


class MovieDocument(_MovieFields):
    """
    Search-index projection of a MovieRecord.

    Always written as a full replacement, never a partial patch, so a resync
    can't leave stale fields behind.
    """
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: MovieRecord) -> "MovieDocument":
        return cls(**record.model_dump())

    def to_source(self) -> dict[str, Any]:
        # Python mode keeps budget/collection as ints for the `long` mapping;
        # the Elasticsearch serializer handles date/datetime values.
        return self.model_dump()


class SearchHit(MovieDocument):
    """One ranked search result. ``score`` is None for match_all browsing."""
    score: Optional[float] = None

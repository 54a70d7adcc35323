"""
climate_backend.queries — Query-parameter validation for the data endpoints.

All endpoints share one pydantic model. Values arrive as raw strings from
the query string; the model normalizes them:

    type       → lower-cased, must be one of gdp / population / emissions
    countries  → comma-separated string split into stripped, non-empty items
    year       → exactly four digits
    limit      → integer in [1, MAX_LIMIT]

parse_query() converts pydantic's ValidationError into InvalidQueryError
(HTTP 400) so no request with bad parameters ever reaches file I/O.
Whether a parameter is *required* is decided per endpoint.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from climate_backend.constants import DEFAULT_LIMIT, MAX_LIMIT, VALID_METRICS
from climate_backend.errors import InvalidQueryError

_YEAR_RE = re.compile(r"^\d{4}$")


class DataQuery(BaseModel):
    """Normalized query parameters. Unknown fields are ignored."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    metric: Optional[str] = Field(default=None, alias="type")
    country: Optional[str] = None
    countries: Optional[list[str]] = None
    year: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    listing: Optional[str] = Field(default=None, alias="list")

    @field_validator("metric", mode="before")
    @classmethod
    def _normalize_metric(cls, v: Any) -> Optional[str]:
        if v is None or str(v).strip() == "":
            return None
        v = str(v).strip().lower()
        if v not in VALID_METRICS:
            raise ValueError(
                f"Invalid type '{v}'. Must be one of: {', '.join(sorted(VALID_METRICS))}."
            )
        return v

    @field_validator("country", "listing", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("countries", mode="before")
    @classmethod
    def _split_countries(cls, v: Any) -> Optional[list[str]]:
        if v is None:
            return None
        items = v.split(",") if isinstance(v, str) else list(v)
        return [str(item).strip() for item in items if str(item).strip()]

    @field_validator("year", mode="before")
    @classmethod
    def _validate_year(cls, v: Any) -> Optional[str]:
        if v is None or str(v).strip() == "":
            return None
        v = str(v).strip()
        if not _YEAR_RE.match(v):
            raise ValueError(f"Invalid year '{v}'. Expected a four-digit year.")
        return v

    @field_validator("limit", mode="before")
    @classmethod
    def _validate_limit(cls, v: Any) -> int:
        if v is None or str(v).strip() == "":
            return DEFAULT_LIMIT
        try:
            limit = int(str(v).strip())
        except ValueError:
            raise ValueError(f"Invalid limit '{v}'. Expected a positive integer.")
        if not 1 <= limit <= MAX_LIMIT:
            raise ValueError(f"Invalid limit {limit}. Must be between 1 and {MAX_LIMIT}.")
        return limit


def parse_query(**raw: Any) -> DataQuery:
    """Build a DataQuery from raw parameters.

    Raises:
        InvalidQueryError: carrying the first validation message.
    """
    try:
        return DataQuery(**raw)
    except ValidationError as exc:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid query parameters.") if errors else "Invalid query parameters."
        # pydantic prefixes ValueError messages raised in validators
        message = message.removeprefix("Value error, ")
        raise InvalidQueryError(message) from exc


def require_metric(query: DataQuery) -> str:
    if query.metric is None:
        raise InvalidQueryError("Invalid type")
    return query.metric


def require_countries(query: DataQuery) -> list[str]:
    if not query.countries:
        raise InvalidQueryError("No countries specified")
    return query.countries

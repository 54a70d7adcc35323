"""
climate_backend.projections — Reshape aggregates into endpoint JSON shapes.

Pure computation. Output shapes:
    1. single-entity series   [{"year", "value"}]
    2. single-year ranking    [{"country", "value"}]
    3. multi-entity wide table [{"year", CODE: value, ...}]
    4. normalized radar       [{"metric", CODE: score, ...}]
    5. GDP vs population scatter points
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from climate_backend.aggregate import sorted_years
from climate_backend.constants import RADAR_PRECISION


def to_series(table: Mapping[str, float]) -> list[dict[str, Any]]:
    """{year: value} → year-ordered series."""
    return [{"year": year, "value": table[year]} for year in sorted_years(table.keys())]


def latest_value(series: Sequence[Mapping[str, Any]]) -> float:
    """Value of the last point of a series, or 0 for an empty series."""
    if not series:
        return 0.0
    return series[-1]["value"]


def value_at(series: Sequence[Mapping[str, Any]], year: str | None) -> float | None:
    """Value at ``year`` (latest point when ``year`` is None); None if absent."""
    if year is None:
        return series[-1]["value"] if series else None
    for point in series:
        if point["year"] == year:
            return point["value"]
    return None


def rank_entities(
    entries: Iterable[tuple[str, float]],
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """One entry per (label, value) pair with value > 0, strictly descending.

    Entities sharing a label stay separate entries. Ties keep input
    order. ``limit`` truncates to the top N.
    """
    ranked = [
        {"country": label, "value": value}
        for label, value in entries
        if value > 0
    ]
    ranked.sort(key=lambda item: item["value"], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


def wide_table(
    per_entity: Mapping[str, Mapping[str, float]],
    codes: Sequence[str],
    years: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """One row per year, one column per requested code.

    Without ``years``, rows cover the union of years present for the
    requested codes. Values missing for an entity/year are 0.
    """
    if years is None:
        labels: list[str] = sorted_years(
            year for code in codes for year in per_entity.get(code, {})
        )
    else:
        labels = list(years)

    rows: list[dict[str, Any]] = []
    for year in labels:
        row: dict[str, Any] = {"year": year}
        for code in codes:
            row[code] = per_entity.get(code, {}).get(year, 0)
        rows.append(row)
    return rows


def normalize(value: float, maximum: float) -> float:
    """``value / maximum * 100`` rounded to RADAR_PRECISION; 0 when undefined.

    A zero maximum (every selected entity has 0 for the metric) yields 0
    instead of a non-finite score.
    """
    if not maximum:
        return 0.0
    score = value / maximum * 100
    if math.isnan(score) or math.isinf(score):
        return 0.0
    return round(score, RADAR_PRECISION)


def radar_scores(
    raw: Mapping[str, Mapping[str, float]],
    codes: Sequence[str],
    metrics: Sequence[tuple[str, str]],
) -> list[dict[str, Any]]:
    """Normalize each metric across the requested codes.

    Args:
        raw: {code: {metric: value}}
        codes: requested codes, in output column order.
        metrics: (row label, metric key) pairs, in output row order.
    """
    rows: list[dict[str, Any]] = []
    for label, metric in metrics:
        values = [raw.get(code, {}).get(metric, 0.0) for code in codes]
        maximum = max(values) if values else 0.0
        row: dict[str, Any] = {"metric": label}
        for code, value in zip(codes, values):
            row[code] = normalize(value, maximum)
        rows.append(row)
    return rows


def scatter_points(
    countries: Iterable[tuple[str, str]],
    gdp: Mapping[str, Sequence[Mapping[str, Any]]],
    population: Mapping[str, Sequence[Mapping[str, Any]]],
    year: str | None,
    min_population: float,
) -> list[dict[str, Any]]:
    """GDP vs population points for countries with both values > 0.

    Args:
        countries: (code, name) pairs in output order.
        gdp / population: per-code series.
        year: year label, or None for each series' latest point.
        min_population: points at or below this population are dropped.
    """
    points: list[dict[str, Any]] = []
    for code, name in countries:
        g = value_at(gdp.get(code, []), year)
        p = value_at(population.get(code, []), year)
        if g is None or p is None or g <= 0 or p <= 0:
            continue
        if p <= min_population:
            continue
        points.append({
            "country": name,
            "population": p,
            "gdp": g,
            "gdpPerCapita": g / p,
        })
    return points

"""
climate_backend.aggregate — Row filtering, aggregation and series merging.

Pure computation. Zero I/O. Every function takes an already parsed
DataSet plus resolved column positions and returns plain dicts.

Two aggregation shapes recur:
    (a) sum over rows per year (global totals, one country's totals)
    (b) one value per (entity, year) pair, last row wins on duplicates

Rows failing the categorical predicate are skipped entirely, never
zero-filled. Rows whose grouping key is empty are skipped.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping

from climate_backend.csv_reader import DataSet, cell, coerce_number, leading_int

Row = tuple[str, ...]
RowPredicate = Callable[[Row], bool]
EntityTable = dict[str, dict[str, float]]


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def match_all(row: Row) -> bool:
    return True


def match_fields(dataset: DataSet, expected: Mapping[str, str]) -> RowPredicate:
    """Predicate: every named column equals its expected value exactly.

    A column absent from the header never matches, so the predicate
    rejects every row rather than silently accepting them.
    """
    positions: list[tuple[int | None, str]] = [
        (dataset.column(name), value) for name, value in expected.items()
    ]
    if any(pos is None for pos, _ in positions):
        return lambda row: False

    def predicate(row: Row) -> bool:
        return all(cell(row, pos) == value for pos, value in positions)

    return predicate


def match_membership(index: int | None, allowed: Iterable[str]) -> RowPredicate:
    """Predicate: the field at ``index`` is one of ``allowed``."""
    allowed_set = frozenset(allowed)
    return lambda row: cell(row, index) in allowed_set


def both(first: RowPredicate, second: RowPredicate) -> RowPredicate:
    return lambda row: first(row) and second(row)


# ---------------------------------------------------------------------------
# Aggregators
# ---------------------------------------------------------------------------

def sum_by_year(
    dataset: DataSet,
    year_columns: Mapping[str, int],
    predicate: RowPredicate = match_all,
) -> dict[str, float]:
    """Shape (a): sum coerced cells per year over rows satisfying ``predicate``.

    A year appears in the result only if at least one row matched.
    """
    totals: dict[str, float] = {}
    for row in dataset.rows:
        if not predicate(row):
            continue
        for year, idx in year_columns.items():
            totals[year] = totals.get(year, 0.0) + coerce_number(cell(row, idx))
    return totals


def values_by_entity(
    dataset: DataSet,
    key_index: int | None,
    year_columns: Mapping[str, int],
    predicate: RowPredicate = match_all,
    mode: str = "sum",
) -> EntityTable:
    """Wide layout → {entity: {year: value}}.

    mode="sum" adds up rows sharing an entity (shape a);
    mode="last" keeps the last matching row's value (shape b).
    """
    if mode not in ("sum", "last"):
        raise ValueError(f"Unknown aggregation mode: {mode!r}")

    table: EntityTable = defaultdict(dict)
    for row in dataset.rows:
        key = cell(row, key_index)
        if not key or not predicate(row):
            continue
        years = table[key]
        for year, idx in year_columns.items():
            value = coerce_number(cell(row, idx))
            if mode == "sum":
                years[year] = years.get(year, 0.0) + value
            else:
                years[year] = value
    return dict(table)


def long_values_by_entity(
    dataset: DataSet,
    key_index: int | None,
    year_index: int | None,
    value_index: int | None,
    predicate: RowPredicate = match_all,
) -> EntityTable:
    """Long/tidy layout (one row per entity-year) → {entity: {year: value}}.

    Last row wins on duplicate (entity, year) pairs.
    """
    table: EntityTable = defaultdict(dict)
    for row in dataset.rows:
        key = cell(row, key_index)
        year = cell(row, year_index)
        if not key or not year or not predicate(row):
            continue
        table[key][year] = coerce_number(cell(row, value_index))
    return dict(table)


def labels_by_entity(dataset: DataSet, key_index: int | None, label_index: int | None) -> dict[str, str]:
    """Map each entity key to its display label (last non-empty label wins)."""
    labels: dict[str, str] = {}
    for row in dataset.rows:
        key = cell(row, key_index)
        label = cell(row, label_index)
        if key and label:
            labels[key] = label
    return labels


# ---------------------------------------------------------------------------
# Year ordering & rounding
# ---------------------------------------------------------------------------

def year_sort_key(label: str) -> tuple[int, int | float, str]:
    """Sort key ordering year labels by integer value, not lexically.

    Labels without a leading integer sort after all numeric ones.
    """
    year = leading_int(label)
    if year is None:
        return (1, math.inf, label)
    return (0, year, label)


def sorted_years(labels: Iterable[str]) -> list[str]:
    return sorted(set(labels), key=year_sort_key)


def round_value(value: float, digits: int) -> float | int:
    """Round an aggregated total. digits == 0 yields an int."""
    if digits <= 0:
        return int(round(value))
    return round(value, digits)


# ---------------------------------------------------------------------------
# Series Merger
# ---------------------------------------------------------------------------

def merge_series(
    historical: Mapping[str, Mapping[str, float]],
    predicted: Mapping[str, Mapping[str, float]],
    cutoff: int,
    years: Iterable[str] | None = None,
) -> EntityTable:
    """Merge historical and predicted aggregates into one series per entity.

    Years <= ``cutoff`` are read from ``historical``, later years from
    ``predicted``; an absent key reads as 0.

    With ``years`` given, every entity gets exactly those years (dense).
    Otherwise each entity gets the union of year labels found in either
    input for it, ordered by integer value.
    """
    fixed = list(years) if years is not None else None
    entities = list(dict.fromkeys([*historical.keys(), *predicted.keys()]))

    merged: EntityTable = {}
    for entity in entities:
        hist = historical.get(entity, {})
        pred = predicted.get(entity, {})
        labels = fixed if fixed is not None else sorted_years([*hist.keys(), *pred.keys()])
        series: dict[str, float] = {}
        for label in labels:
            year = leading_int(label)
            if year is not None and year <= cutoff:
                series[label] = hist.get(label, 0.0)
            else:
                series[label] = pred.get(label, 0.0)
        merged[entity] = series
    return merged

"""
climate_backend.metrics — Endpoint queries over the CSV pipeline.

Each function here is a thin configuration of the shared pipeline:
load → resolve columns → filter & aggregate → merge → project.
All I/O goes through the DatasetLoader passed in; all year ranges,
filenames and cutoffs come from its DashboardConfig.

Historical emissions are read in two distinct modes:
    - "Total excluding LUCF" for per-metric series (global, country, top,
      radar, compare)
    - "Total including LUCF" for the combined historical + predicted views
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from climate_backend.aggregate import (
    EntityTable,
    RowPredicate,
    both,
    labels_by_entity,
    long_values_by_entity,
    match_all,
    match_fields,
    match_membership,
    merge_series,
    round_value,
    sorted_years,
    sum_by_year,
    values_by_entity,
)
from climate_backend.constants import (
    COL_COUNTRY,
    COL_GAS,
    COL_ISO,
    COL_PREDICTED,
    COL_SECTOR,
    COL_YEAR,
    GAS_ALL_GHG,
    METRIC_EMISSIONS,
    METRIC_GDP,
    METRIC_POPULATION,
    RADAR_METRICS,
    REFERENCE_CODE_POSITION,
    REFERENCE_NAME_POSITION,
    ROUND_DIGITS,
    SCATTER_MIN_POPULATION,
    SECTOR_EXCLUDING_LUCF,
    SECTOR_INCLUDING_LUCF,
    VALID_METRICS,
)
from climate_backend.csv_reader import (
    DataSet,
    cell,
    coerce_number,
    leading_int,
    resolve_columns,
    resolve_year_columns,
    year_labels,
)
from climate_backend.dataset_cache import DatasetLoader
from climate_backend.errors import UnknownCountryError
from climate_backend.projections import (
    latest_value,
    radar_scores,
    rank_entities,
    scatter_points,
    to_series,
    value_at,
    wide_table,
)

logger = logging.getLogger("dashboard.data")

Series = list[dict[str, Any]]


@dataclass(frozen=True, slots=True)
class CountryMeta:
    code: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "name": self.name}


# ---------------------------------------------------------------------------
# Reference table
# ---------------------------------------------------------------------------

def get_countries(loader: DatasetLoader) -> list[CountryMeta]:
    """All countries in the reference table, sorted by display name."""
    dataset = loader.load(loader.config.countries_file)
    countries: dict[str, str] = {}
    for row in dataset.rows:
        name = cell(row, REFERENCE_NAME_POSITION)
        code = cell(row, REFERENCE_CODE_POSITION)
        if not code or not name:
            continue
        countries[code] = name
    return sorted(
        (CountryMeta(code=code, name=name) for code, name in countries.items()),
        key=lambda c: (c.name.casefold(), c.code),
    )


def resolve_country_codes(loader: DatasetLoader, tokens: list[str]) -> list[str]:
    """Map ISO3 codes or display names to reference-table codes.

    Codes match case-insensitively first, then display names. Duplicates
    collapse, order is preserved.

    Raises:
        UnknownCountryError: listing every token that matched nothing.
    """
    countries = get_countries(loader)
    by_code = {c.code.upper(): c.code for c in countries}
    by_name = {c.name.casefold(): c.code for c in countries}

    codes: list[str] = []
    unknown: list[str] = []
    for token in tokens:
        t = token.strip()
        code = by_code.get(t.upper()) or by_name.get(t.casefold())
        if code is None:
            unknown.append(t)
        elif code not in codes:
            codes.append(code)

    if unknown:
        raise UnknownCountryError(unknown)
    return codes


# ---------------------------------------------------------------------------
# Per-metric series
# ---------------------------------------------------------------------------

def _metric_file(loader: DatasetLoader, metric: str) -> str:
    config = loader.config
    if metric == METRIC_GDP:
        return config.gdp_file
    if metric == METRIC_POPULATION:
        return config.population_file
    if metric == METRIC_EMISSIONS:
        return config.emissions_file
    raise ValueError(f"Unknown metric: {metric!r}")


def _metric_columns(loader: DatasetLoader, metric: str, dataset: DataSet) -> dict[str, int]:
    if metric == METRIC_EMISSIONS:
        first, last = loader.config.emissions_years
    else:
        first, last = loader.config.gdp_population_years
    return resolve_columns(dataset.header, year_labels(first, last))


def _excluding_lucf(dataset: DataSet) -> RowPredicate:
    return match_fields(dataset, {COL_SECTOR: SECTOR_EXCLUDING_LUCF, COL_GAS: GAS_ALL_GHG})


def series_by_country(loader: DatasetLoader, metric: str) -> dict[str, Series]:
    """Every country's series for ``metric`` in one pass over the file.

    GDP and population come from the wide reference-style layout (code in
    column 1); years with a zero value are dropped. Emissions are summed
    over the "Total excluding LUCF" / "All GHG" rows of each ISO code and
    keep zero years.
    """
    if metric not in VALID_METRICS:
        raise ValueError(f"Unknown metric: {metric!r}")

    dataset = loader.load(_metric_file(loader, metric))
    year_columns = _metric_columns(loader, metric, dataset)

    if metric == METRIC_EMISSIONS:
        table = values_by_entity(
            dataset, dataset.column(COL_ISO), year_columns, _excluding_lucf(dataset), mode="sum",
        )
        digits = ROUND_DIGITS[metric]
        return {
            code: [{"year": y, "value": round_value(v, digits)} for y, v in _ordered(years)]
            for code, years in table.items()
        }

    table = values_by_entity(dataset, REFERENCE_CODE_POSITION, year_columns, mode="sum")
    return {
        code: [{"year": y, "value": v} for y, v in _ordered(years) if v != 0]
        for code, years in table.items()
    }


def _ordered(years: dict[str, float]) -> list[tuple[str, float]]:
    return [(y, years[y]) for y in sorted_years(years.keys())]


def country_series(loader: DatasetLoader, metric: str, code: str) -> Series:
    """One country's series; empty when the code has no rows."""
    return series_by_country(loader, metric).get(code, [])


def global_series(loader: DatasetLoader, metric: str) -> Series:
    """Totals across all rows per year (emissions: excluding-LUCF rows only)."""
    if metric not in VALID_METRICS:
        raise ValueError(f"Unknown metric: {metric!r}")

    dataset = loader.load(_metric_file(loader, metric))
    year_columns = _metric_columns(loader, metric, dataset)
    predicate = _excluding_lucf(dataset) if metric == METRIC_EMISSIONS else match_all
    totals = sum_by_year(dataset, year_columns, predicate)

    digits = ROUND_DIGITS[metric]
    return [{"year": y, "value": round_value(v, digits)} for y, v in _ordered(totals)]


# ---------------------------------------------------------------------------
# Cross-country projections
# ---------------------------------------------------------------------------

def top_countries(
    loader: DatasetLoader,
    metric: str,
    limit: int,
    year: str | None = None,
) -> list[dict[str, Any]]:
    """Countries ranked by their value at ``year`` (or latest point), top ``limit``."""
    countries = get_countries(loader)
    per_country = series_by_country(loader, metric)

    entries: list[tuple[str, float]] = []
    for c in countries:
        value = value_at(per_country.get(c.code, []), year)
        if value is not None:
            entries.append((c.name, value))
    return rank_entities(entries, limit)


def scatter_data(loader: DatasetLoader, year: str | None = None) -> list[dict[str, Any]]:
    """GDP vs population for countries above SCATTER_MIN_POPULATION."""
    countries = get_countries(loader)
    gdp = series_by_country(loader, METRIC_GDP)
    population = series_by_country(loader, METRIC_POPULATION)
    return scatter_points(
        ((c.code, c.name) for c in countries),
        gdp,
        population,
        year,
        SCATTER_MIN_POPULATION,
    )


def radar_data(loader: DatasetLoader, codes: list[str]) -> list[dict[str, Any]]:
    """Latest GDP, population and emissions, normalized to the selection's maximum."""
    per_metric = {metric: series_by_country(loader, metric) for _, metric in RADAR_METRICS}
    raw = {
        code: {
            metric: latest_value(per_metric[metric].get(code, []))
            for _, metric in RADAR_METRICS
        }
        for code in codes
    }
    return radar_scores(raw, codes, RADAR_METRICS)


def compare_data(loader: DatasetLoader, metric: str, codes: list[str]) -> list[dict[str, Any]]:
    """Wide table of ``metric`` for the requested codes over their years."""
    per_country = series_by_country(loader, metric)
    per_entity = {
        code: {point["year"]: point["value"] for point in per_country.get(code, [])}
        for code in codes
    }
    return wide_table(per_entity, codes)


# ---------------------------------------------------------------------------
# Historical + predicted emissions
# ---------------------------------------------------------------------------

def _historical_including_lucf(
    loader: DatasetLoader,
    codes: list[str] | None = None,
) -> tuple[EntityTable, dict[str, str]]:
    dataset = loader.load(loader.config.emissions_file)
    first, last = loader.config.emissions_years
    year_columns = resolve_year_columns(dataset.header, first, last)
    iso = dataset.column(COL_ISO)

    predicate = match_fields(dataset, {COL_SECTOR: SECTOR_INCLUDING_LUCF, COL_GAS: GAS_ALL_GHG})
    if codes is not None:
        predicate = both(predicate, match_membership(iso, codes))

    table = values_by_entity(dataset, iso, year_columns, predicate, mode="last")
    return table, labels_by_entity(dataset, iso, dataset.column(COL_COUNTRY))


def _predictions(
    loader: DatasetLoader,
    codes: list[str] | None = None,
) -> tuple[EntityTable, dict[str, str]]:
    dataset = loader.load(loader.config.predictions_file)
    iso = dataset.column(COL_ISO)
    predicate = match_membership(iso, codes) if codes is not None else match_all
    table = long_values_by_entity(
        dataset, iso, dataset.column(COL_YEAR), dataset.column(COL_PREDICTED), predicate,
    )
    return table, labels_by_entity(dataset, iso, dataset.column(COL_COUNTRY))


def _find_entity(query: str, merged: EntityTable, names: dict[str, str]) -> str | None:
    q = query.strip()
    for code in merged:
        if code.upper() == q.upper():
            return code
    for code in merged:
        if names.get(code, "").casefold() == q.casefold():
            return code
    return None


def combined_emissions(
    loader: DatasetLoader,
    country: str | None = None,
    year: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Historical (to the cutoff year) and predicted emissions as one series.

    - ``country`` (ISO3 code or display name): that country's series.
    - ``year``: ranking of countries by their value that year.
    - neither: every country with its full {year: value} mapping.

    Raises:
        UnknownCountryError: if ``country`` matches no entity in either file.
    """
    historical, hist_names = _historical_including_lucf(loader)
    predicted, pred_names = _predictions(loader)
    merged = merge_series(historical, predicted, loader.config.cutoff_year)
    names = {**pred_names, **hist_names}

    if country:
        code = _find_entity(country, merged, names)
        if code is None:
            raise UnknownCountryError([country])
        return to_series(merged[code])

    if year:
        entries = ((names.get(code, code), series.get(year, 0)) for code, series in merged.items())
        return rank_entities(entries, limit)

    return [
        {"iso": code, "country": names.get(code, code), "years": series}
        for code, series in merged.items()
    ]


def compare_emissions(loader: DatasetLoader, codes: list[str]) -> list[dict[str, Any]]:
    """Dense historical + predicted table, one column per requested code."""
    historical, _ = _historical_including_lucf(loader, codes)
    predicted, _ = _predictions(loader, codes)
    years = loader.config.combined_years
    merged = merge_series(historical, predicted, loader.config.cutoff_year, years)

    logger.debug(
        "compare_emissions codes=%s historical=%d predicted=%d",
        codes, len(historical), len(predicted),
    )
    return wide_table(merged, codes, years)


# ---------------------------------------------------------------------------
# Prediction tables
# ---------------------------------------------------------------------------

def sector_emissions(loader: DatasetLoader, names: list[str] | None = None) -> list[dict[str, Any]]:
    """Sector-level predictions, optionally for a set of country display names.

    Rows missing ISO, country, sector or year, or with zero predicted
    emissions, are skipped. Name matching ignores case and surrounding
    whitespace.
    """
    dataset = loader.load(loader.config.sector_predictions_file)
    cols = resolve_columns(
        dataset.header, [COL_ISO, COL_COUNTRY, COL_SECTOR, COL_YEAR, COL_PREDICTED],
    )
    wanted = {n.strip().casefold() for n in names} if names is not None else None

    results: list[dict[str, Any]] = []
    for row in dataset.rows:
        iso = cell(row, cols.get(COL_ISO))
        country = cell(row, cols.get(COL_COUNTRY))
        sector = cell(row, cols.get(COL_SECTOR))
        year = cell(row, cols.get(COL_YEAR))
        emissions = coerce_number(cell(row, cols.get(COL_PREDICTED)))

        if not iso or not country or not sector or not year or emissions == 0:
            continue
        if wanted is not None and country.strip().casefold() not in wanted:
            continue

        results.append({
            "iso": iso,
            "country": country,
            "sector": sector,
            "year": year,
            "predictedEmissions": emissions,
        })
    return results


def _prediction_rows(loader: DatasetLoader, filename: str, category: str) -> list[dict[str, Any]]:
    """Raw long-layout prediction rows keyed by their original column names."""
    dataset = loader.load(filename)
    names = [COL_ISO, COL_COUNTRY, category, COL_YEAR, COL_PREDICTED]
    cols = resolve_columns(dataset.header, names)

    rows: list[dict[str, Any]] = []
    for row in dataset.rows:
        if len(row) < len(names):
            continue
        rows.append({
            COL_ISO: cell(row, cols.get(COL_ISO)),
            COL_COUNTRY: cell(row, cols.get(COL_COUNTRY)),
            category: cell(row, cols.get(category)),
            COL_YEAR: leading_int(cell(row, cols.get(COL_YEAR))) or 0,
            COL_PREDICTED: coerce_number(cell(row, cols.get(COL_PREDICTED))),
        })
    return rows


def sector_emissions_predictions(loader: DatasetLoader) -> list[dict[str, Any]]:
    return _prediction_rows(loader, loader.config.sector_predictions_file, COL_SECTOR)


def ghg_predictions(loader: DatasetLoader) -> list[dict[str, Any]]:
    return _prediction_rows(loader, loader.config.ghg_predictions_file, COL_GAS)

"""
tests/test_metrics.py — Endpoint queries over the fixture datasets.

Expected values are worked out by hand from tests/conftest.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from climate_backend import metrics
from climate_backend.config import DashboardConfig
from climate_backend.dataset_cache import DatasetLoader
from climate_backend.errors import DatasetUnavailableError, UnknownCountryError

from conftest import DATASET_FILES, write_datasets


def _loader_with(tmp_path: Path, **overrides: str) -> DatasetLoader:
    """Loader over the fixture datasets with some files replaced."""
    files = {**DATASET_FILES, **overrides}
    return DatasetLoader(DashboardConfig(dataset_dir=write_datasets(tmp_path / "shared", files)))


# ---------------------------------------------------------------------------
# Reference table
# ---------------------------------------------------------------------------

class TestCountries:
    def test_sorted_by_name(self, loader):
        countries = [c.to_dict() for c in metrics.get_countries(loader)]
        assert countries == [
            {"code": "FRA", "name": "France"},
            {"code": "DEU", "name": "Germany"},
            {"code": "KOR", "name": "Korea, Rep."},
            {"code": "ZZZ", "name": "Nowhere"},
            {"code": "USA", "name": "United States"},
        ]

    def test_resolve_codes_and_names(self, loader):
        codes = metrics.resolve_country_codes(loader, ["fra", "Germany", "FRA"])
        assert codes == ["FRA", "DEU"]

    def test_resolve_unknown(self, loader):
        with pytest.raises(UnknownCountryError) as exc_info:
            metrics.resolve_country_codes(loader, ["FRA", "Atlantis", "XXX"])
        assert exc_info.value.countries == ["Atlantis", "XXX"]
        assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# Per-metric series
# ---------------------------------------------------------------------------

class TestGlobalSeries:
    def test_gdp_totals(self, loader):
        assert metrics.global_series(loader, "gdp") == [
            {"year": "1960", "value": 6500.0},
            {"year": "2019", "value": 26100.0},
            {"year": "2020", "value": 24200.0},
        ]

    def test_population_rounded_to_int(self, loader):
        series = metrics.global_series(loader, "population")
        assert series == [
            {"year": "2019", "value": 529_000_000},
            {"year": "2020", "value": 481_700_000},
        ]
        assert all(isinstance(p["value"], int) for p in series)

    def test_emissions_excluding_lucf_only(self, loader):
        assert metrics.global_series(loader, "emissions") == [
            {"year": "1990", "value": 7600.0},
            {"year": "2019", "value": 8400.5},
            {"year": "2020", "value": 1000.0},
        ]

    def test_unknown_metric(self, loader):
        with pytest.raises(ValueError):
            metrics.global_series(loader, "co2")


class TestCountrySeries:
    def test_gdp_drops_zero_years(self, loader):
        assert metrics.country_series(loader, "gdp", "DEU") == [
            {"year": "1960", "value": 500.0},
            {"year": "2019", "value": 4000.0},
        ]

    def test_empty_cell_dropped(self, loader):
        assert [p["year"] for p in metrics.country_series(loader, "gdp", "KOR")] == ["2019", "2020"]

    def test_emissions_keep_zero_years(self, loader):
        assert metrics.country_series(loader, "emissions", "USA") == [
            {"year": "1990", "value": 6000.0},
            {"year": "2019", "value": 6500.0},
            {"year": "2020", "value": 0.0},
        ]

    def test_unknown_code_is_empty(self, loader):
        assert metrics.country_series(loader, "gdp", "XXX") == []


# ---------------------------------------------------------------------------
# Cross-country projections
# ---------------------------------------------------------------------------

class TestTopCountries:
    def test_latest_values(self, loader):
        assert metrics.top_countries(loader, "gdp", 10) == [
            {"country": "United States", "value": 21000.0},
            {"country": "Germany", "value": 4000.0},
            {"country": "France", "value": 3000.0},
            {"country": "Korea, Rep.", "value": 200.0},
        ]

    def test_limit(self, loader):
        assert len(metrics.top_countries(loader, "gdp", 2)) == 2

    def test_specific_year(self, loader):
        ranked = metrics.top_countries(loader, "gdp", 10, "2020")
        assert [r["country"] for r in ranked] == ["United States", "France", "Korea, Rep."]

    def test_shared_display_name_ranks_each_code(self, tmp_path):
        gdp = "Country Name,Country Code,2020\nCongo,COG,100\nCongo,COD,50\n"
        loader = _loader_with(tmp_path, **{"country_gdp_filtered.csv": gdp})
        assert metrics.top_countries(loader, "gdp", 10) == [
            {"country": "Congo", "value": 100.0},
            {"country": "Congo", "value": 50.0},
        ]


class TestScatter:
    def test_year(self, loader):
        points = metrics.scatter_data(loader, "2020")
        assert [p["country"] for p in points] == ["France", "United States"]
        assert points[0]["gdpPerCapita"] == pytest.approx(3000 / 67_500_000)


class TestRadar:
    def test_normalized_to_selection(self, loader):
        assert metrics.radar_data(loader, ["FRA", "DEU"]) == [
            {"metric": "GDP", "FRA": 75.0, "DEU": 100.0},
            {"metric": "Population", "FRA": 81.1, "DEU": 100.0},
            {"metric": "Emissions", "FRA": 42.9, "DEU": 100.0},
        ]

    def test_all_zero_country(self, loader):
        rows = metrics.radar_data(loader, ["ZZZ"])
        assert [r["ZZZ"] for r in rows] == [0, 0, 0]


class TestCompare:
    def test_wide_table(self, loader):
        assert metrics.compare_data(loader, "gdp", ["FRA", "DEU"]) == [
            {"year": "1960", "FRA": 1000.0, "DEU": 500.0},
            {"year": "2019", "FRA": 2000.0, "DEU": 4000.0},
            {"year": "2020", "FRA": 3000.0, "DEU": 0},
        ]


# ---------------------------------------------------------------------------
# Historical + predicted emissions
# ---------------------------------------------------------------------------

class TestCombinedEmissions:
    def test_country_series_crosses_cutoff(self, loader):
        series = metrics.combined_emissions(loader, country="USA")
        values = {p["year"]: p["value"] for p in series}
        assert values["2020"] == 200
        assert values["2025"] == 250
        assert [p["year"] for p in series] == ["1990", "2019", "2020", "2021", "2025"]

    def test_years_before_range_ignored(self, loader):
        """The 1989 column sits outside 1990-2020 and never reaches a series."""
        for row in metrics.combined_emissions(loader):
            assert "1989" not in row["years"]

    def test_country_by_name(self, loader):
        assert metrics.combined_emissions(loader, country="united states") == \
            metrics.combined_emissions(loader, country="USA")

    def test_last_row_wins_in_predictions(self, loader):
        values = {p["year"]: p["value"] for p in metrics.combined_emissions(loader, country="FRA")}
        assert values["2021"] == 296
        assert values["2020"] == 290

    def test_ranking_by_year(self, loader):
        assert metrics.combined_emissions(loader, year="2021") == [
            {"country": "France", "value": 296.0},
            {"country": "United States", "value": 210.0},
        ]

    def test_ranking_one_entry_per_iso(self, tmp_path):
        predictions = (
            "ISO,Country,Year,Predicted_Emissions\n"
            "COG,Congo,2021,40\n"
            "COD,Congo,2021,60\n"
        )
        loader = _loader_with(tmp_path, **{"emissions_predictions_2021_2030.csv": predictions})
        assert metrics.combined_emissions(loader, year="2021") == [
            {"country": "Congo", "value": 60.0},
            {"country": "Congo", "value": 40.0},
        ]

    def test_ranking_limit(self, loader):
        assert len(metrics.combined_emissions(loader, year="2021", limit=1)) == 1

    def test_all_countries(self, loader):
        rows = metrics.combined_emissions(loader)
        by_iso = {r["iso"]: r for r in rows}
        assert set(by_iso) == {"FRA", "DEU", "USA"}
        assert by_iso["DEU"]["country"] == "Germany"
        assert by_iso["DEU"]["years"]["2030"] == 600

    def test_only_all_ghg_rows(self, loader):
        """The CO2 row for DEU follows the All GHG row but is filtered out."""
        values = {p["year"]: p["value"] for p in metrics.combined_emissions(loader, country="DEU")}
        assert values["1990"] == 1150

    def test_unknown_country(self, loader):
        with pytest.raises(UnknownCountryError):
            metrics.combined_emissions(loader, country="Atlantis")


class TestCompareEmissions:
    def test_dense_rows(self, loader):
        rows = metrics.compare_emissions(loader, ["FRA", "USA"])
        assert len(rows) == 41
        assert rows[0] == {"year": "1990", "FRA": 380.0, "USA": 100.0}
        assert rows[-1]["year"] == "2030"

        by_year = {r["year"]: r for r in rows}
        assert by_year["1991"] == {"year": "1991", "FRA": 0, "USA": 0}
        assert by_year["2020"] == {"year": "2020", "FRA": 290.0, "USA": 200.0}
        assert by_year["2021"] == {"year": "2021", "FRA": 296.0, "USA": 210.0}
        assert by_year["2025"] == {"year": "2025", "FRA": 0, "USA": 250.0}

    def test_requested_country_without_rows(self, loader):
        rows = metrics.compare_emissions(loader, ["KOR"])
        assert all(r["KOR"] == 0 for r in rows)


# ---------------------------------------------------------------------------
# Prediction tables
# ---------------------------------------------------------------------------

class TestSectorEmissions:
    def test_skips_zero_and_incomplete_rows(self, loader):
        assert metrics.sector_emissions(loader) == [
            {"iso": "FRA", "country": "France", "sector": "Energy", "year": "2021",
             "predictedEmissions": 120.5},
            {"iso": "DEU", "country": "Germany", "sector": "Energy", "year": "2022",
             "predictedEmissions": 300.0},
        ]

    def test_name_filter(self, loader):
        rows = metrics.sector_emissions(loader, [" france "])
        assert [r["iso"] for r in rows] == ["FRA"]

    def test_raw_rows(self, loader):
        rows = metrics.sector_emissions_predictions(loader)
        assert len(rows) == 4
        assert rows[0] == {
            "ISO": "FRA", "Country": "France", "Sector": "Energy",
            "Year": 2021, "Predicted_Emissions": 120.5,
        }
        assert rows[1]["Predicted_Emissions"] == 0

    def test_ghg_rows(self, loader):
        rows = metrics.ghg_predictions(loader)
        assert [r["Gas"] for r in rows] == ["CO2", "CH4"]
        assert rows[0]["Predicted_Emissions"] == 250.25


class TestMissingDataset:
    def test_missing_file(self, loader, dataset_dir):
        (dataset_dir / "historical_emissions.csv").unlink()
        with pytest.raises(DatasetUnavailableError) as exc_info:
            metrics.global_series(loader, "emissions")
        assert exc_info.value.filename == "historical_emissions.csv"
        assert exc_info.value.message == "Failed to load data."

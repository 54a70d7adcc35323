"""
climate_backend.constants — Single source of truth for dashboard constants.

Every module that needs these values MUST import from here (or read them
off DashboardConfig, which is built from them). No hardcoded duplicates
in endpoint code.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Dataset files (relative to DATASET_DIR)
# ---------------------------------------------------------------------------

COUNTRIES_FILE: str = "country_gdp_filtered.csv"
"""Reference table. Column 0 = display name, column 1 = ISO3 code."""

GDP_FILE: str = "country_gdp_filtered.csv"
POPULATION_FILE: str = "country_population_filtered.csv"
EMISSIONS_FILE: str = "historical_emissions.csv"
PREDICTIONS_FILE: str = "emissions_predictions_2021_2030.csv"
SECTOR_PREDICTIONS_FILE: str = "sector_emissions_predictions_2021_2030.csv"
GHG_PREDICTIONS_FILE: str = "ghg_predictions_2021_2030.csv"

# ---------------------------------------------------------------------------
# Year ranges (inclusive)
# ---------------------------------------------------------------------------

GDP_POPULATION_YEARS: tuple[int, int] = (1960, 2024)
EMISSIONS_YEARS: tuple[int, int] = (1990, 2020)
PREDICTION_YEARS: tuple[int, int] = (2021, 2030)

CUTOFF_YEAR: int = 2020
"""Years <= CUTOFF_YEAR come from historical data, later years from predictions."""

# ---------------------------------------------------------------------------
# Categorical filter values
# ---------------------------------------------------------------------------

SECTOR_EXCLUDING_LUCF: str = "Total excluding LUCF"
SECTOR_INCLUDING_LUCF: str = "Total including LUCF"
GAS_ALL_GHG: str = "All GHG"

# ---------------------------------------------------------------------------
# Column names
# ---------------------------------------------------------------------------

COL_ISO: str = "ISO"
COL_COUNTRY: str = "Country"
COL_SECTOR: str = "Sector"
COL_GAS: str = "Gas"
COL_YEAR: str = "Year"
COL_PREDICTED: str = "Predicted_Emissions"

REFERENCE_NAME_POSITION: int = 0
REFERENCE_CODE_POSITION: int = 1

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

METRIC_GDP: str = "gdp"
METRIC_POPULATION: str = "population"
METRIC_EMISSIONS: str = "emissions"

VALID_METRICS: frozenset[str] = frozenset({METRIC_GDP, METRIC_POPULATION, METRIC_EMISSIONS})

ROUND_DIGITS: dict[str, int] = {
    METRIC_GDP: 2,
    METRIC_POPULATION: 0,
    METRIC_EMISSIONS: 2,
}
"""Decimal places applied to aggregated totals, per metric."""

RADAR_METRICS: tuple[tuple[str, str], ...] = (
    ("GDP", METRIC_GDP),
    ("Population", METRIC_POPULATION),
    ("Emissions", METRIC_EMISSIONS),
)
"""(row label, metric) pairs in radar output order."""

RADAR_PRECISION: int = 1

# ---------------------------------------------------------------------------
# Query defaults
# ---------------------------------------------------------------------------

DEFAULT_LIMIT: int = 10
MAX_LIMIT: int = 1000
SCATTER_MIN_POPULATION: int = 1_000_000

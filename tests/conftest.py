"""
tests/conftest.py — Shared fixtures: a small, hand-checkable dataset directory.

Reference / GDP table (name, code, 1960, 2019, 2020):
    France          FRA   1,000   2000   3000
    Germany         DEU     500   4000      0
    Korea, Rep.     KOR       —    100    200
    Nowhere         ZZZ       0      0      0
    United States   USA   5,000  20000  21000

Historical emissions carry both LUCF modes, a non-total sector row, a
non-"All GHG" row, one malformed cell ("abc") and a 1989 column outside
the historical year range.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from climate_backend.api import app, get_config, limiter
from climate_backend.config import DashboardConfig
from climate_backend.dataset_cache import DatasetLoader

GDP_CSV = """\
Country Name,Country Code,1960,2019,2020
France,FRA,"1,000",2000,3000
Germany,DEU,500,4000,0
"Korea, Rep.",KOR,,100,200
Nowhere,ZZZ,0,0,0
United States,USA,"5,000",20000,21000
"""

POPULATION_CSV = """\
Country Name,Country Code,2019,2020
France,FRA,67000000,67500000
Germany,DEU,83000000,83200000
"Korea, Rep.",KOR,51000000,
Nowhere,ZZZ,0,0
United States,USA,328000000,331000000
"""

EMISSIONS_CSV = """\
ISO,Country,Data source,Sector,Gas,Unit,1989,1990,2019,2020
FRA,France,CAIT,Total excluding LUCF,All GHG,MtCO2e,9999,400,"1,100.5",300
FRA,France,CAIT,Total including LUCF,All GHG,MtCO2e,9999,380,280,290
FRA,France,CAIT,Energy,All GHG,MtCO2e,9999,999,999,999
DEU,Germany,CAIT,Total excluding LUCF,All GHG,MtCO2e,9999,1200,800,700
DEU,Germany,CAIT,Total including LUCF,All GHG,MtCO2e,9999,1150,780,690
DEU,Germany,CAIT,Total including LUCF,CO2,MtCO2e,9999,1,1,1
USA,United States,CAIT,Total including LUCF,All GHG,MtCO2e,9999,100,150,200
USA,United States,CAIT,Total excluding LUCF,All GHG,MtCO2e,9999,6000,6500,abc
"""

PREDICTIONS_CSV = """\
ISO,Country,Year,Predicted_Emissions
USA,United States,2025,250
USA,United States,2021,210
FRA,France,2021,295
FRA,France,2021,296
DEU,Germany,2030,600
"""

SECTOR_PREDICTIONS_CSV = """\
ISO,Country,Sector,Year,Predicted_Emissions
FRA,France,Energy,2021,120.5
FRA,France,Agriculture,2021,0
DEU,Germany,Energy,2022,300
,Unknown,Energy,2022,5
USA,United States,Transport
"""

GHG_PREDICTIONS_CSV = """\
ISO,Country,Gas,Year,Predicted_Emissions
FRA,France,CO2,2021,250.25
FRA,France,CH4,2021,30
"""

DATASET_FILES: dict[str, str] = {
    "country_gdp_filtered.csv": GDP_CSV,
    "country_population_filtered.csv": POPULATION_CSV,
    "historical_emissions.csv": EMISSIONS_CSV,
    "emissions_predictions_2021_2030.csv": PREDICTIONS_CSV,
    "sector_emissions_predictions_2021_2030.csv": SECTOR_PREDICTIONS_CSV,
    "ghg_predictions_2021_2030.csv": GHG_PREDICTIONS_CSV,
}


def write_datasets(directory: Path, files: dict[str, str] | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, content in (files if files is not None else DATASET_FILES).items():
        (directory / name).write_text(content, encoding="utf-8")
    return directory


@pytest.fixture()
def dataset_dir(tmp_path: Path) -> Path:
    return write_datasets(tmp_path / "dataset")


@pytest.fixture()
def config(dataset_dir: Path) -> DashboardConfig:
    return DashboardConfig(dataset_dir=dataset_dir)


@pytest.fixture()
def loader(config: DashboardConfig) -> DatasetLoader:
    return DatasetLoader(config)


@pytest.fixture()
def client(config: DashboardConfig) -> Iterator[TestClient]:
    """TestClient bound to the fixture datasets, with rate limiting off."""
    app.dependency_overrides[get_config] = lambda: config
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True

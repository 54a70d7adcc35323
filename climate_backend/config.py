"""
climate_backend.config — Process-wide configuration.

DashboardConfig is an immutable value object built once from the
environment by load_config(). It is passed explicitly into the
aggregation layer; nothing below the API module reads os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from climate_backend.constants import (
    COUNTRIES_FILE,
    CUTOFF_YEAR,
    EMISSIONS_FILE,
    EMISSIONS_YEARS,
    GDP_FILE,
    GDP_POPULATION_YEARS,
    GHG_PREDICTIONS_FILE,
    POPULATION_FILE,
    PREDICTION_YEARS,
    PREDICTIONS_FILE,
    SECTOR_PREDICTIONS_FILE,
)

DEFAULT_DATASET_DIR: Path = Path(__file__).resolve().parent.parent / "dataset"


@dataclass(frozen=True, slots=True)
class DashboardConfig:
    """Fully resolved dashboard configuration."""

    dataset_dir: Path = DEFAULT_DATASET_DIR
    env: str = "prod"
    enable_docs: bool = False
    require_data: bool = False
    allowed_origins: tuple[str, ...] = ()
    redis_url: str | None = None
    rate_limit: str = "120/minute"
    cache_enabled: bool = False
    cache_size: int = 8

    countries_file: str = COUNTRIES_FILE
    gdp_file: str = GDP_FILE
    population_file: str = POPULATION_FILE
    emissions_file: str = EMISSIONS_FILE
    predictions_file: str = PREDICTIONS_FILE
    sector_predictions_file: str = SECTOR_PREDICTIONS_FILE
    ghg_predictions_file: str = GHG_PREDICTIONS_FILE

    gdp_population_years: tuple[int, int] = GDP_POPULATION_YEARS
    emissions_years: tuple[int, int] = EMISSIONS_YEARS
    prediction_years: tuple[int, int] = PREDICTION_YEARS
    cutoff_year: int = CUTOFF_YEAR

    required_files: tuple[str, ...] = field(init=False)
    # Served by one chart only; missing ones are reported but do not block readiness
    optional_files: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        files = (
            self.countries_file,
            self.gdp_file,
            self.population_file,
            self.emissions_file,
            self.predictions_file,
            self.sector_predictions_file,
        )
        # dict.fromkeys keeps order and drops the reference/GDP duplicate
        object.__setattr__(self, "required_files", tuple(dict.fromkeys(files)))
        object.__setattr__(self, "optional_files", (self.ghg_predictions_file,))

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"

    @property
    def combined_years(self) -> list[str]:
        """Dense year labels from the first historical year to the last predicted year."""
        first = self.emissions_years[0]
        last = self.prediction_years[1]
        return [str(y) for y in range(first, last + 1)]


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip() == "1"


def load_config() -> DashboardConfig:
    """Build a DashboardConfig from environment variables.

    Environment variables:
        ENV                 — "dev" or "prod" (default: "prod")
        DATASET_DIR         — directory holding the CSV datasets
        ALLOWED_ORIGINS     — comma-separated extra CORS origins
        ENABLE_DOCS         — "1" to force-enable /docs in prod
        REQUIRE_DATA        — "1" to hard-fail startup if datasets are missing
        REDIS_URL           — optional Redis URL for distributed rate limiting
        RATE_LIMIT          — default per-client rate limit (slowapi syntax)
        DATASET_CACHE       — "1" to cache parsed datasets keyed by file mtime
        DATASET_CACHE_SIZE  — maximum number of cached datasets (default 8)
    """
    origins_raw = os.getenv("ALLOWED_ORIGINS", "").strip()
    origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())

    dataset_dir_raw = os.getenv("DATASET_DIR", "").strip()
    dataset_dir = Path(dataset_dir_raw) if dataset_dir_raw else DEFAULT_DATASET_DIR

    try:
        cache_size = int(os.getenv("DATASET_CACHE_SIZE", "8"))
    except ValueError:
        cache_size = 8

    return DashboardConfig(
        dataset_dir=dataset_dir,
        env=os.getenv("ENV", "prod").lower().strip(),
        enable_docs=_flag("ENABLE_DOCS"),
        require_data=_flag("REQUIRE_DATA"),
        allowed_origins=origins,
        redis_url=os.getenv("REDIS_URL", "").strip() or None,
        rate_limit=os.getenv("RATE_LIMIT", "").strip() or "120/minute",
        cache_enabled=_flag("DATASET_CACHE"),
        cache_size=max(1, cache_size),
    )

"""
climate_backend.verify_datasets — CLI for dataset verification.

Usage:
    python -m climate_backend.verify_datasets
    python -m climate_backend.verify_datasets --dataset-dir ./dataset --json
    python -m climate_backend.verify_datasets --quiet

Checks that every configured CSV file exists, can be read, and carries
the columns the aggregation pipeline resolves by name. The gas-level
predictions file is optional: it is only checked when present.

Exit codes:
    0: Valid — all checks passed.
    1: Missing files — a required dataset is absent or unreadable.
    2: Missing columns — a dataset lacks a required column or year range.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from climate_backend.config import DashboardConfig, load_config
from climate_backend.constants import (
    COL_COUNTRY,
    COL_GAS,
    COL_ISO,
    COL_PREDICTED,
    COL_SECTOR,
    COL_YEAR,
)
from climate_backend.csv_reader import DataSet, read_dataset, resolve_columns, resolve_year_columns

EXIT_OK = 0
EXIT_MISSING_FILES = 1
EXIT_MISSING_COLUMNS = 2

EXIT_CODE_LABELS: dict[int, str] = {
    EXIT_OK: "VALID",
    EXIT_MISSING_FILES: "MISSING_FILES",
    EXIT_MISSING_COLUMNS: "MISSING_COLUMNS",
}


@dataclass
class VerificationReport:
    """Structured result of dataset verification.

    Fields:
        valid: True only if every check passes.
        checks: one dict per check, {check, passed, detail}.
        errors: flat list of human-readable error strings.
        exit_code: first failure's exit code, EXIT_OK otherwise.
    """
    valid: bool = True
    checks: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

    def fail(self, check: str, detail: str, code: int) -> None:
        self.valid = False
        self.checks.append({"check": check, "passed": False, "detail": detail})
        self.errors.append(f"[{check}] {detail}")
        if self.exit_code == EXIT_OK:
            self.exit_code = code

    def ok(self, check: str, detail: str = "") -> None:
        self.checks.append({"check": check, "passed": True, "detail": detail})

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "exit_code": self.exit_code,
            "checks": self.checks,
            "errors": self.errors,
        }


def _load(report: VerificationReport, config: DashboardConfig, filename: str) -> DataSet | None:
    path = config.dataset_dir / filename
    if not path.is_file():
        report.fail(filename, "file not found", EXIT_MISSING_FILES)
        return None
    try:
        return read_dataset(path)
    except (OSError, UnicodeDecodeError) as exc:
        report.fail(filename, f"unreadable: {type(exc).__name__}", EXIT_MISSING_FILES)
        return None


def _require_columns(
    report: VerificationReport,
    dataset: DataSet,
    names: list[str],
    years: tuple[int, int] | None = None,
) -> None:
    found = resolve_columns(dataset.header, names)
    missing = [n for n in names if n not in found]
    if missing:
        report.fail(dataset.name, f"missing columns: {', '.join(missing)}", EXIT_MISSING_COLUMNS)
        return
    if years is not None and not resolve_year_columns(dataset.header, *years):
        report.fail(
            dataset.name,
            f"no year columns in {years[0]}-{years[1]}",
            EXIT_MISSING_COLUMNS,
        )
        return
    report.ok(dataset.name, f"{len(dataset)} rows")


def verify_datasets(config: DashboardConfig) -> VerificationReport:
    """Verify every dataset named by ``config``."""
    report = VerificationReport()

    if not config.dataset_dir.is_dir():
        report.fail("dataset_dir", "directory not found", EXIT_MISSING_FILES)
        return report
    report.ok("dataset_dir")

    reference = _load(report, config, config.countries_file)
    if reference is not None:
        if len(reference.header) < 2:
            report.fail("reference_table", "needs name and code columns", EXIT_MISSING_COLUMNS)
        else:
            report.ok("reference_table", f"{reference.name}, {len(reference)} rows")

    for filename in dict.fromkeys((config.gdp_file, config.population_file)):
        dataset = _load(report, config, filename)
        if dataset is not None:
            _require_columns(report, dataset, [], config.gdp_population_years)

    emissions = _load(report, config, config.emissions_file)
    if emissions is not None:
        _require_columns(
            report, emissions, [COL_ISO, COL_COUNTRY, COL_SECTOR, COL_GAS], config.emissions_years,
        )

    predictions = _load(report, config, config.predictions_file)
    if predictions is not None:
        _require_columns(report, predictions, [COL_ISO, COL_COUNTRY, COL_YEAR, COL_PREDICTED])

    sectors = _load(report, config, config.sector_predictions_file)
    if sectors is not None:
        _require_columns(report, sectors, [COL_ISO, COL_COUNTRY, COL_SECTOR, COL_YEAR, COL_PREDICTED])

    if (config.dataset_dir / config.ghg_predictions_file).is_file():
        gases = _load(report, config, config.ghg_predictions_file)
        if gases is not None:
            _require_columns(report, gases, [COL_ISO, COL_COUNTRY, COL_GAS, COL_YEAR, COL_PREDICTED])

    return report


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="verify_datasets",
        description="Verify dashboard CSV datasets: presence and required columns.",
    )
    parser.add_argument(
        "--dataset-dir",
        type=str,
        default=None,
        help="Override dataset directory (default: DATASET_DIR or ./dataset).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output structured JSON report.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all output. Exit code only.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run dataset verification. Returns exit code."""
    args = _build_parser().parse_args(argv)

    config = load_config()
    if args.dataset_dir:
        config = replace(config, dataset_dir=Path(args.dataset_dir))

    report = verify_datasets(config)

    if args.quiet:
        return report.exit_code

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        return report.exit_code

    status = EXIT_CODE_LABELS.get(report.exit_code, "FAILED")
    print(f"Datasets: {config.dataset_dir}")
    print(f"Status:   {status}")

    for check in report.checks:
        marker = "✓" if check["passed"] else "✗"
        detail = f" — {check['detail']}" if check.get("detail") else ""
        print(f"  {marker} {check['check']}{detail}")

    if report.errors:
        print(f"\nErrors ({len(report.errors)}):")
        for err in report.errors:
            print(f"  • {err}")

    print(f"\nExit code: {report.exit_code}")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
climate_backend.api — Climate Dashboard API Server

Serves GDP, population and greenhouse-gas aggregates for the dashboard
charts. Every request re-reads the CSV datasets from DATASET_DIR and
recomputes its aggregate (unless the opt-in DATASET_CACHE is enabled).

Endpoints:
    GET /api/data                              → metric series, or list=countries
    GET /api/data/top                          → top-N countries for a metric
    GET /api/data/scatter                      → GDP vs population points
    GET /api/data/radar                        → normalized GDP/population/emissions
    GET /api/data/compare                      → wide table, one column per country
    GET /api/data/combined-emissions           → historical + predicted emissions
    GET /api/data/compare-emissions            → dense 1990-2030 emissions table
    GET /api/data/sector-emissions             → sector predictions by country name
    GET /api/data/sector-emissions-predictions → raw sector prediction rows
    GET /api/data/ghg-predictions              → raw gas-level prediction rows
    GET /health                                → liveness probe
    GET /ready                                 → dataset presence report

Response contract:
    success → 200 {"data": ...}
    failure → {"error": str, "data": []} with 400 / 404 / 429 / 500

No database. No state shared between requests (except the optional cache
of immutable parsed datasets).

Requires: fastapi, uvicorn, slowapi
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

try:
    from fastapi import Depends, FastAPI, Query, Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse
    from starlette.concurrency import run_in_threadpool
    from starlette.exceptions import HTTPException as StarletteHTTPException
    from starlette.middleware.gzip import GZipMiddleware
except ImportError:
    print(
        "FATAL: FastAPI not installed. Install with:\n"
        "  pip install -e .\n",
        file=sys.stderr,
    )
    sys.exit(1)

try:
    from slowapi import Limiter
    from slowapi.errors import RateLimitExceeded
    from slowapi.util import get_remote_address
except ImportError:
    print(
        "FATAL: slowapi not installed. Install with:\n"
        "  pip install -e .\n",
        file=sys.stderr,
    )
    sys.exit(1)

from climate_backend import metrics
from climate_backend.config import DashboardConfig, load_config
from climate_backend.dataset_cache import DatasetCache, DatasetLoader
from climate_backend.errors import DashboardError, DatasetUnavailableError
from climate_backend.queries import parse_query, require_countries, require_metric
from climate_backend.security import (
    ETagMiddleware,
    RequestIdMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
    check_datasets,
)

API_VERSION = "1.0.0"

CONFIG: DashboardConfig = load_config()


# ---------------------------------------------------------------------------
# Logging configuration: structured JSON to stdout
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if CONFIG.is_dev else logging.INFO,
    format="%(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("dashboard.api")


# ---------------------------------------------------------------------------
# Dependencies, overridable in tests via app.dependency_overrides
# ---------------------------------------------------------------------------

_dataset_cache = DatasetCache(max_entries=CONFIG.cache_size)


def get_config() -> DashboardConfig:
    return CONFIG


def get_loader(config: DashboardConfig = Depends(get_config)) -> DatasetLoader:
    """Per-request loader; attaches the shared cache only when enabled."""
    return DatasetLoader(config, _dataset_cache if config.cache_enabled else None)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[CONFIG.rate_limit],
    storage_uri=CONFIG.redis_url or "memory://",
    strategy="fixed-window",
)

_DATA_LIMIT = CONFIG.rate_limit


# ---------------------------------------------------------------------------
# App construction
# ---------------------------------------------------------------------------

def _build_docs_kwargs() -> dict[str, Any]:
    """Docs are off in prod unless ENABLE_DOCS=1."""
    if not CONFIG.is_dev and not CONFIG.enable_docs:
        return {"docs_url": None, "redoc_url": None, "openapi_url": None}
    return {"docs_url": "/docs", "redoc_url": "/redoc"}


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: report dataset presence. With REQUIRE_DATA=1, exit if any are missing."""
    logger.info(json.dumps({
        "event": "startup",
        "env": CONFIG.env,
        "require_data": CONFIG.require_data,
        "cors_origins": len(_CORS_ORIGINS),
        "docs_enabled": CONFIG.enable_docs or CONFIG.is_dev,
        "rate_limit_backend": "redis" if CONFIG.redis_url else "memory",
        "dataset_cache": CONFIG.cache_enabled,
    }))

    report = check_datasets(CONFIG.dataset_dir, CONFIG.required_files)
    if not report["ready"]:
        if CONFIG.require_data:
            logger.error(json.dumps({
                "event": "startup_abort",
                "reason": "REQUIRE_DATA=1 but datasets are missing",
                "missing": report["missing"],
            }))
            sys.exit(1)
        logger.warning(json.dumps({
            "event": "startup_degraded",
            "reason": "Dataset directory not found or incomplete",
            "missing": report["missing"],
        }))

    yield

    logger.info(json.dumps({"event": "shutdown"}))


app = FastAPI(
    title="Climate Dashboard API",
    description="GDP, population and greenhouse-gas emissions aggregates",
    version=API_VERSION,
    lifespan=_lifespan,
    **_build_docs_kwargs(),
)

app.state.limiter = limiter


# ---------------------------------------------------------------------------
# CORS: the dashboard frontend only issues GET requests
# ---------------------------------------------------------------------------

DEV_ORIGINS: list[str] = [
    "http://localhost:3000",
]

_CORS_ORIGINS: list[str] = DEV_ORIGINS + [o for o in CONFIG.allowed_origins if o not in DEV_ORIGINS]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "ETag"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Middleware (last registered = outermost)
# Execution order: GZip → RequestId → RequestSizeLimit → ETag → SecurityHeaders → CORS
# ---------------------------------------------------------------------------

app.add_middleware(SecurityHeadersMiddleware, enable_hsts=(CONFIG.env == "prod"))
app.add_middleware(ETagMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


# ---------------------------------------------------------------------------
# Error handlers: every failure becomes {"error": str, "data": []}
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "data": []},
        headers=headers,
    )


@app.exception_handler(DashboardError)
async def _dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    if isinstance(exc, DatasetUnavailableError):
        # Cause goes to the operator log only
        logger.error(json.dumps({
            "event": "dataset_unavailable",
            "dataset": exc.filename,
            "detail": exc.detail,
            "request_id": request_id,
            "path": request.url.path,
        }))
    else:
        logger.info(json.dumps({
            "event": "request_rejected",
            "status": exc.status_code,
            "error": exc.message,
            "request_id": request_id,
        }))
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", []) if p != "query")
        message = f"Invalid parameter '{field}': {first.get('msg', 'validation failed')}"
    else:
        message = "Invalid query parameters."
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _error(429, "Rate limit exceeded. Try again later.", {"Retry-After": "60"})


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Never leak internals: generic message out, exception type + message to the log."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(json.dumps({
        "event": "unhandled_exception",
        "exception_type": type(exc).__name__,
        "error": str(exc),
        "request_id": request_id,
        "path": request.url.path,
    }))
    return _error(500, "Failed to load data.")


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

@app.get("/health", include_in_schema=False)
async def health(request: Request) -> JSONResponse:
    """Liveness probe. Always 200, no I/O."""
    return JSONResponse(status_code=200, content={"status": "ok", "version": API_VERSION})


@app.get("/ready")
@limiter.limit("60/minute")
async def ready(request: Request, config: DashboardConfig = Depends(get_config)) -> JSONResponse:
    """Readiness probe. Always 200; readiness is the 'ready' field.

    Reports missing dataset filenames (never paths) and cache statistics.
    Optional datasets are listed separately and do not affect readiness.
    """
    try:
        report = check_datasets(config.dataset_dir, config.required_files)
        optional = check_datasets(config.dataset_dir, config.optional_files)
    except OSError:
        report = {"ready": False, "missing": list(config.required_files), "files_checked": 0}
        optional = {"missing": list(config.optional_files)}

    body = {
        "ready": report["ready"],
        "status": "healthy" if report["ready"] else "degraded",
        "version": API_VERSION,
        "datasets_checked": report["files_checked"],
        "missing_datasets": report["missing"],
        "missing_optional_datasets": optional["missing"],
        "dataset_cache": _dataset_cache.stats if config.cache_enabled else None,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return JSONResponse(status_code=200, content=body)


# ---------------------------------------------------------------------------
# Data endpoints
#
# Each handler validates its parameters (→ 400 before any I/O), then runs
# the blocking read + aggregation in the threadpool.
# ---------------------------------------------------------------------------

def _metric_payload(loader: DatasetLoader, metric: str, country: str | None) -> dict[str, Any]:
    if country:
        code = metrics.resolve_country_codes(loader, [country])[0]
        return {"type": metric, "country": code, "data": metrics.country_series(loader, metric, code)}
    return {"type": metric, "country": None, "data": metrics.global_series(loader, metric)}


def _countries_payload(loader: DatasetLoader) -> dict[str, Any]:
    return {"data": [c.to_dict() for c in metrics.get_countries(loader)]}


@app.get("/api/data")
@limiter.limit(_DATA_LIMIT)
async def get_data(
    request: Request,
    metric: str | None = Query(None, alias="type"),
    country: str | None = None,
    listing: str | None = Query(None, alias="list"),
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    """Global or single-country series for one metric; or the country list."""
    query = parse_query(type=metric or "gdp", country=country, list=listing)
    if query.listing == "countries":
        return await run_in_threadpool(_countries_payload, loader)
    return await run_in_threadpool(_metric_payload, loader, require_metric(query), query.country)


@app.get("/api/data/top")
@limiter.limit(_DATA_LIMIT)
async def get_top(
    request: Request,
    metric: str | None = Query(None, alias="type"),
    limit: str | None = None,
    year: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    """Top countries by value at ``year`` (default: each country's latest)."""
    query = parse_query(type=metric, limit=limit, year=year)
    data = await run_in_threadpool(
        metrics.top_countries, loader, require_metric(query), query.limit, query.year,
    )
    return {"data": data}


@app.get("/api/data/scatter")
@limiter.limit(_DATA_LIMIT)
async def get_scatter(
    request: Request,
    year: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    query = parse_query(year=year)
    return {"data": await run_in_threadpool(metrics.scatter_data, loader, query.year)}


def _radar_payload(loader: DatasetLoader, tokens: list[str]) -> list[dict[str, Any]]:
    codes = metrics.resolve_country_codes(loader, tokens)
    return metrics.radar_data(loader, codes)


@app.get("/api/data/radar")
@limiter.limit(_DATA_LIMIT)
async def get_radar(
    request: Request,
    countries: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    """GDP, population and emissions normalized to the selection's maximum (0-100)."""
    tokens = require_countries(parse_query(countries=countries))
    return {"data": await run_in_threadpool(_radar_payload, loader, tokens)}


def _compare_payload(loader: DatasetLoader, metric: str, tokens: list[str]) -> list[dict[str, Any]]:
    codes = metrics.resolve_country_codes(loader, tokens)
    return metrics.compare_data(loader, metric, codes)


@app.get("/api/data/compare")
@limiter.limit(_DATA_LIMIT)
async def get_compare(
    request: Request,
    metric: str | None = Query(None, alias="type"),
    countries: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    query = parse_query(type=metric, countries=countries)
    metric_name = require_metric(query)
    tokens = require_countries(query)
    return {"data": await run_in_threadpool(_compare_payload, loader, metric_name, tokens)}


@app.get("/api/data/combined-emissions")
@limiter.limit(_DATA_LIMIT)
async def get_combined_emissions(
    request: Request,
    country: str | None = None,
    year: str | None = None,
    limit: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    """Historical (to 2020) + predicted (2021-2030) emissions.

    ``country`` → one series; ``year`` → ranking; neither → every country.
    """
    query = parse_query(country=country, year=year)
    top_n = parse_query(limit=limit).limit if limit else None
    data = await run_in_threadpool(
        metrics.combined_emissions, loader, query.country, query.year, top_n,
    )
    return {"data": data}


def _compare_emissions_payload(loader: DatasetLoader, tokens: list[str]) -> list[dict[str, Any]]:
    codes = metrics.resolve_country_codes(loader, tokens)
    return metrics.compare_emissions(loader, codes)


@app.get("/api/data/compare-emissions")
@limiter.limit(_DATA_LIMIT)
async def get_compare_emissions(
    request: Request,
    countries: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    tokens = require_countries(parse_query(countries=countries))
    return {"data": await run_in_threadpool(_compare_emissions_payload, loader, tokens)}


@app.get("/api/data/sector-emissions")
@limiter.limit(_DATA_LIMIT)
async def get_sector_emissions(
    request: Request,
    countries: str | None = None,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    """Sector predictions, filtered by country display names when given."""
    query = parse_query(countries=countries)
    return {"data": await run_in_threadpool(metrics.sector_emissions, loader, query.countries)}


@app.get("/api/data/sector-emissions-predictions")
@limiter.limit(_DATA_LIMIT)
async def get_sector_emissions_predictions(
    request: Request,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    return {"data": await run_in_threadpool(metrics.sector_emissions_predictions, loader)}


@app.get("/api/data/ghg-predictions")
@limiter.limit(_DATA_LIMIT)
async def get_ghg_predictions(
    request: Request,
    loader: DatasetLoader = Depends(get_loader),
) -> dict:
    return {"data": await run_in_threadpool(metrics.ghg_predictions, loader)}


# ---------------------------------------------------------------------------
# Entry point (development only)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    try:
        import uvicorn
    except ImportError:
        print("Install uvicorn: pip install uvicorn", file=sys.stderr)
        sys.exit(1)

    os.environ.setdefault("ENV", "dev")
    print(f"Climate Dashboard API {API_VERSION} — serving datasets from {CONFIG.dataset_dir}")
    uvicorn.run(app, host="0.0.0.0", port=8000)  # noqa: S104

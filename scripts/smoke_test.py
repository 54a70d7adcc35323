#!/usr/bin/env python3
"""
smoke_test.py — Boot the dashboard API locally and verify core endpoints.

Starts uvicorn in a subprocess, waits for it to be ready, then
requests the key endpoints and checks status codes / response shapes.

Usage:
    python scripts/smoke_test.py
    DATASET_DIR=/path/to/csvs python scripts/smoke_test.py

Requirements: httpx (pip install -e ".[test]")
"""

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

try:
    import httpx
except ImportError:
    print("FATAL: httpx not installed. pip install httpx", file=sys.stderr)
    sys.exit(1)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATASET_DIR = Path(os.environ.get("DATASET_DIR") or PROJECT_ROOT / "dataset")
BASE_URL = "http://127.0.0.1:8099"
TIMEOUT = 10


def wait_for_server(url: str, max_wait: int = 10) -> bool:
    """Poll server until it responds or timeout."""
    deadline = time.monotonic() + max_wait
    while time.monotonic() < deadline:
        try:
            r = httpx.get(f"{url}/health", timeout=2)
            if r.status_code == 200:
                return True
        except httpx.ConnectError:
            pass
        time.sleep(0.3)
    return False


def check(path: str, expected_status: int, params: dict | None = None) -> tuple[bool, httpx.Response]:
    r = httpx.get(f"{BASE_URL}{path}", params=params, timeout=TIMEOUT)
    ok = r.status_code == expected_status
    query = f"?{r.request.url.query.decode()}" if params else ""
    print(f"  GET {path}{query} → {r.status_code}  {'PASS' if ok else 'FAIL'}")
    return ok, r


def main() -> None:
    print("=" * 64)
    print("Climate Dashboard API — Smoke Test")
    print("=" * 64)
    print()

    data_present = DATASET_DIR.is_dir() and any(DATASET_DIR.glob("*.csv"))
    print(f"  dataset dir: {DATASET_DIR}")
    print(f"  datasets present: {data_present}")
    print()

    # Start server
    env = os.environ.copy()
    env["ENV"] = "dev"
    env["DATASET_DIR"] = str(DATASET_DIR)
    env.pop("REQUIRE_DATA", None)

    proc = subprocess.Popen(
        [
            sys.executable, "-m", "uvicorn",
            "climate_backend.api:app",
            "--host", "127.0.0.1",
            "--port", "8099",
            "--log-level", "warning",
        ],
        cwd=str(PROJECT_ROOT),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    try:
        if not wait_for_server(BASE_URL):
            print("FATAL: Server did not start within 10s", file=sys.stderr)
            proc.terminate()
            proc.wait(5)
            sys.exit(1)

        print("  Server is up. Running checks...\n")
        failures = 0

        ok, r = check("/health", 200)
        failures += not ok

        ok, r = check("/ready", 200)
        failures += not ok
        if ok and r.json().get("missing_datasets"):
            print(f"    missing datasets: {r.json()['missing_datasets']}")

        # Data endpoints: 200 with data, generic 500 without
        data_status = 200 if data_present else 500
        for path, params in (
            ("/api/data", {"list": "countries"}),
            ("/api/data", {"type": "gdp"}),
            ("/api/data/top", {"type": "population", "limit": "5"}),
            ("/api/data/scatter", None),
            ("/api/data/radar", {"countries": "USA,CHN"}),
            ("/api/data/compare", {"type": "emissions", "countries": "USA,CHN"}),
            ("/api/data/combined-emissions", {"year": "2025", "limit": "5"}),
            ("/api/data/compare-emissions", {"countries": "USA,CHN"}),
            ("/api/data/sector-emissions", {"countries": "China"}),
            ("/api/data/sector-emissions-predictions", None),
        ):
            ok, r = check(path, data_status, params)
            failures += not ok
            if not ok:
                continue
            body = r.json()
            if "data" not in body:
                print("    MISSING field: data")
                failures += 1
            if not data_present and body.get("error") != "Failed to load data.":
                print(f"    FAIL: unexpected error message {body.get('error')!r}")
                failures += 1

        # Security headers
        r = httpx.get(f"{BASE_URL}/health", timeout=TIMEOUT)
        for header in ("x-content-type-options", "x-frame-options", "referrer-policy"):
            if header not in r.headers:
                print(f"    MISSING security header: {header}")
                failures += 1
            else:
                print(f"    {header}: {r.headers[header]}")

        # X-Request-ID
        if "x-request-id" in r.headers:
            print(f"    x-request-id: {r.headers['x-request-id']}  PASS")
        else:
            print("    MISSING: x-request-id  FAIL")
            failures += 1

        # Parameter validation → 400, unknown country → 404
        ok, _ = check("/api/data", 400, {"type": "co2"})
        failures += not ok
        ok, _ = check("/api/data/radar", 400)
        failures += not ok
        if data_present:
            ok, _ = check("/api/data", 404, {"country": "ZZZ"})
            failures += not ok

        # Docs (dev mode, expected 200)
        r = httpx.get(f"{BASE_URL}/docs", timeout=TIMEOUT, follow_redirects=True)
        print(f"  GET /docs → {r.status_code}  (dev mode, expected 200)")

        print()
        if failures > 0:
            print(f"RESULT: {failures} failure(s)")
            sys.exit(1)
        else:
            print("RESULT: ALL PASSED")

    finally:
        proc.send_signal(signal.SIGTERM)
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()


if __name__ == "__main__":
    main()

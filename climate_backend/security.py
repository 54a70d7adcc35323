"""
climate_backend.security — Middleware and startup checks for the dashboard API.

Provides:
    - RequestIdMiddleware: X-Request-ID on every request/response + access log
    - SecurityHeadersMiddleware: static hardening headers and Cache-Control
    - RequestSizeLimitMiddleware: rejects oversized bodies (413) / headers (431)
    - ETagMiddleware: weak ETag on 200 GET responses, 304 on If-None-Match
    - check_datasets: presence report for the configured CSV files

Every response produced here (rather than by a route) uses the API error
shape {"error": str, "data": []}.
"""

from __future__ import annotations

import hashlib
import ipaddress
import json
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("dashboard.security")

# Probes are never cached, tagged, or stored by intermediaries.
_PROBE_PATHS = frozenset(("/health", "/ready"))

# Caller-supplied request IDs are echoed into logs and headers; anything
# else is replaced by a generated one.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

_STATIC_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-site",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

_HSTS = "max-age=31536000; includeSubDomains"


# ---------------------------------------------------------------------------
# Request-ID middleware
# ---------------------------------------------------------------------------

def _request_id(request: Request) -> str:
    supplied = request.headers.get("x-request-id", "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:16]


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, echo it, and write one access-log line."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers["X-Request-ID"] = request_id
        _log_request(request, response.status_code, elapsed_ms, request_id)
        return response


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------

def cache_control_for(path: str, status_code: int, max_age: int) -> str:
    """Cache-Control value for a response.

    Probes are never stored. Successful data responses may be cached
    briefly, since datasets only change on deploy. Errors and everything
    else must be revalidated.
    """
    if path in _PROBE_PATHS:
        return "no-store"
    if status_code == 200 and path.startswith("/api/data"):
        return f"public, max-age={max_age}"
    return "no-cache"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp hardening headers and the Cache-Control policy on every response.

    HSTS is sent only when ``enable_hsts`` is set (prod, behind TLS).
    """

    def __init__(self, app: Any, *, enable_hsts: bool = False, max_age: int = 60) -> None:
        super().__init__(app)
        self.enable_hsts = enable_hsts
        self.max_age = max_age

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers.update(_STATIC_HEADERS)
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = _HSTS
        response.headers["Cache-Control"] = cache_control_for(
            request.url.path, response.status_code, self.max_age,
        )
        return response


# ---------------------------------------------------------------------------
# Request size limit middleware
# ---------------------------------------------------------------------------

MAX_BODY_BYTES = 1024       # every route is GET; bodies are never read
MAX_HEADER_BYTES = 16_384


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def error_response(message: str, status_code: int) -> Response:
    """A JSON error in the API's {"error", "data": []} shape."""
    return Response(
        content=json.dumps({"error": message, "data": []}),
        status_code=status_code,
        media_type="application/json",
    )


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests with oversized headers (431) or declared bodies (413)."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        if sum(len(name) + len(value) for name, value in request.headers.raw) > MAX_HEADER_BYTES:
            return error_response("Request headers too large", 431)

        length = _declared_length(request)
        if length is not None and length > MAX_BODY_BYTES:
            return error_response("Request body too large", 413)

        return await call_next(request)


# ---------------------------------------------------------------------------
# ETag / conditional-GET middleware
# ---------------------------------------------------------------------------

def weak_etag(body: bytes) -> str:
    # MD5 only fingerprints the payload; it is not a security boundary
    return 'W/"%s"' % hashlib.md5(body, usedforsecurity=False).hexdigest()  # noqa: S324


def etag_matches(if_none_match: str, etag: str) -> bool:
    """True if an If-None-Match header value selects ``etag``."""
    candidates = {tag.strip() for tag in if_none_match.split(",") if tag.strip()}
    return "*" in candidates or etag in candidates


# Describe the omitted body; everything else (Cache-Control, CORS, hardening)
# carries over to a 304.
_BODY_HEADERS = frozenset(("content-length", "content-type", "content-encoding"))


def not_modified(response: Response, etag: str) -> Response:
    """304 for ``response`` keeping its non-body headers."""
    headers = {k: v for k, v in response.headers.items() if k.lower() not in _BODY_HEADERS}
    headers["ETag"] = etag
    return Response(status_code=304, headers=headers)


async def _read_body(response: Response) -> bytes:
    chunks = [
        chunk if isinstance(chunk, bytes) else chunk.encode()
        async for chunk in response.body_iterator  # type: ignore[attr-defined]
    ]
    return b"".join(chunks)


class ETagMiddleware(BaseHTTPMiddleware):
    """Tag successful GET responses and answer matching revalidations with 304.

    The datasets are still re-read on every request; the tag only saves
    the transfer when the aggregate has not changed.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        if (
            request.method != "GET"
            or request.url.path in _PROBE_PATHS
            or response.status_code != 200
        ):
            return response

        body = await _read_body(response)
        headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}
        if not body:
            return Response(content=body, status_code=200, headers=headers, media_type=response.media_type)

        etag = weak_etag(body)
        if etag_matches(request.headers.get("if-none-match", ""), etag):
            return not_modified(response, etag)

        headers["ETag"] = etag
        return Response(content=body, status_code=200, headers=headers, media_type=response.media_type)


# ---------------------------------------------------------------------------
# Structured request logging
# ---------------------------------------------------------------------------

def _mask_ip(ip: str | None) -> str:
    """Anonymize a client address: IPv4 keeps a /16, IPv6 a /64."""
    if not ip:
        return "unknown"
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return "unknown"
    if addr.version == 4:
        first, second, _, _ = str(addr).split(".")
        return f"{first}.{second}.*.*"
    network = ipaddress.ip_network(f"{addr}/64", strict=False)
    return f"{network.network_address}/64"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _log_request(
    request: Request,
    status_code: int,
    latency_ms: float,
    request_id: str,
) -> None:
    """One JSON line per request. 5xx → ERROR, 4xx → WARNING, else INFO."""
    logger.log(_level_for(status_code), json.dumps({
        "event": "http_request",
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query)[:200],
        "status": status_code,
        "latency_ms": latency_ms,
        "client_ip": _mask_ip(request.client.host if request.client else None),
        "request_id": request_id,
    }))


# ---------------------------------------------------------------------------
# Dataset presence check
# ---------------------------------------------------------------------------

def check_datasets(dataset_dir: Path, filenames: tuple[str, ...] | list[str]) -> dict[str, Any]:
    """
    Report which configured dataset files are present.

    Returns:
        {
            "directory_present": bool,
            "ready": bool,           # True if every file is present
            "missing": [str, ...],   # filenames only, never full paths
            "files_checked": int,
        }
    """
    if not dataset_dir.is_dir():
        return {
            "directory_present": False,
            "ready": False,
            "missing": list(filenames),
            "files_checked": 0,
        }

    missing = [name for name in filenames if not (dataset_dir / name).is_file()]
    return {
        "directory_present": True,
        "ready": not missing,
        "missing": missing,
        "files_checked": len(filenames),
    }

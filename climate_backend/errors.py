"""
climate_backend.errors — Error taxonomy for the dashboard API.

Every failure that reaches the request boundary is one of these (or an
unexpected exception, which the API maps to a generic 500). Each carries
the HTTP status it is surfaced with and a caller-safe message.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for errors converted into the structured error response."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidQueryError(DashboardError):
    """Missing or malformed query parameter. Raised before any file I/O."""

    status_code = 400


class UnknownCountryError(DashboardError):
    """Requested country code or name is not in the loaded data."""

    status_code = 404

    def __init__(self, countries: list[str]) -> None:
        self.countries = list(countries)
        super().__init__(f"Country not found: {', '.join(self.countries)}")


class DatasetUnavailableError(DashboardError):
    """A dataset file is missing or unreadable.

    The message shown to callers is generic; ``filename`` and ``detail``
    are for the server log only.
    """

    status_code = 500

    def __init__(self, filename: str, detail: str) -> None:
        self.filename = filename
        self.detail = detail
        super().__init__("Failed to load data.")

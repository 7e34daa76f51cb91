"""Exception hierarchy for outlier.

Configuration problems are fatal at startup; query problems are fatal to a
poll cycle unless retries are configured. Rule evaluation never raises.
"""
from __future__ import annotations


class OutlierError(Exception):
    """Base class for all outlier errors."""


class ConfigurationError(OutlierError):
    """Raised when settings are invalid or inconsistent."""


class QueryError(OutlierError):
    """Raised when the metrics backend cannot be queried or answers with an error."""

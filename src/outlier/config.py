"""Configuration via pydantic-settings — 12-factor app style.

Every option can be set from the environment with the ``OUTLIER_`` prefix
(``OUTLIER_SAMPLE_SIZE=20``) or from a ``.env`` file. The backend URL also
honours the conventional ``PROMETHEUS_SERVER`` variable.

Durations use the Prometheus notation: ``30s``, ``5m``, ``1h``, ``2d``.
"""
from __future__ import annotations

import os
import re
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError
from .nelson.rules import resolve_rules

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_UNIT_SECONDS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def parse_duration(raw: str | float | int) -> float:
    """Convert ``"30s"``, ``"5m"``, ``"1h"``... (or a plain number) to seconds."""
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _DURATION_RE.match(raw)
    if match is None:
        raise ValueError(f"invalid duration {raw!r} (expected e.g. 30s, 5m, 1h, 2d)")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit or "s"]


def format_duration(seconds: float) -> str:
    """Render seconds in the largest whole Prometheus unit (``90`` -> ``"90s"``)."""
    if seconds <= 0:
        return "0s"
    if seconds != int(seconds):
        return f"{int(round(seconds * 1000))}ms"
    whole = int(seconds)
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if whole % size == 0:
            return f"{whole // size}{unit}"
    return f"{whole}s"


def _default_server() -> str:
    return os.environ.get("PROMETHEUS_SERVER", "http://localhost:9090")


class Settings(BaseSettings):
    """Outlier configuration — loaded from env vars / .env file."""

    server: str = Field(
        default_factory=_default_server,
        min_length=1,
        description="Prometheus server URL (PROMETHEUS_SERVER is honoured)",
    )
    sample_size: int = Field(
        default=50, gt=0, description="Data points used to calculate mean and standard deviation"
    )
    offset: float = Field(default=0.0, ge=0.0, description="Lookback offset from now (Xm, Xh, Xd)")
    interval: float = Field(default=30.0, gt=0.0, description="Query interval; ~2x the scrape interval")
    endpoint: str = Field(default=":8080", description="Bind address of the exposition endpoint")
    metrics_path: str = Field(default="/metrics", description="HTTP path serving violation counters")
    expressions: list[str] = Field(
        default_factory=lambda: ["response_time"],
        min_length=1,
        description="Time-series expressions to poll",
    )
    rules: str = Field(default="common", description="Rule preset (all|common) or comma-separated names")
    query_timeout: float = Field(default=10.0, gt=0.0, description="HTTP timeout per query in seconds")
    query_retries: int = Field(default=0, ge=0, description="Retries per poll cycle before failing")
    retry_backoff: float = Field(default=1.0, ge=0.0, description="Base backoff between retries in seconds")
    log_level: str = Field(default="INFO", description="Logging level")

    class Config:
        env_prefix = "OUTLIER_"
        env_file = ".env"

    @field_validator("offset", "interval", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        parse_endpoint(value)
        return value

    @field_validator("metrics_path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("metrics path must start with '/'")
        return value

    @field_validator("rules")
    @classmethod
    def _check_rules(cls, value: str) -> str:
        try:
            resolve_rules(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r} (expected one of {', '.join(_LOG_LEVELS)})")
        return level


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split ``"host:port"`` (host optional, as in ``":8080"``) into its parts."""
    host, sep, port = endpoint.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid endpoint {endpoint!r} (expected [host]:port)")
    number = int(port)
    if not 0 <= number < 65536:
        raise ValueError(f"port out of range in endpoint {endpoint!r}")
    return host, number


def load_settings(**overrides: Any) -> Settings:
    """Build Settings, applying non-None overrides (typically CLI options).

    Raises ConfigurationError listing every violated constraint.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(problems) from exc

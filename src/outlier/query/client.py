"""Minimal Prometheus HTTP API client.

Only instant queries are needed: a range selector such as
``response_time [30s]`` evaluated at a point in time returns a *matrix* of
every sample each series produced inside the window.

API reference: https://prometheus.io/docs/prometheus/latest/querying/api/
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from ..config import format_duration
from ..exceptions import QueryError
from ..nelson.series import Sample

logger = logging.getLogger(__name__)

MATRIX = "matrix"
VECTOR = "vector"
SCALAR = "scalar"
STRING = "string"


def build_query(expression: str, interval: float, offset: float = 0.0) -> str:
    """Return ``"<expression> [<interval>]"``, plus ``" offset <duration>"`` when offset > 0."""
    query = f"{expression} [{format_duration(interval)}]"
    if offset > 0:
        query += f" offset {format_duration(offset)}"
    return query


@dataclass(frozen=True)
class SeriesData:
    """One series of a query result: its labels and (unordered) samples."""

    labels: dict[str, str]
    samples: list[Sample] = field(default_factory=list)


@dataclass(frozen=True)
class QueryResult:
    result_type: str
    series: list[SeriesData] = field(default_factory=list)

    @property
    def is_matrix(self) -> bool:
        return self.result_type == MATRIX


def _sample(pair: list[Any]) -> Sample:
    timestamp, value = pair
    return Sample(timestamp=float(timestamp), value=float(value))


def parse_result(data: dict[str, Any]) -> QueryResult:
    """Convert the ``data`` member of an API response into a QueryResult."""
    result_type = data.get("resultType", "")
    result = data.get("result")
    try:
        if result_type == MATRIX:
            series = [
                SeriesData(labels=dict(item.get("metric", {})), samples=[_sample(p) for p in item.get("values", [])])
                for item in result or []
            ]
        elif result_type == VECTOR:
            series = [
                SeriesData(labels=dict(item.get("metric", {})), samples=[_sample(item["value"])])
                for item in result or []
            ]
        else:
            # scalar / string carry a single bare [time, value] pair
            series = []
    except (KeyError, TypeError, ValueError) as exc:
        raise QueryError(f"malformed {result_type or 'unknown'} result: {exc}") from exc
    return QueryResult(result_type=result_type, series=series)


class PrometheusClient:
    """Issue instant queries against a Prometheus-compatible server.

    Args:
        base_url: Server root, e.g. ``http://localhost:9090``.
        timeout:  Per-request timeout in seconds.
        session:  Optional pre-configured requests.Session.

    Every failure — transport error, non-2xx status, undecodable body or an
    ``"error"`` status from the API — is raised as QueryError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Prometheus server URL must not be empty")
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def query(self, expression: str, at: float) -> QueryResult:
        """Evaluate expression at unix time ``at``."""
        url = f"{self.base_url}/api/v1/query"
        params = {"query": expression, "time": f"{at:.3f}"}
        try:
            resp = self._session.get(url, params=params, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            raise QueryError(f"query {expression!r} failed: {exc}") from exc
        except ValueError as exc:
            raise QueryError(f"query {expression!r} returned invalid JSON: {exc}") from exc

        if payload.get("status") != "success":
            raise QueryError(
                f"query {expression!r} failed: {payload.get('errorType', 'error')}: "
                f"{payload.get('error', 'unknown error')}"
            )
        for warning in payload.get("warnings", []):
            logger.warning("Query %r: %s", expression, warning)
        return parse_result(payload.get("data") or {})

    def close(self) -> None:
        self._session.close()

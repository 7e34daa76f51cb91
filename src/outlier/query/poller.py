"""Poll loop: query the backend, dispatch samples to per-series evaluators.

One SeriesPoller runs per time-series *expression*. Each cycle it evaluates
``"<expression> [<interval>]"``, splits the matrix result by series, sorts
each series' samples oldest first, feeds them to that series' evaluator and
forwards every violation to the sink.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Iterable, Protocol

from ..exceptions import QueryError
from ..nelson.registry import SeriesRegistry, series_key
from ..nelson.rules import COMMON_RULES, Rule
from ..nelson.series import SeriesEvaluator, Violation
from .client import QueryResult, build_query

logger = logging.getLogger(__name__)


class QueryClient(Protocol):
    def query(self, expression: str, at: float) -> QueryResult: ...


class Sink(Protocol):
    def add(self, rule: str, series_key: str, amount: float = 1.0) -> None: ...


class SeriesPoller:
    """Periodically evaluate one expression and feed the Nelson engine.

    Args:
        expression:    Series selector, e.g. ``response_time``.
        client:        Anything with ``query(expression, at) -> QueryResult``.
        registry:      Shared SeriesRegistry.
        sink:          Receives ``add(rule, series_key, 1)`` per violation.
        sample_size:   Baseline size for newly discovered series.
        rules:         Rules for newly discovered series.
        interval:      Seconds between cycles, also the query range.
        offset:        Lookback offset in seconds (added to the query).
        retries:       Extra attempts per cycle when a query fails.
        retry_backoff: Base delay for exponential backoff between attempts.
    """

    def __init__(
        self,
        expression: str,
        client: QueryClient,
        registry: SeriesRegistry,
        sink: Sink,
        sample_size: int = 50,
        rules: Iterable[Rule] = COMMON_RULES,
        interval: float = 30.0,
        offset: float = 0.0,
        retries: int = 0,
        retry_backoff: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.expression = expression
        self.query = build_query(expression, interval, offset)
        self._client = client
        self._registry = registry
        self._sink = sink
        self._sample_size = sample_size
        self._rules = tuple(rules)
        self._interval = interval
        self._retries = retries
        self._retry_backoff = retry_backoff
        self._clock = clock

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def poll_once(self, at: float) -> list[Violation]:
        """Run one query at unix time ``at`` and process its result."""
        logger.debug("Executing query %s @%.3f", self.query, at)
        result = self._client.query(self.query, at)

        if not result.is_matrix:
            logger.warning(
                "No handling for %r result of %r; dropped %d series",
                result.result_type, self.query, len(result.series),
            )
            return []

        violations: list[Violation] = []
        for data in result.series:
            key = series_key(data.labels)
            evaluator = self._registry.get_or_create(
                key,
                lambda: SeriesEvaluator(data.labels, self._sample_size, self._rules, key=key),
            )
            found = evaluator.add_samples(data.samples)
            for violation in found:
                logger.info("Violation %s on %s (value=%s)", violation.rule, key, violation.sample.value)
                self._sink.add(violation.rule, key, 1)
            violations.extend(found)
            logger.debug("Series state: %s", evaluator.summary())
        return violations

    def poll_with_retries(self, at: float, stop: threading.Event | None = None) -> list[Violation]:
        """poll_once, retrying QueryError with exponential backoff.

        The final failure propagates to the caller.
        """
        attempt = 1
        while True:
            try:
                return self.poll_once(at)
            except QueryError as exc:
                if attempt > self._retries:
                    raise
                delay = min(self._interval, self._retry_backoff * (2 ** (attempt - 1)))
                logger.warning(
                    "Query %r failed (attempt %d/%d), retrying in %.1fs: %s",
                    self.query, attempt, self._retries + 1, delay, exc,
                )
                if stop is not None and stop.wait(delay):
                    raise
                if stop is None:
                    time.sleep(delay)
                attempt += 1

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self, stop: threading.Event) -> None:
        """Poll until stop is set. Query failures beyond the retries propagate."""
        query_time = self._clock()
        logger.info("Polling %r every %.0fs", self.query, self._interval)
        while not stop.is_set():
            self.poll_with_retries(query_time, stop)
            if stop.wait(self._interval):
                break
            query_time += self._interval


def run_pollers(pollers: list[SeriesPoller], stop: threading.Event) -> None:
    """Run each poller on its own thread until stop is set or one fails.

    The first failure stops the others and is re-raised.
    """
    if not pollers:
        return
    with ThreadPoolExecutor(max_workers=len(pollers), thread_name_prefix="poller") as pool:
        futures = [pool.submit(p.run, stop) for p in pollers]
        try:
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        finally:
            stop.set()
        for future in done:
            exc = future.exception()
            if exc is not None:
                raise exc

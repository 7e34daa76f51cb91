"""Synthetic ``response_time`` gauge for trying outlier end to end.

Point Prometheus at the exposition endpoint, run ``outlier run --demo`` and
the default ``response_time`` expression has something to chew on: two
series that start out identical and then diverge, one calming down
("stable") and one getting noisier ("wild").
"""
from __future__ import annotations

import logging
import random
import threading

from prometheus_client import CollectorRegistry, Gauge

logger = logging.getLogger(__name__)

WARMUP_TICKS = 50


class ResponseTimeGenerator:
    """Publish random ``response_time{variance=...}`` values on a timer."""

    def __init__(
        self,
        registry: CollectorRegistry,
        period: float = 5.0,
        rng: random.Random | None = None,
    ) -> None:
        self.gauge = Gauge(
            "response_time",
            "Response times (for testing only).",
            ["variance"],
            registry=registry,
        )
        self._period = period
        self._rng = rng or random.Random()
        self._ticks = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> tuple[int, int]:
        """Publish one (stable, wild) pair and return it."""
        if self._ticks <= WARMUP_TICKS:
            stable = self._rng.randrange(100)
            wild = self._rng.randrange(100)
        else:
            stable = self._rng.randrange(50) + 25
            wild = self._rng.randrange(125)
        self.gauge.labels(variance="stable").set(stable)
        self.gauge.labels(variance="wild").set(wild)
        self._ticks += 1
        return stable, wild

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self._period)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, name="demo-gauge", daemon=True)
        self._thread.start()
        logger.info("Demo gauge response_time updating every %.0fs", self._period)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

"""Series registry — one SeriesEvaluator per discovered time series.

Series are keyed by the rendered label set and tracked for the lifetime of
the process; there is no eviction.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, Mapping

from .series import SeriesEvaluator

logger = logging.getLogger(__name__)

Factory = Callable[[], SeriesEvaluator]


def series_key(labels: Mapping[str, str]) -> str:
    """Render a label set as ``name{a="1", b="2"}`` with labels sorted.

    The ``__name__`` label becomes the prefix; a series with only a name
    renders as the bare name.
    """
    name = labels.get("__name__", "")
    rest = sorted((k, v) for k, v in labels.items() if k != "__name__")
    if name and not rest:
        return name
    body = ", ".join(f'{k}="{_escape(v)}"' for k, v in rest)
    return f"{name}{{{body}}}"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class SeriesRegistry:
    """Thread-safe map of series key to SeriesEvaluator.

    Lookups are lock-free; creation happens under a lock with a re-check,
    so racing creators always share a single evaluator per key.

    The registry only makes sharing the map safe. Concurrent updates of one
    evaluator are serialized by the evaluator itself.

    Usage::

        registry = SeriesRegistry()
        evaluator = registry.get_or_create(
            key, lambda: SeriesEvaluator(labels, sample_size=50, key=key)
        )
    """

    def __init__(self) -> None:
        self._series: dict[str, SeriesEvaluator] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: str, factory: Factory) -> SeriesEvaluator:
        evaluator = self._series.get(key)
        if evaluator is not None:
            return evaluator
        with self._lock:
            evaluator = self._series.get(key)
            if evaluator is None:
                evaluator = factory()
                self._series[key] = evaluator
                logger.info("Start tracking series %s", key)
        return evaluator

    def get(self, key: str) -> SeriesEvaluator | None:
        return self._series.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            snapshot = list(self._series)
        return sorted(snapshot)

    def items(self) -> Iterator[tuple[str, SeriesEvaluator]]:
        with self._lock:
            snapshot = list(self._series.items())
        return iter(sorted(snapshot, key=lambda kv: kv[0]))

    def __contains__(self, key: object) -> bool:
        return key in self._series

    def __len__(self) -> int:
        return len(self._series)

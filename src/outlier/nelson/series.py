"""Per-series rule evaluation.

A SeriesEvaluator tracks one time series: its frozen baseline, the running
state of every active rule, a short diagnostic window of recent samples and
the cumulative violation tally.

Samples must be delivered in non-decreasing time order. ``add_sample`` does
not reorder or validate; out-of-order delivery silently corrupts the
stateful rules. ``add_samples`` sorts a batch before feeding it.
"""
from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .baseline import Baseline
from .rules import ALL_RULES, MAX_SAMPLES, Rule, RuleState


@dataclass(frozen=True)
class Sample:
    """One measurement: unix timestamp in seconds and its value."""

    timestamp: float
    value: float


@dataclass(frozen=True)
class Violation:
    """A rule reporting True for one sample of one series."""

    rule: str
    series_key: str
    sample: Sample


@dataclass(frozen=True)
class Evaluation:
    """Outcome of feeding one sample to a SeriesEvaluator.

    Attributes:
        ready:      Baseline state after the sample was consumed.
        results:    Per-rule outcome in catalog order; empty when the sample
                    went into the baseline instead of being evaluated.
        violations: One event per rule that reported True.
    """

    ready: bool
    results: dict[str, bool] = field(default_factory=dict)
    violations: tuple[Violation, ...] = ()

    @property
    def evaluated(self) -> bool:
        return bool(self.results)


class SeriesEvaluator:
    """Evaluate the Nelson rules for a single time series.

    Args:
        metric:      Label set identifying the series (opaque to the engine).
        sample_size: Values used to establish the baseline.
        rules:       Rules to evaluate; defaults to the full catalog.
        key:         Stable rendering of ``metric``; used in violation events.

    Usage::

        evaluator = SeriesEvaluator({"__name__": "latency"}, sample_size=50)
        for sample in samples:
            for violation in evaluator.add_sample(sample).violations:
                print(violation.rule)
    """

    def __init__(
        self,
        metric: Mapping[str, str] | None = None,
        sample_size: int = 50,
        rules: Iterable[Rule] | None = None,
        key: str = "",
    ) -> None:
        self.metric: dict[str, str] = dict(metric or {})
        self.key = key
        self.rules: tuple[Rule, ...] = tuple(rules) if rules is not None else ALL_RULES
        self.baseline = Baseline(sample_size)
        self._lock = threading.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self.state = RuleState()
        self.violations: Counter[str] = Counter()
        self._recent: deque[Sample] = deque(maxlen=MAX_SAMPLES)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_sample(self, sample: Sample) -> Evaluation:
        """Feed one sample to the baseline or, once it is ready, to every rule."""
        with self._lock:
            return self._add(sample)

    def add_samples(self, samples: Iterable[Sample]) -> list[Violation]:
        """Sort samples by time (oldest first), feed them, return all violations."""
        ordered = sorted(samples, key=lambda s: s.timestamp)
        found: list[Violation] = []
        with self._lock:
            for sample in ordered:
                found.extend(self._add(sample).violations)
        return found

    def clear(self) -> None:
        """Restart detection from scratch, keeping identity and rule selection."""
        with self._lock:
            self.baseline.clear()
            self._reset_state()

    def _add(self, sample: Sample) -> Evaluation:
        if not self.baseline.ready:
            return Evaluation(ready=self.baseline.add_sample(sample.value))

        self._recent.appendleft(sample)
        results: dict[str, bool] = {}
        violations: list[Violation] = []
        for rule in self.rules:
            violated = rule(self.state, self.baseline, sample.value)
            results[rule.name] = violated
            if violated:
                self.violations[rule.name] += 1
                violations.append(Violation(rule=rule.name, series_key=self.key, sample=sample))
        return Evaluation(ready=True, results=results, violations=tuple(violations))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self.baseline.ready

    @property
    def has_violations(self) -> bool:
        return sum(self.violations.values()) > 0

    @property
    def recent(self) -> tuple[Sample, ...]:
        """Most recent evaluated samples, newest first (at most MAX_SAMPLES)."""
        return tuple(self._recent)

    def summary(self) -> dict[str, Any]:
        """Diagnostic snapshot for logging and reports."""
        return {
            "key": self.key,
            "ready": self.baseline.ready,
            "baseline_count": self.baseline.count,
            "sample_size": self.baseline.sample_size,
            "mean": self.baseline.mean,
            "standard_deviation": self.baseline.standard_deviation,
            "rules": [r.name for r in self.rules],
            "violations": dict(self.violations),
            "recent": len(self._recent),
        }

    def __repr__(self) -> str:
        return (
            f"SeriesEvaluator(key={self.key!r}, violations={sum(self.violations.values())}, "
            f"recent={len(self._recent)}, baseline={self.baseline!r})"
        )

"""Shared pytest fixtures for outlier tests."""
from __future__ import annotations

from typing import Callable

import pytest

from outlier.nelson.rules import ALL_RULES, Rule
from outlier.nelson.series import Sample, SeriesEvaluator

# SampleSize=10 with these values gives mean=10 and stddev=2.58199
BASELINE_VALUES = [6.0, 7.0, 8.0, 9.0, 10.0, 10.0, 11.0, 12.0, 13.0, 14.0]


def samples_from(values: list[float], start: float = 200_000.0, step: float = 1_000.0) -> list[Sample]:
    return [Sample(start + i * step, v) for i, v in enumerate(values)]


@pytest.fixture()
def baseline_samples() -> list[Sample]:
    return samples_from(BASELINE_VALUES, start=100_000.0)


@pytest.fixture()
def ready_evaluator(baseline_samples: list[Sample]) -> Callable[..., SeriesEvaluator]:
    """Return a factory for evaluators whose baseline is already established."""

    def _make(rules: tuple[Rule, ...] = ALL_RULES, key: str = "test") -> SeriesEvaluator:
        evaluator = SeriesEvaluator({"__name__": key}, sample_size=10, rules=rules, key=key)
        for sample in baseline_samples:
            evaluator.add_sample(sample)
        assert evaluator.ready
        return evaluator

    return _make


def feed(evaluator: SeriesEvaluator, values: list[float], start: float = 200_000.0) -> list[str]:
    """Feed values in order; return the names of the rules that fired."""
    fired: list[str] = []
    for sample in samples_from(values, start=start):
        fired.extend(v.rule for v in evaluator.add_sample(sample).violations)
    return fired

"""Frozen baseline statistics for a single time series.

The first ``sample_size`` values of a series establish its mean and standard
deviation. Once established the baseline never changes; re-baselining a
series requires an explicit ``clear()``.
"""
from __future__ import annotations

from math import sqrt


class Baseline:
    """Accumulate the first N values, then freeze mean/σ and derived thresholds.

    The standard deviation is the sample standard deviation (n - 1
    denominator), or 0.0 when the baseline is a single value.

    Usage::

        baseline = Baseline(sample_size=10)
        for value in values:
            if baseline.add_sample(value):
                break
        print(baseline.mean, baseline.standard_deviation)
    """

    def __init__(self, sample_size: int) -> None:
        if sample_size <= 0:
            raise ValueError(f"sample_size must be > 0, got {sample_size}")
        self.sample_size = sample_size
        self.clear()

    def clear(self) -> None:
        """Discard accumulated values and derived statistics."""
        self._values: list[float] = []
        self.ready = False
        self.mean = 0.0
        self.standard_deviation = 0.0
        self.two_deviations = 0.0
        self.three_deviations = 0.0

    def add_sample(self, value: float) -> bool:
        """Accumulate value until the baseline is full; return the ready flag.

        Values offered after the baseline is ready are ignored.
        """
        if self.ready:
            return True
        self._values.append(float(value))
        if len(self._values) == self.sample_size:
            self._freeze()
        return self.ready

    def _freeze(self) -> None:
        n = len(self._values)
        mean = sum(self._values) / n
        if n > 1:
            variance = sum((v - mean) ** 2 for v in self._values) / (n - 1)
        else:
            variance = 0.0
        self.mean = mean
        self.standard_deviation = sqrt(variance)
        self.two_deviations = 2 * self.standard_deviation
        self.three_deviations = 3 * self.standard_deviation
        self.ready = True

    @property
    def count(self) -> int:
        """Number of values accumulated so far."""
        return len(self._values)

    @property
    def degenerate(self) -> bool:
        """True when the frozen baseline has no spread (σ == 0)."""
        return self.ready and self.standard_deviation == 0.0

    def __repr__(self) -> str:
        if not self.ready:
            return f"Baseline(collecting {self.count}/{self.sample_size})"
        return (
            f"Baseline(mean={self.mean:.5f}, standard_deviation={self.standard_deviation:.5f}, "
            f"sample_size={self.sample_size})"
        )
